"""
tracker/store.py -- Document-backed repositories for tracked entities.

Pattern: Repository + Data Mapper. Each store wraps one collection of the
shared DocumentStore; _to_doc / _from_doc are the mappers that translate
between domain dataclasses and JSON documents (datetimes become UTC ISO
strings on the way in and datetime objects on the way out). Route handlers
never touch a Collection directly.

SLA behaviour lives in core/sla.py. VulnerabilityStore calls it:
  - create(): fills due_date from the severity timeline when none is given
  - update(): fills due_date on an explicit severity change, and only when
    the finding has no due date yet; manual due dates are never replaced
  - overdue/due_within/upcoming_retests/stats classify with the pure
    predicates, passing `now` and the window sizes through

SlaSettingsStore owns the singleton settings document: created lazily with
defaults on first read, merged and upserted on update.

Usage:
    docs = DocumentStore()
    vulns = VulnerabilityStore(docs)
    sla = SlaSettingsStore(docs).get()
    v = vulns.create(Vulnerability(application_id=app_id, title="XSS", ...), sla)
    vulns.overdue(datetime.now(timezone.utc))
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Generic, Iterable, Optional, TypeVar

from core.documents import Document, DocumentStore, Predicate
from core.errors import NotFound, ValidationError
from core.models import CLOSED_STATUSES, SEVERITIES, VULN_STATUSES, SlaSettings
from core.sla import (
    apply_settings_update,
    compute_due_date,
    is_due_within_window,
    is_overdue,
    is_retest_eligible,
    retest_at,
)
from tracker.models import Application, Report, SavedView, Team, Vulnerability

logger = logging.getLogger("vmp.tracker")

T = TypeVar("T")

# Fields stored as ISO 8601 strings and parsed back to datetime.
_DATETIME_FIELDS = frozenset(
    {
        "created_at",
        "updated_at",
        "date_uploaded",
        "report_date",
        "discovered_date",
        "due_date",
        "resolved_date",
    }
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as UTC ISO 8601. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _serialize_changes(changes: dict[str, Any]) -> Document:
    return {k: (_iso(v) if k in _DATETIME_FIELDS else v) for k, v in changes.items()}


@dataclass
class Page(Generic[T]):
    """One page of a sorted, filtered listing."""

    items: list[T]
    total: int
    page: int
    page_size: int


# ---------------------------------------------------------------------------
# Generic repository
# ---------------------------------------------------------------------------


class _Repository(Generic[T]):
    """CRUD over one collection for one dataclass type.

    Subclasses set `collection_name` and `entity` and add their own queries.
    `scalar_fields` lists single-valued keys whose string filters can run in SQL.
    """

    collection_name: str = ""
    entity: type = object
    scalar_fields: frozenset[str] = frozenset()

    def __init__(self, documents: DocumentStore) -> None:
        self._docs = documents.collection(self.collection_name, self.scalar_fields)

    # ------------------------------------------------------------------
    # Mappers
    # ------------------------------------------------------------------

    def _to_doc(self, obj: T) -> Document:
        doc = _serialize_changes(asdict(obj))
        if doc.get("id") is None:
            doc.pop("id", None)
        return doc

    def _from_doc(self, doc: Document) -> T:
        kwargs = {}
        for f in fields(self.entity):
            if f.name in doc:
                value = doc[f.name]
                kwargs[f.name] = _parse(value) if f.name in _DATETIME_FIELDS else value
        return self.entity(**kwargs)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def get(self, entity_id: str) -> Optional[T]:
        doc = self._docs.find_one({"id": entity_id})
        return self._from_doc(doc) if doc else None

    def require(self, entity_id: str) -> T:
        """get() that raises NotFound instead of returning None."""
        found = self.get(entity_id)
        if found is None:
            raise NotFound(f"{self.entity.__name__} not found")
        return found

    def find(
        self,
        filter: Optional[dict[str, Any]] = None,
        sort: Optional[Iterable[tuple[str, int]]] = None,
        predicate: Optional[Predicate] = None,
    ) -> list[T]:
        return [self._from_doc(d) for d in self._docs.find(filter, sort=sort, predicate=predicate)]

    def page(
        self,
        filter: Optional[dict[str, Any]],
        page: int,
        page_size: int,
        sort: Iterable[tuple[str, int]] = (("created_at", -1),),
        predicate: Optional[Predicate] = None,
    ) -> Page[T]:
        page = max(page, 1)
        total = self._docs.count(filter, predicate=predicate)
        docs = self._docs.find(
            filter,
            sort=sort,
            skip=(page - 1) * page_size,
            limit=page_size,
            predicate=predicate,
        )
        return Page(items=[self._from_doc(d) for d in docs], total=total, page=page, page_size=page_size)

    def create(self, obj: T) -> T:
        now = _now()
        obj.created_at = obj.created_at or now
        obj.updated_at = now
        obj.id = self._docs.insert_one(self._to_doc(obj))
        return obj

    def update(self, entity_id: str, changes: dict[str, Any]) -> Optional[T]:
        """Shallow-merge attribute changes. Returns None if the entity is absent."""
        changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
        changes["updated_at"] = _now()
        doc = self._docs.find_one_and_update({"id": entity_id}, _serialize_changes(changes))
        return self._from_doc(doc) if doc else None

    def delete(self, entity_id: str) -> bool:
        return self._docs.delete_one({"id": entity_id})


# ---------------------------------------------------------------------------
# Teams and applications
# ---------------------------------------------------------------------------


class TeamStore(_Repository[Team]):
    collection_name = "teams"
    entity = Team
    scalar_fields = frozenset({"platform"})

    def list_teams(self, platform: Optional[str] = None) -> list[Team]:
        return self.find({"platform": platform} if platform else None, sort=[("name", 1)])


class ApplicationStore(_Repository[Application]):
    collection_name = "applications"
    entity = Application
    scalar_fields = frozenset({"team_id", "platform"})

    def list_applications(self, team_id: Optional[str] = None, platform: Optional[str] = None) -> list[Application]:
        filter: dict[str, Any] = {}
        if team_id:
            filter["team_id"] = team_id
        if platform:
            filter["platform"] = platform
        return self.find(filter, sort=[("name", 1)])

    def ids_for_team(self, team_id: str) -> frozenset[str]:
        """Application ids owned by a team; used to scope vulnerability queries."""
        return frozenset(d["id"] for d in self._docs.find({"team_id": team_id}))


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportStore(_Repository[Report]):
    collection_name = "reports"
    entity = Report
    scalar_fields = frozenset({"application_id", "report_type"})

    def create(self, report: Report) -> Report:
        """Insert a report, defaulting upload date and year.

        A reconfirmatory report must reference an existing original; the
        original's reconfirmatory_reports list gains the new id.
        """
        if report.report_type not in ("initial", "reconfirmatory"):
            raise ValidationError("reportType must be 'initial' or 'reconfirmatory'")
        original = None
        if report.original_report_id:
            original = self.get(report.original_report_id)
            if original is None:
                raise ValidationError("Original report not found")
        now = _now()
        report.date_uploaded = report.date_uploaded or now
        if report.year is None:
            report.year = (report.report_date or report.date_uploaded).year
        created = super().create(report)
        if original is not None:
            self.update(original.id, {"reconfirmatory_reports": [*original.reconfirmatory_reports, created.id]})
        return created

    def list_page(
        self,
        page: int = 1,
        page_size: int = 10,
        application_id: Optional[str] = None,
        parsed: Optional[bool] = None,
        report_type: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Page[Report]:
        filter: dict[str, Any] = {}
        if application_id:
            filter["application_id"] = application_id
        if parsed is not None:
            filter["parsed"] = parsed
        if report_type:
            filter["report_type"] = report_type
        if year is not None:
            filter["year"] = year
        return self.page(filter, page, page_size)

    def by_application(self, application_id: str) -> list[Report]:
        return self.find({"application_id": application_id}, sort=[("created_at", -1)])

    def by_year(self, year: int) -> list[Report]:
        return self.find({"year": year}, sort=[("created_at", -1)])

    def reconfirmatory(self, report_id: str) -> list[Report]:
        """The report itself plus every report that re-tests it, newest first."""
        return self.find(
            predicate=lambda d: d["id"] == report_id or d.get("original_report_id") == report_id,
            sort=[("created_at", -1)],
        )

    def mark_parsed(self, report_id: str, vulnerability_ids: list[str]) -> Optional[Report]:
        return self.update(report_id, {"parsed": True, "vulnerability_ids": list(vulnerability_ids)})

    def grouped_by_year(self, application_id: str) -> dict[int, list[Report]]:
        """Reports for an application keyed by year, newest year first."""
        grouped: dict[int, list[Report]] = {}
        for report in self.find({"application_id": application_id}, sort=[("year", -1), ("created_at", -1)]):
            year = report.year or (report.created_at or _now()).year
            grouped.setdefault(year, []).append(report)
        return grouped


# ---------------------------------------------------------------------------
# Vulnerabilities
# ---------------------------------------------------------------------------


def _validate_vuln_fields(severity: Optional[str], status: Optional[str]) -> None:
    if severity is not None and severity not in SEVERITIES:
        raise ValidationError(f"severity must be one of: {', '.join(SEVERITIES)}")
    if status is not None and status not in VULN_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(VULN_STATUSES)}")


class VulnerabilityStore(_Repository[Vulnerability]):
    collection_name = "vulnerabilities"
    entity = Vulnerability
    scalar_fields = frozenset(
        {"application_id", "report_id", "status", "internal_status", "severity", "assigned_to_user_id"}
    )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, vuln: Vulnerability, sla: SlaSettings) -> Vulnerability:
        """Insert a finding, computing its due date when none was supplied."""
        _validate_vuln_fields(vuln.severity, vuln.status)
        now = _now()
        vuln.discovered_date = vuln.discovered_date or now
        if vuln.due_date is None:
            vuln.due_date = compute_due_date(sla, vuln.severity, vuln.discovered_date)
        if vuln.status in CLOSED_STATUSES and vuln.resolved_date is None:
            vuln.resolved_date = now
        return super().create(vuln)

    def update(
        self,
        vuln_id: str,
        changes: dict[str, Any],
        sla: Optional[SlaSettings] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Vulnerability]:
        """Apply changes with the SLA and resolution side effects.

        - severity changed, no due_date in changes, and none stored:
          due_date is computed from discovered_date (requires sla)
        - status moves into Fixed/Closed with no resolved_date: stamped now
        - status moves back to an open state: resolved_date is cleared so a
          later fix starts a fresh retest window
        """
        current = self.get(vuln_id)
        if current is None:
            return None
        _validate_vuln_fields(changes.get("severity"), changes.get("status"))
        now = now or _now()
        changes = dict(changes)

        new_severity = changes.get("severity")
        if (
            sla is not None
            and new_severity is not None
            and new_severity != current.severity
            and "due_date" not in changes
            and current.due_date is None
        ):
            discovered = changes.get("discovered_date") or current.discovered_date or now
            changes["due_date"] = compute_due_date(sla, new_severity, discovered)

        new_status = changes.get("status")
        if new_status is not None and "resolved_date" not in changes:
            if new_status in CLOSED_STATUSES and current.resolved_date is None:
                changes["resolved_date"] = now
            elif new_status not in CLOSED_STATUSES and current.status in CLOSED_STATUSES:
                changes["resolved_date"] = None

        return super().update(vuln_id, changes)

    def bulk_create(self, vulns: list[Vulnerability], sla: SlaSettings) -> list[Vulnerability]:
        """Validate every finding first so a bad item leaves nothing behind."""
        for vuln in vulns:
            _validate_vuln_fields(vuln.severity, vuln.status)
        return [self.create(v, sla) for v in vulns]

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_page(
        self,
        page: int = 1,
        page_size: int = 10,
        application_id: Optional[str] = None,
        report_id: Optional[str] = None,
        status: Optional[str] = None,
        internal_status: Optional[str] = None,
        severity: Optional[str] = None,
        assigned_to: Optional[str] = None,
        search: Optional[str] = None,
        application_ids: Optional[frozenset[str]] = None,
    ) -> Page[Vulnerability]:
        """Paginated listing, newest first.

        search matches title or description case-insensitively.
        application_ids restricts results to a team's applications.
        """
        filter: dict[str, Any] = {}
        for key, value in (
            ("application_id", application_id),
            ("report_id", report_id),
            ("status", status),
            ("internal_status", internal_status),
            ("severity", severity),
            ("assigned_to_user_id", assigned_to),
        ):
            if value:
                filter[key] = value
        if application_ids is not None:
            if application_id and application_id not in application_ids:
                return Page(items=[], total=0, page=max(page, 1), page_size=page_size)
            filter.setdefault("application_id", set(application_ids))

        predicate = None
        if search:
            needle = search.strip().lower()

            def predicate(d: Document) -> bool:
                return needle in (d.get("title") or "").lower() or needle in (d.get("description") or "").lower()

        return self.page(filter, page, page_size, predicate=predicate)

    def by_application(self, application_id: str) -> list[Vulnerability]:
        return self.find({"application_id": application_id}, sort=[("created_at", -1)])

    def by_report(self, report_id: str) -> list[Vulnerability]:
        return self.find({"report_id": report_id}, sort=[("created_at", -1)])

    def by_status(self, status: str) -> list[Vulnerability]:
        return self.find({"status": status}, sort=[("created_at", -1)])

    def by_severity(self, severity: str) -> list[Vulnerability]:
        return self.find({"severity": severity}, sort=[("created_at", -1)])

    def by_assignee(self, user_id: str) -> list[Vulnerability]:
        return self.find({"assigned_to_user_id": user_id}, sort=[("due_date", 1)])

    # ------------------------------------------------------------------
    # SLA queries
    # ------------------------------------------------------------------

    @staticmethod
    def _scope(application_ids: Optional[frozenset[str]]) -> Optional[dict[str, Any]]:
        return None if application_ids is None else {"application_id": set(application_ids)}

    def _classified(self, application_ids: Optional[frozenset[str]], test) -> list[Vulnerability]:
        return [v for v in self.find(self._scope(application_ids)) if test(v)]

    def overdue(self, now: datetime, application_ids: Optional[frozenset[str]] = None) -> list[Vulnerability]:
        """Open findings past their due date, most overdue first."""
        found = self._classified(application_ids, lambda v: is_overdue(v, now))
        return sorted(found, key=lambda v: v.due_date)

    def due_within(
        self,
        now: datetime,
        window_days: int,
        application_ids: Optional[frozenset[str]] = None,
    ) -> list[Vulnerability]:
        """Open findings due strictly inside (now, now + window_days), soonest first."""
        found = self._classified(application_ids, lambda v: is_due_within_window(v, now, window_days))
        return sorted(found, key=lambda v: v.due_date)

    def upcoming_retests(
        self,
        now: datetime,
        retest_offset_days: int,
        lookahead_days: int,
        application_ids: Optional[frozenset[str]] = None,
    ) -> list[Vulnerability]:
        """Fixed findings whose retest date falls inside the lookahead window."""
        found = self._classified(
            application_ids,
            lambda v: is_retest_eligible(v, now, retest_offset_days, lookahead_days),
        )
        return sorted(found, key=lambda v: retest_at(v, retest_offset_days))

    def stats(
        self,
        now: datetime,
        window_days: int,
        application_ids: Optional[frozenset[str]] = None,
    ) -> dict[str, Any]:
        """Dashboard counters for the (optionally team-scoped) finding set."""
        vulns = self.find(self._scope(application_ids))
        by_severity = {s: 0 for s in SEVERITIES}
        by_status = {s: 0 for s in VULN_STATUSES}
        open_count = overdue = due_soon = with_due_date = 0
        for v in vulns:
            by_severity[v.severity] = by_severity.get(v.severity, 0) + 1
            by_status[v.status] = by_status.get(v.status, 0) + 1
            if v.status in CLOSED_STATUSES:
                continue
            open_count += 1
            if v.due_date is not None:
                with_due_date += 1
            if is_overdue(v, now):
                overdue += 1
            elif is_due_within_window(v, now, window_days):
                due_soon += 1
        return {
            "total": len(vulns),
            "open": open_count,
            "overdue": overdue,
            "dueThisWeek": due_soon,
            "bySeverity": by_severity,
            "byStatus": by_status,
            "sla": {
                "openTotalWithDueDate": with_due_date,
                "openNotOverdue": with_due_date - overdue,
            },
        }


# ---------------------------------------------------------------------------
# Saved views
# ---------------------------------------------------------------------------


class SavedViewStore(_Repository[SavedView]):
    """Saved views are private: every query is scoped to the owner."""

    collection_name = "saved_views"
    entity = SavedView
    scalar_fields = frozenset({"owner_user_id", "entity_type"})

    def list_for_owner(self, owner_user_id: str, entity_type: Optional[str] = None) -> list[SavedView]:
        filter: dict[str, Any] = {"owner_user_id": owner_user_id}
        if entity_type:
            filter["entity_type"] = entity_type
        return self.find(filter, sort=[("updated_at", -1)])

    def update_owned(self, view_id: str, owner_user_id: str, changes: dict[str, Any]) -> Optional[SavedView]:
        """Update a view only if it belongs to owner_user_id. None otherwise."""
        view = self.get(view_id)
        if view is None or view.owner_user_id != owner_user_id:
            return None
        changes = {k: v for k, v in changes.items() if k != "owner_user_id"}
        return self.update(view_id, changes)

    def delete_owned(self, view_id: str, owner_user_id: str) -> bool:
        return self._docs.delete_one({"id": view_id, "owner_user_id": owner_user_id})


# ---------------------------------------------------------------------------
# SLA settings (singleton)
# ---------------------------------------------------------------------------


class SlaSettingsStore:
    """Settings Store for the single SlaSettings document."""

    SETTINGS_ID = "due_date_settings"

    def __init__(self, documents: DocumentStore) -> None:
        self._docs = documents.collection("settings")

    @staticmethod
    def _from_doc(doc: Document) -> SlaSettings:
        return SlaSettings(
            auto_assign_due_dates=bool(doc.get("auto_assign_due_dates", True)),
            due_date_timelines={k: int(v) for k, v in (doc.get("due_date_timelines") or {}).items()},
            id=doc["id"],
            created_at=_parse(doc.get("created_at")),
            updated_at=_parse(doc.get("updated_at")),
        )

    def get(self) -> SlaSettings:
        """Return the settings, creating the default document on first read.

        Concurrent first reads each upsert the same defaults; the last write
        wins and the result is identical.
        """
        doc = self._docs.find_one({"id": self.SETTINGS_ID})
        if doc is None:
            defaults = SlaSettings()
            now = _iso(_now())
            doc = self._docs.find_one_and_update(
                {"id": self.SETTINGS_ID},
                {
                    "auto_assign_due_dates": defaults.auto_assign_due_dates,
                    "due_date_timelines": defaults.due_date_timelines,
                    "created_at": now,
                    "updated_at": now,
                },
                upsert=True,
            )
            logger.info("Created default SLA settings")
        return self._from_doc(doc)

    def update(self, partial: dict[str, Any]) -> SlaSettings:
        """Validate and merge a partial update, then upsert.

        partial keys: auto_assign_due_dates, due_date_timelines (per-severity
        subset). Raises ValidationError naming the first bad severity.
        Existing findings keep their due dates.
        """
        merged = apply_settings_update(self.get(), partial)
        doc = self._docs.find_one_and_update(
            {"id": self.SETTINGS_ID},
            {
                "auto_assign_due_dates": merged.auto_assign_due_dates,
                "due_date_timelines": merged.due_date_timelines,
                "updated_at": _iso(_now()),
            },
            upsert=True,
        )
        logger.info(
            "SLA settings updated (auto_assign=%s, timelines=%s)",
            merged.auto_assign_due_dates,
            merged.due_date_timelines,
        )
        return self._from_doc(doc)
