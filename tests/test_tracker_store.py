"""Repository tests for tracker/store.py.

Covers:
- SlaSettingsStore lazy defaults (also under concurrent first reads),
  per-severity merge and rejection
- VulnerabilityStore due-date assignment on create and severity change
- resolved_date stamping and clearing on status transitions
- SLA queries (overdue, due soon, retests, stats) and team scoping
- ReportStore reconfirmatory linkage and SavedViewStore owner scoping
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import NotFound, ValidationError
from core.models import DEFAULT_DUE_DATE_TIMELINES, SlaSettings
from tracker.models import Application, Report, SavedView, Vulnerability
from tracker.store import (
    ApplicationStore,
    ReportStore,
    SavedViewStore,
    SlaSettingsStore,
    VulnerabilityStore,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _vuln(app_id="app-1", severity="High", **kwargs) -> Vulnerability:
    return Vulnerability(
        application_id=app_id,
        title=kwargs.pop("title", "Stored XSS"),
        description="comment body rendered unescaped",
        severity=severity,
        **kwargs,
    )


@pytest.fixture
def vulns(documents) -> VulnerabilityStore:
    return VulnerabilityStore(documents)


# ---------------------------------------------------------------------------
# SLA settings
# ---------------------------------------------------------------------------


class TestSlaSettingsStore:
    def test_defaults_created_on_first_read(self, documents) -> None:
        settings = SlaSettingsStore(documents).get()
        assert settings.auto_assign_due_dates is True
        assert settings.due_date_timelines == DEFAULT_DUE_DATE_TIMELINES
        assert settings.id == SlaSettingsStore.SETTINGS_ID
        assert documents.collection("settings").count() == 1

    def test_partial_timeline_update_round_trips(self, documents) -> None:
        store = SlaSettingsStore(documents)
        store.update({"due_date_timelines": {"Critical": 10}})
        assert store.get().due_date_timelines == {"Critical": 10, "High": 30, "Medium": 60, "Low": 60}

    def test_out_of_range_rejected_and_not_persisted(self, documents) -> None:
        store = SlaSettingsStore(documents)
        with pytest.raises(ValidationError, match="Critical"):
            store.update({"due_date_timelines": {"Critical": 400}})
        assert store.get().due_date_timelines["Critical"] == 15

    def test_disable_auto_assign(self, documents) -> None:
        store = SlaSettingsStore(documents)
        assert store.update({"auto_assign_due_dates": False}).auto_assign_due_dates is False
        assert store.get().auto_assign_due_dates is False

    def test_concurrent_first_reads_both_get_defaults(self, file_documents, race) -> None:
        store = SlaSettingsStore(file_documents)
        # Second load is the one inside the upsert, after both reads missed.
        results, errors = race(2, store.get, store.get)
        assert errors == []
        assert [s.due_date_timelines for s in results] == [DEFAULT_DUE_DATE_TIMELINES] * 2
        assert all(s.id == SlaSettingsStore.SETTINGS_ID for s in results)
        assert file_documents.collection("settings").count() == 1


# ---------------------------------------------------------------------------
# Vulnerability writes
# ---------------------------------------------------------------------------


class TestVulnerabilityCreate:
    def test_due_date_computed_from_discovery(self, vulns) -> None:
        discovered = datetime(2024, 1, 10, tzinfo=timezone.utc)
        vuln = vulns.create(_vuln(severity="Critical", discovered_date=discovered), SlaSettings())
        assert vuln.due_date == datetime(2024, 1, 25, tzinfo=timezone.utc)
        assert vulns.get(vuln.id).due_date == vuln.due_date

    def test_explicit_due_date_kept(self, vulns) -> None:
        manual = datetime(2024, 12, 31, tzinfo=timezone.utc)
        vuln = vulns.create(_vuln(severity="Critical", due_date=manual), SlaSettings())
        assert vuln.due_date == manual

    def test_auto_assign_off_leaves_no_due_date(self, vulns) -> None:
        vuln = vulns.create(_vuln(), SlaSettings(auto_assign_due_dates=False))
        assert vuln.due_date is None
        assert vuln.discovered_date is not None

    def test_created_fixed_gets_resolved_date(self, vulns) -> None:
        assert vulns.create(_vuln(status="Fixed"), SlaSettings()).resolved_date is not None

    def test_invalid_severity_rejected(self, vulns) -> None:
        with pytest.raises(ValidationError):
            vulns.create(_vuln(severity="Urgent"), SlaSettings())

    def test_bulk_create_validates_everything_first(self, vulns) -> None:
        with pytest.raises(ValidationError):
            vulns.bulk_create([_vuln(), _vuln(status="Done")], SlaSettings())
        assert vulns.find() == []


class TestVulnerabilityUpdate:
    def test_severity_change_fills_missing_due_date(self, vulns) -> None:
        discovered = datetime(2024, 1, 10, tzinfo=timezone.utc)
        vuln = vulns.create(
            _vuln(severity="Low", discovered_date=discovered),
            SlaSettings(due_date_timelines={"Critical": 15}),
        )
        assert vuln.due_date is None
        updated = vulns.update(vuln.id, {"severity": "Critical"}, SlaSettings())
        assert updated.due_date == datetime(2024, 1, 25, tzinfo=timezone.utc)

    def test_severity_change_keeps_existing_due_date(self, vulns) -> None:
        vuln = vulns.create(_vuln(severity="Low"), SlaSettings())
        updated = vulns.update(vuln.id, {"severity": "Critical"}, SlaSettings())
        assert updated.due_date == vuln.due_date

    def test_explicit_due_date_in_change_wins(self, vulns) -> None:
        vuln = vulns.create(_vuln(severity="Low"), SlaSettings(auto_assign_due_dates=False))
        manual = datetime(2025, 1, 1, tzinfo=timezone.utc)
        updated = vulns.update(vuln.id, {"severity": "Critical", "due_date": manual}, SlaSettings())
        assert updated.due_date == manual

    def test_fix_stamps_then_reopen_clears_resolved_date(self, vulns) -> None:
        vuln = vulns.create(_vuln(), SlaSettings())
        fixed = vulns.update(vuln.id, {"status": "Fixed"}, now=NOW)
        assert fixed.resolved_date == NOW
        reopened = vulns.update(vuln.id, {"status": "Reopened"})
        assert reopened.resolved_date is None

    def test_fixed_to_closed_keeps_resolved_date(self, vulns) -> None:
        vuln = vulns.create(_vuln(), SlaSettings())
        vulns.update(vuln.id, {"status": "Fixed"}, now=NOW)
        closed = vulns.update(vuln.id, {"status": "Closed"}, now=NOW + timedelta(days=3))
        assert closed.resolved_date == NOW

    def test_update_missing_returns_none(self, vulns) -> None:
        assert vulns.update("missing", {"title": "x"}) is None

    def test_require_raises_not_found(self, vulns) -> None:
        with pytest.raises(NotFound, match="Vulnerability not found"):
            vulns.require("missing")


# ---------------------------------------------------------------------------
# Vulnerability queries
# ---------------------------------------------------------------------------


@pytest.fixture
def classified(vulns) -> dict[str, Vulnerability]:
    """One finding per SLA bucket, relative to NOW. app-2 belongs to another team."""
    manual = SlaSettings(auto_assign_due_dates=False)
    return {
        "overdue": vulns.create(_vuln(title="overdue", due_date=NOW - timedelta(days=2)), manual),
        "overdue_older": vulns.create(
            _vuln(title="older", severity="Critical", due_date=NOW - timedelta(days=9)), manual
        ),
        "soon": vulns.create(_vuln(title="soon", due_date=NOW + timedelta(days=3)), manual),
        "later": vulns.create(_vuln(title="later", severity="Low", due_date=NOW + timedelta(days=10)), manual),
        "fixed_past_due": vulns.create(
            _vuln(
                title="fixed",
                status="Fixed",
                due_date=NOW - timedelta(days=5),
                resolved_date=NOW - timedelta(days=20),
            ),
            manual,
        ),
        "other_team": vulns.create(_vuln(app_id="app-2", title="other", due_date=NOW - timedelta(days=1)), manual),
    }


class TestSlaQueries:
    def test_overdue_sorted_most_overdue_first(self, vulns, classified) -> None:
        titles = [v.title for v in vulns.overdue(NOW)]
        assert titles == ["older", "overdue", "other"]

    def test_overdue_scoped_to_applications(self, vulns, classified) -> None:
        titles = [v.title for v in vulns.overdue(NOW, frozenset({"app-1"}))]
        assert titles == ["older", "overdue"]

    def test_due_within_window(self, vulns, classified) -> None:
        assert [v.title for v in vulns.due_within(NOW, 7)] == ["soon"]
        assert [v.title for v in vulns.due_within(NOW, 14)] == ["soon", "later"]

    def test_upcoming_retests(self, vulns, classified) -> None:
        assert [v.title for v in vulns.upcoming_retests(NOW, 30, 30)] == ["fixed"]

    def test_stats(self, vulns, classified) -> None:
        stats = vulns.stats(NOW, 7)
        assert stats["total"] == 6
        assert stats["open"] == 5
        assert stats["overdue"] == 3
        assert stats["dueThisWeek"] == 1
        assert stats["bySeverity"] == {"Critical": 1, "High": 4, "Medium": 0, "Low": 1}
        assert stats["byStatus"]["Fixed"] == 1
        assert stats["sla"] == {"openTotalWithDueDate": 5, "openNotOverdue": 2}

    def test_stats_scoped(self, vulns, classified) -> None:
        assert vulns.stats(NOW, 7, frozenset({"app-2"}))["total"] == 1

    def test_list_page_search_and_pagination(self, vulns, classified) -> None:
        page = vulns.list_page(page=1, page_size=2)
        assert page.total == 6
        assert len(page.items) == 2
        assert vulns.list_page(search="OLD").total == 1

    def test_list_page_outside_scope_is_empty(self, vulns, classified) -> None:
        page = vulns.list_page(application_id="app-2", application_ids=frozenset({"app-1"}))
        assert page.total == 0
        assert page.items == []

    def test_by_assignee_sorted_by_due_date(self, vulns) -> None:
        manual = SlaSettings(auto_assign_due_dates=False)
        vulns.create(_vuln(title="b", assigned_to_user_id="u1", due_date=NOW + timedelta(days=5)), manual)
        vulns.create(_vuln(title="a", assigned_to_user_id="u1", due_date=NOW + timedelta(days=1)), manual)
        vulns.create(_vuln(title="c", assigned_to_user_id="u2"), manual)
        assert [v.title for v in vulns.by_assignee("u1")] == ["a", "b"]


# ---------------------------------------------------------------------------
# Applications, reports and saved views
# ---------------------------------------------------------------------------


def test_ids_for_team(documents) -> None:
    apps = ApplicationStore(documents)
    a = apps.create(Application(name="Portal", team_id="T1"))
    apps.create(Application(name="Mobile", team_id="T2"))
    assert apps.ids_for_team("T1") == frozenset({a.id})


class TestReportStore:
    def test_year_defaults_from_report_date(self, documents) -> None:
        report = ReportStore(documents).create(
            Report(application_id="app-1", vendor_name="Acme", report_date=datetime(2023, 5, 1, tzinfo=timezone.utc))
        )
        assert report.year == 2023
        assert report.date_uploaded is not None

    def test_reconfirmatory_links_back_to_original(self, documents) -> None:
        reports = ReportStore(documents)
        original = reports.create(Report(application_id="app-1", vendor_name="Acme"))
        retest = reports.create(
            Report(
                application_id="app-1",
                vendor_name="Acme",
                report_type="reconfirmatory",
                original_report_id=original.id,
            )
        )
        assert reports.get(original.id).reconfirmatory_reports == [retest.id]
        assert {r.id for r in reports.reconfirmatory(original.id)} == {original.id, retest.id}

    def test_missing_original_rejected(self, documents) -> None:
        with pytest.raises(ValidationError, match="Original report not found"):
            ReportStore(documents).create(
                Report(application_id="app-1", vendor_name="Acme", original_report_id="missing")
            )

    def test_mark_parsed(self, documents) -> None:
        reports = ReportStore(documents)
        report = reports.create(Report(application_id="app-1", vendor_name="Acme"))
        parsed = reports.mark_parsed(report.id, ["v1", "v2"])
        assert parsed.parsed is True
        assert parsed.vulnerability_ids == ["v1", "v2"]


class TestSavedViewStore:
    def test_views_are_owner_scoped(self, documents) -> None:
        views = SavedViewStore(documents)
        mine = views.create(SavedView(name="My criticals", owner_user_id="u1", filters={"severity": "Critical"}))
        views.create(SavedView(name="Theirs", owner_user_id="u2"))
        assert [v.name for v in views.list_for_owner("u1")] == ["My criticals"]
        assert views.update_owned(mine.id, "u2", {"name": "stolen"}) is None
        assert views.delete_owned(mine.id, "u2") is False
        assert views.update_owned(mine.id, "u1", {"name": "Renamed"}).name == "Renamed"
        assert views.delete_owned(mine.id, "u1") is True
