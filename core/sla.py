"""
core/sla.py -- SLA engine: due-date computation and urgency classification.

Every function here is pure. SlaSettings is passed in explicitly; fetching
and persisting it is the job of tracker/store.py (SlaSettingsStore). Nothing
in this module reads a clock -- callers pass `now`.

Classification rules:
  overdue        status not Fixed/Closed, due_date present, due_date < now
  due soon       same exclusions, now < due_date < now + window
  retest window  status Fixed, resolved_date present,
                 now < resolved_date + offset < now + lookahead

Due dates are computed with calendar-day addition in the input's own zone.
Comparisons treat naive datetimes as UTC so stored legacy values and aware
`now` values never raise TypeError.

Layer rule: core/ is the kernel. No imports from api/, auth/, or tracker/.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Protocol

from core.errors import ValidationError
from core.models import CLOSED_STATUSES, MAX_TIMELINE_DAYS, MIN_TIMELINE_DAYS, SEVERITIES, SlaSettings

DEFAULT_DUE_SOON_WINDOW_DAYS = 7
DEFAULT_RETEST_OFFSET_DAYS = 30
DEFAULT_RETEST_LOOKAHEAD_DAYS = 30


class Finding(Protocol):
    """The slice of a vulnerability the classifiers look at."""

    status: str
    due_date: Optional[datetime]
    resolved_date: Optional[datetime]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_open(finding: Finding) -> bool:
    return finding.status not in CLOSED_STATUSES and finding.due_date is not None


# ---------------------------------------------------------------------------
# Due-date computation
# ---------------------------------------------------------------------------


def compute_due_date(settings: SlaSettings, severity: str, discovered_at: date) -> Optional[date]:
    """Return discovered_at plus the severity's timeline, or None.

    None when auto-assignment is off or the severity has no timeline entry.
    The return type follows the input: a datetime in gives a datetime out
    with the same tzinfo.
    """
    days = settings.due_date_timelines.get(severity)
    if days is None or not settings.auto_assign_due_dates:
        return None
    return discovered_at + timedelta(days=days)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def is_overdue(finding: Finding, now: datetime) -> bool:
    if not _is_open(finding):
        return False
    return _as_utc(finding.due_date) < _as_utc(now)


def is_due_within_window(finding: Finding, now: datetime, window_days: int = DEFAULT_DUE_SOON_WINDOW_DAYS) -> bool:
    """True when the due date falls strictly inside (now, now + window_days).

    A finding due exactly at `now` is neither overdue nor upcoming.
    """
    if not _is_open(finding):
        return False
    now = _as_utc(now)
    due = _as_utc(finding.due_date)
    return now < due < now + timedelta(days=window_days)


def retest_at(finding: Finding, retest_offset_days: int = DEFAULT_RETEST_OFFSET_DAYS) -> Optional[datetime]:
    """Return when a fixed finding should be re-verified, or None."""
    if finding.status != "Fixed" or finding.resolved_date is None:
        return None
    return _as_utc(finding.resolved_date) + timedelta(days=retest_offset_days)


def is_retest_eligible(
    finding: Finding,
    now: datetime,
    retest_offset_days: int = DEFAULT_RETEST_OFFSET_DAYS,
    lookahead_days: int = DEFAULT_RETEST_LOOKAHEAD_DAYS,
) -> bool:
    when = retest_at(finding, retest_offset_days)
    if when is None:
        return False
    now = _as_utc(now)
    return now < when < now + timedelta(days=lookahead_days)


# ---------------------------------------------------------------------------
# Settings validation and merge
# ---------------------------------------------------------------------------


def validate_timelines(timelines: Mapping[str, Any]) -> dict[str, int]:
    """Return a clean severity -> days dict or raise ValidationError.

    Keys must be one of the four severity labels. Values must be integers
    (bool is rejected even though it subclasses int) in the inclusive range
    MIN_TIMELINE_DAYS..MAX_TIMELINE_DAYS. The message names the severity.
    """
    clean: dict[str, int] = {}
    for severity, days in timelines.items():
        if severity not in SEVERITIES:
            raise ValidationError(f"Unknown severity '{severity}'. Expected one of: {', '.join(SEVERITIES)}")
        if isinstance(days, bool) or not isinstance(days, int) or not MIN_TIMELINE_DAYS <= days <= MAX_TIMELINE_DAYS:
            raise ValidationError(
                f"Timeline for {severity} must be a number between {MIN_TIMELINE_DAYS} and {MAX_TIMELINE_DAYS} days"
            )
        clean[severity] = days
    return clean


def apply_settings_update(settings: SlaSettings, partial: Mapping[str, Any]) -> SlaSettings:
    """Merge a partial update into settings and return a new SlaSettings.

    Recognised keys: auto_assign_due_dates, due_date_timelines. Timelines
    merge per severity, so unspecified severities keep their current value.
    The input settings object is not mutated.
    """
    changes: dict[str, Any] = {}
    if partial.get("auto_assign_due_dates") is not None:
        flag = partial["auto_assign_due_dates"]
        if not isinstance(flag, bool):
            raise ValidationError("autoAssignDueDates must be a boolean")
        changes["auto_assign_due_dates"] = flag
    if partial.get("due_date_timelines") is not None:
        timelines = partial["due_date_timelines"]
        if not isinstance(timelines, Mapping):
            raise ValidationError("dueDateTimelines must be an object keyed by severity")
        merged = dict(settings.due_date_timelines)
        merged.update(validate_timelines(timelines))
        changes["due_date_timelines"] = merged
    changes.setdefault("due_date_timelines", dict(settings.due_date_timelines))
    return replace(settings, **changes)
