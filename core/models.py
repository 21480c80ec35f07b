"""
core/models.py -- Domain constants and the SLA settings record.

Pattern: Data class (pure data container, zero logic). The SLA engine in
core/sla.py operates on these values; tracker/store.py persists them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

SEVERITIES: tuple[str, ...] = ("Critical", "High", "Medium", "Low")

ROLES: tuple[str, ...] = ("Admin", "Security", "Dev", "ProductOwner")

# Roles that bypass team scoping and resource ownership checks.
PRIVILEGED_ROLES: frozenset[str] = frozenset({"Admin", "Security"})

VULN_STATUSES: tuple[str, ...] = ("New", "Open", "In Progress", "Fixed", "Reopened", "Closed")

# A finding in one of these states is never overdue or due soon.
CLOSED_STATUSES: frozenset[str] = frozenset({"Fixed", "Closed"})

INTERNAL_STATUSES: tuple[str, ...] = ("Stuck", "Fix in progress", "False positive", "Exemption requested")

PLATFORMS: tuple[str, ...] = ("Web", "iOS", "Android")

REPORT_TYPES: tuple[str, ...] = ("initial", "reconfirmatory")

DEFAULT_DUE_DATE_TIMELINES: dict[str, int] = {
    "Critical": 15,
    "High": 30,
    "Medium": 60,
    "Low": 60,
}

# Timeline bounds (inclusive) accepted by the settings update path.
MIN_TIMELINE_DAYS = 1
MAX_TIMELINE_DAYS = 365


@dataclass
class SlaSettings:
    """Platform-wide SLA configuration. One instance per deployment.

    due_date_timelines maps severity label -> days allowed for remediation.
    """

    auto_assign_due_dates: bool = True
    due_date_timelines: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_DUE_DATE_TIMELINES))
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
