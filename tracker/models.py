"""
tracker/models.py -- Domain dataclasses for tracked entities.

Pattern: Data class (pure data container, zero logic). tracker/store.py maps
these to and from documents; api/models.py maps them to the JSON contract.

Identifiers are opaque strings. Cross-references (team_id, application_id,
report_id, assigned_to_user_id) are compared by equality only.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class Team:
    name: str
    platform: str = "Web"  # Web | iOS | Android
    application_ids: list[str] = field(default_factory=list)
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Application:
    name: str
    platform: str = "Web"
    team_id: Optional[str] = None
    description: str = ""
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Report:
    """A vendor assessment document (VAPT report) attached to an application.

    Reconfirmatory reports point back at the initial report they re-test via
    original_report_id; the initial report lists them in
    reconfirmatory_reports.
    """

    application_id: str
    vendor_name: str
    drive_file_id: str = ""
    file_name: str = ""
    date_uploaded: Optional[datetime] = None
    report_date: Optional[datetime] = None
    parsed: bool = False
    vulnerability_ids: list[str] = field(default_factory=list)
    report_type: str = "initial"  # initial | reconfirmatory
    original_report_id: Optional[str] = None
    reconfirmatory_reports: list[str] = field(default_factory=list)
    year: Optional[int] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Vulnerability:
    """A single finding.

    due_date is either set by a user or filled in by the SLA engine when the
    finding is created or its severity changes. resolved_date is stamped the
    first time status reaches Fixed or Closed.
    """

    application_id: str
    title: str
    description: str
    severity: str  # Critical | High | Medium | Low
    report_id: Optional[str] = None
    cvss_score: Optional[float] = None
    cvss_vector: str = ""
    cwe: list[str] = field(default_factory=list)
    cve: list[str] = field(default_factory=list)
    status: str = "New"
    internal_status: Optional[str] = None
    discovered_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    resolved_date: Optional[datetime] = None
    assigned_to_user_id: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SavedView:
    """A named, per-user set of list filters (stored as free-form JSON)."""

    name: str
    owner_user_id: str
    entity_type: str = "vulns"
    filters: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
