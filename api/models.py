"""
API request and response models for the platform's REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in tracker/models.py and
auth/models.py, which own the internal domain representation. Route
handlers map between the two.

JSON uses camelCase keys (alias_generator=to_camel); Python code uses the
snake_case field names. populate_by_name lets tests and internal callers
use either.

Patch models are applied with model_dump(exclude_unset=True) so an absent
key means "leave unchanged" while an explicit null clears the field.
"""

from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    @classmethod
    def from_entity(cls, entity: Any):
        """Build the response model from a domain dataclass.

        Factory Method: the mapping lives next to the output model rather than
        in every route handler. Fields the model does not declare (e.g.
        password_hash) are dropped.
        """
        return cls.model_validate(asdict(entity))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SeverityEnum(str, Enum):
    Critical = "Critical"
    High = "High"
    Medium = "Medium"
    Low = "Low"


class VulnStatusEnum(str, Enum):
    New = "New"
    Open = "Open"
    InProgress = "In Progress"
    Fixed = "Fixed"
    Reopened = "Reopened"
    Closed = "Closed"


class InternalStatusEnum(str, Enum):
    Stuck = "Stuck"
    FixInProgress = "Fix in progress"
    FalsePositive = "False positive"
    ExemptionRequested = "Exemption requested"


class RoleEnum(str, Enum):
    Admin = "Admin"
    Security = "Security"
    Dev = "Dev"
    ProductOwner = "ProductOwner"


class PlatformEnum(str, Enum):
    Web = "Web"
    iOS = "iOS"
    Android = "Android"


class ReportTypeEnum(str, Enum):
    initial = "initial"
    reconfirmatory = "reconfirmatory"


# ---------------------------------------------------------------------------
# Common envelopes
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Uniform error body for every non-2xx response."""

    error: str
    message: str


class PageResponse(_ApiModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int


class StatusResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime
    version: str


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"  # healthy | degraded
    version: str
    components: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(_ApiModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(_ApiModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(_ApiModel):
    refresh_token: Optional[str] = None


class TokenPairResponse(_ApiModel):
    access_token: str
    refresh_token: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(_ApiModel):
    id: str
    email: str
    name: str
    role: RoleEnum
    team_ids: list[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LoginResponse(_ApiModel):
    user: UserResponse
    access_token: str
    refresh_token: str


class UserCreate(_ApiModel):
    email: str = Field(min_length=3, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    role: RoleEnum = RoleEnum.Dev
    team_ids: list[str] = []
    password: str = Field(min_length=8, max_length=72)

    @field_validator("email")
    @classmethod
    def email_has_at(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("email must contain '@'")
        return value.strip().lower()


class UserPatch(_ApiModel):
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[RoleEnum] = None
    team_ids: Optional[list[str]] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=72)


# ---------------------------------------------------------------------------
# Teams and applications
# ---------------------------------------------------------------------------


class TeamCreate(_ApiModel):
    name: str = Field(min_length=1, max_length=255)
    platform: PlatformEnum = PlatformEnum.Web
    application_ids: list[str] = []


class TeamPatch(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    platform: Optional[PlatformEnum] = None
    application_ids: Optional[list[str]] = None


class TeamResponse(_ApiModel):
    id: str
    name: str
    platform: str
    application_ids: list[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ApplicationCreate(_ApiModel):
    name: str = Field(min_length=1, max_length=255)
    platform: PlatformEnum = PlatformEnum.Web
    team_id: Optional[str] = None
    description: str = ""


class ApplicationPatch(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    platform: Optional[PlatformEnum] = None
    team_id: Optional[str] = None
    description: Optional[str] = None


class ApplicationResponse(_ApiModel):
    id: str
    name: str
    platform: str
    team_id: Optional[str] = None
    description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportCreate(_ApiModel):
    application_id: str = Field(min_length=1)
    vendor_name: str = Field(min_length=1, max_length=255)
    drive_file_id: str = ""
    file_name: str = ""
    date_uploaded: Optional[datetime] = None
    report_date: Optional[datetime] = None
    parsed: bool = False
    vulnerability_ids: list[str] = []
    report_type: ReportTypeEnum = ReportTypeEnum.initial
    original_report_id: Optional[str] = None
    year: Optional[int] = Field(default=None, ge=1970, le=9999)


class ReportPatch(_ApiModel):
    application_id: Optional[str] = None
    vendor_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    drive_file_id: Optional[str] = None
    file_name: Optional[str] = None
    report_date: Optional[datetime] = None
    parsed: Optional[bool] = None
    vulnerability_ids: Optional[list[str]] = None
    report_type: Optional[ReportTypeEnum] = None
    year: Optional[int] = Field(default=None, ge=1970, le=9999)


class ReportImportRequest(_ApiModel):
    drive_file_id: str = Field(min_length=1)
    application_id: str = Field(min_length=1)
    vendor_name: str = Field(min_length=1, max_length=255)
    report_type: ReportTypeEnum = ReportTypeEnum.initial
    original_report_id: Optional[str] = None


class ReportParseRequest(_ApiModel):
    vulnerability_ids: list[str] = []


class ReportResponse(_ApiModel):
    id: str
    application_id: str
    vendor_name: str
    drive_file_id: str = ""
    file_name: str = ""
    date_uploaded: Optional[datetime] = None
    report_date: Optional[datetime] = None
    parsed: bool = False
    vulnerability_ids: list[str] = []
    report_type: str = "initial"
    original_report_id: Optional[str] = None
    reconfirmatory_reports: list[str] = []
    year: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReportImportResponse(_ApiModel):
    message: str
    job_id: str
    report: ReportResponse


# ---------------------------------------------------------------------------
# Vulnerabilities
# ---------------------------------------------------------------------------


class VulnerabilityCreate(_ApiModel):
    application_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1)
    severity: SeverityEnum
    report_id: Optional[str] = None
    cvss_score: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    cvss_vector: str = ""
    cwe: list[str] = []
    cve: list[str] = []
    status: VulnStatusEnum = VulnStatusEnum.New
    internal_status: Optional[InternalStatusEnum] = None
    discovered_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    resolved_date: Optional[datetime] = None
    assigned_to_user_id: Optional[str] = None
    tags: list[str] = []


class VulnerabilityPatch(_ApiModel):
    application_id: Optional[str] = None
    report_id: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, min_length=1)
    severity: Optional[SeverityEnum] = None
    cvss_score: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    cvss_vector: Optional[str] = None
    cwe: Optional[list[str]] = None
    cve: Optional[list[str]] = None
    status: Optional[VulnStatusEnum] = None
    internal_status: Optional[InternalStatusEnum] = None
    discovered_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    resolved_date: Optional[datetime] = None
    assigned_to_user_id: Optional[str] = None
    tags: Optional[list[str]] = None


class BulkVulnerabilityRequest(_ApiModel):
    vulnerabilities: list[VulnerabilityCreate] = Field(min_length=1, max_length=500)


class VulnerabilityResponse(_ApiModel):
    id: str
    application_id: str
    report_id: Optional[str] = None
    title: str
    description: str
    severity: str
    cvss_score: Optional[float] = None
    cvss_vector: str = ""
    cwe: list[str] = []
    cve: list[str] = []
    status: str
    internal_status: Optional[str] = None
    discovered_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    resolved_date: Optional[datetime] = None
    assigned_to_user_id: Optional[str] = None
    tags: list[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SlaCounters(_ApiModel):
    open_total_with_due_date: int
    open_not_overdue: int


class VulnerabilityStatsResponse(_ApiModel):
    total: int
    open: int
    overdue: int
    due_this_week: int
    by_severity: dict[str, int]
    by_status: dict[str, int]
    sla: SlaCounters


# ---------------------------------------------------------------------------
# Saved views
# ---------------------------------------------------------------------------


class SavedViewCreate(_ApiModel):
    name: str = Field(min_length=1, max_length=255)
    entity_type: str = Field(default="vulns", min_length=1, max_length=50)
    filters: dict[str, Any] = {}


class SavedViewPatch(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    entity_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    filters: Optional[dict[str, Any]] = None


class SavedViewResponse(_ApiModel):
    id: str
    name: str
    entity_type: str
    filters: dict[str, Any] = {}
    owner_user_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SlaSettingsPatch(_ApiModel):
    """PATCH /settings/due-dates body.

    due_date_timelines is deliberately loose (Any values): range and type
    checks happen in core.sla.validate_timelines so the error message can
    name the offending severity.
    """

    auto_assign_due_dates: Optional[bool] = None
    due_date_timelines: Optional[dict[str, Any]] = None


class SlaSettingsResponse(_ApiModel):
    auto_assign_due_dates: bool
    due_date_timelines: dict[str, int]
    updated_at: Optional[datetime] = None
