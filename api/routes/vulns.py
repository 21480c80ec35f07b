"""
api/routes/vulns.py -- Vulnerability (finding) endpoints and SLA queries.

Routes:
  GET    /api/vulns                          -- paginated list with filters   team-scoped via ?teamId=
  POST   /api/vulns                          -- create                        Admin, Security
  POST   /api/vulns/bulk                     -- create many                   Admin, Security
  GET    /api/vulns/overdue                  -- open and past due             team-scoped
  GET    /api/vulns/due-this-week            -- due inside the window         team-scoped
  GET    /api/vulns/upcoming-retests         -- fixed, retest date upcoming   team-scoped
  GET    /api/vulns/stats                    -- dashboard counters            team-scoped
  GET    /api/vulns/application/{id}
  GET    /api/vulns/report/{id}
  GET    /api/vulns/status/{status}
  GET    /api/vulns/severity/{severity}
  GET    /api/vulns/assigned/{user_id}
  GET    /api/vulns/{vuln_id}
  PATCH  /api/vulns/{vuln_id}                -- Admin, Security, or the assignee
  DELETE /api/vulns/{vuln_id}                -- Admin, Security

Static paths are registered before /vulns/{vuln_id} so "overdue" and
friends are never captured as an id.

Team scope: when ?teamId= is given the results are limited to that team's
applications, and non-privileged callers must belong to the team.

Window sizes come from Settings (DUE_SOON_WINDOW_DAYS, RETEST_OFFSET_DAYS,
RETEST_LOOKAHEAD_DAYS); the SLA timeline table comes from SlaSettingsStore.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    BulkVulnerabilityRequest,
    InternalStatusEnum,
    PageResponse,
    SeverityEnum,
    VulnerabilityCreate,
    VulnerabilityPatch,
    VulnerabilityResponse,
    VulnerabilityStatsResponse,
    VulnStatusEnum,
)
from auth.dependencies import require
from auth.models import Principal
from auth.policy import authorize
from core.config import get_settings
from core.errors import NotFound, ValidationError
from tracker.models import Vulnerability
from tracker.store import VulnerabilityStore

logger = logging.getLogger("vmp.api")

router = APIRouter()

_NOT_NULL = ("application_id", "title", "description", "severity", "status")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _team_scope(request: Request, team_id: Optional[str]) -> Optional[frozenset[str]]:
    """Application ids for the requested team, or None for an unscoped query."""
    if team_id is None:
        return None
    return request.app.state.applications.ids_for_team(team_id)


def _require_application(request: Request, application_id: str) -> None:
    if request.app.state.applications.get(application_id) is None:
        raise ValidationError("Application not found")


def _listing(vulns: list[Vulnerability]) -> list[VulnerabilityResponse]:
    return [VulnerabilityResponse.from_entity(v) for v in vulns]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Collection and SLA routes (static paths first)
# ---------------------------------------------------------------------------


@router.get("/vulns", response_model=PageResponse[VulnerabilityResponse])
def list_vulns(
    request: Request,
    application_id: str | None = Query(default=None, alias="applicationId"),
    report_id: str | None = Query(default=None, alias="reportId"),
    status: VulnStatusEnum | None = Query(default=None),
    internal_status: InternalStatusEnum | None = Query(default=None, alias="internalStatus"),
    severity: SeverityEnum | None = Query(default=None),
    assigned_to: str | None = Query(default=None, alias="assignedTo"),
    search: str | None = Query(default=None, max_length=200),
    team_id: str | None = Query(default=None, alias="teamId"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=1000, alias="pageSize"),
    _principal: Principal = Depends(require("vulns.list")),
) -> PageResponse[VulnerabilityResponse]:
    store: VulnerabilityStore = request.app.state.vulns
    result = store.list_page(
        page=page,
        page_size=page_size,
        application_id=application_id,
        report_id=report_id,
        status=status.value if status else None,
        internal_status=internal_status.value if internal_status else None,
        severity=severity.value if severity else None,
        assigned_to=assigned_to,
        search=search,
        application_ids=_team_scope(request, team_id),
    )
    return PageResponse[VulnerabilityResponse].from_entity(result)


@router.post("/vulns", response_model=VulnerabilityResponse, status_code=201)
def create_vuln(
    request: Request,
    body: VulnerabilityCreate,
    principal: Principal = Depends(require("vulns.create")),
) -> VulnerabilityResponse:
    _require_application(request, body.application_id)
    sla = request.app.state.sla_settings.get()
    vuln = request.app.state.vulns.create(Vulnerability(**body.model_dump()), sla)
    logger.info("Vulnerability %s (%s) created by %s, due %s", vuln.id, vuln.severity, principal.id, vuln.due_date)
    return VulnerabilityResponse.from_entity(vuln)


@router.post("/vulns/bulk", response_model=list[VulnerabilityResponse], status_code=201)
def bulk_create_vulns(
    request: Request,
    body: BulkVulnerabilityRequest,
    principal: Principal = Depends(require("vulns.bulk_create")),
) -> list[VulnerabilityResponse]:
    for item in body.vulnerabilities:
        _require_application(request, item.application_id)
    sla = request.app.state.sla_settings.get()
    created = request.app.state.vulns.bulk_create([Vulnerability(**v.model_dump()) for v in body.vulnerabilities], sla)
    logger.info("%d vulnerabilities bulk-created by %s", len(created), principal.id)
    return _listing(created)


@router.get("/vulns/overdue", response_model=list[VulnerabilityResponse])
def overdue_vulns(
    request: Request,
    team_id: str | None = Query(default=None, alias="teamId"),
    _principal: Principal = Depends(require("vulns.overdue")),
) -> list[VulnerabilityResponse]:
    return _listing(request.app.state.vulns.overdue(_now(), _team_scope(request, team_id)))


@router.get("/vulns/due-this-week", response_model=list[VulnerabilityResponse])
def due_this_week(
    request: Request,
    team_id: str | None = Query(default=None, alias="teamId"),
    _principal: Principal = Depends(require("vulns.due_soon")),
) -> list[VulnerabilityResponse]:
    window = get_settings().due_soon_window_days
    return _listing(request.app.state.vulns.due_within(_now(), window, _team_scope(request, team_id)))


@router.get("/vulns/upcoming-retests", response_model=list[VulnerabilityResponse])
def upcoming_retests(
    request: Request,
    team_id: str | None = Query(default=None, alias="teamId"),
    _principal: Principal = Depends(require("vulns.retests")),
) -> list[VulnerabilityResponse]:
    settings = get_settings()
    found = request.app.state.vulns.upcoming_retests(
        _now(),
        settings.retest_offset_days,
        settings.retest_lookahead_days,
        _team_scope(request, team_id),
    )
    return _listing(found)


@router.get("/vulns/stats", response_model=VulnerabilityStatsResponse)
def vuln_stats(
    request: Request,
    team_id: str | None = Query(default=None, alias="teamId"),
    _principal: Principal = Depends(require("vulns.stats")),
) -> VulnerabilityStatsResponse:
    stats = request.app.state.vulns.stats(_now(), get_settings().due_soon_window_days, _team_scope(request, team_id))
    return VulnerabilityStatsResponse.model_validate(stats)


@router.get("/vulns/application/{application_id}", response_model=list[VulnerabilityResponse])
def vulns_by_application(
    request: Request,
    application_id: str,
    _principal: Principal = Depends(require("vulns.by_application")),
) -> list[VulnerabilityResponse]:
    return _listing(request.app.state.vulns.by_application(application_id))


@router.get("/vulns/report/{report_id}", response_model=list[VulnerabilityResponse])
def vulns_by_report(
    request: Request,
    report_id: str,
    _principal: Principal = Depends(require("vulns.by_report")),
) -> list[VulnerabilityResponse]:
    return _listing(request.app.state.vulns.by_report(report_id))


@router.get("/vulns/status/{status}", response_model=list[VulnerabilityResponse])
def vulns_by_status(
    request: Request,
    status: VulnStatusEnum,
    _principal: Principal = Depends(require("vulns.by_status")),
) -> list[VulnerabilityResponse]:
    return _listing(request.app.state.vulns.by_status(status.value))


@router.get("/vulns/severity/{severity}", response_model=list[VulnerabilityResponse])
def vulns_by_severity(
    request: Request,
    severity: SeverityEnum,
    _principal: Principal = Depends(require("vulns.by_severity")),
) -> list[VulnerabilityResponse]:
    return _listing(request.app.state.vulns.by_severity(severity.value))


@router.get("/vulns/assigned/{user_id}", response_model=list[VulnerabilityResponse])
def vulns_by_assignee(
    request: Request,
    user_id: str,
    _principal: Principal = Depends(require("vulns.by_assignee")),
) -> list[VulnerabilityResponse]:
    return _listing(request.app.state.vulns.by_assignee(user_id))


# ---------------------------------------------------------------------------
# Item routes
# ---------------------------------------------------------------------------


@router.get("/vulns/{vuln_id}", response_model=VulnerabilityResponse)
def get_vuln(
    request: Request,
    vuln_id: str,
    _principal: Principal = Depends(require("vulns.read")),
) -> VulnerabilityResponse:
    return VulnerabilityResponse.from_entity(request.app.state.vulns.require(vuln_id))


@router.patch("/vulns/{vuln_id}", response_model=VulnerabilityResponse)
def update_vuln(
    request: Request,
    vuln_id: str,
    body: VulnerabilityPatch,
    principal: Principal = Depends(require("vulns.update")),
) -> VulnerabilityResponse:
    """Update a finding. Non-privileged callers must be its assignee.

    Changing severity fills in a due date only when the finding has none.
    """
    store: VulnerabilityStore = request.app.state.vulns
    current = store.require(vuln_id)
    authorize(principal, "vulns.update", resource=current)

    changes = body.model_dump(exclude_unset=True)
    if any(changes.get(k, "") is None for k in _NOT_NULL):
        raise ValidationError("applicationId, title, description, severity and status cannot be null")
    if "application_id" in changes:
        _require_application(request, changes["application_id"])

    updated = store.update(vuln_id, changes, request.app.state.sla_settings.get())
    if updated is None:
        raise NotFound("Vulnerability not found")
    return VulnerabilityResponse.from_entity(updated)


@router.delete("/vulns/{vuln_id}", status_code=204)
def delete_vuln(
    request: Request,
    vuln_id: str,
    principal: Principal = Depends(require("vulns.delete")),
) -> Response:
    if not request.app.state.vulns.delete(vuln_id):
        raise NotFound("Vulnerability not found")
    logger.info("Vulnerability %s deleted by %s", vuln_id, principal.id)
    return Response(status_code=204)
