"""
api/routes/apps.py -- Application CRUD.

Routes:
  GET    /api/apps                       -- list (?teamId=, ?platform=)      Admin, Security
  GET    /api/apps/team/{team_id}        -- a team's applications             Admin, Security
  GET    /api/apps/platform/{platform}   -- applications on one platform      Admin, Security
  POST   /api/apps                       -- create                            Admin, Security
  GET    /api/apps/{app_id}              -- one application                   Admin, Security
  PATCH  /api/apps/{app_id}              -- update                            Admin, Security
  DELETE /api/apps/{app_id}              -- delete                            Admin, Security

The owning team's application_ids list is kept in step with team_id on
create, team change and delete.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import ApplicationCreate, ApplicationPatch, ApplicationResponse, PlatformEnum
from auth.dependencies import require
from auth.models import Principal
from core.errors import NotFound, ValidationError
from tracker.models import Application
from tracker.store import ApplicationStore, TeamStore

logger = logging.getLogger("vmp.api")

router = APIRouter()


# ---------------------------------------------------------------------------
# Team membership bookkeeping
# ---------------------------------------------------------------------------


def _require_team(teams: TeamStore, team_id: Optional[str]) -> None:
    if team_id and teams.get(team_id) is None:
        raise ValidationError("Team not found")


def _link(teams: TeamStore, team_id: Optional[str], app_id: str) -> None:
    team = teams.get(team_id) if team_id else None
    if team is not None and app_id not in team.application_ids:
        teams.update(team.id, {"application_ids": [*team.application_ids, app_id]})


def _unlink(teams: TeamStore, team_id: Optional[str], app_id: str) -> None:
    team = teams.get(team_id) if team_id else None
    if team is not None and app_id in team.application_ids:
        teams.update(team.id, {"application_ids": [a for a in team.application_ids if a != app_id]})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/apps", response_model=list[ApplicationResponse])
def list_apps(
    request: Request,
    team_id: str | None = Query(default=None, alias="teamId"),
    platform: PlatformEnum | None = Query(default=None),
    _principal: Principal = Depends(require("apps.list")),
) -> list[ApplicationResponse]:
    apps: ApplicationStore = request.app.state.applications
    found = apps.list_applications(team_id=team_id, platform=platform.value if platform else None)
    return [ApplicationResponse.from_entity(a) for a in found]


@router.get("/apps/team/{team_id}", response_model=list[ApplicationResponse])
def apps_by_team(
    request: Request,
    team_id: str,
    _principal: Principal = Depends(require("apps.by_team")),
) -> list[ApplicationResponse]:
    return [ApplicationResponse.from_entity(a) for a in request.app.state.applications.list_applications(team_id)]


@router.get("/apps/platform/{platform}", response_model=list[ApplicationResponse])
def apps_by_platform(
    request: Request,
    platform: PlatformEnum,
    _principal: Principal = Depends(require("apps.by_platform")),
) -> list[ApplicationResponse]:
    found = request.app.state.applications.list_applications(platform=platform.value)
    return [ApplicationResponse.from_entity(a) for a in found]


@router.post("/apps", response_model=ApplicationResponse, status_code=201)
def create_app(
    request: Request,
    body: ApplicationCreate,
    principal: Principal = Depends(require("apps.create")),
) -> ApplicationResponse:
    teams: TeamStore = request.app.state.teams
    _require_team(teams, body.team_id)
    app = request.app.state.applications.create(Application(**body.model_dump()))
    _link(teams, app.team_id, app.id)
    logger.info("Application %s created by %s", app.id, principal.id)
    return ApplicationResponse.from_entity(app)


@router.get("/apps/{app_id}", response_model=ApplicationResponse)
def get_app(
    request: Request,
    app_id: str,
    _principal: Principal = Depends(require("apps.read")),
) -> ApplicationResponse:
    return ApplicationResponse.from_entity(request.app.state.applications.require(app_id))


@router.patch("/apps/{app_id}", response_model=ApplicationResponse)
def update_app(
    request: Request,
    app_id: str,
    body: ApplicationPatch,
    _principal: Principal = Depends(require("apps.update")),
) -> ApplicationResponse:
    apps: ApplicationStore = request.app.state.applications
    teams: TeamStore = request.app.state.teams
    current = apps.require(app_id)
    changes = body.model_dump(exclude_unset=True)
    if any(changes.get(k, "") is None for k in ("name", "platform", "description")):
        raise ValidationError("name, platform and description cannot be null")
    if "team_id" in changes:
        _require_team(teams, changes["team_id"])
    updated = apps.update(app_id, changes)
    if updated.team_id != current.team_id:
        _unlink(teams, current.team_id, app_id)
        _link(teams, updated.team_id, app_id)
    return ApplicationResponse.from_entity(updated)


@router.delete("/apps/{app_id}", status_code=204)
def delete_app(
    request: Request,
    app_id: str,
    principal: Principal = Depends(require("apps.delete")),
) -> Response:
    apps: ApplicationStore = request.app.state.applications
    app = apps.get(app_id)
    if app is None or not apps.delete(app_id):
        raise NotFound("Application not found")
    _unlink(request.app.state.teams, app.team_id, app_id)
    logger.info("Application %s deleted by %s", app_id, principal.id)
    return Response(status_code=204)
