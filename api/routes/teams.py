"""
api/routes/teams.py -- Team CRUD (Admin and Security).

Routes:
  GET    /api/teams                      -- list teams (?platform=)
  GET    /api/teams/platform/{platform}  -- teams for one platform
  POST   /api/teams                      -- create team
  GET    /api/teams/{team_id}            -- one team
  PATCH  /api/teams/{team_id}            -- update team
  DELETE /api/teams/{team_id}            -- delete team; members lose the
                                            membership, applications are
                                            left without a team
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import PlatformEnum, TeamCreate, TeamPatch, TeamResponse
from auth.dependencies import require
from auth.models import Principal
from core.errors import NotFound, ValidationError
from tracker.models import Team
from tracker.store import TeamStore

logger = logging.getLogger("vmp.api")

router = APIRouter()


@router.get("/teams", response_model=list[TeamResponse])
def list_teams(
    request: Request,
    platform: PlatformEnum | None = Query(default=None),
    _principal: Principal = Depends(require("teams.list")),
) -> list[TeamResponse]:
    teams: TeamStore = request.app.state.teams
    return [TeamResponse.from_entity(t) for t in teams.list_teams(platform.value if platform else None)]


@router.get("/teams/platform/{platform}", response_model=list[TeamResponse])
def teams_by_platform(
    request: Request,
    platform: PlatformEnum,
    _principal: Principal = Depends(require("teams.by_platform")),
) -> list[TeamResponse]:
    return [TeamResponse.from_entity(t) for t in request.app.state.teams.list_teams(platform.value)]


@router.post("/teams", response_model=TeamResponse, status_code=201)
def create_team(
    request: Request,
    body: TeamCreate,
    principal: Principal = Depends(require("teams.create")),
) -> TeamResponse:
    team = request.app.state.teams.create(Team(**body.model_dump()))
    logger.info("Team %s created by %s", team.id, principal.id)
    return TeamResponse.from_entity(team)


@router.get("/teams/{team_id}", response_model=TeamResponse)
def get_team(
    request: Request,
    team_id: str,
    _principal: Principal = Depends(require("teams.read")),
) -> TeamResponse:
    return TeamResponse.from_entity(request.app.state.teams.require(team_id))


@router.patch("/teams/{team_id}", response_model=TeamResponse)
def update_team(
    request: Request,
    team_id: str,
    body: TeamPatch,
    _principal: Principal = Depends(require("teams.update")),
) -> TeamResponse:
    changes = body.model_dump(exclude_unset=True)
    if any(changes.get(k, "") is None for k in ("name", "platform")):
        raise ValidationError("name and platform cannot be null")
    team = request.app.state.teams.update(team_id, changes)
    if team is None:
        raise NotFound("Team not found")
    return TeamResponse.from_entity(team)


@router.delete("/teams/{team_id}", status_code=204)
def delete_team(
    request: Request,
    team_id: str,
    principal: Principal = Depends(require("teams.delete")),
) -> Response:
    if not request.app.state.teams.delete(team_id):
        raise NotFound("Team not found")
    members = request.app.state.user_store.remove_team(team_id)
    for app in request.app.state.applications.list_applications(team_id=team_id):
        request.app.state.applications.update(app.id, {"team_id": None})
    logger.info("Team %s deleted by %s (%d members detached)", team_id, principal.id, members)
    return Response(status_code=204)
