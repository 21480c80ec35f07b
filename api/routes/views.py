"""
api/routes/views.py -- Per-user saved list filters.

Routes:
  GET    /api/views               -- caller's views (?entityType=), newest first
  POST   /api/views               -- create a view owned by the caller
  PATCH  /api/views/{view_id}     -- update one of the caller's views
  DELETE /api/views/{view_id}     -- delete one of the caller's views

Another user's view id behaves exactly like a missing one (404), so view
ids cannot be probed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import SavedViewCreate, SavedViewPatch, SavedViewResponse
from auth.dependencies import require
from auth.models import Principal
from core.errors import NotFound, ValidationError
from tracker.models import SavedView
from tracker.store import SavedViewStore

router = APIRouter()


@router.get("/views", response_model=list[SavedViewResponse])
def list_views(
    request: Request,
    entity_type: str | None = Query(default=None, alias="entityType"),
    principal: Principal = Depends(require("views.list")),
) -> list[SavedViewResponse]:
    views: SavedViewStore = request.app.state.views
    return [SavedViewResponse.from_entity(v) for v in views.list_for_owner(principal.id, entity_type)]


@router.post("/views", response_model=SavedViewResponse, status_code=201)
def create_view(
    request: Request,
    body: SavedViewCreate,
    principal: Principal = Depends(require("views.create")),
) -> SavedViewResponse:
    view = request.app.state.views.create(SavedView(owner_user_id=principal.id, **body.model_dump()))
    return SavedViewResponse.from_entity(view)


@router.patch("/views/{view_id}", response_model=SavedViewResponse)
def update_view(
    request: Request,
    view_id: str,
    body: SavedViewPatch,
    principal: Principal = Depends(require("views.update")),
) -> SavedViewResponse:
    changes = body.model_dump(exclude_unset=True)
    if any(v is None for v in changes.values()):
        raise ValidationError("name, entityType and filters cannot be null")
    view = request.app.state.views.update_owned(view_id, principal.id, changes)
    if view is None:
        raise NotFound("Saved view not found")
    return SavedViewResponse.from_entity(view)


@router.delete("/views/{view_id}", status_code=204)
def delete_view(
    request: Request,
    view_id: str,
    principal: Principal = Depends(require("views.delete")),
) -> Response:
    if not request.app.state.views.delete_owned(view_id, principal.id):
        raise NotFound("Saved view not found")
    return Response(status_code=204)
