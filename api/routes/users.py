"""
api/routes/users.py -- User management.

Routes:
  GET    /api/me              -- the authenticated user's own record
  GET    /api/users           -- list users (Admin)
  POST   /api/users           -- create user (Admin); 409 on duplicate email
  GET    /api/users/{id}      -- one user (Admin)
  PATCH  /api/users/{id}      -- update name/email/role/teams/password (Admin)
  DELETE /api/users/{id}      -- delete user (Admin); cannot delete yourself

Deleting a user also revokes their refresh tokens. Outstanding access
tokens fail on the next request because authenticate() re-reads the user.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import RoleEnum, UserCreate, UserPatch, UserResponse
from auth.models import Principal, User
from auth.dependencies import require
from auth.store import UserStore
from auth.tokens import hash_password
from core.errors import NotFound, ValidationError

logger = logging.getLogger("vmp.api")

router = APIRouter()


@router.get("/me", response_model=UserResponse)
def me(request: Request, principal: Principal = Depends(require("users.me"))) -> UserResponse:
    user = request.app.state.user_store.get_by_id(principal.id)
    if user is None:
        raise NotFound("User not found")
    return UserResponse.from_entity(user)


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    role: RoleEnum | None = Query(default=None),
    team_id: str | None = Query(default=None, alias="teamId"),
    _principal: Principal = Depends(require("users.list")),
) -> list[UserResponse]:
    store: UserStore = request.app.state.user_store
    role_value = role.value if role else None
    return [UserResponse.from_entity(u) for u in store.list_users(role=role_value, team_id=team_id)]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    principal: Principal = Depends(require("users.create")),
) -> UserResponse:
    store: UserStore = request.app.state.user_store
    user = User(
        email=body.email,
        name=body.name,
        role=body.role,
        team_ids=list(body.team_ids),
        password_hash=hash_password(body.password),
    )
    store.create_user(user)
    logger.info("User %s created by %s", user.id, principal.id)
    return UserResponse.from_entity(user)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: str,
    _principal: Principal = Depends(require("users.read")),
) -> UserResponse:
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise NotFound("User not found")
    return UserResponse.from_entity(user)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    _principal: Principal = Depends(require("users.update")),
) -> UserResponse:
    store: UserStore = request.app.state.user_store
    changes = body.model_dump(exclude_unset=True)
    if changes.get("password") is not None:
        changes["password_hash"] = hash_password(changes.pop("password"))
    changes.pop("password", None)
    for field in ("email", "name", "role"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")
    if changes.get("team_ids") is None:
        changes.pop("team_ids", None)
    user = store.update_user(user_id, changes)
    if user is None:
        raise NotFound("User not found")
    return UserResponse.from_entity(user)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    principal: Principal = Depends(require("users.delete")),
) -> Response:
    if user_id == principal.id:
        raise ValidationError("You cannot delete your own account")
    if not request.app.state.user_store.delete_user(user_id):
        raise NotFound("User not found")
    request.app.state.refresh_tokens.revoke_all_for_user(user_id)
    logger.info("User %s deleted by %s", user_id, principal.id)
    return Response(status_code=204)
