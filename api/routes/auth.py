"""
api/routes/auth.py -- Login, token refresh and logout.

Routes:
  POST /api/auth/login    -- email/password login; returns user + token pair
  POST /api/auth/refresh  -- exchange a refresh token for a new pair (rotation)
  POST /api/auth/logout   -- revoke the presented refresh token; 204

All three are public: they are how a client obtains or gives up credentials.

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_email() + verify_password().
  Wrong email and wrong password return the same 401 message.
  Cache-Control: no-store on every response carrying tokens.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, LogoutRequest, RefreshRequest, TokenPairResponse, UserResponse
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import authenticate_user, create_access_token, issue_refresh_token, rotate_refresh_token
from core.config import get_settings
from core.errors import Unauthorized

logger = logging.getLogger("vmp.auth")

router = APIRouter()

_settings = get_settings()


def _no_store(payload: dict) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and issue an access/refresh pair."""
    user_store: UserStore = request.app.state.user_store
    refresh_tokens: RefreshTokenStore = request.app.state.refresh_tokens

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        logger.info("Failed login for %s", body.email)
        raise Unauthorized("Invalid email or password")

    payload = LoginResponse(
        user=UserResponse.from_entity(user),
        access_token=create_access_token(user),
        refresh_token=issue_refresh_token(refresh_tokens, user.id),
    )
    logger.info("User %s logged in", user.id)
    return _no_store(payload.model_dump(by_alias=True, mode="json"))


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate a refresh token. The presented token cannot be used again."""
    user_store: UserStore = request.app.state.user_store
    refresh_tokens: RefreshTokenStore = request.app.state.refresh_tokens

    rotated = rotate_refresh_token(refresh_tokens, body.refresh_token)
    if rotated is None:
        raise Unauthorized("Invalid or expired refresh token")
    user_id, new_refresh = rotated

    user = user_store.get_by_id(user_id)
    if user is None:
        refresh_tokens.revoke(new_refresh)
        raise Unauthorized("User no longer exists")

    payload = TokenPairResponse(access_token=create_access_token(user), refresh_token=new_refresh)
    return _no_store(payload.model_dump(by_alias=True, mode="json"))


@router.post("/auth/logout", status_code=204)
def logout(request: Request, body: LogoutRequest | None = None) -> Response:
    """Revoke the refresh token if one is given. Always 204.

    Access tokens are stateless and simply expire.
    """
    if body is not None and body.refresh_token:
        request.app.state.refresh_tokens.revoke(body.refresh_token)
    return Response(status_code=204)
