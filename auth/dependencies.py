"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and policy.

Only one credential is accepted: an access token in the
`Authorization: Bearer <token>` header.

authenticate() is the framework-free core: token in, Principal out, or
Unauthorized. get_current_principal() adapts it to a Request.
require(operation) builds a dependency that authenticates and then
evaluates the operation's policy from auth/policy.py, pulling the
requested team from the `team_id` path parameter or the `teamId` query
parameter.

Both raise core.errors exceptions; api/main.py renders them as 401/403.

Layer rule: no imports from api/ or tracker/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request

from auth.models import Principal
from auth.policy import POLICIES, authorize
from auth.store import UserStore
from auth.tokens import decode_access_token
from core.errors import Unauthorized

logger = logging.getLogger("vmp.auth")


def _bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(authorization: str | None, user_store: UserStore) -> Principal:
    """Resolve an Authorization header value to a Principal.

    Fails with Unauthorized when the header is missing or not a Bearer
    credential, when the token does not verify, and when the subject has
    been deleted since the token was issued. Role and teams come from the
    store, not the token, so changes apply immediately.
    """
    token = _bearer_token(authorization)
    if token is None:
        raise Unauthorized("Authentication required")
    payload = decode_access_token(token)
    if payload is None:
        raise Unauthorized("Invalid or expired token")
    user = user_store.get_by_id(payload["sub"])
    if user is None:
        logger.info("Token subject %s no longer exists", payload["sub"])
        raise Unauthorized("User no longer exists")
    return Principal.from_user(user)


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises Unauthorized if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    return authenticate(request.headers.get("Authorization"), request.app.state.user_store)


def require(operation: str) -> Callable[[Request], Principal]:
    """Return a dependency enforcing POLICIES[operation].

    Use as a FastAPI dependency:
        @router.get("/vulns/overdue")
        def route(principal: Principal = Depends(require("vulns.overdue"))): ...

    Ownership policies are evaluated once more by the route after it loads
    the resource (authorize(principal, op, resource=...)).
    """
    if operation not in POLICIES:
        raise KeyError(f"No policy registered for operation {operation!r}")

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        team_id = request.path_params.get("team_id") or request.query_params.get("teamId")
        authorize(principal, operation, team_id=team_id)
        return principal

    dependency.__name__ = f"require_{operation.replace('.', '_')}"
    return dependency
