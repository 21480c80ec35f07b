"""
auth/policy.py -- Declarative authorization: role, team, and ownership checks.

Every protected operation has one Policy entry in POLICIES. Route handlers
never test roles themselves; they declare the operation name and
authorize() evaluates the policy the same way for every route:

  1. role       principal.role must be in policy.required_roles
  2. team       when requires_team_match and a team was requested,
                Admin/Security pass, everyone else needs membership
  3. ownership  when requires_ownership, Admin/Security pass, everyone else
                must be the resource's assignee

All checks raise Forbidden and never mutate anything. Authentication
(401) happens earlier, in auth/dependencies.py.

Layer rule: no imports from api/ or tracker/. core/ is allowed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Optional

from auth.models import Principal
from core.errors import Forbidden
from core.models import PRIVILEGED_ROLES, ROLES

ALL_ROLES: frozenset[str] = frozenset(ROLES)
ADMIN_ONLY: frozenset[str] = frozenset({"Admin"})


@dataclass(frozen=True)
class Policy:
    required_roles: frozenset[str] = ALL_ROLES
    requires_team_match: bool = False
    requires_ownership: bool = False


_PRIVILEGED = Policy(required_roles=PRIVILEGED_ROLES)
_ADMIN = Policy(required_roles=ADMIN_ONLY)
_ANYONE = Policy()
_TEAM_SCOPED = Policy(requires_team_match=True)

POLICIES: dict[str, Policy] = {
    # Settings
    "settings.read": _PRIVILEGED,
    "settings.update": _ADMIN,
    # Users
    "users.me": _ANYONE,
    "users.list": _ADMIN,
    "users.read": _ADMIN,
    "users.create": _ADMIN,
    "users.update": _ADMIN,
    "users.delete": _ADMIN,
    # Teams
    "teams.list": _PRIVILEGED,
    "teams.read": _PRIVILEGED,
    "teams.by_platform": _PRIVILEGED,
    "teams.create": _PRIVILEGED,
    "teams.update": _PRIVILEGED,
    "teams.delete": _PRIVILEGED,
    # Applications
    "apps.list": _PRIVILEGED,
    "apps.read": _PRIVILEGED,
    "apps.by_platform": _PRIVILEGED,
    "apps.by_team": _PRIVILEGED,
    "apps.create": _PRIVILEGED,
    "apps.update": _PRIVILEGED,
    "apps.delete": _PRIVILEGED,
    # Reports
    "reports.list": _ANYONE,
    "reports.read": _ANYONE,
    "reports.by_application": _ANYONE,
    "reports.by_year": _ANYONE,
    "reports.reconfirmatory": _ANYONE,
    "reports.create": _PRIVILEGED,
    "reports.import": _PRIVILEGED,
    "reports.update": _PRIVILEGED,
    "reports.parse": _PRIVILEGED,
    "reports.delete": _PRIVILEGED,
    # Vulnerabilities
    "vulns.list": _TEAM_SCOPED,
    "vulns.overdue": _TEAM_SCOPED,
    "vulns.due_soon": _TEAM_SCOPED,
    "vulns.retests": _TEAM_SCOPED,
    "vulns.stats": _TEAM_SCOPED,
    "vulns.read": _ANYONE,
    "vulns.by_application": _ANYONE,
    "vulns.by_report": _ANYONE,
    "vulns.by_status": _ANYONE,
    "vulns.by_severity": _ANYONE,
    "vulns.by_assignee": _ANYONE,
    "vulns.create": _PRIVILEGED,
    "vulns.bulk_create": _PRIVILEGED,
    "vulns.update": Policy(requires_ownership=True),
    "vulns.delete": _PRIVILEGED,
    # Saved views (owner scoping happens in SavedViewStore)
    "views.list": _ANYONE,
    "views.create": _ANYONE,
    "views.update": _ANYONE,
    "views.delete": _ANYONE,
}


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


def authorize_role(principal: Principal, allowed_roles: Iterable[str]) -> None:
    if principal.role not in allowed_roles:
        raise Forbidden("Insufficient role for this operation")


def authorize_team_access(principal: Principal, requested_team_id: Optional[str]) -> None:
    """Admin/Security see every team; other roles only their own.

    No requested team means a global-scope request, which always passes.
    """
    if principal.role in PRIVILEGED_ROLES or requested_team_id is None:
        return
    if requested_team_id not in principal.team_ids:
        raise Forbidden("You do not have access to this team")


def authorize_resource_ownership(principal: Principal, resource: Any) -> None:
    """Pass for Admin/Security, or when the principal is the resource's assignee.

    resource may be a dataclass (assigned_to_user_id attribute) or a mapping.
    """
    if principal.role in PRIVILEGED_ROLES:
        return
    if isinstance(resource, dict):
        assignee = resource.get("assigned_to_user_id")
    else:
        assignee = getattr(resource, "assigned_to_user_id", None)
    if assignee is None or assignee != principal.id:
        raise Forbidden("Only the assignee may modify this resource")


# ---------------------------------------------------------------------------
# Policy evaluation
# ---------------------------------------------------------------------------


def authorize(
    principal: Principal,
    operation: str,
    team_id: Optional[str] = None,
    resource: Any = None,
) -> None:
    """Evaluate POLICIES[operation] for principal. Raises Forbidden on denial.

    Ownership is only checked when a resource is supplied; routes that need
    it load the resource first and call authorize() again with it.
    Unknown operation names raise KeyError -- a programming error, not a 403.
    """
    policy = POLICIES[operation]
    authorize_role(principal, policy.required_roles)
    if policy.requires_team_match:
        authorize_team_access(principal, team_id)
    if policy.requires_ownership and resource is not None:
        authorize_resource_ownership(principal, resource)
