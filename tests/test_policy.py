"""Unit tests for the declarative authorization model in auth/policy.py.

Covers:
- Role gating per operation (settings read vs update, admin-only users)
- Team access: privileged bypass, membership for everyone else
- Resource ownership: assignee or privileged role only
- Every policy references known roles only
"""

import pytest

from auth.models import Principal
from auth.policy import (
    POLICIES,
    authorize,
    authorize_resource_ownership,
    authorize_role,
    authorize_team_access,
)
from core.errors import Forbidden
from core.models import ROLES
from tracker.models import Vulnerability

ADMIN = Principal(id="u-admin", role="Admin")
SECURITY = Principal(id="u-sec", role="Security")
DEV_T1 = Principal(id="u-dev", role="Dev", team_ids=frozenset({"T1"}))
PO_T1 = Principal(id="u-po", role="ProductOwner", team_ids=frozenset({"T1"}))


def _vuln(assignee):
    return Vulnerability(
        application_id="app",
        title="IDOR",
        description="order ids are guessable",
        severity="High",
        assigned_to_user_id=assignee,
    )


class TestRoleChecks:
    def test_role_in_allowed_set_passes(self) -> None:
        authorize_role(ADMIN, {"Admin"})

    def test_role_outside_allowed_set_forbidden(self) -> None:
        with pytest.raises(Forbidden):
            authorize_role(DEV_T1, {"Admin", "Security"})

    def test_security_can_read_but_not_update_settings(self) -> None:
        authorize(SECURITY, "settings.read")
        with pytest.raises(Forbidden):
            authorize(SECURITY, "settings.update")

    def test_admin_can_update_settings(self) -> None:
        authorize(ADMIN, "settings.update")

    @pytest.mark.parametrize("principal", [DEV_T1, PO_T1])
    def test_non_privileged_cannot_read_settings(self, principal: Principal) -> None:
        with pytest.raises(Forbidden):
            authorize(principal, "settings.read")

    def test_user_management_is_admin_only(self) -> None:
        with pytest.raises(Forbidden):
            authorize(SECURITY, "users.create")
        authorize(ADMIN, "users.create")

    def test_every_role_reaches_own_profile(self) -> None:
        for principal in (ADMIN, SECURITY, DEV_T1, PO_T1):
            authorize(principal, "users.me")

    def test_team_application_listing_is_privileged_only(self) -> None:
        with pytest.raises(Forbidden, match="Insufficient role"):
            authorize(DEV_T1, "apps.by_team", team_id="T1")
        authorize(SECURITY, "apps.by_team", team_id="T2")

    def test_unknown_operation_is_a_key_error(self) -> None:
        with pytest.raises(KeyError):
            authorize(ADMIN, "vulns.explode")


class TestTeamAccess:
    def test_member_passes(self) -> None:
        authorize_team_access(DEV_T1, "T1")

    def test_non_member_forbidden(self) -> None:
        with pytest.raises(Forbidden, match="access to this team"):
            authorize_team_access(DEV_T1, "T2")

    @pytest.mark.parametrize("principal", [ADMIN, SECURITY])
    def test_privileged_roles_see_every_team(self, principal: Principal) -> None:
        authorize_team_access(principal, "T2")

    def test_no_requested_team_is_global_scope(self) -> None:
        authorize_team_access(DEV_T1, None)

    def test_team_scoped_policy_checks_membership(self) -> None:
        authorize(DEV_T1, "vulns.list", team_id="T1")
        with pytest.raises(Forbidden):
            authorize(DEV_T1, "vulns.list", team_id="T2")


class TestOwnership:
    def test_assignee_may_update(self) -> None:
        authorize_resource_ownership(DEV_T1, _vuln("u-dev"))

    def test_other_assignee_forbidden(self) -> None:
        with pytest.raises(Forbidden, match="assignee"):
            authorize_resource_ownership(DEV_T1, _vuln("someone-else"))

    def test_unassigned_forbidden_for_non_privileged(self) -> None:
        with pytest.raises(Forbidden):
            authorize_resource_ownership(PO_T1, _vuln(None))

    def test_mapping_resource_supported(self) -> None:
        authorize_resource_ownership(DEV_T1, {"assigned_to_user_id": "u-dev"})

    @pytest.mark.parametrize("principal", [ADMIN, SECURITY])
    def test_privileged_bypass_ownership(self, principal: Principal) -> None:
        authorize_resource_ownership(principal, _vuln(None))

    def test_ownership_checked_only_with_resource(self) -> None:
        authorize(DEV_T1, "vulns.update")
        with pytest.raises(Forbidden):
            authorize(DEV_T1, "vulns.update", resource=_vuln("someone-else"))


def test_policies_only_reference_known_roles() -> None:
    for name, policy in POLICIES.items():
        assert policy.required_roles <= set(ROLES), f"{name} names an unknown role"
