"""Tests for team membership authorization."""
from uuid import uuid4

import pytest
from teamtask_core.errors import ForbiddenError
from teamtask_core.models import TeamRole
from teamtask_core.permissions import (
    MemberEntry,
    PermissionDeniedError,
    TeamSnapshot,
    can_change_member_role,
    can_create_in_team,
    can_delete_task,
    can_delete_team,
    can_leave_team,
    can_manage_team,
    can_modify_project,
    can_update_task,
    can_view_team,
    check_permission,
    is_admin_or_owner,
    is_member,
    is_owner,
    is_protected_member,
    role_of,
)


@pytest.fixture
def users():
    return {
        "owner": uuid4(),
        "admin": uuid4(),
        "member": uuid4(),
        "outsider": uuid4(),
    }


@pytest.fixture
def team(users):
    return TeamSnapshot(
        id=uuid4(),
        name="Platform",
        owner_id=users["owner"],
        members=(
            MemberEntry(user_id=users["owner"], role=TeamRole.OWNER),
            MemberEntry(user_id=users["admin"], role=TeamRole.ADMIN),
            MemberEntry(user_id=users["member"], role=TeamRole.MEMBER),
        ),
    )


class TestMembershipQueries:
    """Test membership and role resolution."""

    def test_is_owner(self, team, users):
        assert is_owner(team, users["owner"])
        assert not is_owner(team, users["admin"])

    def test_is_member(self, team, users):
        for key in ("owner", "admin", "member"):
            assert is_member(team, users[key])
        assert not is_member(team, users["outsider"])

    def test_owner_is_member_without_member_entry(self, users):
        """Test that the owner counts as a member even when absent from the list."""
        team = TeamSnapshot(id=uuid4(), name="Solo", owner_id=users["owner"])

        assert is_member(team, users["owner"])
        assert is_admin_or_owner(team, users["owner"])
        assert role_of(team, users["owner"]) == TeamRole.OWNER

    def test_is_admin_or_owner(self, team, users):
        assert is_admin_or_owner(team, users["owner"])
        assert is_admin_or_owner(team, users["admin"])
        assert not is_admin_or_owner(team, users["member"])
        assert not is_admin_or_owner(team, users["outsider"])

    def test_role_of(self, team, users):
        assert role_of(team, users["owner"]) == TeamRole.OWNER
        assert role_of(team, users["admin"]) == TeamRole.ADMIN
        assert role_of(team, users["member"]) == TeamRole.MEMBER
        assert role_of(team, users["outsider"]) is None

    def test_member_ids_in_join_order(self, team, users):
        assert team.member_ids() == [users["owner"], users["admin"], users["member"]]


class TestPolicyPredicates:
    """Test each action against each role."""

    def test_view_and_create_need_membership(self, team, users):
        for key in ("owner", "admin", "member"):
            assert can_view_team(team, users[key])
            assert can_create_in_team(team, users[key])
            assert can_update_task(team, users[key])
        assert not can_view_team(team, users["outsider"])
        assert not can_create_in_team(team, users["outsider"])
        assert not can_update_task(team, users["outsider"])

    def test_manage_team_and_projects_need_admin(self, team, users):
        for predicate in (can_manage_team, can_modify_project):
            assert predicate(team, users["owner"])
            assert predicate(team, users["admin"])
            assert not predicate(team, users["member"])
            assert not predicate(team, users["outsider"])

    def test_owner_only_actions(self, team, users):
        for predicate in (can_delete_team, can_change_member_role):
            assert predicate(team, users["owner"])
            assert not predicate(team, users["admin"])
            assert not predicate(team, users["member"])

    def test_delete_task_by_creator_or_admin(self, team, users):
        creator = users["member"]

        assert can_delete_task(team, users["member"], created_by=creator)
        assert can_delete_task(team, users["admin"], created_by=creator)
        assert can_delete_task(team, users["owner"], created_by=creator)
        assert not can_delete_task(team, users["member"], created_by=users["admin"])

    def test_leave_team(self, team, users):
        assert can_leave_team(team, users["admin"])
        assert can_leave_team(team, users["member"])
        assert not can_leave_team(team, users["owner"])
        assert not can_leave_team(team, users["outsider"])

    def test_owner_is_protected(self, team, users):
        assert is_protected_member(team, users["owner"])
        assert not is_protected_member(team, users["admin"])


class TestCheckPermission:
    """Test the raising helper."""

    def test_allowed_does_not_raise(self):
        check_permission(True, "never shown")

    def test_denied_raises_forbidden(self):
        with pytest.raises(PermissionDeniedError) as exc_info:
            check_permission(False, "Only team owner can delete the team")

        assert isinstance(exc_info.value, ForbiddenError)
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Only team owner can delete the team"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
