"""Team membership authorization model.

Pure functions over an immutable ``TeamSnapshot``. Snapshots are built from a
freshly loaded ``Team`` on every request and never cached, so a decision always
reflects the membership state read by that request.

Policy:
- View team, project or task: member
- Update team, invite member, remove member: admin or owner
- Delete team, change member role: owner only
- Create project or task: member
- Update or delete project: admin or owner
- Update task (fields, status, assignment): member
- Delete task: admin or owner, or the task's creator
- Leave team: member who is not the owner
- The owner can never be removed or have their role changed
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from .errors import ForbiddenError
from .models import Team, TeamRole

logger = logging.getLogger("teamtask-core.permissions")


class PermissionDeniedError(ForbiddenError):
    """Raised when an authorization check fails."""

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


@dataclass(frozen=True)
class MemberEntry:
    """One entry of a team's member list."""

    user_id: UUID
    role: TeamRole
    joined_at: Optional[datetime] = None


@dataclass(frozen=True)
class TeamSnapshot:
    """Consistent, read-only view of a team's ownership and membership."""

    id: UUID
    name: str
    owner_id: UUID
    members: tuple[MemberEntry, ...] = ()

    @classmethod
    def from_model(cls, team: Team) -> "TeamSnapshot":
        """Build a snapshot from a loaded ``Team`` row and its members."""
        return cls(
            id=team.id,
            name=team.name,
            owner_id=team.owner_id,
            members=tuple(
                MemberEntry(user_id=m.user_id, role=TeamRole(m.role), joined_at=m.joined_at)
                for m in team.members
            ),
        )

    def member_ids(self) -> list[UUID]:
        """Member user ids in join order."""
        return [m.user_id for m in self.members]


def _find_member(team: TeamSnapshot, user_id: UUID) -> Optional[MemberEntry]:
    for member in team.members:
        if member.user_id == user_id:
            return member
    return None


def is_owner(team: TeamSnapshot, user_id: UUID) -> bool:
    """True iff ``user_id`` is the team's owner."""
    return team.owner_id == user_id


def is_member(team: TeamSnapshot, user_id: UUID) -> bool:
    """
    Check whether a user belongs to the team.

    The owner is always a member, even when missing from the member list.
    Presence in the list is sufficient; the role is not inspected.
    """
    return is_owner(team, user_id) or _find_member(team, user_id) is not None


def is_admin_or_owner(team: TeamSnapshot, user_id: UUID) -> bool:
    """True iff the user is the owner or holds the admin or owner role."""
    if is_owner(team, user_id):
        return True
    member = _find_member(team, user_id)
    return member is not None and member.role in (TeamRole.ADMIN, TeamRole.OWNER)


def role_of(team: TeamSnapshot, user_id: UUID) -> Optional[TeamRole]:
    """
    Resolve a user's role in the team.

    Returns:
        ``TeamRole.OWNER`` for the owner, the stored role for other members,
        or None when the user is not a member
    """
    if is_owner(team, user_id):
        return TeamRole.OWNER
    member = _find_member(team, user_id)
    return member.role if member else None


# Policy predicates

def can_view_team(team: TeamSnapshot, user_id: UUID) -> bool:
    return is_member(team, user_id)


def can_manage_team(team: TeamSnapshot, user_id: UUID) -> bool:
    """Update team details, invite and remove members."""
    return is_admin_or_owner(team, user_id)


def can_delete_team(team: TeamSnapshot, user_id: UUID) -> bool:
    return is_owner(team, user_id)


def can_change_member_role(team: TeamSnapshot, user_id: UUID) -> bool:
    return is_owner(team, user_id)


def can_create_in_team(team: TeamSnapshot, user_id: UUID) -> bool:
    """Create projects and tasks."""
    return is_member(team, user_id)


def can_modify_project(team: TeamSnapshot, user_id: UUID) -> bool:
    """Update or delete a project."""
    return is_admin_or_owner(team, user_id)


def can_update_task(team: TeamSnapshot, user_id: UUID) -> bool:
    return is_member(team, user_id)


def can_delete_task(team: TeamSnapshot, user_id: UUID, created_by: UUID) -> bool:
    return is_admin_or_owner(team, user_id) or created_by == user_id


def can_leave_team(team: TeamSnapshot, user_id: UUID) -> bool:
    return is_member(team, user_id) and not is_owner(team, user_id)


def is_protected_member(team: TeamSnapshot, target_user_id: UUID) -> bool:
    """The owner cannot be removed or have their role changed."""
    return is_owner(team, target_user_id)


def check_permission(allowed: bool, message: str) -> None:
    """
    Raise ``PermissionDeniedError`` with ``message`` unless ``allowed``.

    Raises:
        PermissionDeniedError: If the check failed
    """
    if not allowed:
        logger.info(f"Permission denied: {message}")
        raise PermissionDeniedError(message)
