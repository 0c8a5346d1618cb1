"""CRUD operations for users, teams, members, projects and tasks.

Update functions return a ``changes`` map ``{field: {"old": ..., "new": ...}}``
holding only the fields whose value actually changed. Values are JSON-ready so
the map can be stored in activity metadata and sent over the realtime channel
as is.
"""
import enum
import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from . import models
from .activity import delete_team_activities
from .errors import ConflictError

logger = logging.getLogger("teamtask-core.crud")


def to_json_value(value: Any) -> Any:
    """Convert enums, datetimes and UUIDs to their JSON representation."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def apply_changes(obj: Any, updates: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """
    Set attributes on ``obj`` and collect the ones that changed.

    Args:
        obj: ORM instance to mutate
        updates: Attribute name to new value (only fields the caller provided)

    Returns:
        ``{field: {"old": ..., "new": ...}}`` for every field whose value changed
    """
    changes: dict[str, dict[str, Any]] = {}
    for field, new_value in updates.items():
        old_value = getattr(obj, field)
        if old_value == new_value:
            continue
        setattr(obj, field, new_value)
        changes[field] = {"old": to_json_value(old_value), "new": to_json_value(new_value)}
    return changes


# User CRUD operations

def get_user(db: Session, user_id: UUID) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def get_users_by_ids(db: Session, user_ids: Iterable[Optional[UUID]]) -> dict[UUID, models.User]:
    """Load several users at once, keyed by id. ``None`` ids are ignored."""
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    users = db.query(models.User).filter(models.User.id.in_(ids)).all()
    return {u.id: u for u in users}


def register_user(
    db: Session,
    name: str,
    email: str,
    otp_hash: str,
    otp_expiry: datetime,
) -> models.User:
    """
    Create an unverified user, or re-issue the OTP for an unverified one.

    Args:
        db: Database session
        name: Display name (replaces the stored name on re-issue)
        email: Normalized email
        otp_hash: SHA-256 digest of the new OTP
        otp_expiry: When the new OTP stops being valid

    Returns:
        The created or updated user

    Raises:
        ConflictError: If the email belongs to a verified account
    """
    user = get_user_by_email(db, email)
    if user and user.is_verified:
        raise ConflictError("User with this email already exists")

    if user:
        user.name = name
        user.otp_hash = otp_hash
        user.otp_expiry = otp_expiry
        logger.debug(f"Re-issued OTP for unverified user {user.id}")
    else:
        user = models.User(
            name=name,
            email=email,
            is_verified=False,
            otp_hash=otp_hash,
            otp_expiry=otp_expiry,
        )
        db.add(user)

    try:
        db.commit()
    except IntegrityError:
        # Concurrent registration for the same email
        db.rollback()
        raise ConflictError("User with this email already exists")
    db.refresh(user)
    return user


def set_user_otp(db: Session, user: models.User, otp_hash: str, otp_expiry: datetime) -> models.User:
    user.otp_hash = otp_hash
    user.otp_expiry = otp_expiry
    db.commit()
    db.refresh(user)
    return user


def verify_user(db: Session, user: models.User, password_hash: str) -> models.User:
    """Mark a user verified, store the generated password and clear the OTP."""
    user.is_verified = True
    user.password_hash = password_hash
    user.otp_hash = None
    user.otp_expiry = None
    db.commit()
    db.refresh(user)
    logger.debug(f"Verified user {user.id}")
    return user


# Team CRUD operations

def create_team(
    db: Session,
    owner_id: UUID,
    name: str,
    description: Optional[str] = None,
) -> models.Team:
    """
    Create a team with its creator as owner and sole member.

    The team row and the owner's membership row are committed together.
    """
    db_team = models.Team(name=name, description=description, owner_id=owner_id)
    db_team.members.append(models.TeamMember(user_id=owner_id, role=models.TeamRole.OWNER))
    db.add(db_team)
    db.commit()
    db.refresh(db_team)
    logger.debug(f"Created team {db_team.id} owned by {owner_id}")
    return db_team


def get_team(db: Session, team_id: UUID) -> Optional[models.Team]:
    """Load a team with its member list."""
    return (
        db.query(models.Team)
        .options(joinedload(models.Team.members))
        .filter(models.Team.id == team_id)
        .first()
    )


def get_user_teams(db: Session, user_id: UUID) -> list[models.Team]:
    """List teams the user owns or belongs to, newest first."""
    member_team_ids = select(models.TeamMember.team_id).where(models.TeamMember.user_id == user_id)
    return (
        db.query(models.Team)
        .options(joinedload(models.Team.members))
        .filter(or_(models.Team.owner_id == user_id, models.Team.id.in_(member_team_ids)))
        .order_by(models.Team.created_at.desc())
        .all()
    )


def update_team(db: Session, db_team: models.Team, updates: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Apply field updates to a team. Returns the changes map."""
    changes = apply_changes(db_team, updates)
    if changes:
        db.commit()
        db.refresh(db_team)
    return changes


def delete_team(db: Session, db_team: models.Team) -> None:
    """
    Delete a team, its memberships and its activity history.

    Projects and tasks referencing the team are left in place.
    """
    team_id = db_team.id
    delete_team_activities(db, team_id)
    db.delete(db_team)
    db.commit()
    logger.debug(f"Deleted team {team_id}")


# Team member operations

def get_team_member(db: Session, team_id: UUID, user_id: UUID) -> Optional[models.TeamMember]:
    return (
        db.query(models.TeamMember)
        .filter(
            models.TeamMember.team_id == team_id,
            models.TeamMember.user_id == user_id,
        )
        .first()
    )


def add_team_member(
    db: Session,
    team_id: UUID,
    user_id: UUID,
    role: models.TeamRole = models.TeamRole.MEMBER,
) -> models.TeamMember:
    """
    Add a user to a team.

    A single INSERT guarded by the unique (team_id, user_id) constraint, so
    concurrent invites of the same user cannot both succeed.

    Raises:
        ConflictError: If the user is already a member
    """
    db_member = models.TeamMember(team_id=team_id, user_id=user_id, role=role)
    db.add(db_member)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User is already a member of this team")
    db.refresh(db_member)
    logger.debug(f"Added user {user_id} to team {team_id} with role {models.TeamRole(role).value}")
    return db_member


def remove_team_member(db: Session, team_id: UUID, user_id: UUID) -> bool:
    """
    Remove a user from a team with a single DELETE.

    Returns:
        True if a membership row was deleted
    """
    result = db.execute(
        delete(models.TeamMember).where(
            models.TeamMember.team_id == team_id,
            models.TeamMember.user_id == user_id,
        )
    )
    db.commit()
    db.expire_all()
    return result.rowcount > 0


def update_team_member_role(
    db: Session,
    team_id: UUID,
    user_id: UUID,
    role: models.TeamRole,
) -> Optional[models.TeamRole]:
    """
    Change a member's role.

    Returns:
        The previous role, or None if the user is not a member
    """
    db_member = get_team_member(db, team_id, user_id)
    if not db_member:
        return None

    old_role = models.TeamRole(db_member.role)
    db_member.role = role
    db.commit()
    db.expire_all()
    return old_role


# Project CRUD operations

def create_project(
    db: Session,
    team_id: UUID,
    name: str,
    created_by: UUID,
    description: Optional[str] = None,
) -> models.Project:
    """
    Create a new project.

    Args:
        db: Database session
        team_id: Owning team UUID
        name: Project name
        created_by: Creator user UUID
        description: Optional description

    Returns:
        Created project instance
    """
    db_project = models.Project(
        team_id=team_id,
        name=name,
        description=description,
        created_by=created_by,
    )
    db.add(db_project)
    db.commit()
    db.refresh(db_project)
    logger.debug(f"Created project {db_project.id} in team {team_id}")
    return db_project


def get_project(db: Session, project_id: UUID) -> Optional[models.Project]:
    return db.query(models.Project).filter(models.Project.id == project_id).first()


def get_projects(
    db: Session,
    team_id: UUID,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Project], int]:
    """
    List a team's projects, newest first.

    Returns:
        Tuple of (projects, total count)
    """
    query = db.query(models.Project).filter(models.Project.team_id == team_id)
    total = query.count()
    projects = query.order_by(models.Project.created_at.desc()).offset(skip).limit(limit).all()
    return projects, total


def update_project(db: Session, db_project: models.Project, updates: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Apply field updates to a project. Returns the changes map."""
    changes = apply_changes(db_project, updates)
    if changes:
        db.commit()
        db.refresh(db_project)
    return changes


def delete_project(db: Session, db_project: models.Project) -> None:
    """Delete a project. Its tasks are left in place."""
    project_id = db_project.id
    db.delete(db_project)
    db.commit()
    logger.debug(f"Deleted project {project_id}")


# Task CRUD operations

def create_task(
    db: Session,
    project_id: UUID,
    title: str,
    created_by: UUID,
    description: Optional[str] = None,
    priority: models.TaskPriority = models.TaskPriority.MEDIUM,
    status: models.TaskStatus = models.TaskStatus.TODO,
    due_date: Optional[datetime] = None,
    assignee_id: Optional[UUID] = None,
) -> models.Task:
    """
    Create a new task.

    The caller is responsible for checking that the assignee is a team member.

    Returns:
        Created task instance
    """
    db_task = models.Task(
        project_id=project_id,
        title=title,
        description=description,
        priority=priority,
        status=status,
        due_date=due_date,
        assignee_id=assignee_id,
        created_by=created_by,
    )
    db.add(db_task)
    db.commit()
    db.refresh(db_task)
    logger.debug(f"Created task {db_task.id} in project {project_id}")
    return db_task


def get_task(db: Session, task_id: UUID) -> Optional[models.Task]:
    return db.query(models.Task).filter(models.Task.id == task_id).first()


def get_tasks(
    db: Session,
    project_id: UUID,
    skip: int = 0,
    limit: int = 50,
    status_filter: Optional[models.TaskStatus] = None,
    priority_filter: Optional[models.TaskPriority] = None,
    assignee_id: Optional[UUID] = None,
) -> tuple[list[models.Task], int]:
    """
    List a project's tasks with optional filters, newest first.

    Returns:
        Tuple of (tasks, total count)
    """
    query = db.query(models.Task).filter(models.Task.project_id == project_id)

    if status_filter:
        query = query.filter(models.Task.status == status_filter)
    if priority_filter:
        query = query.filter(models.Task.priority == priority_filter)
    if assignee_id:
        query = query.filter(models.Task.assignee_id == assignee_id)

    total = query.count()
    tasks = query.order_by(models.Task.created_at.desc()).offset(skip).limit(limit).all()
    return tasks, total


def get_assigned_tasks(
    db: Session,
    user_id: UUID,
    skip: int = 0,
    limit: int = 50,
    status_filter: Optional[models.TaskStatus] = None,
) -> tuple[list[models.Task], int]:
    """List tasks assigned to a user across all projects, soonest due first."""
    query = db.query(models.Task).filter(models.Task.assignee_id == user_id)
    if status_filter:
        query = query.filter(models.Task.status == status_filter)

    total = query.count()
    tasks = (
        query.order_by(models.Task.due_date.is_(None), models.Task.due_date, models.Task.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return tasks, total


def get_projects_by_ids(db: Session, project_ids: Iterable[UUID]) -> dict[UUID, models.Project]:
    ids = set(project_ids)
    if not ids:
        return {}
    projects = db.query(models.Project).filter(models.Project.id.in_(ids)).all()
    return {p.id: p for p in projects}


def update_task(db: Session, db_task: models.Task, updates: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """
    Apply field updates to a task. Returns the changes map.

    Transition and assignee checks must already have passed.
    """
    changes = apply_changes(db_task, updates)
    if changes:
        db.commit()
        db.refresh(db_task)
    return changes


def delete_task(db: Session, db_task: models.Task) -> None:
    task_id = db_task.id
    db.delete(db_task)
    db.commit()
    logger.debug(f"Deleted task {task_id}")
