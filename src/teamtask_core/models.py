"""SQLAlchemy database models."""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    ForeignKey,
    Enum,
    Boolean,
    UniqueConstraint,
    Index,
    JSON,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (all timestamps are stored naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class TeamRole(str, enum.Enum):
    """Team member role enum."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class TaskStatus(str, enum.Enum):
    """Task workflow status enum."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ActivityAction(str, enum.Enum):
    """Activity action enum."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    STATUS_CHANGED = "status_changed"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"
    ROLE_CHANGED = "role_changed"


class ActivityEntity(str, enum.Enum):
    """Activity entity enum."""

    TASK = "task"
    PROJECT = "project"
    TEAM = "team"
    USER = "user"


class User(Base):
    """
    User account.

    Created unverified on the first registration attempt and verified exactly
    once by consuming an emailed OTP, at which point a password is generated.
    """

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=True)  # Set on OTP verification
    is_verified = Column(Boolean, nullable=False, default=False)

    # Pending OTP (cleared after use)
    otp_hash = Column(String(64), nullable=True)
    otp_expiry = Column(DateTime, nullable=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    memberships = relationship("TeamMember", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Team(Base):
    """
    Team workspace.

    The owner is fixed at creation and is also stored in ``members`` with the
    owner role. Projects reference the team by id; they are not owned by the
    row and are not removed with it.
    """

    __tablename__ = "teams"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.joined_at",
    )

    def __repr__(self) -> str:
        return f"<Team {self.id}: {self.name}>"


class TeamMember(Base):
    """
    Membership row linking a user to a team with a role.

    One row per (team, user); adding a member is a single INSERT guarded by the
    unique constraint.
    """

    __tablename__ = "team_members"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    team_id = Column(Uuid(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(Enum(TeamRole, values_callable=_enum_values), nullable=False, default=TeamRole.MEMBER)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    team = relationship("Team", back_populates="members")
    user = relationship("User", back_populates="memberships")

    # Constraints
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="unique_team_user"),
    )

    def __repr__(self) -> str:
        return f"<TeamMember {self.role.value}>"


class Project(Base):
    """Project within a team. Belongs to exactly one team for its lifetime."""

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    team_id = Column(Uuid(as_uuid=True), nullable=False, index=True)  # Reference only
    name = Column(String(100), nullable=False)
    description = Column(String(1000), nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    creator = relationship("User", foreign_keys=[created_by])

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class Task(Base):
    """Task within a project. Status changes go through the task state machine."""

    __tablename__ = "tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), nullable=False, index=True)  # Reference only

    # Core task fields
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(
        Enum(TaskPriority, values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.MEDIUM,
        index=True,
    )
    status = Column(
        Enum(TaskStatus, values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.TODO,
        index=True,
    )
    due_date = Column(DateTime, nullable=True, index=True)
    assignee_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)

    # Audit fields
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    assignee = relationship("User", foreign_keys=[assignee_id])
    creator = relationship("User", foreign_keys=[created_by])

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title[:30]}>"


class Activity(Base):
    """
    Append-only audit record.

    References (but does not own) the team, the entity and the acting user.
    Records expire after the configured retention window and are deleted
    together with their team.
    """

    __tablename__ = "activities"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    action = Column(Enum(ActivityAction, values_callable=_enum_values), nullable=False, index=True)
    entity = Column(Enum(ActivityEntity, values_callable=_enum_values), nullable=False, index=True)
    entity_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    details = Column("metadata", JSON, nullable=False, default=dict)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    user = relationship("User")

    __table_args__ = (
        Index("idx_activities_team_timestamp", "team_id", "timestamp"),
        Index("idx_activities_entity_timestamp", "entity_id", "timestamp"),
        Index("idx_activities_user_timestamp", "user_id", "timestamp"),
        Index("idx_activities_team_entity_timestamp", "team_id", "entity", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Activity {self.entity.value} {self.action.value}>"
