"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Annotated, Any, Optional
from uuid import UUID

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator

from .models import ActivityAction, ActivityEntity, TaskPriority, TaskStatus, TeamRole, to_naive_utc


def _normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


# Emails are compared and stored lower-cased
NormalizedEmail = Annotated[EmailStr, BeforeValidator(_normalize_email)]

# Timestamps are stored as naive UTC
UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


# Shared schemas

class MessageResponse(BaseModel):
    """Generic success envelope for operations without a resource body."""

    success: bool = True
    message: str


class UserBrief(BaseModel):
    """Denormalized user reference embedded in other responses."""

    id: UUID
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserBrief):
    """Schema for user profile responses."""

    is_verified: bool
    created_at: datetime


# Auth schemas

class RegisterRequest(BaseModel):
    """Schema for the first registration step."""

    name: str = Field(..., min_length=2, max_length=100)
    email: NormalizedEmail

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class ResendOtpRequest(BaseModel):
    """Schema for requesting a fresh OTP."""

    email: NormalizedEmail


class VerifyOtpRequest(BaseModel):
    """Schema for the second registration step."""

    email: NormalizedEmail
    otp: str = Field(..., min_length=4, max_length=10, pattern=r"^\d+$")


class LoginRequest(BaseModel):
    """Schema for password login."""

    email: NormalizedEmail
    password: str = Field(..., min_length=1, max_length=128)


class RefreshTokenRequest(BaseModel):
    """Schema for rotating a token pair."""

    refresh_token: str = Field(..., min_length=1)


class RegisterResponse(MessageResponse):
    """Response for register and resend-otp."""

    email: str
    otp_expires_in_minutes: int


class VerifyOtpResponse(MessageResponse):
    """Response for a successful verification."""

    email: str


class AuthResponse(BaseModel):
    """Authenticated session: profile plus token pair."""

    success: bool = True
    user: UserResponse
    token: str
    refresh_token: str


# Team schemas

class TeamCreate(BaseModel):
    """Schema for creating a team."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class TeamUpdate(BaseModel):
    """Schema for updating a team. Only provided fields are changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def name_not_null(cls, v):
        if v is None:
            raise ValueError("Name cannot be null")
        return v


class InviteMemberRequest(BaseModel):
    """Schema for inviting an existing user by email."""

    email: NormalizedEmail
    role: TeamRole = TeamRole.MEMBER

    @field_validator("role")
    @classmethod
    def role_not_owner(cls, v: TeamRole) -> TeamRole:
        if v == TeamRole.OWNER:
            raise ValueError("Role must be admin or member")
        return v


class MemberRoleUpdate(BaseModel):
    """Schema for changing a member's role."""

    role: TeamRole

    @field_validator("role")
    @classmethod
    def role_not_owner(cls, v: TeamRole) -> TeamRole:
        if v == TeamRole.OWNER:
            raise ValueError("Role must be admin or member")
        return v


class TeamMemberResponse(BaseModel):
    """Schema for a team member entry."""

    user: UserBrief
    role: TeamRole
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TeamResponse(BaseModel):
    """Schema for team responses, with members resolved to users."""

    id: UUID
    name: str
    description: Optional[str] = None
    owner: UserBrief
    members: list[TeamMemberResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TeamListItem(TeamResponse):
    """Team entry in the caller's team list."""

    user_role: Optional[TeamRole] = None
    member_count: int = 0


class TeamListResponse(BaseModel):
    """Schema for the caller's teams."""

    items: list[TeamListItem]
    total: int


# Project schemas

class ProjectCreate(BaseModel):
    """Schema for creating a project."""

    team_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class ProjectUpdate(BaseModel):
    """Schema for updating a project. Only provided fields are changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)

    @field_validator("name", mode="before")
    @classmethod
    def name_not_null(cls, v):
        if v is None:
            raise ValueError("Name cannot be null")
        return v


class ProjectBrief(BaseModel):
    """Denormalized project reference embedded in task responses."""

    id: UUID
    name: str

    model_config = ConfigDict(from_attributes=True)


class ProjectResponse(BaseModel):
    """Schema for project responses."""

    id: UUID
    team_id: UUID
    name: str
    description: Optional[str] = None
    created_by: UserBrief
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectListResponse(BaseModel):
    """Schema for paginated project list."""

    items: list[ProjectResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# Task schemas

class TaskCreate(BaseModel):
    """Schema for creating a task."""

    project_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[UtcDatetime] = None
    assignee_id: Optional[UUID] = None


class TaskUpdate(BaseModel):
    """
    Schema for updating a task.

    Absent fields are left untouched. An explicit null for ``assignee_id``,
    ``description`` or ``due_date`` clears the field.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[UtcDatetime] = None
    assignee_id: Optional[UUID] = None

    @field_validator("title", "priority", "status", mode="before")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class TaskStatusUpdate(BaseModel):
    """Schema for the dedicated status update."""

    status: TaskStatus


class TaskResponse(BaseModel):
    """Schema for task responses with resolved references."""

    id: UUID
    title: str
    description: Optional[str] = None
    priority: TaskPriority
    status: TaskStatus
    due_date: Optional[datetime] = None
    project: ProjectBrief
    team_id: UUID
    assignee: Optional[UserBrief] = None
    created_by: UserBrief
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskListResponse(BaseModel):
    """Schema for paginated task list."""

    items: list[TaskResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# Activity schemas

class ActivityResponse(BaseModel):
    """Schema for an audit record."""

    id: UUID
    user: Optional[UserBrief] = None
    team_id: UUID
    action: ActivityAction
    entity: ActivityEntity
    entity_id: UUID
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    model_config = ConfigDict(use_enum_values=True)


class ActivityListResponse(BaseModel):
    """Schema for paginated activity list."""

    items: list[ActivityResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ActivityStat(BaseModel):
    """Count of records for one (entity, action) pair."""

    entity: ActivityEntity
    action: ActivityAction
    count: int

    model_config = ConfigDict(use_enum_values=True)


class ActivityStatsResponse(BaseModel):
    """Grouped activity counts over a trailing window."""

    team_id: UUID
    days: int
    stats: list[ActivityStat]
