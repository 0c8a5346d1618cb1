"""Request dependencies: identity, shared services and entity loading."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .. import crud, models, security
from ..activity import ActivityRecorder
from ..config import Settings
from ..database import get_db
from ..errors import AuthenticationError, ForbiddenError, NotFoundError
from ..mailer import EmailSender
from ..permissions import TeamSnapshot
from ..realtime import RealtimeHub

logger = logging.getLogger("teamtask-core.api.dependencies")

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_realtime_hub(request: Request) -> RealtimeHub:
    return request.app.state.realtime_hub


def get_activity_recorder(request: Request) -> ActivityRecorder:
    return request.app.state.activity_recorder


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def authenticate_token(db: Session, settings: Settings, token: Optional[str]) -> models.User:
    """
    Resolve an access token to a verified user.

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user no longer exists
        ForbiddenError: If the user has not verified their email
    """
    if not token:
        raise AuthenticationError("No token provided")

    claims = security.decode_access_token(settings, token)
    user = crud.get_user(db, claims["sub"])
    if not user:
        raise AuthenticationError("User not found")
    if not user.is_verified:
        raise ForbiddenError("Email not verified. Please verify your email first.")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> models.User:
    """Authenticated user from the ``Authorization: Bearer`` header."""
    token = credentials.credentials if credentials else None
    return authenticate_token(db, settings, token)


# Entity loading
#
# Missing entities raise NotFound before any authorization check runs.

def load_team(db: Session, team_id: UUID) -> tuple[models.Team, TeamSnapshot]:
    team = crud.get_team(db, team_id)
    if not team:
        raise NotFoundError("Team not found")
    return team, TeamSnapshot.from_model(team)


def load_project(db: Session, project_id: UUID) -> tuple[models.Project, TeamSnapshot]:
    """Load a project and a snapshot of the team that owns it."""
    project = crud.get_project(db, project_id)
    if not project:
        raise NotFoundError("Project not found")
    _, snapshot = load_team(db, project.team_id)
    return project, snapshot


def load_task(db: Session, task_id: UUID) -> tuple[models.Task, models.Project, TeamSnapshot]:
    """Load a task, its project and a snapshot of the owning team."""
    task = crud.get_task(db, task_id)
    if not task:
        raise NotFoundError("Task not found")
    project, snapshot = load_project(db, task.project_id)
    return task, project, snapshot
