"""Build denormalized response models from ORM rows.

Users are resolved to ``{id, name, email}`` and projects to ``{id, name}``.
The same models, dumped in JSON mode, are used as realtime payload bodies.
"""
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..permissions import role_of, TeamSnapshot


def user_brief(user: Optional[models.User]) -> Optional[schemas.UserBrief]:
    if user is None:
        return None
    return schemas.UserBrief(id=user.id, name=user.name, email=user.email)


def user_payload(user: models.User) -> dict:
    """JSON-ready ``{id, name, email}`` for realtime payloads."""
    return user_brief(user).model_dump(mode="json")


def team_response(db: Session, team: models.Team) -> schemas.TeamResponse:
    users = crud.get_users_by_ids(db, [team.owner_id] + [m.user_id for m in team.members])
    return schemas.TeamResponse(
        id=team.id,
        name=team.name,
        description=team.description,
        owner=user_brief(users.get(team.owner_id)),
        members=[
            schemas.TeamMemberResponse(user=user_brief(users[m.user_id]), role=m.role, joined_at=m.joined_at)
            for m in team.members
            if m.user_id in users
        ],
        created_at=team.created_at,
        updated_at=team.updated_at,
    )


def team_list_item(db: Session, team: models.Team, user_id: UUID) -> schemas.TeamListItem:
    base = team_response(db, team)
    return schemas.TeamListItem(
        **base.model_dump(),
        user_role=role_of(TeamSnapshot.from_model(team), user_id),
        member_count=len(team.members),
    )


def project_response(
    db: Session,
    project: models.Project,
    users: Optional[dict[UUID, models.User]] = None,
) -> schemas.ProjectResponse:
    if users is None:
        users = crud.get_users_by_ids(db, [project.created_by])
    return schemas.ProjectResponse(
        id=project.id,
        team_id=project.team_id,
        name=project.name,
        description=project.description,
        created_by=user_brief(users.get(project.created_by)),
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def project_list(db: Session, projects: list[models.Project]) -> list[schemas.ProjectResponse]:
    users = crud.get_users_by_ids(db, [p.created_by for p in projects])
    return [project_response(db, p, users) for p in projects]


def task_response(
    db: Session,
    task: models.Task,
    project: models.Project,
    users: Optional[dict[UUID, models.User]] = None,
) -> schemas.TaskResponse:
    if users is None:
        users = crud.get_users_by_ids(db, [task.created_by, task.assignee_id])
    return schemas.TaskResponse(
        id=task.id,
        title=task.title,
        description=task.description,
        priority=task.priority,
        status=task.status,
        due_date=task.due_date,
        project=schemas.ProjectBrief(id=project.id, name=project.name),
        team_id=project.team_id,
        assignee=user_brief(users.get(task.assignee_id)) if task.assignee_id else None,
        created_by=user_brief(users.get(task.created_by)),
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def task_list(
    db: Session,
    tasks: list[models.Task],
    projects: dict[UUID, models.Project],
) -> list[schemas.TaskResponse]:
    users = crud.get_users_by_ids(db, [t.created_by for t in tasks] + [t.assignee_id for t in tasks])
    return [task_response(db, t, projects[t.project_id], users) for t in tasks if t.project_id in projects]


def activity_response(activity: models.Activity) -> schemas.ActivityResponse:
    return schemas.ActivityResponse(
        id=activity.id,
        user=user_brief(activity.user),
        team_id=activity.team_id,
        action=activity.action,
        entity=activity.entity,
        entity_id=activity.entity_id,
        metadata=activity.details or {},
        timestamp=activity.timestamp,
    )
