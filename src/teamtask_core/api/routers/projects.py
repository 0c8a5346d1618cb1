"""Projects API endpoints."""
import logging
from math import ceil
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ... import crud, models, schemas
from ...activity import ActivityRecorder
from ...database import get_db
from ...models import ActivityAction, ActivityEntity
from ...permissions import can_create_in_team, can_modify_project, can_view_team, check_permission
from ...realtime import RealtimeEvent, RealtimeHub
from ..dependencies import (
    get_activity_recorder,
    get_current_user,
    get_realtime_hub,
    load_project,
    load_team,
)
from ..responses import project_list, project_response, user_payload

logger = logging.getLogger("teamtask-core.projects")

router = APIRouter(tags=["projects"])


@router.post("/", response_model=schemas.ProjectResponse, status_code=201)
def create_project(
    payload: schemas.ProjectCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Create a new project in a team. Any team member may create projects.

    - **team_id**: Owning team UUID
    - **name**: Project name
    - **description**: Optional description
    """
    _, snapshot = load_team(db, payload.team_id)
    check_permission(
        can_create_in_team(snapshot, current_user.id),
        "You must be a team member to create projects",
    )

    project = crud.create_project(
        db,
        team_id=payload.team_id,
        name=payload.name,
        created_by=current_user.id,
        description=payload.description,
    )
    response = project_response(db, project)

    background_tasks.add_task(
        recorder.record,
        current_user.id, project.team_id, ActivityAction.CREATED, ActivityEntity.PROJECT, project.id,
        {"name": project.name},
    )
    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.PROJECT_CREATED,
        {
            "project": response.model_dump(mode="json"),
            "team_id": str(project.team_id),
            "created_by": user_payload(current_user),
        },
    )
    logger.info(f"Created project '{project.name}' (ID: {project.id}) in team {project.team_id}")
    return response


@router.get("/team/{team_id}", response_model=schemas.ProjectListResponse)
def list_team_projects(
    team_id: UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List a team's projects with pagination.

    - **page**: Page number (starts at 1)
    - **page_size**: Number of items per page (1-100)
    """
    _, snapshot = load_team(db, team_id)
    check_permission(can_view_team(snapshot, current_user.id), "You are not a member of this team")

    skip = (page - 1) * page_size
    projects, total = crud.get_projects(db, team_id, skip=skip, limit=page_size)

    return schemas.ProjectListResponse(
        items=project_list(db, projects),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{project_id}", response_model=schemas.ProjectResponse)
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get a specific project by ID."""
    project, snapshot = load_project(db, project_id)
    check_permission(can_view_team(snapshot, current_user.id), "You do not have access to this project")
    return project_response(db, project)


@router.put("/{project_id}", response_model=schemas.ProjectResponse)
def update_project(
    project_id: UUID,
    payload: schemas.ProjectUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Update a project. Team admins and the owner only.

    - **name**: New name (optional)
    - **description**: New description (optional, null clears it)
    """
    project, snapshot = load_project(db, project_id)
    check_permission(
        can_modify_project(snapshot, current_user.id),
        "Only team admins or owners can update projects",
    )

    changes = crud.update_project(db, project, payload.model_dump(exclude_unset=True))
    response = project_response(db, project)

    if changes:
        background_tasks.add_task(
            recorder.record,
            current_user.id, project.team_id, ActivityAction.UPDATED, ActivityEntity.PROJECT, project.id,
            {"changes": changes},
        )
        background_tasks.add_task(
            hub.publish,
            RealtimeEvent.PROJECT_UPDATED,
            {
                "project": response.model_dump(mode="json"),
                "team_id": str(project.team_id),
                "changes": changes,
                "updated_by": user_payload(current_user),
            },
        )
        logger.info(f"Updated project {project.id}: {', '.join(changes)}")
    return response


@router.delete("/{project_id}", response_model=schemas.MessageResponse)
def delete_project(
    project_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Delete a project. Team admins and the owner only.

    Tasks of the project are not deleted.
    """
    project, snapshot = load_project(db, project_id)
    check_permission(
        can_modify_project(snapshot, current_user.id),
        "Only team admins or owners can delete projects",
    )

    project_ref = {"id": str(project.id), "name": project.name}
    team_id = project.team_id
    crud.delete_project(db, project)

    background_tasks.add_task(
        recorder.record,
        current_user.id, team_id, ActivityAction.DELETED, ActivityEntity.PROJECT, project_id,
        {"name": project_ref["name"]},
    )
    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.PROJECT_DELETED,
        {"project": project_ref, "team_id": str(team_id), "deleted_by": user_payload(current_user)},
    )
    logger.info(f"Deleted project {project_id}")
    return schemas.MessageResponse(message="Project deleted successfully")
