"""Tasks API endpoints.

Mutations run in a fixed order: load the task with its project and team,
authorize, check the status transition, check the assignee, persist, diff, then
hand activity recording and realtime emission to background tasks that run
after the response is sent.
"""
import logging
from math import ceil
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ... import crud, models, schemas
from ...activity import ActivityRecorder
from ...database import get_db
from ...errors import InvalidAssigneeError
from ...models import ActivityAction, ActivityEntity, TaskPriority, TaskStatus
from ...permissions import (
    TeamSnapshot,
    can_create_in_team,
    can_delete_task,
    can_update_task,
    can_view_team,
    check_permission,
    is_member,
)
from ...realtime import RealtimeEvent, RealtimeHub
from ...task_state_machine import validate_transition
from ..dependencies import (
    get_activity_recorder,
    get_current_user,
    get_realtime_hub,
    load_project,
    load_task,
)
from ..responses import task_list, task_response, user_payload

logger = logging.getLogger("teamtask-core.tasks")

router = APIRouter(tags=["tasks"])


def _check_assignee(db: Session, team: TeamSnapshot, assignee_id: UUID) -> models.User:
    """
    Verify that an assignee exists and belongs to the task's team.

    Raises:
        InvalidAssigneeError: If the user does not exist or is not a team member
    """
    assignee = crud.get_user(db, assignee_id)
    if not assignee:
        raise InvalidAssigneeError("Assignee not found")
    if not is_member(team, assignee_id):
        raise InvalidAssigneeError("Assignee must be a member of the team")
    return assignee


def _assigned_message(task: models.Task) -> str:
    return f"You have been assigned to task: {task.title}"


def _schedule_assignment(
    background_tasks: BackgroundTasks,
    hub: RealtimeHub,
    task_payload: dict[str, Any],
    team_id: UUID,
    project_id: UUID,
    assignee: models.User,
    assigned_by: models.User,
    message: str,
) -> None:
    background_tasks.add_task(
        hub.publish_with_personal,
        RealtimeEvent.TASK_ASSIGNED,
        {
            "task": task_payload,
            "team_id": str(team_id),
            "project_id": str(project_id),
            "assignee": user_payload(assignee),
            "assigned_by": user_payload(assigned_by),
        },
        assignee.id,
        message,
    )


@router.post("/", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    payload: schemas.TaskCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Create a new task in a project. Any team member may create tasks.

    - **project_id**: Parent project UUID
    - **title**: Task title
    - **description**: Optional description
    - **priority**: low, medium, high or urgent (default: medium)
    - **status**: Initial status (default: todo)
    - **due_date**: Optional due date
    - **assignee_id**: Optional assignee (must be a team member)
    """
    project, snapshot = load_project(db, payload.project_id)
    check_permission(
        can_create_in_team(snapshot, current_user.id),
        "You must be a team member to create tasks",
    )

    assignee = None
    if payload.assignee_id is not None:
        assignee = _check_assignee(db, snapshot, payload.assignee_id)

    task = crud.create_task(
        db,
        project_id=project.id,
        title=payload.title,
        created_by=current_user.id,
        description=payload.description,
        priority=payload.priority,
        status=payload.status,
        due_date=payload.due_date,
        assignee_id=payload.assignee_id,
    )
    response = task_response(db, task, project)
    task_payload = response.model_dump(mode="json")

    background_tasks.add_task(
        recorder.record,
        current_user.id, project.team_id, ActivityAction.CREATED, ActivityEntity.TASK, task.id,
        {"title": task.title, "status": task.status.value, "priority": task.priority.value},
    )
    if assignee:
        background_tasks.add_task(
            recorder.record,
            current_user.id, project.team_id, ActivityAction.ASSIGNED, ActivityEntity.TASK, task.id,
            {"old_assignee": None, "new_assignee": str(assignee.id), "assignee_name": assignee.name},
        )

    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.TASK_CREATED,
        {
            "task": task_payload,
            "team_id": str(project.team_id),
            "project_id": str(project.id),
            "created_by": user_payload(current_user),
        },
    )
    if assignee:
        _schedule_assignment(
            background_tasks, hub, task_payload, project.team_id, project.id,
            assignee, current_user, _assigned_message(task),
        )

    logger.info(f"Created task '{task.title}' (ID: {task.id}) in project {project.id}")
    return response


@router.get("/project/{project_id}", response_model=schemas.TaskListResponse)
def list_project_tasks(
    project_id: UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    status: Optional[TaskStatus] = Query(None, description="Filter by status"),
    priority: Optional[TaskPriority] = Query(None, description="Filter by priority"),
    assignee_id: Optional[UUID] = Query(None, description="Filter by assignee"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List a project's tasks with optional filtering and pagination.

    - **page**: Page number (starts at 1)
    - **page_size**: Number of items per page (1-100)
    - **status**: Filter by status
    - **priority**: Filter by priority
    - **assignee_id**: Filter by assignee
    """
    project, snapshot = load_project(db, project_id)
    check_permission(can_view_team(snapshot, current_user.id), "You do not have access to this project")

    skip = (page - 1) * page_size
    tasks, total = crud.get_tasks(
        db,
        project_id,
        skip=skip,
        limit=page_size,
        status_filter=status,
        priority_filter=priority,
        assignee_id=assignee_id,
    )

    return schemas.TaskListResponse(
        items=task_list(db, tasks, {project.id: project}),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/assigned/me", response_model=schemas.TaskListResponse)
def list_my_tasks(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    status: Optional[TaskStatus] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """List tasks assigned to the current user across all projects."""
    skip = (page - 1) * page_size
    tasks, total = crud.get_assigned_tasks(db, current_user.id, skip=skip, limit=page_size, status_filter=status)
    projects = crud.get_projects_by_ids(db, [t.project_id for t in tasks])

    return schemas.TaskListResponse(
        items=task_list(db, tasks, projects),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get a specific task by ID."""
    task, project, snapshot = load_task(db, task_id)
    check_permission(can_view_team(snapshot, current_user.id), "You do not have access to this task")
    return task_response(db, task, project)


@router.put("/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: UUID,
    payload: schemas.TaskUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Update task fields. Any team member may update tasks.

    Only fields present in the body are changed; an explicit null for
    assignee_id, description or due_date clears it. A status in the body must
    be a valid transition from the current status.
    """
    task, project, snapshot = load_task(db, task_id)
    check_permission(can_update_task(snapshot, current_user.id), "You must be a team member to update tasks")

    updates = payload.model_dump(exclude_unset=True)
    if "status" in updates:
        validate_transition(task.status, updates["status"])

    assignee = None
    if updates.get("assignee_id") is not None:
        assignee = _check_assignee(db, snapshot, updates["assignee_id"])

    changes = crud.update_task(db, task, updates)
    response = task_response(db, task, project)
    if not changes:
        return response

    task_payload = response.model_dump(mode="json")
    team_id = project.team_id

    background_tasks.add_task(
        recorder.record,
        current_user.id, team_id, ActivityAction.UPDATED, ActivityEntity.TASK, task.id,
        {"changes": changes},
    )
    if "status" in changes:
        background_tasks.add_task(
            recorder.record,
            current_user.id, team_id, ActivityAction.STATUS_CHANGED, ActivityEntity.TASK, task.id,
            {"old_status": changes["status"]["old"], "new_status": changes["status"]["new"]},
        )
    if "assignee_id" in changes:
        action = ActivityAction.ASSIGNED if assignee else ActivityAction.UNASSIGNED
        background_tasks.add_task(
            recorder.record,
            current_user.id, team_id, action, ActivityEntity.TASK, task.id,
            {"old_assignee": changes["assignee_id"]["old"], "new_assignee": changes["assignee_id"]["new"]},
        )

    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.TASK_UPDATED,
        {
            "task": task_payload,
            "team_id": str(team_id),
            "project_id": str(project.id),
            "changes": changes,
            "updated_by": user_payload(current_user),
        },
    )
    if "status" in changes:
        background_tasks.add_task(
            hub.publish,
            RealtimeEvent.TASK_STATUS_CHANGED,
            {
                "task": task_payload,
                "team_id": str(team_id),
                "project_id": str(project.id),
                "old_status": changes["status"]["old"],
                "new_status": changes["status"]["new"],
                "changed_by": user_payload(current_user),
            },
        )
    if "assignee_id" in changes and assignee:
        _schedule_assignment(
            background_tasks, hub, task_payload, team_id, project.id,
            assignee, current_user, _assigned_message(task),
        )

    logger.info(f"Updated task {task.id}: {', '.join(changes)}")
    return response


@router.patch("/{task_id}/status", response_model=schemas.TaskResponse)
def update_task_status(
    task_id: UUID,
    payload: schemas.TaskStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Move a task to another status.

    - **status**: Target status; must be reachable from the current one
    """
    task, project, snapshot = load_task(db, task_id)
    check_permission(can_update_task(snapshot, current_user.id), "You must be a team member to update tasks")

    old_status = TaskStatus(task.status)
    validate_transition(old_status, payload.status)

    crud.update_task(db, task, {"status": payload.status})
    response = task_response(db, task, project)
    team_id = project.team_id

    background_tasks.add_task(
        recorder.record,
        current_user.id, team_id, ActivityAction.STATUS_CHANGED, ActivityEntity.TASK, task.id,
        {"old_status": old_status.value, "new_status": payload.status.value},
    )
    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.TASK_STATUS_CHANGED,
        {
            "task": response.model_dump(mode="json"),
            "team_id": str(team_id),
            "project_id": str(project.id),
            "old_status": old_status.value,
            "new_status": payload.status.value,
            "changed_by": user_payload(current_user),
        },
    )
    logger.info(f"Task {task.id} status: {old_status.value} → {payload.status.value}")
    return response


@router.delete("/{task_id}", response_model=schemas.MessageResponse)
def delete_task(
    task_id: UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """Delete a task. Team admins, the owner or the task's creator only."""
    task, project, snapshot = load_task(db, task_id)
    check_permission(
        can_delete_task(snapshot, current_user.id, task.created_by),
        "Only team admins, owners or the task creator can delete this task",
    )

    task_ref = {"id": str(task.id), "title": task.title}
    team_id = project.team_id
    crud.delete_task(db, task)

    background_tasks.add_task(
        recorder.record,
        current_user.id, team_id, ActivityAction.DELETED, ActivityEntity.TASK, task_id,
        {"title": task_ref["title"]},
    )
    background_tasks.add_task(
        hub.publish,
        RealtimeEvent.TASK_DELETED,
        {
            "task": task_ref,
            "team_id": str(team_id),
            "project_id": str(project.id),
            "deleted_by": user_payload(current_user),
        },
    )
    logger.info(f"Deleted task {task_id}")
    return schemas.MessageResponse(message="Task deleted successfully")
