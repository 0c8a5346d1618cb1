"""Activity audit API endpoints."""
import logging
from datetime import datetime
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import activity, crud, models, schemas
from ...database import get_db
from ...models import ActivityAction, ActivityEntity, to_naive_utc
from ...permissions import can_view_team, check_permission
from ..dependencies import get_current_user, load_team
from ..responses import activity_response

logger = logging.getLogger("teamtask-core.activities")

router = APIRouter(tags=["activities"])


def _page_response(items, total: int, page: int, page_size: int) -> schemas.ActivityListResponse:
    return schemas.ActivityListResponse(
        items=[activity_response(a) for a in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/team/{team_id}", response_model=schemas.ActivityListResponse)
def list_team_activities(
    team_id: UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    entity: Optional[ActivityEntity] = Query(None, description="Filter by entity kind"),
    action: Optional[ActivityAction] = Query(None, description="Filter by action"),
    user_id: Optional[UUID] = Query(None, description="Filter by acting user"),
    start_date: Optional[datetime] = Query(None, description="Only activities at or after this time"),
    end_date: Optional[datetime] = Query(None, description="Only activities at or before this time"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List a team's activity feed, newest first. Team members only.

    - **entity**: task, project, team or user
    - **action**: created, updated, deleted, assigned, unassigned, status_changed,
      member_added, member_removed or role_changed
    - **user_id**: Only activities by this user
    - **start_date** / **end_date**: Time window
    """
    _, snapshot = load_team(db, team_id)
    check_permission(can_view_team(snapshot, current_user.id), "You are not a member of this team")

    skip = (page - 1) * page_size
    items, total = activity.get_team_activities(
        db,
        team_id,
        skip=skip,
        limit=page_size,
        entity=entity,
        action=action,
        user_id=user_id,
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
    )
    return _page_response(items, total, page, page_size)


@router.get("/team/{team_id}/stats", response_model=schemas.ActivityStatsResponse)
def get_team_activity_stats(
    team_id: UUID,
    days: int = Query(30, ge=1, le=365, description="Trailing window in days"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Activity counts grouped by (entity, action) over the last `days` days. Team members only."""
    _, snapshot = load_team(db, team_id)
    check_permission(can_view_team(snapshot, current_user.id), "You are not a member of this team")

    stats = activity.get_team_activity_stats(db, team_id, days=days)
    return schemas.ActivityStatsResponse(
        team_id=team_id,
        days=days,
        stats=[schemas.ActivityStat(**row) for row in stats],
    )


@router.get("/entity/{entity_id}", response_model=schemas.ActivityListResponse)
def list_entity_activities(
    entity_id: UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    History of one task, project, team or user.

    Only records from teams the caller belongs to are returned. An entity
    whose history lies entirely in other teams is forbidden; an entity without
    history returns an empty list.
    """
    skip = (page - 1) * page_size
    visible_team_ids = [team.id for team in crud.get_user_teams(db, current_user.id)]
    items, total = activity.get_entity_activities(
        db, entity_id, skip=skip, limit=page_size, team_ids=visible_team_ids
    )
    if total == 0:
        check_permission(
            not activity.has_entity_activities(db, entity_id),
            "You do not have access to this entity",
        )

    return _page_response(items, total, page, page_size)


@router.get("/me", response_model=schemas.ActivityListResponse)
def list_my_activities(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Activities performed by the current user across all teams."""
    skip = (page - 1) * page_size
    items, total = activity.get_user_activities(db, current_user.id, skip=skip, limit=page_size)
    return _page_response(items, total, page, page_size)
