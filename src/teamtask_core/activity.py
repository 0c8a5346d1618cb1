"""Activity audit log: recording, queries and retention.

Recording is best-effort. ``ActivityRecorder.record`` runs in its own session
after the primary mutation has been committed and never raises: a failure is
logged and the mutation it documents still stands.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, sessionmaker

from . import models
from .models import ActivityAction, ActivityEntity, utcnow

logger = logging.getLogger("teamtask-core.activity")


class ActivityRecorder:
    """Appends immutable activity records using a dedicated session per record."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(
        self,
        user_id: UUID,
        team_id: UUID,
        action: ActivityAction,
        entity: ActivityEntity,
        entity_id: UUID,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[models.Activity]:
        """
        Append one activity record.

        Args:
            user_id: Acting user
            team_id: Team the entity belongs to
            action: What happened
            entity: Kind of entity affected
            entity_id: ID of the affected entity
            metadata: Action-specific details (must be JSON-serializable)

        Returns:
            The stored activity, or None if recording failed
        """
        db = self.session_factory()
        try:
            activity = models.Activity(
                user_id=user_id,
                team_id=team_id,
                action=action,
                entity=entity,
                entity_id=entity_id,
                details=metadata or {},
                timestamp=utcnow(),
            )
            db.add(activity)
            db.commit()
            db.refresh(activity)
            db.expunge(activity)
            logger.info(
                f"Activity logged: {ActivityEntity(entity).value} {ActivityAction(action).value} by user {user_id}"
            )
            return activity
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to log activity {entity} {action} for {entity_id}: {e}", exc_info=True)
            return None
        finally:
            db.close()


def _base_query(db: Session):
    return db.query(models.Activity).options(joinedload(models.Activity.user))


def _page(query, skip: int, limit: int) -> tuple[list[models.Activity], int]:
    total = query.count()
    items = (
        query.order_by(models.Activity.timestamp.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return items, total


def get_team_activities(
    db: Session,
    team_id: UUID,
    skip: int = 0,
    limit: int = 50,
    entity: Optional[ActivityEntity] = None,
    action: Optional[ActivityAction] = None,
    user_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> tuple[list[models.Activity], int]:
    """
    List a team's activities, newest first.

    Args:
        db: Database session
        team_id: Team to list
        skip: Number of records to skip
        limit: Maximum number of records to return
        entity: Only this entity kind
        action: Only this action
        user_id: Only records by this actor
        start_date: Only records at or after this time
        end_date: Only records at or before this time

    Returns:
        Tuple of (activities, total matching count)
    """
    query = _base_query(db).filter(models.Activity.team_id == team_id)

    if entity:
        query = query.filter(models.Activity.entity == entity)
    if action:
        query = query.filter(models.Activity.action == action)
    if user_id:
        query = query.filter(models.Activity.user_id == user_id)
    if start_date:
        query = query.filter(models.Activity.timestamp >= start_date)
    if end_date:
        query = query.filter(models.Activity.timestamp <= end_date)

    return _page(query, skip, limit)


def get_entity_activities(
    db: Session,
    entity_id: UUID,
    skip: int = 0,
    limit: int = 50,
    team_ids: Optional[Iterable[UUID]] = None,
) -> tuple[list[models.Activity], int]:
    """
    List activities for one task, project, team or user, newest first.

    Args:
        db: Database session
        entity_id: Entity to list
        skip: Number of records to skip
        limit: Maximum number of records to return
        team_ids: Only records belonging to these teams (default: all teams)

    Returns:
        Tuple of (activities, total matching count)
    """
    query = _base_query(db).filter(models.Activity.entity_id == entity_id)
    if team_ids is not None:
        query = query.filter(models.Activity.team_id.in_(list(team_ids)))
    return _page(query, skip, limit)


def has_entity_activities(db: Session, entity_id: UUID) -> bool:
    """Whether any team has recorded history for the entity."""
    query = db.query(models.Activity.id).filter(models.Activity.entity_id == entity_id)
    return db.query(query.exists()).scalar()


def get_user_activities(
    db: Session,
    user_id: UUID,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[models.Activity], int]:
    """List activities performed by a user across all teams, newest first."""
    query = _base_query(db).filter(models.Activity.user_id == user_id)
    return _page(query, skip, limit)


def get_team_activity_stats(db: Session, team_id: UUID, days: int = 30) -> list[dict[str, Any]]:
    """
    Count a team's activities grouped by (entity, action) over the last ``days`` days.

    Returns:
        List of ``{"entity", "action", "count"}`` sorted by count descending
    """
    since = utcnow() - timedelta(days=days)
    count = func.count(models.Activity.id)
    rows = (
        db.query(models.Activity.entity, models.Activity.action, count)
        .filter(
            models.Activity.team_id == team_id,
            models.Activity.timestamp >= since,
        )
        .group_by(models.Activity.entity, models.Activity.action)
        .order_by(count.desc())
        .all()
    )
    return [
        {"entity": entity, "action": action, "count": total}
        for entity, action, total in rows
    ]


def delete_team_activities(db: Session, team_id: UUID) -> int:
    """
    Delete every activity belonging to a team. Does not commit.

    Returns:
        Number of records deleted
    """
    deleted = (
        db.query(models.Activity)
        .filter(models.Activity.team_id == team_id)
        .delete(synchronize_session=False)
    )
    logger.info(f"Deleted {deleted} activities for team {team_id}")
    return deleted


def purge_expired_activities(db: Session, retention_days: int) -> int:
    """
    Delete activities older than the retention window and commit.

    Returns:
        Number of records deleted
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = (
        db.query(models.Activity)
        .filter(models.Activity.timestamp < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info(f"Purged {deleted} activities older than {retention_days} days")
    return deleted
