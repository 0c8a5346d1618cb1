"""Tests for activity recording, queries and retention."""
from datetime import timedelta
from uuid import uuid4

import pytest
from teamtask_core import activity, models
from teamtask_core.activity import ActivityRecorder
from teamtask_core.models import ActivityAction, ActivityEntity, utcnow


@pytest.fixture
def user(db_session):
    user = models.User(name="Alice", email="alice@example.com", is_verified=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def other_user(db_session):
    user = models.User(name="Bob", email="bob@example.com", is_verified=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def recorder(session_factory):
    return ActivityRecorder(session_factory)


def _insert(db_session, user_id, team_id, action, entity, entity_id=None, age=timedelta(0)):
    record = models.Activity(
        user_id=user_id,
        team_id=team_id,
        action=action,
        entity=entity,
        entity_id=entity_id or uuid4(),
        details={},
        timestamp=utcnow() - age,
    )
    db_session.add(record)
    db_session.commit()
    return record


class TestActivityRecorder:
    """Test best-effort recording."""

    def test_record_returns_stored_activity(self, recorder, user, db_session):
        team_id, task_id = uuid4(), uuid4()

        record = recorder.record(
            user.id,
            team_id,
            ActivityAction.CREATED,
            ActivityEntity.TASK,
            task_id,
            {"title": "Write docs"},
        )

        assert record is not None
        assert record.entity_id == task_id
        assert record.details == {"title": "Write docs"}

        stored = db_session.query(models.Activity).one()
        assert stored.team_id == team_id
        assert stored.action == ActivityAction.CREATED
        assert stored.entity == ActivityEntity.TASK

    def test_metadata_defaults_to_empty_dict(self, recorder, user):
        record = recorder.record(user.id, uuid4(), ActivityAction.DELETED, ActivityEntity.PROJECT, uuid4())

        assert record.details == {}

    def test_failure_is_absorbed(self, recorder, user, db_session):
        """Test that a failing record returns None instead of raising."""
        record = recorder.record(
            user.id,
            uuid4(),
            ActivityAction.UPDATED,
            ActivityEntity.TASK,
            uuid4(),
            {"unserializable": object()},
        )

        assert record is None
        assert db_session.query(models.Activity).count() == 0


class TestActivityQueries:
    """Test listing and filtering."""

    def test_team_activities_newest_first(self, db_session, user):
        team_id = uuid4()
        old = _insert(db_session, user.id, team_id, ActivityAction.CREATED, ActivityEntity.TASK, age=timedelta(hours=2))
        new = _insert(db_session, user.id, team_id, ActivityAction.UPDATED, ActivityEntity.TASK)
        _insert(db_session, user.id, uuid4(), ActivityAction.CREATED, ActivityEntity.TASK)

        items, total = activity.get_team_activities(db_session, team_id)

        assert total == 2
        assert [a.id for a in items] == [new.id, old.id]
        assert items[0].user.name == "Alice"

    def test_team_activity_filters(self, db_session, user, other_user):
        team_id = uuid4()
        _insert(db_session, user.id, team_id, ActivityAction.CREATED, ActivityEntity.TASK)
        _insert(db_session, user.id, team_id, ActivityAction.CREATED, ActivityEntity.PROJECT)
        _insert(db_session, other_user.id, team_id, ActivityAction.UPDATED, ActivityEntity.TASK)
        _insert(db_session, user.id, team_id, ActivityAction.DELETED, ActivityEntity.TASK, age=timedelta(days=3))

        _, total = activity.get_team_activities(db_session, team_id, entity=ActivityEntity.TASK)
        assert total == 3

        _, total = activity.get_team_activities(db_session, team_id, action=ActivityAction.CREATED)
        assert total == 2

        _, total = activity.get_team_activities(db_session, team_id, user_id=other_user.id)
        assert total == 1

        _, total = activity.get_team_activities(
            db_session, team_id, start_date=utcnow() - timedelta(days=1)
        )
        assert total == 3

        _, total = activity.get_team_activities(
            db_session, team_id, end_date=utcnow() - timedelta(days=1)
        )
        assert total == 1

    def test_pagination(self, db_session, user):
        team_id = uuid4()
        for minutes in range(5):
            _insert(db_session, user.id, team_id, ActivityAction.UPDATED, ActivityEntity.TASK,
                    age=timedelta(minutes=minutes))

        items, total = activity.get_team_activities(db_session, team_id, skip=2, limit=2)

        assert total == 5
        assert len(items) == 2

    def test_entity_and_user_activities(self, db_session, user, other_user):
        task_id = uuid4()
        _insert(db_session, user.id, uuid4(), ActivityAction.CREATED, ActivityEntity.TASK, entity_id=task_id)
        _insert(db_session, other_user.id, uuid4(), ActivityAction.UPDATED, ActivityEntity.TASK, entity_id=task_id)
        _insert(db_session, user.id, uuid4(), ActivityAction.CREATED, ActivityEntity.PROJECT)

        _, entity_total = activity.get_entity_activities(db_session, task_id)
        _, user_total = activity.get_user_activities(db_session, user.id)

        assert entity_total == 2
        assert user_total == 2

    def test_team_stats(self, db_session, user):
        team_id = uuid4()
        for _ in range(3):
            _insert(db_session, user.id, team_id, ActivityAction.UPDATED, ActivityEntity.TASK)
        _insert(db_session, user.id, team_id, ActivityAction.CREATED, ActivityEntity.PROJECT)
        _insert(db_session, user.id, team_id, ActivityAction.CREATED, ActivityEntity.TASK, age=timedelta(days=40))

        stats = activity.get_team_activity_stats(db_session, team_id, days=30)

        assert stats[0] == {"entity": ActivityEntity.TASK, "action": ActivityAction.UPDATED, "count": 3}
        assert len(stats) == 2
        assert sum(s["count"] for s in stats) == 4


class TestActivityRetention:
    """Test deletion and purge."""

    def test_delete_team_activities(self, db_session, user):
        team_id, other_team_id = uuid4(), uuid4()
        _insert(db_session, user.id, team_id, ActivityAction.CREATED, ActivityEntity.TEAM)
        _insert(db_session, user.id, team_id, ActivityAction.UPDATED, ActivityEntity.TEAM)
        _insert(db_session, user.id, other_team_id, ActivityAction.CREATED, ActivityEntity.TEAM)

        deleted = activity.delete_team_activities(db_session, team_id)
        db_session.commit()

        assert deleted == 2
        assert db_session.query(models.Activity).count() == 1

    def test_purge_expired_activities(self, db_session, user):
        team_id = uuid4()
        _insert(db_session, user.id, team_id, ActivityAction.CREATED, ActivityEntity.TASK, age=timedelta(days=91))
        _insert(db_session, user.id, team_id, ActivityAction.UPDATED, ActivityEntity.TASK, age=timedelta(days=89))

        deleted = activity.purge_expired_activities(db_session, retention_days=90)

        assert deleted == 1
        assert db_session.query(models.Activity).count() == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
