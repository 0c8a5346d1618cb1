"""Tests for the realtime connection hub."""
import asyncio
from uuid import uuid4

import pytest
from teamtask_core.realtime import (
    RealtimeEvent,
    RealtimeHub,
    build_frame,
    team_room,
    user_room,
)


class FakeWebSocket:
    """Minimal stand-in recording what the hub sends."""

    def __init__(self, fail_on_send: bool = False):
        self.accepted = False
        self.sent: list[dict] = []
        self.fail_on_send = fail_on_send

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_on_send:
            raise RuntimeError("connection closed")
        self.sent.append(data)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def hub():
    return RealtimeHub()


class TestRooms:
    """Test room bookkeeping."""

    def test_connect_binds_personal_room(self, hub):
        user_id = uuid4()
        ws = FakeWebSocket()

        connection = run(hub.connect(ws, user_id))

        assert ws.accepted
        assert connection.rooms == {user_room(user_id)}
        assert hub.room_size(user_room(user_id)) == 1

    def test_join_and_leave_team_room(self, hub):
        team_id = uuid4()
        connection = run(hub.connect(FakeWebSocket(), uuid4()))

        room = hub.join(connection, team_id)
        hub.join(connection, team_id)

        assert room == f"team:{team_id}"
        assert hub.room_size(room) == 1

        hub.leave(connection, team_id)

        assert hub.room_size(room) == 0
        assert room not in connection.rooms

    def test_disconnect_removes_from_every_room(self, hub):
        user_id, team_id = uuid4(), uuid4()
        connection = run(hub.connect(FakeWebSocket(), user_id))
        hub.join(connection, team_id)

        hub.disconnect(connection)

        assert hub.room_size(team_room(team_id)) == 0
        assert hub.room_size(user_room(user_id)) == 0
        assert connection not in hub.connections


class TestDelivery:
    """Test event fan-out."""

    def test_build_frame(self):
        assert build_frame(RealtimeEvent.TASK_CREATED, {"id": "1"}) == {
            "event": "task:created",
            "data": {"id": "1"},
        }

    def test_publish_reaches_team_room_only(self, hub):
        team_id = uuid4()
        in_room, elsewhere = FakeWebSocket(), FakeWebSocket()
        connection = run(hub.connect(in_room, uuid4()))
        hub.join(connection, team_id)
        other = run(hub.connect(elsewhere, uuid4()))
        hub.join(other, uuid4())

        run(hub.publish(RealtimeEvent.PROJECT_CREATED, {"team_id": str(team_id), "name": "Website"}))

        assert in_room.sent == [
            {"event": "project:created", "data": {"team_id": str(team_id), "name": "Website"}}
        ]
        assert elsewhere.sent == []

    def test_personal_copy(self, hub):
        team_id, target = uuid4(), uuid4()
        observer_ws, target_ws = FakeWebSocket(), FakeWebSocket()
        observer = run(hub.connect(observer_ws, uuid4()))
        hub.join(observer, team_id)
        run(hub.connect(target_ws, target))

        payload = {"team_id": str(team_id), "user_id": str(target)}
        run(hub.publish_with_personal(
            RealtimeEvent.MEMBER_REMOVED, payload, target, "You have been removed from Platform"
        ))

        assert observer_ws.sent == [{"event": "member:removed", "data": payload}]
        assert target_ws.sent == [{
            "event": "member:removed",
            "data": {**payload, "is_personal": True, "message": "You have been removed from Platform"},
        }]
        assert "is_personal" not in payload

    def test_user_in_both_rooms_gets_two_frames(self, hub):
        team_id, user_id = uuid4(), uuid4()
        ws = FakeWebSocket()
        connection = run(hub.connect(ws, user_id))
        hub.join(connection, team_id)

        run(hub.publish_with_personal(RealtimeEvent.TASK_ASSIGNED, {"team_id": str(team_id)}, user_id))

        assert len(ws.sent) == 2
        assert "is_personal" not in ws.sent[0]["data"]
        assert ws.sent[1]["data"]["is_personal"] is True

    def test_failed_send_drops_connection(self, hub):
        team_id = uuid4()
        healthy_ws, broken_ws = FakeWebSocket(), FakeWebSocket(fail_on_send=True)
        healthy = run(hub.connect(healthy_ws, uuid4()))
        broken = run(hub.connect(broken_ws, uuid4()))
        hub.join(healthy, team_id)
        hub.join(broken, team_id)

        delivered = run(hub.emit_to_room(team_room(team_id), RealtimeEvent.TEAM_UPDATED, {"team_id": str(team_id)}))

        assert delivered == 1
        assert len(healthy_ws.sent) == 1
        assert broken not in hub.connections
        assert hub.room_size(team_room(team_id)) == 1

    def test_publish_without_team_id_does_not_raise(self, hub):
        run(hub.publish(RealtimeEvent.TASK_UPDATED, {"id": "1"}))

    def test_empty_room(self, hub):
        assert run(hub.emit_to_room(team_room(uuid4()), RealtimeEvent.TASK_DELETED, {})) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
