"""Realtime fan-out over WebSocket connections.

Every connection belongs to exactly one personal room ``user:{user_id}`` for its
lifetime, bound when the connection is accepted, and to any number of team
rooms ``team:{team_id}`` joined and left explicitly. Team room membership is
checked by the socket endpoint on every join request.

Frames are JSON objects ``{"event": <name>, "data": <payload>}``. Events that
directly affect one user are delivered twice: once to the team room and once
to that user's personal room with ``is_personal: true`` and a message.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID, uuid4

from fastapi import WebSocket

logger = logging.getLogger("teamtask-core.realtime")


class RealtimeEvent(str, enum.Enum):
    """Event names used on the wire."""

    # Client → server
    TEAM_JOIN = "team:join"
    TEAM_LEAVE = "team:leave"

    # Server → client acknowledgements
    TEAM_JOINED = "team:joined"
    TEAM_LEFT = "team:left"
    ERROR = "error"

    # Domain events
    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"
    TASK_STATUS_CHANGED = "task:status_changed"
    TASK_ASSIGNED = "task:assigned"
    MEMBER_JOINED = "member:joined"
    MEMBER_REMOVED = "member:removed"
    MEMBER_ROLE_UPDATED = "member:role_updated"
    MEMBER_LEFT = "member:left"
    PROJECT_CREATED = "project:created"
    PROJECT_UPDATED = "project:updated"
    PROJECT_DELETED = "project:deleted"
    TEAM_UPDATED = "team:updated"
    TEAM_DELETED = "team:deleted"


def team_room(team_id: Any) -> str:
    return f"team:{team_id}"


def user_room(user_id: Any) -> str:
    return f"user:{user_id}"


def build_frame(event: Any, data: dict[str, Any]) -> dict[str, Any]:
    name = event.value if isinstance(event, enum.Enum) else event
    return {"event": name, "data": data}


@dataclass(eq=False)
class Connection:
    """One accepted socket and the rooms it is in."""

    websocket: WebSocket
    user_id: UUID
    id: UUID = field(default_factory=uuid4)
    rooms: set[str] = field(default_factory=set)

    async def send(self, event: Any, data: dict[str, Any]) -> None:
        await self.websocket.send_json(build_frame(event, data))


class RealtimeHub:
    """
    Registry of live connections grouped by room.

    Created once per application and shared by every request handler that
    emits events. All methods run on the event loop; no locking is needed.
    """

    def __init__(self):
        self.rooms: dict[str, list[Connection]] = {}
        self.connections: list[Connection] = []

    # Connection lifecycle

    async def connect(self, websocket: WebSocket, user_id: UUID) -> Connection:
        """Accept an authenticated socket and bind it to its personal room."""
        await websocket.accept()
        connection = Connection(websocket=websocket, user_id=user_id)
        self.connections.append(connection)
        self._add_to_room(user_room(user_id), connection)
        logger.info(f"User {user_id} connected ({len(self.connections)} open connections)")
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Forget a connection and remove it from every room."""
        for room in list(connection.rooms):
            self._remove_from_room(room, connection)
        if connection in self.connections:
            self.connections.remove(connection)
            logger.info(f"User {connection.user_id} disconnected")

    def join(self, connection: Connection, team_id: Any) -> str:
        """Add a connection to a team room. Membership must already be checked."""
        room = team_room(team_id)
        self._add_to_room(room, connection)
        logger.debug(f"User {connection.user_id} joined {room}")
        return room

    def leave(self, connection: Connection, team_id: Any) -> str:
        room = team_room(team_id)
        self._remove_from_room(room, connection)
        logger.debug(f"User {connection.user_id} left {room}")
        return room

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, []))

    def _add_to_room(self, room: str, connection: Connection) -> None:
        members = self.rooms.setdefault(room, [])
        if connection not in members:
            members.append(connection)
        connection.rooms.add(room)

    def _remove_from_room(self, room: str, connection: Connection) -> None:
        members = self.rooms.get(room, [])
        if connection in members:
            members.remove(connection)
        if not members and room in self.rooms:
            del self.rooms[room]
        connection.rooms.discard(room)

    # Delivery

    async def emit_to_room(self, room: str, event: Any, data: dict[str, Any]) -> int:
        """
        Send one frame to every connection in a room.

        A connection that fails to receive is dropped from the hub.

        Returns:
            Number of connections the frame was delivered to
        """
        frame = build_frame(event, data)
        delivered = 0
        for connection in list(self.rooms.get(room, [])):
            try:
                await connection.websocket.send_json(frame)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping connection of user {connection.user_id} after failed send: {e}")
                self.disconnect(connection)
        logger.info(f"Emitted {frame['event']} to {room} ({delivered} connections)")
        return delivered

    async def publish(self, event: Any, payload: dict[str, Any]) -> None:
        """
        Broadcast a domain event to the room of ``payload["team_id"]``.

        Never raises; failures are logged.
        """
        try:
            await self.emit_to_room(team_room(payload["team_id"]), event, payload)
        except Exception as e:
            logger.error(f"Failed to emit {event}: {e}", exc_info=True)

    async def publish_with_personal(
        self,
        event: Any,
        payload: dict[str, Any],
        user_id: Any,
        message: Optional[str] = None,
    ) -> None:
        """
        Broadcast to the team room and send a personal copy to one user.

        The personal copy carries ``is_personal: true`` and ``message``.
        Never raises; failures are logged.
        """
        await self.publish(event, payload)
        try:
            personal = {**payload, "is_personal": True}
            if message is not None:
                personal["message"] = message
            await self.emit_to_room(user_room(user_id), event, personal)
        except Exception as e:
            logger.error(f"Failed to emit personal {event} to user {user_id}: {e}", exc_info=True)
