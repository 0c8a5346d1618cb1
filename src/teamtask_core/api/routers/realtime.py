"""WebSocket endpoint for realtime team events.

Clients connect to ``/ws?token=<access token>`` (or send the token as a bearer
``Authorization`` header). Connections without a valid token are closed with a
policy-violation code before they are accepted.

Client frames:
    {"event": "team:join", "data": {"team_id": "..."}}
    {"event": "team:leave", "data": {"team_id": "..."}}
"""
import json
import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from ... import crud, models
from ...errors import DomainError
from ...permissions import TeamSnapshot, is_member
from ...realtime import Connection, RealtimeEvent, RealtimeHub
from ..dependencies import authenticate_token

logger = logging.getLogger("teamtask-core.realtime")

router = APIRouter(tags=["realtime"])


def _bearer_token(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def _authenticate(websocket: WebSocket, token: Optional[str]) -> Optional[models.User]:
    """Resolve the connecting user, or None if the credentials are not acceptable."""
    app_state = websocket.app.state
    db = app_state.session_factory()
    try:
        user = authenticate_token(db, app_state.settings, token)
        db.expunge(user)
        return user
    except DomainError as e:
        logger.warning(f"Rejected socket connection: {e.message}")
        return None
    finally:
        db.close()


def _can_join(websocket: WebSocket, team_id: UUID, user_id: UUID) -> Optional[str]:
    """
    Check a join request against freshly loaded team state.

    Returns:
        None if the user may join, otherwise the reason for refusal
    """
    db = websocket.app.state.session_factory()
    try:
        team = crud.get_team(db, team_id)
        if not team:
            return "Team not found"
        if not is_member(TeamSnapshot.from_model(team), user_id):
            return "You are not a member of this team"
        return None
    finally:
        db.close()


def _parse_team_id(data: Any) -> Optional[UUID]:
    if not isinstance(data, dict):
        return None
    try:
        return UUID(str(data.get("team_id")))
    except ValueError:
        return None


async def _handle_frame(websocket: WebSocket, hub: RealtimeHub, connection: Connection, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        await connection.send(RealtimeEvent.ERROR, {"message": "Invalid JSON"})
        return

    event = frame.get("event") if isinstance(frame, dict) else None
    team_id = _parse_team_id(frame.get("data") if isinstance(frame, dict) else None)

    if event == RealtimeEvent.TEAM_JOIN.value:
        if team_id is None:
            await connection.send(RealtimeEvent.ERROR, {"message": "A valid team_id is required"})
            return
        reason = await run_in_threadpool(_can_join, websocket, team_id, connection.user_id)
        if reason:
            logger.warning(f"User {connection.user_id} refused from team:{team_id}: {reason}")
            await connection.send(RealtimeEvent.ERROR, {"message": reason, "team_id": str(team_id)})
            return
        room = hub.join(connection, team_id)
        await connection.send(RealtimeEvent.TEAM_JOINED, {"team_id": str(team_id), "room": room})

    elif event == RealtimeEvent.TEAM_LEAVE.value:
        if team_id is None:
            await connection.send(RealtimeEvent.ERROR, {"message": "A valid team_id is required"})
            return
        room = hub.leave(connection, team_id)
        await connection.send(RealtimeEvent.TEAM_LEFT, {"team_id": str(team_id), "room": room})

    else:
        await connection.send(RealtimeEvent.ERROR, {"message": f"Unknown event: {event}"})


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Authenticated event stream with explicit team room subscriptions."""
    hub: RealtimeHub = websocket.app.state.realtime_hub

    user = await run_in_threadpool(_authenticate, websocket, token or _bearer_token(websocket))
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connection = await hub.connect(websocket, user.id)
    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_frame(websocket, hub, connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection)
