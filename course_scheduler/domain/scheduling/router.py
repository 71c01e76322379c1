"""Scheduling router - Push channel and read-only REST views"""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session, sessionmaker

from ...auth import Actor, AuthenticationError, get_current_actor, resolve_actor, websocket_token
from ...database import get_db, get_session_factory
from .broadcast import BroadcastCoordinator, ConnectionManager, read_processed_history, read_snapshot
from .commands import dispatch
from .schemas import ScheduleRequestResponse, ScheduleSnapshot

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Scheduling"])

READ_COMMANDS = {
    "request-initial-data": ("initial-data", read_snapshot),
    "request-processed-history": ("processed-history", read_processed_history),
}


# ============================================================================
# REST VIEWS
# ============================================================================


@router.get("/api/schedule", response_model=ScheduleSnapshot)
async def get_schedule(
    _actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Current slots and requests, same shape as the initial-data push"""
    return read_snapshot(db)


@router.get("/api/schedule/history", response_model=list[ScheduleRequestResponse])
async def get_processed_history(
    _actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Approved and rejected requests, most recently processed first"""
    return read_processed_history(db)


# ============================================================================
# PUSH CHANNEL
# ============================================================================


@router.websocket("/ws")
async def schedule_channel(
    websocket: WebSocket,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Bidirectional scheduling channel.

    Frames are JSON objects ``{"event": ..., "data": ..., "ref": ...}``. The
    connection is refused (policy violation) unless it carries a valid token.
    """
    try:
        actor = resolve_actor(websocket_token(websocket))
    except AuthenticationError as e:
        logger.warning(f"🚫 Refusing push connection: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    manager: ConnectionManager = websocket.app.state.connection_manager
    coordinator = BroadcastCoordinator(manager, session_factory)
    connection = await manager.connect(websocket, actor)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            # Binary frames carry no command
            try:
                message = json.loads(frame["text"]) if frame.get("text") is not None else None
            except json.JSONDecodeError:
                message = None
            if not isinstance(message, dict) or not isinstance(message.get("event"), str):
                await manager.send(
                    connection,
                    "command-result",
                    {"event": None, "ok": False, "ref": None, "reason": "invalid", "detail": "Malformed frame"},
                )
                continue

            event = message["event"]
            if event in READ_COMMANDS:
                reply, reader = READ_COMMANDS[event]
                await manager.send(connection, reply, await coordinator.read(reader))
                continue

            outcome = await dispatch(event, message.get("data"), actor, session_factory, message.get("ref"))
            await manager.send(connection, "command-result", outcome.as_ack())
            if outcome.ok:
                await coordinator.publish(outcome.publishes)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(connection.id)
