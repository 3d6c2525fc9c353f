"""
Realtime WebSocket endpoint.

- WS /ws: one connection per client, JSON text frames
  ``{"type": ..., "data": ..., "requestId": ...}``

Supported frame types:
- ping → pong
- join-session → session-joined | session-error (to the sender only)
- send-message → persist, then message-sent to the sender and
  receive-message to every other connection; message-error on failure
- create-project → persist, then project-created to every connection
"""

from __future__ import annotations

from typing import Awaitable, Callable

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError
from sqlalchemy.exc import SQLAlchemyError

from app.core.database import get_session_context
from app.core.errors import ChatError, PersistenceError, ValidationError
from app.core.hub import ConnectionInfo, hub
from app.services import messages as message_service
from app.services import projects as project_service
from teamchat_shared.schemas.events import ErrorPayload, EventType, Frame, SessionJoin
from teamchat_shared.schemas.messages import MessageCreate
from teamchat_shared.schemas.projects import ProjectCreate

router = APIRouter()
log = structlog.get_logger()

FrameHandler = Callable[[ConnectionInfo, Frame], Awaitable[None]]


def _error_payload(exc: Exception) -> ErrorPayload:
    if isinstance(exc, ChatError):
        return ErrorPayload(code=exc.code, message=exc.message)
    return ErrorPayload(code=PersistenceError.code, message="Store operation failed")


async def _send_error(
    info: ConnectionInfo, code: str, message: str, request_id: str | None = None
) -> None:
    await hub.send(info, EventType.ERROR, ErrorPayload(code=code, message=message), request_id)


# --- Frame handlers ---


async def _on_ping(info: ConnectionInfo, frame: Frame) -> None:
    await hub.send(info, EventType.PONG, None, frame.request_id)


async def _on_join_session(info: ConnectionInfo, frame: Frame) -> None:
    # Older clients send the bare session id
    data = {"sessionId": frame.data} if isinstance(frame.data, str) else frame.data
    try:
        session_id = SessionJoin.model_validate(data).session_id
    except PayloadError:
        await _send_error(info, ValidationError.code, "sessionId is required.", frame.request_id)
        return

    if hub.join_session(info, session_id):
        await hub.send(info, EventType.SESSION_JOINED, {"sessionId": session_id}, frame.request_id)
    else:
        await hub.send(
            info,
            EventType.SESSION_ERROR,
            {"sessionId": session_id, "error": "Unknown session"},
            frame.request_id,
        )


async def _on_send_message(info: ConnectionInfo, frame: Frame) -> None:
    try:
        body = MessageCreate.model_validate(frame.data)
    except PayloadError:
        await hub.send(
            info,
            EventType.MESSAGE_ERROR,
            ErrorPayload(code=ValidationError.code, message="Invalid message payload."),
            frame.request_id,
        )
        return

    async with hub.ordered():
        try:
            async with get_session_context() as session:
                message = await message_service.create_message(session, body)
        except (ChatError, SQLAlchemyError) as exc:
            log.warning(
                "realtime.send_failed",
                connection_id=info.connection_id,
                error=str(exc),
            )
            await hub.send(info, EventType.MESSAGE_ERROR, _error_payload(exc), frame.request_id)
            return

        payload = message_service.to_message_read(message)
        await hub.send(info, EventType.MESSAGE_SENT, payload, frame.request_id)
        await hub.broadcast(EventType.RECEIVE_MESSAGE, payload, exclude=info)


async def _on_create_project(info: ConnectionInfo, frame: Frame) -> None:
    try:
        body = ProjectCreate.model_validate(frame.data)
    except PayloadError:
        await _send_error(info, ValidationError.code, "Invalid project payload.", frame.request_id)
        return

    async with hub.ordered():
        try:
            async with get_session_context() as session:
                project = await project_service.create_project(session, body)
        except (ChatError, SQLAlchemyError) as exc:
            log.warning(
                "realtime.create_project_failed",
                connection_id=info.connection_id,
                error=str(exc),
            )
            error = _error_payload(exc)
            await _send_error(info, error.code, error.message, frame.request_id)
            return

        await hub.broadcast(EventType.PROJECT_CREATED, project_service.to_project_read(project))


_HANDLERS: dict[str, FrameHandler] = {
    EventType.PING.value: _on_ping,
    EventType.JOIN_SESSION.value: _on_join_session,
    EventType.SEND_MESSAGE.value: _on_send_message,
    EventType.CREATE_PROJECT.value: _on_create_project,
}


async def handle_frame(info: ConnectionInfo, raw: str) -> None:
    """Parse one text frame and dispatch it to its handler."""
    try:
        frame = Frame.model_validate_json(raw)
    except PayloadError:
        await _send_error(info, "INVALID_FRAME", "Could not parse frame as JSON.")
        return

    handler = _HANDLERS.get(frame.type)
    if handler is None:
        await _send_error(info, "UNKNOWN_EVENT", f"Unknown event type: {frame.type}", frame.request_id)
        return
    await handler(info, frame)


# --- WebSocket Endpoint ---


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    conn_info = await hub.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            await handle_frame(conn_info, data)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        log.error("realtime.connection_error", connection_id=conn_info.connection_id, error=str(exc))
    finally:
        await hub.disconnect(conn_info)
