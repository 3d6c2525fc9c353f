from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .common import CamelModel


class EventType(str, Enum):
    # client -> hub
    PING = "ping"
    JOIN_SESSION = "join-session"
    SEND_MESSAGE = "send-message"
    CREATE_PROJECT = "create-project"

    # hub -> clients
    CONNECTED = "connected"
    PONG = "pong"
    SESSION_JOINED = "session-joined"
    SESSION_ERROR = "session-error"
    MESSAGE_SENT = "message-sent"
    MESSAGE_ERROR = "message-error"
    RECEIVE_MESSAGE = "receive-message"
    MESSAGE_DELETED = "message-deleted"
    PROJECT_CREATED = "project-created"
    PROJECT_DELETED = "project-deleted"
    CHANNEL_CREATED = "channel-created"
    CHANNEL_DELETED = "channel-deleted"
    ERROR = "error"


class Frame(CamelModel):
    """Envelope of every realtime text frame."""

    type: str
    data: Any = None
    request_id: Optional[str] = None


class SessionJoin(CamelModel):
    """Payload of join-session."""

    session_id: str = Field(min_length=1)


class ErrorPayload(CamelModel):
    code: str
    message: str


def encode_frame(
    event_type: EventType | str,
    data: Any = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Build the JSON-ready envelope for an event."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [
            item.model_dump(mode="json", by_alias=True) if isinstance(item, BaseModel) else item
            for item in data
        ]
    frame: dict[str, Any] = {
        "type": event_type.value if isinstance(event_type, EventType) else event_type,
        "data": data,
    }
    if request_id is not None:
        frame["requestId"] = request_id
    return frame
