"""
Test helpers: fake hub connections that record what they receive.
"""

import json
from unittest.mock import AsyncMock

from app.core.hub import ConnectionInfo, hub


def attach_listener(connection_id: str = "listener") -> ConnectionInfo:
    """Register a fake WebSocket connection with the hub singleton."""
    info = ConnectionInfo(AsyncMock(), connection_id)
    hub.connections[info.connection_id] = info
    return info


def sent_frames(info: ConnectionInfo) -> list[dict]:
    return [json.loads(call.args[0]) for call in info.websocket.send_text.call_args_list]


def sent_types(info: ConnectionInfo) -> list[str]:
    return [frame["type"] for frame in sent_frames(info)]
