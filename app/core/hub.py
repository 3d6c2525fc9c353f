"""
Realtime hub: WebSocket connection registry and broadcast bus.

Features:
- One WS connection per client, every event delivered to every connection
- Opaque per-connection ids
- Invite-session groups with an explicit lifecycle
  (created on invite, joined, pruned on disconnect, discarded by TTL)
- Hub-wide mutation lock so broadcast order equals store commit order
- Dead connections are dropped during fan-out
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from fastapi import WebSocket

from teamchat_shared.schemas.events import EventType, encode_frame

log = structlog.get_logger()

# A peer that stops reading must not stall the mutation lock
SEND_TIMEOUT_SECONDS = 5.0


class ConnectionInfo:
    """Tracks a single WebSocket connection's metadata."""

    __slots__ = ("websocket", "connection_id", "sessions", "connected_at")

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.sessions: set[str] = set()  # invite sessions this connection joined
        self.connected_at = datetime.now(timezone.utc)


@dataclass
class InviteSession:
    session_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    participants: set[str] = field(default_factory=set)


class RealtimeHub:
    """
    Single fan-out point for all connected clients.

    Connections and invite sessions live in memory and are owned by the hub.
    Every store mutation that is followed by a broadcast runs inside
    ``ordered()``, which serializes persist + broadcast across connections.
    The next mutation therefore waits for the previous fan-out. Each
    ``send_text`` is bounded by ``send_timeout``; a connection that misses it
    is treated as dead and dropped.
    """

    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS) -> None:
        self._send_timeout = send_timeout
        self._connections: dict[str, ConnectionInfo] = {}
        self._sessions: dict[str, InviteSession] = {}
        self._mutation_lock = asyncio.Lock()
        self._broadcast_lock = asyncio.Lock()

    @property
    def connections(self) -> dict[str, ConnectionInfo]:
        return self._connections

    @property
    def sessions(self) -> dict[str, InviteSession]:
        return self._sessions

    def reset(self) -> None:
        """Forget every connection and session (tests, shutdown)."""
        self._connections.clear()
        self._sessions.clear()
        self._mutation_lock = asyncio.Lock()
        self._broadcast_lock = asyncio.Lock()

    def ordered(self) -> asyncio.Lock:
        """Lock held around persist + broadcast of one mutation."""
        return self._mutation_lock

    # --- Connections ---

    async def connect(self, websocket: WebSocket) -> ConnectionInfo:
        """Accept a WebSocket connection, register it and greet it with its id."""
        await websocket.accept()
        info = ConnectionInfo(websocket, uuid.uuid4().hex)
        self._connections[info.connection_id] = info
        log.info("hub.connected", connection_id=info.connection_id, total=len(self._connections))
        await self.send(info, EventType.CONNECTED, {"connectionId": info.connection_id})
        return info

    async def disconnect(self, info: ConnectionInfo) -> None:
        """Remove a connection and prune it from every session group."""
        if self._connections.pop(info.connection_id, None) is None:
            return
        for session_id in list(info.sessions):
            session = self._sessions.get(session_id)
            if session:
                session.participants.discard(info.connection_id)
        info.sessions.clear()
        log.info("hub.disconnected", connection_id=info.connection_id, total=len(self._connections))

    # --- Invite sessions ---

    def create_session(self) -> str:
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = InviteSession(session_id)
        log.info("hub.session_created", session_id=session_id)
        return session_id

    def join_session(self, info: ConnectionInfo, session_id: str) -> bool:
        """Add a connection to a session group. Returns False for unknown sessions."""
        session = self._sessions.get(session_id)
        if session is None:
            log.warning("hub.session_unknown", connection_id=info.connection_id, session_id=session_id)
            return False
        session.participants.add(info.connection_id)
        info.sessions.add(session_id)
        log.info("hub.session_joined", connection_id=info.connection_id, session_id=session_id)
        return True

    def discard_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        for connection_id in session.participants:
            conn = self._connections.get(connection_id)
            if conn:
                conn.sessions.discard(session_id)
        return True

    def prune_sessions(self, max_age: timedelta, now: datetime | None = None) -> int:
        """Discard sessions without participants that are older than ``max_age``."""
        now = now or datetime.now(timezone.utc)
        expired = [
            s.session_id
            for s in self._sessions.values()
            if not s.participants and now - s.created_at > max_age
        ]
        for session_id in expired:
            self.discard_session(session_id)
        if expired:
            log.info("hub.sessions_pruned", count=len(expired))
        return len(expired)

    # --- Delivery ---

    async def send(
        self,
        info: ConnectionInfo,
        event_type: EventType | str,
        data: Any = None,
        request_id: str | None = None,
    ) -> bool:
        """Send one frame to one connection. Returns False if it is dead."""
        msg_text = json.dumps(encode_frame(event_type, data, request_id))
        try:
            await asyncio.wait_for(info.websocket.send_text(msg_text), self._send_timeout)
        except asyncio.TimeoutError:
            log.warning("hub.send_timeout", connection_id=info.connection_id, timeout=self._send_timeout)
            await self.disconnect(info)
            return False
        except Exception as exc:
            log.warning("hub.send_failed", connection_id=info.connection_id, error=str(exc))
            await self.disconnect(info)
            return False
        return True

    async def broadcast(
        self,
        event_type: EventType | str,
        data: Any = None,
        exclude: ConnectionInfo | None = None,
    ) -> int:
        """
        Deliver an event to every connection except ``exclude``.

        Fan-out of one event completes before the next one starts.
        Returns the number of connections reached.
        """
        msg_text = json.dumps(encode_frame(event_type, data))
        delivered = 0

        async with self._broadcast_lock:
            dead_connections = []
            for conn_info in list(self._connections.values()):
                if exclude is not None and conn_info.connection_id == exclude.connection_id:
                    continue
                try:
                    await asyncio.wait_for(conn_info.websocket.send_text(msg_text), self._send_timeout)
                    delivered += 1
                except asyncio.TimeoutError:
                    log.warning(
                        "hub.send_timeout", connection_id=conn_info.connection_id, timeout=self._send_timeout
                    )
                    dead_connections.append(conn_info)
                except Exception:
                    dead_connections.append(conn_info)

        for dead in dead_connections:
            await self.disconnect(dead)

        log.debug("hub.broadcast", event_type=getattr(event_type, "value", event_type), delivered=delivered)
        return delivered


# Singleton
hub = RealtimeHub()
