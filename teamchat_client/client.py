"""
TeamChat client: REST for snapshots and mutations, WebSocket for live events.

Keeps a StateReconciler in sync with the server:
- ``sync()`` and ``switch_channel()`` replace state from REST snapshots
- hub frames patch state incrementally in between
- ``run_forever()`` reconnects with exponential backoff and resynchronizes
  after every reconnect (the hub has no event replay)
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Awaitable, Callable, Coroutine

import httpx
import structlog
import websockets
from websockets.exceptions import WebSocketException

from teamchat_shared.schemas.common import slugify
from teamchat_shared.schemas.events import EventType, encode_frame
from teamchat_shared.schemas.messages import MessageCreate, MessageRead, MessageUser
from teamchat_shared.schemas.projects import ChannelCreate, ProjectCreate, ProjectRead

from .reconciler import Selection, StateReconciler

log = structlog.get_logger()

# Reconnection parameters
RECONNECT_BASE_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 60.0
RECONNECT_MULTIPLIER = 2.0

REPLY_TIMEOUT_SECONDS = 10.0

EventListener = Callable[[str, Any], Coroutine[Any, Any, None]]
ConnectFn = Callable[[str], Awaitable[Any]]


class ChatClientError(Exception):
    """A REST call failed or the server could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class SendError(ChatClientError):
    """The hub rejected a send, or never answered it."""


async def _default_connect(url: str) -> Any:
    return await websockets.connect(url)


def _ws_url(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):] + "/ws"
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):] + "/ws"
    return base_url + "/ws"


class ChatClient:
    """One user's connection to a TeamChat server."""

    def __init__(
        self,
        base_url: str,
        user: MessageUser,
        verify_tls: bool = True,
        request_timeout: int = 30,
        reply_timeout: float = REPLY_TIMEOUT_SECONDS,
        connect: ConnectFn | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._reply_timeout = reply_timeout
        self._connect = connect or _default_connect
        self._transport = transport

        self.user = user
        self.state = StateReconciler()
        self.connection_id: str | None = None

        self._client: httpx.AsyncClient | None = None
        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._listeners: list[EventListener] = []
        self._sessions: set[str] = set()
        self._running = False
        self._reconnect_count = 0

    @property
    def ws_url(self) -> str:
        return _ws_url(self._base_url)

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._reader_task is not None and not self._reader_task.done()

    @property
    def http(self) -> httpx.AsyncClient | None:
        return self._client

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    @property
    def sessions(self) -> set[str]:
        return set(self._sessions)

    def on_event(self, listener: EventListener) -> None:
        """Register a coroutine called with ``(event_type, data)`` for every hub frame."""
        self._listeners.append(listener)

    # --- Lifecycle ---

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        self._running = False
        await self._close_ws()
        if self._client:
            await self._client.aclose()
            self._client = None

    async def connect(self) -> None:
        """Open the realtime connection and start reading frames."""
        await self._close_ws()
        self._ws = await self._connect(self.ws_url)
        self._reader_task = asyncio.create_task(self._read_loop(self._ws))
        log.info("client.connected", url=self.ws_url)

    async def sync(self) -> None:
        """Resynchronize from REST: project list, then every held history.

        The hub has no replay, so any history held locally may have missed
        events; the active channel is always fetched.
        """
        self.state.load_projects(await self.fetch_projects())
        scopes = self.state.held_scopes()
        if self.state.active.scope not in scopes:
            scopes.append(self.state.active.scope)
        for project_id, channel_id in scopes:
            self.state.replace_history(
                project_id, channel_id, await self.fetch_history(project_id, channel_id)
            )

    async def run_forever(self) -> None:
        """Stay connected, reconnecting with backoff and resyncing each time."""
        self._running = True
        backoff = RECONNECT_BASE_SECONDS

        while self._running:
            try:
                await self.connect()
                await self.sync()
                for session_id in list(self._sessions):
                    await self.join_session(session_id)
                backoff = RECONNECT_BASE_SECONDS
                assert self._reader_task
                await self._reader_task
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException, ChatClientError, asyncio.TimeoutError) as exc:
                log.warning("client.connection_lost", error=str(exc), backoff=backoff)
            finally:
                await self._close_ws()

            if not self._running:
                break

            self._reconnect_count += 1
            log.info("client.reconnecting", backoff=backoff, attempt=self._reconnect_count)
            await asyncio.sleep(backoff)
            backoff = min(backoff * RECONNECT_MULTIPLIER, RECONNECT_MAX_SECONDS)

    async def _close_ws(self) -> None:
        ws, self._ws = self._ws, None
        task, self._reader_task = self._reader_task, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException):
                pass
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._fail_pending(ConnectionError("Connection closed"))

    # --- REST ---

    async def _rest(self, method: str, path: str, json_body: Any = None) -> Any:
        assert self._client, "ChatClient.open() has not been called"
        try:
            resp = await self._client.request(method, path, json=json_body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message, code = exc.response.reason_phrase, None
            try:
                error = exc.response.json()["error"]
                message, code = error["message"], error.get("code")
            except (ValueError, KeyError, TypeError, AttributeError):
                pass
            log.warning(
                "client.request_failed",
                method=method,
                path=path,
                status=exc.response.status_code,
                error=message,
            )
            raise ChatClientError(message, exc.response.status_code, code) from exc
        except httpx.HTTPError as exc:
            log.warning("client.server_unreachable", method=method, path=path, error=str(exc))
            raise ChatClientError(f"Server unreachable: {exc}") from exc
        return resp.json()

    async def fetch_projects(self) -> list[ProjectRead]:
        data = await self._rest("GET", "/api/projects")
        return [ProjectRead.model_validate(p) for p in data]

    async def fetch_history(self, project_id: str, channel_id: str) -> list[MessageRead]:
        data = await self._rest("GET", f"/api/messages/{project_id}/{channel_id}")
        return [MessageRead.model_validate(m) for m in data]

    async def switch_channel(self, project_id: str, channel_id: str) -> Selection:
        """Make a channel active and replace its history from the store."""
        selection = self.state.select(project_id, channel_id)
        self.state.replace_history(project_id, channel_id, await self.fetch_history(project_id, channel_id))
        return selection

    async def create_project(
        self,
        name: str,
        icon: str | None = None,
        channels: list[str] | None = None,
    ) -> ProjectRead:
        body = ProjectCreate(name=name, channels=channels)
        if icon:
            body.icon = icon
        data = await self._rest("POST", "/api/projects", body.model_dump(by_alias=True))
        project = ProjectRead.model_validate(data)
        self.state.add_project(project)
        return project

    async def delete_project(self, project_id: str) -> None:
        await self._rest("DELETE", f"/api/projects/{project_id}")
        self.state.remove_project(project_id)

    async def create_channel(self, project_id: str, name: str) -> str:
        body = ChannelCreate(channel_id=slugify(name))
        data = await self._rest(
            "POST", f"/api/projects/{project_id}/channels", body.model_dump(by_alias=True)
        )
        channel_id = data.get("channelId", body.channel_id)
        self.state.add_channel(project_id, channel_id)
        return channel_id

    async def delete_channel(self, project_id: str, channel_id: str) -> None:
        await self._rest("DELETE", f"/api/projects/{project_id}/channels/{channel_id}")
        self.state.remove_channel(project_id, channel_id)

    async def delete_message(self, message_id: str) -> None:
        await self._rest("DELETE", f"/api/messages/{message_id}")
        for project_id, channel_id in self.state.held_scopes():
            self.state.remove_message(project_id, channel_id, message_id)

    async def create_invite(self) -> dict[str, str]:
        """Ask the server for an invite link. Returns ``{inviteLink, sessionId}``."""
        return await self._rest("POST", "/create-invite")

    # --- Realtime ---

    async def _send_frame(self, event_type: EventType, data: Any = None, request_id: str | None = None) -> None:
        if self._ws is None:
            raise SendError("Not connected")
        await self._ws.send(json.dumps(encode_frame(event_type, data, request_id)))

    async def _request(self, event_type: EventType, data: Any = None) -> tuple[str, Any]:
        """Send a frame and wait for the reply carrying the same requestId."""
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send_frame(event_type, data, request_id)
            return await asyncio.wait_for(future, self._reply_timeout)
        finally:
            self._pending.pop(request_id, None)

    async def send_message(
        self,
        text: str,
        project_id: str | None = None,
        channel_id: str | None = None,
    ) -> MessageRead:
        """Send to a channel (the active one by default) and wait for the stored copy."""
        project_id = project_id or self.state.active.project_id
        channel_id = channel_id or self.state.active.channel_id
        body = MessageCreate(user=self.user, text=text, project_id=project_id, channel_id=channel_id)

        try:
            event_type, data = await self._request(EventType.SEND_MESSAGE, body)
        except asyncio.TimeoutError:
            raise SendError("Timed out waiting for the hub to confirm the send") from None
        except ConnectionError as exc:
            raise SendError(str(exc)) from exc

        if event_type != EventType.MESSAGE_SENT.value:
            message = data.get("message") if isinstance(data, dict) else None
            raise SendError(message or "Send failed")
        return MessageRead.model_validate(data)

    async def join_session(self, session_id: str) -> bool:
        """Join an invite session group. Returns False for unknown sessions."""
        event_type, _ = await self._request(EventType.JOIN_SESSION, {"sessionId": session_id})
        if event_type == EventType.SESSION_JOINED.value:
            self._sessions.add(session_id)
            return True
        self._sessions.discard(session_id)
        log.warning("client.session_join_failed", session_id=session_id)
        return False

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._handle_frame(raw)
        finally:
            self._fail_pending(ConnectionError("Connection closed"))

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            log.warning("client.parse_error", data=str(raw)[:200])
            return
        if not isinstance(frame, dict) or "type" not in frame:
            log.warning("client.parse_error", data=str(raw)[:200])
            return

        event_type = frame["type"]
        data = frame.get("data")

        if event_type == EventType.CONNECTED.value and isinstance(data, dict):
            self.connection_id = data.get("connectionId")

        try:
            self.state.apply(event_type, data)
        except ValueError:
            # pydantic's ValidationError subclasses ValueError
            log.warning("client.invalid_event", event_type=event_type)

        future = self._pending.get(frame.get("requestId") or "")
        if future is not None and not future.done():
            future.set_result((event_type, data))

        for listener in self._listeners:
            try:
                await listener(event_type, data)
            except Exception:
                log.exception("client.listener_error", event_type=event_type)
