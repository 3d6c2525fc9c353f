"""
Tests for the ChatClient against a mocked REST API and a fake WebSocket.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from datetime import datetime, timezone
from unittest.mock import patch

import httpx
import pytest

from teamchat_client.client import ChatClient, ChatClientError, SendError
from teamchat_shared.schemas.messages import MessageRead, MessageUser

ALICE = MessageUser(username="alice", avatar_url="https://example.test/a.svg")

PROJECTS = [
    {"id": "main", "name": "Main Project", "icon": "📊", "channels": ["general", "announcements", "resources"]},
    {"id": "qa-test", "name": "QA Test", "icon": "🚀", "channels": ["general", "resources"]},
]


def _stored(message_id: str, text: str = "hi", project_id: str = "main", channel_id: str = "general") -> dict:
    return MessageRead(
        id=message_id,
        user=ALICE,
        text=text,
        time="10:00",
        project_id=project_id,
        channel_id=channel_id,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    ).model_dump(mode="json", by_alias=True)


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, responder=None):
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._responder = responder

    def push(self, frame: dict) -> None:
        self._inbox.put_nowait(json.dumps(frame))

    def drop(self) -> None:
        self._inbox.put_nowait(None)

    async def send(self, raw: str) -> None:
        frame = json.loads(raw)
        self.sent.append(frame)
        if self._responder:
            for reply in self._responder(frame):
                self.push(reply)

    async def close(self) -> None:
        self.closed = True
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        raw = await self._inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


class FakeServer:
    """Routes REST calls and records them."""

    def __init__(self):
        self.calls: list[tuple[str, str, dict | None]] = []
        self.histories: dict[str, list[dict]] = {"main/general": [_stored("m0", "welcome")]}
        self.projects: list[dict] = list(PROJECTS)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        path = request.url.path

        if request.method == "GET" and path == "/api/projects":
            return httpx.Response(200, json=self.projects)
        if request.method == "GET" and path.startswith("/api/messages/"):
            return httpx.Response(200, json=self.histories.get(path[len("/api/messages/"):], []))
        if request.method == "POST" and path == "/api/projects":
            if body["name"] == "Main":
                return httpx.Response(
                    400,
                    json={"error": {"code": "VALIDATION_FAILED", "message": "Project 'main' already exists", "status": 400}},
                )
            return httpx.Response(
                201, json={"id": "design", "name": body["name"], "icon": body["icon"], "channels": ["general", "resources"]}
            )
        if request.method == "POST" and path.endswith("/channels"):
            return httpx.Response(200, json={"success": True, "channelId": body["channelId"]})
        if request.method == "POST" and path == "/create-invite":
            return httpx.Response(200, json={"inviteLink": "http://chat.test/join/s1", "sessionId": "s1"})
        if request.method == "DELETE":
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404, json={"error": {"code": "NOT_FOUND", "message": "Not found", "status": 404}})

    def fetches(self, path: str) -> int:
        return sum(1 for method, p, _ in self.calls if method == "GET" and p == path)


def hub_responder(frame: dict) -> list[dict]:
    """Answer frames the way the hub does."""
    request_id = frame.get("requestId")
    if frame["type"] == "send-message":
        data = frame["data"]
        if not data["text"].strip():
            return [
                {
                    "type": "message-error",
                    "data": {"code": "VALIDATION_FAILED", "message": "Message text is required"},
                    "requestId": request_id,
                }
            ]
        stored = _stored("m-new", data["text"], data["projectId"], data["channelId"])
        return [{"type": "message-sent", "data": stored, "requestId": request_id}]
    if frame["type"] == "join-session":
        session_id = frame["data"]["sessionId"]
        if session_id == "s1":
            return [{"type": "session-joined", "data": {"sessionId": session_id}, "requestId": request_id}]
        return [
            {"type": "session-error", "data": {"sessionId": session_id, "error": "Unknown session"}, "requestId": request_id}
        ]
    return []


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
async def chat(server):
    sockets: list[FakeWebSocket] = []

    async def connect(url: str) -> FakeWebSocket:
        ws = FakeWebSocket(hub_responder)
        sockets.append(ws)
        return ws

    client = ChatClient(
        "http://chat.test",
        ALICE,
        reply_timeout=0.5,
        connect=connect,
        transport=httpx.MockTransport(server.handler),
    )
    client.sockets = sockets
    await client.open()
    yield client
    await client.close()


class TestRest:
    def test_ws_url(self):
        assert ChatClient("https://chat.test/", ALICE).ws_url == "wss://chat.test/ws"
        assert ChatClient("http://localhost:3001", ALICE).ws_url == "ws://localhost:3001/ws"

    async def test_sync_loads_projects_and_active_history(self, chat):
        await chat.sync()
        assert list(chat.state.projects) == ["main", "qa-test"]
        assert [m.text for m in chat.state.messages_for("main", "general")] == ["welcome"]

    async def test_switch_channel_refetches(self, chat, server):
        server.histories["qa-test/resources"] = [_stored("r1", "docs", "qa-test", "resources")]
        await chat.sync()
        selection = await chat.switch_channel("qa-test", "resources")
        assert selection.key == "qa-test-resources"
        assert [m.id for m in chat.state.messages_for("qa-test", "resources")] == ["r1"]

    async def test_create_channel_slugifies_name(self, chat, server):
        await chat.sync()
        channel_id = await chat.create_channel("main", "Random Stuff")
        assert channel_id == "random-stuff"
        assert server.calls[-1] == ("POST", "/api/projects/main/channels", {"channelId": "random-stuff"})
        assert chat.state.channels["main"][-1] == "random-stuff"

    async def test_create_project(self, chat):
        project = await chat.create_project("Design", icon="🎨")
        assert project.id == "design"
        assert project.icon == "🎨"
        assert "design" in chat.state.projects

    async def test_rest_error_carries_envelope_message(self, chat):
        with pytest.raises(ChatClientError) as exc_info:
            await chat.create_project("Main")
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Project 'main' already exists"

    async def test_delete_project_updates_state(self, chat, server):
        await chat.sync()
        await chat.delete_project("qa-test")
        assert server.calls[-1][:2] == ("DELETE", "/api/projects/qa-test")
        assert "qa-test" not in chat.state.projects

    async def test_delete_message_updates_state(self, chat):
        await chat.sync()
        await chat.delete_message("m0")
        assert chat.state.messages_for("main", "general") == []

    async def test_create_invite(self, chat):
        invite = await chat.create_invite()
        assert invite == {"inviteLink": "http://chat.test/join/s1", "sessionId": "s1"}

    async def test_server_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ChatClient("http://chat.test", ALICE, transport=httpx.MockTransport(refuse))
        await client.open()
        try:
            with pytest.raises(ChatClientError) as exc_info:
                await client.fetch_projects()
            assert exc_info.value.status_code is None
        finally:
            await client.close()


class TestRealtime:
    async def test_connected_frame_sets_connection_id(self, chat):
        await chat.connect()
        chat.sockets[0].push({"type": "connected", "data": {"connectionId": "abc"}})
        await asyncio.sleep(0.05)
        assert chat.connection_id == "abc"
        assert chat.connected

    async def test_send_message_waits_for_ack(self, chat):
        await chat.sync()
        await chat.connect()

        message = await chat.send_message("ship it")

        [frame] = chat.sockets[0].sent
        assert frame["type"] == "send-message"
        assert frame["data"]["projectId"] == "main"
        assert frame["data"]["channelId"] == "general"
        assert frame["data"]["user"] == {"username": "alice", "avatarUrl": "https://example.test/a.svg"}
        assert message.id == "m-new"
        assert [m.id for m in chat.state.messages_for("main", "general")] == ["m0", "m-new"]

    async def test_send_message_error(self, chat):
        await chat.connect()
        with pytest.raises(SendError, match="Message text is required"):
            await chat.send_message("   ")

    async def test_send_message_timeout(self, server):
        async def connect(url):
            return FakeWebSocket()

        client = ChatClient("http://chat.test", ALICE, reply_timeout=0.05, connect=connect)
        await client.connect()
        try:
            with pytest.raises(SendError, match="Timed out"):
                await client.send_message("hello")
        finally:
            await client.close()

    async def test_send_without_connection(self, chat):
        with pytest.raises(SendError):
            await chat.send_message("hello")

    async def test_join_session(self, chat):
        await chat.connect()
        assert await chat.join_session("s1") is True
        assert await chat.join_session("bogus") is False
        assert chat.sessions == {"s1"}

    async def test_events_patch_state_and_reach_listeners(self, chat):
        seen: list[str] = []

        async def broken(event_type, data):
            raise RuntimeError("listener bug")

        async def record(event_type, data):
            seen.append(event_type)

        chat.on_event(broken)
        chat.on_event(record)
        await chat.sync()
        await chat.connect()

        ws = chat.sockets[0]
        ws.push({"type": "receive-message", "data": _stored("m9", "from bob", "qa-test", "general")})
        ws.push({"type": "channel-created", "data": {"projectId": "main", "channelId": "random"}})
        await asyncio.sleep(0.05)

        assert seen == ["receive-message", "channel-created"]
        assert [m.id for m in chat.state.messages_for("qa-test", "general")] == ["m9"]
        assert "random" in chat.state.channels["main"]

    async def test_malformed_frames_are_ignored(self, chat):
        await chat.connect()
        ws = chat.sockets[0]
        ws._inbox.put_nowait("not json")
        ws.push({"type": "receive-message", "data": {"bogus": True}})
        ws.push({"type": "connected", "data": {"connectionId": "still-alive"}})
        await asyncio.sleep(0.05)
        assert chat.connection_id == "still-alive"


class TestReconnect:
    async def test_sync_refreshes_offscreen_histories(self, chat, server):
        server.histories["main/resources"] = [_stored("r1", "docs", "main", "resources")]
        server.histories["qa-test/general"] = [_stored("q1", "qa", "qa-test", "general")]
        await chat.sync()
        await chat.switch_channel("main", "resources")
        await chat.switch_channel("qa-test", "general")
        await chat.switch_channel("main", "general")

        # While offline: r1 deleted, qa-test deleted
        server.histories["main/resources"] = []
        server.projects = [p for p in PROJECTS if p["id"] != "qa-test"]
        await chat.sync()

        assert chat.state.messages_for("main", "resources") == []
        assert chat.state.messages_for("qa-test", "general") == []
        assert sorted(chat.state.held_scopes()) == [("main", "general"), ("main", "resources")]
        assert server.fetches("/api/messages/qa-test/general") == 1

    async def test_run_forever_resyncs_after_reconnect(self, chat, server):
        first_socket_dropped = False

        with patch("teamchat_client.client.RECONNECT_BASE_SECONDS", 0.01):
            task = asyncio.create_task(chat.run_forever())
            try:
                for _ in range(200):
                    if chat.sockets and not first_socket_dropped and server.fetches("/api/projects") == 1:
                        chat.sockets[0].drop()
                        first_socket_dropped = True
                    if server.fetches("/api/projects") >= 2 and len(chat.sockets) >= 2:
                        break
                    await asyncio.sleep(0.01)
            finally:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

        assert len(chat.sockets) >= 2
        assert server.fetches("/api/projects") >= 2
        assert server.fetches("/api/messages/main/general") >= 2
        assert chat.reconnect_count >= 1

    async def test_run_forever_rejoins_sessions(self, chat, server):
        await chat.connect()
        await chat.join_session("s1")

        with patch("teamchat_client.client.RECONNECT_BASE_SECONDS", 0.01):
            task = asyncio.create_task(chat.run_forever())
            try:
                for _ in range(200):
                    rejoined = [
                        ws for ws in chat.sockets[1:]
                        if any(f["type"] == "join-session" for f in ws.sent)
                    ]
                    if rejoined:
                        break
                    await asyncio.sleep(0.01)
            finally:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

        assert rejoined
