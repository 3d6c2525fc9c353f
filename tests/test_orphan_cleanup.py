"""
Tests for the orphaned-message sweep.
"""

from __future__ import annotations

from httpx import AsyncClient

from app.models.message import Message
from app.tasks.orphan_cleanup import WorkerSettings, reconcile_orphaned_messages


def _message(project_id: str, channel_id: str, text: str = "x") -> Message:
    return Message(
        project_id=project_id,
        channel_id=channel_id,
        user={"username": "alice"},
        text=text,
        time="12:00",
    )


async def test_sweep_removes_orphans(client: AsyncClient, session):
    session.add_all(
        [
            _message("ghost", "general"),           # project never existed
            _message("main", "deleted-channel"),    # channel not in project
            _message("main", "general", "keep"),
        ]
    )
    await session.commit()

    removed = await reconcile_orphaned_messages({})

    assert removed == 2
    assert [m["text"] for m in (await client.get("/api/messages/main/general")).json()] == ["keep"]
    assert (await client.get("/api/messages/ghost/general")).json() == []
    assert (await client.get("/api/messages/main/deleted-channel")).json() == []


async def test_sweep_with_nothing_to_do(session):
    session.add(_message("main", "announcements"))
    await session.commit()
    assert await reconcile_orphaned_messages({}) == 0


def test_worker_schedules_sweep():
    assert reconcile_orphaned_messages in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 1
