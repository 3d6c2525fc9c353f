"""
ARQ background task: purge messages orphaned by project/channel deletion.

Cascade deletes run in one transaction, but a send racing a delete can still
land a message in a project or channel that no longer exists. This sweep
removes those. Scheduled to run every 10 minutes.

Run the worker with::

    arq app.tasks.orphan_cleanup.WorkerSettings
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.database import get_session_context
from app.services.messages import purge_orphaned_messages

log = structlog.get_logger()


async def reconcile_orphaned_messages(ctx: dict) -> int:
    """Delete orphaned messages. Returns the number removed."""
    async with get_session_context() as session:
        removed = await purge_orphaned_messages(session)

    log.info("orphan_cleanup.finished", removed=removed)
    return removed


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [reconcile_orphaned_messages]
    cron_jobs = [
        cron(reconcile_orphaned_messages, minute=set(range(0, 60, 10))),
    ]
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
