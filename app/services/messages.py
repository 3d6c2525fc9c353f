"""
Message service layer: persistence and history queries.

Messages are scoped by (project_id, channel_id) slugs and are not validated
against the project still existing; cascades and the orphan sweep remove them.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFoundError, PersistenceError, ValidationError
from app.models.message import Message
from app.models.project import Project
from app.services.projects import list_project_ids
from teamchat_shared.schemas.common import channel_key, split_channel_key
from teamchat_shared.schemas.messages import MessageCreate, MessageDeleted, MessageRead, MessageUser

log = structlog.get_logger()

_last_created_at: datetime | None = None


def _next_created_at() -> datetime:
    """Strictly increasing timestamps, so createdAt order equals commit order."""
    global _last_created_at
    now = datetime.now(timezone.utc)
    if _last_created_at is not None and now <= _last_created_at:
        now = _last_created_at + timedelta(microseconds=1)
    _last_created_at = now
    return now


def to_message_read(message: Message) -> MessageRead:
    created_at = message.created_at
    if created_at.tzinfo is None:
        # SQLite hands back naive datetimes
        created_at = created_at.replace(tzinfo=timezone.utc)
    return MessageRead(
        id=str(message.id),
        user=MessageUser.model_validate(message.user),
        text=message.text,
        time=message.time,
        project_id=message.project_id,
        channel_id=message.channel_id,
        created_at=created_at,
    )


async def resolve_target(session: AsyncSession, body: MessageCreate) -> tuple[str, str]:
    """Work out the (project_id, channel_id) pair a send is addressed to."""
    if body.project_id and body.channel_id:
        return body.project_id, body.channel_id
    try:
        return split_channel_key(body.channel or "", await list_project_ids(session))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_messages(session: AsyncSession, project_id: str, channel_id: str) -> list[Message]:
    """History of one channel, oldest first."""
    result = await session.execute(
        select(Message)
        .where(Message.project_id == project_id, Message.channel_id == channel_id)
        .order_by(Message.created_at.asc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def create_message(session: AsyncSession, body: MessageCreate) -> Message:
    if not body.text.strip():
        raise ValidationError("Message text is required")

    project_id, channel_id = await resolve_target(session, body)
    created_at = _next_created_at()
    message = Message(
        project_id=project_id,
        channel_id=channel_id,
        user=body.user.model_dump(mode="json", by_alias=True),
        text=body.text,
        time=body.time or created_at.strftime("%H:%M"),
        created_at=created_at,
    )
    session.add(message)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        log.error(
            "messages.persist_failed",
            channel=channel_key(project_id, channel_id),
            error=str(exc),
        )
        raise PersistenceError("Failed to save message") from exc
    await session.refresh(message)

    log.info("messages.created", message_id=str(message.id), channel=channel_key(project_id, channel_id))
    return message


async def delete_message(session: AsyncSession, message_id: str) -> MessageDeleted:
    try:
        pk = uuid.UUID(message_id)
    except ValueError:
        raise NotFoundError("Message not found") from None

    message = await session.get(Message, pk)
    if message is None:
        raise NotFoundError("Message not found")

    deleted = MessageDeleted(
        message_id=str(message.id),
        channel=channel_key(message.project_id, message.channel_id),
        project_id=message.project_id,
        channel_id=message.channel_id,
    )
    await session.delete(message)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        log.error("messages.delete_failed", message_id=message_id, error=str(exc))
        raise PersistenceError("Failed to delete message") from exc

    log.info("messages.deleted", message_id=message_id, channel=deleted.channel)
    return deleted


async def purge_orphaned_messages(session: AsyncSession) -> int:
    """Delete messages whose project is gone or whose channel left its project.

    Returns the number of messages removed.
    """
    projects = (await session.execute(select(Project))).scalars().all()
    channels_by_project = {p.slug: set(p.channels or []) for p in projects}

    removed = 0
    # Messages of projects that no longer exist
    if channels_by_project:
        result = await session.execute(
            delete(Message).where(Message.project_id.not_in(list(channels_by_project)))
        )
    else:
        result = await session.execute(delete(Message))
    removed += result.rowcount or 0

    # Messages of channels removed from a surviving project
    for project_id, channel_ids in channels_by_project.items():
        result = await session.execute(
            delete(Message).where(
                Message.project_id == project_id,
                Message.channel_id.not_in(list(channel_ids)),
            )
        )
        removed += result.rowcount or 0

    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        log.error("messages.orphan_purge_failed", error=str(exc))
        raise PersistenceError("Failed to purge orphaned messages") from exc

    if removed:
        log.warning("messages.orphans_purged", count=removed)
    return removed
