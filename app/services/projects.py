"""
Project service layer: projects and their embedded channel lists.

Handles:
- Project creation with slug ids and default channels
- Idempotent seeding of the permanent ``main`` project
- Cascade deletes (project -> messages, channel -> messages) in one transaction
"""

from __future__ import annotations

from typing import Sequence

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFoundError, PersistenceError, ValidationError
from app.models.message import Message
from app.models.project import Project
from teamchat_shared.schemas.common import (
    DEFAULT_CHANNELS,
    DEFAULT_ICON,
    GENERAL_CHANNEL_ID,
    MAIN_PROJECT_CHANNELS,
    MAIN_PROJECT_ID,
    MAIN_PROJECT_NAME,
    slugify,
)
from teamchat_shared.schemas.projects import (
    ProjectCreate,
    ProjectRead,
    check_channel_deletable,
    check_project_deletable,
)

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_project_read(project: Project) -> ProjectRead:
    return ProjectRead(
        id=project.slug,
        name=project.name,
        icon=project.icon,
        channels=list(project.channels or []),
    )


def _normalize_channels(channels: Sequence[str] | None) -> list[str]:
    """Slugify, de-duplicate (keeping order) and make sure ``general`` comes first."""
    result: list[str] = [GENERAL_CHANNEL_ID]
    for raw in channels or DEFAULT_CHANNELS:
        channel_id = slugify(raw)
        if channel_id and channel_id not in result:
            result.append(channel_id)
    return result


async def _commit(session: AsyncSession, action: str, **context) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        log.error("projects.persist_failed", action=action, error=str(exc), **context)
        raise PersistenceError(f"Failed to {action}") from exc


async def get_project(session: AsyncSession, project_id: str) -> Project | None:
    result = await session.execute(select(Project).where(Project.slug == project_id))
    return result.scalar_one_or_none()


async def get_project_or_404(session: AsyncSession, project_id: str) -> Project:
    project = await get_project(session, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return project


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_projects(session: AsyncSession) -> list[Project]:
    result = await session.execute(select(Project).order_by(Project.created_at))
    return list(result.scalars().all())


async def list_project_ids(session: AsyncSession) -> list[str]:
    result = await session.execute(select(Project.slug))
    return [row[0] for row in result.all()]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def create_project(session: AsyncSession, body: ProjectCreate) -> Project:
    name = body.name.strip()
    if not name:
        raise ValidationError("Project name is required")
    slug = slugify(name)
    if not slug:
        raise ValidationError("Project name must contain letters or digits")
    if await get_project(session, slug) is not None:
        raise ValidationError(f"Project '{slug}' already exists")

    project = Project(
        slug=slug,
        name=name,
        icon=body.icon or DEFAULT_ICON,
        channels=_normalize_channels(body.channels),
    )
    session.add(project)
    try:
        await session.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent create of the same slug
        await session.rollback()
        raise ValidationError(f"Project '{slug}' already exists") from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        log.error("projects.persist_failed", action="create project", project_id=slug, error=str(exc))
        raise PersistenceError("Failed to create project") from exc
    await session.refresh(project)

    log.info("projects.created", project_id=slug, channels=project.channels)
    return project


async def ensure_project(
    session: AsyncSession,
    slug: str,
    name: str,
    icon: str = DEFAULT_ICON,
    channels: Sequence[str] | None = None,
) -> Project:
    """Create a project with a fixed slug unless it already exists."""
    project = await get_project(session, slug)
    if project is not None:
        return project
    project = Project(slug=slug, name=name, icon=icon, channels=_normalize_channels(channels))
    session.add(project)
    await _commit(session, "seed project", project_id=slug)
    await session.refresh(project)
    log.info("projects.seeded", project_id=slug)
    return project


async def ensure_default_project(session: AsyncSession) -> Project:
    """The ``main`` project and its ``general`` channel always exist."""
    project = await ensure_project(
        session, MAIN_PROJECT_ID, MAIN_PROJECT_NAME, DEFAULT_ICON, MAIN_PROJECT_CHANNELS
    )
    if GENERAL_CHANNEL_ID not in project.channels:
        project.channels = [GENERAL_CHANNEL_ID, *project.channels]
        session.add(project)
        await _commit(session, "restore general channel", project_id=MAIN_PROJECT_ID)
    return project


async def delete_project(session: AsyncSession, project_id: str) -> int:
    """Delete a project and every message scoped to it in one transaction.

    Returns the number of messages removed.
    """
    allowed, reason = check_project_deletable(project_id)
    if not allowed:
        raise ValidationError(reason)

    project = await get_project_or_404(session, project_id)
    await session.delete(project)
    result = await session.execute(delete(Message).where(Message.project_id == project_id))
    await _commit(session, "delete project", project_id=project_id)

    removed = result.rowcount or 0
    log.info("projects.deleted", project_id=project_id, messages_removed=removed)
    return removed


async def add_channel(session: AsyncSession, project_id: str, channel_name: str) -> str:
    """Append a channel to a project. Returns the channel identifier."""
    channel_id = slugify(channel_name)
    if not channel_id:
        raise ValidationError("Channel name must contain letters or digits")

    project = await get_project_or_404(session, project_id)
    if channel_id in project.channels:
        raise ValidationError("Channel already exists")

    # Reassign so the JSON column is flagged dirty
    project.channels = [*project.channels, channel_id]
    session.add(project)
    await _commit(session, "create channel", project_id=project_id, channel_id=channel_id)

    log.info("projects.channel_created", project_id=project_id, channel_id=channel_id)
    return channel_id


async def remove_channel(session: AsyncSession, project_id: str, channel_id: str) -> int:
    """Remove a channel and its messages in one transaction.

    Returns the number of messages removed.
    """
    allowed, reason = check_channel_deletable(channel_id)
    if not allowed:
        raise ValidationError(reason)

    project = await get_project_or_404(session, project_id)
    if channel_id not in project.channels:
        raise NotFoundError("Channel not found")

    project.channels = [ch for ch in project.channels if ch != channel_id]
    session.add(project)
    result = await session.execute(
        delete(Message).where(
            Message.project_id == project_id,
            Message.channel_id == channel_id,
        )
    )
    await _commit(session, "delete channel", project_id=project_id, channel_id=channel_id)

    removed = result.rowcount or 0
    log.info(
        "projects.channel_deleted",
        project_id=project_id,
        channel_id=channel_id,
        messages_removed=removed,
    )
    return removed
