"""
Project and channel endpoints.

- GET /: List projects in creation order
- POST /: Create a project (id derived from the name)
- DELETE /{project_id}: Delete a project and its messages
- POST /{project_id}/channels: Add a channel
- DELETE /{project_id}/channels/{channel_id}: Remove a channel and its messages

Every mutation commits first and is then broadcast through the hub.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.hub import hub
from app.services import projects as project_service
from teamchat_shared.schemas.events import EventType
from teamchat_shared.schemas.projects import (
    ChannelChange,
    ChannelCreate,
    ProjectCreate,
    ProjectDeleted,
    ProjectRead,
)

router = APIRouter()


@router.get("", response_model=list[ProjectRead])
async def list_projects(session: AsyncSession = Depends(get_session)):
    """List every project with its channels."""
    projects = await project_service.list_projects(session)
    return [project_service.to_project_read(p) for p in projects]


@router.post("", response_model=ProjectRead, status_code=201)
async def create_project(
    body: ProjectCreate,
    session: AsyncSession = Depends(get_session),
):
    """Create a project and notify every connected client."""
    async with hub.ordered():
        project = await project_service.create_project(session, body)
        payload = project_service.to_project_read(project)
        await hub.broadcast(EventType.PROJECT_CREATED, payload)
    return payload


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Delete a project; its messages go in the same transaction."""
    async with hub.ordered():
        await project_service.delete_project(session, project_id)
        await hub.broadcast(EventType.PROJECT_DELETED, ProjectDeleted(project_id=project_id))
    return {"success": True, "message": "Project deleted successfully"}


@router.post("/{project_id}/channels")
async def create_channel(
    project_id: str,
    body: ChannelCreate,
    session: AsyncSession = Depends(get_session),
):
    """Append a channel to a project."""
    async with hub.ordered():
        channel_id = await project_service.add_channel(session, project_id, body.channel_id)
        await hub.broadcast(
            EventType.CHANNEL_CREATED,
            ChannelChange(project_id=project_id, channel_id=channel_id),
        )
    return {"success": True, "channelId": channel_id}


@router.delete("/{project_id}/channels/{channel_id}")
async def delete_channel(
    project_id: str,
    channel_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Remove a channel; its messages go in the same transaction."""
    async with hub.ordered():
        await project_service.remove_channel(session, project_id, channel_id)
        await hub.broadcast(
            EventType.CHANNEL_DELETED,
            ChannelChange(project_id=project_id, channel_id=channel_id),
        )
    return {"success": True}
