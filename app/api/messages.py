"""
Message history endpoints.

- GET /{project_id}/{channel_id}: Channel history, oldest first
- DELETE /{message_id}: Delete one message (broadcasts message-deleted)

Sending happens over the realtime connection, see ``app.api.realtime``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.hub import hub
from app.services import messages as message_service
from teamchat_shared.schemas.events import EventType
from teamchat_shared.schemas.messages import MessageRead

router = APIRouter()


@router.get("/{project_id}/{channel_id}", response_model=list[MessageRead])
async def get_messages(
    project_id: str,
    channel_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Full history of a channel. Unknown pairs yield an empty list."""
    messages = await message_service.list_messages(session, project_id, channel_id)
    return [message_service.to_message_read(m) for m in messages]


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    session: AsyncSession = Depends(get_session),
):
    async with hub.ordered():
        deleted = await message_service.delete_message(session, message_id)
        await hub.broadcast(EventType.MESSAGE_DELETED, deleted)
    return {"success": True}
