"""
Invite links: each invite registers a fresh session group in the hub.
"""

from __future__ import annotations

from fastapi import APIRouter

from app.core.config import get_settings
from app.core.hub import hub

router = APIRouter()


@router.post("/create-invite")
async def create_invite():
    settings = get_settings()
    session_id = hub.create_session()
    invite_link = f"{settings.invite_base_url.rstrip('/')}/join/{session_id}"
    return {"inviteLink": invite_link, "sessionId": session_id}
