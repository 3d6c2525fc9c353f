"""
REST API router, mounted under /api.
"""

from fastapi import APIRouter
from . import messages, projects

router = APIRouter()

router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(messages.router, prefix="/messages", tags=["Messages"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns available endpoints."""
    return {
        "api": "teamchat",
        "version": "0.1.0",
        "endpoints": [
            "/api/projects",
            "/api/projects/{projectId}/channels",
            "/api/messages/{projectId}/{channelId}",
            "/api/messages/{messageId}",
            "/create-invite",
            "/ws",
        ],
    }
