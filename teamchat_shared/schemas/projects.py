from typing import List, Optional

from pydantic import Field

from .common import DEFAULT_ICON, GENERAL_CHANNEL_ID, MAIN_PROJECT_ID, CamelModel


class ProjectCreate(CamelModel):
    name: str
    icon: str = DEFAULT_ICON
    channels: Optional[List[str]] = None


class ProjectRead(CamelModel):
    id: str
    name: str
    icon: str = DEFAULT_ICON
    channels: List[str] = Field(default_factory=list)


class ChannelCreate(CamelModel):
    channel_id: str


class ChannelChange(CamelModel):
    """Payload of channel-created / channel-deleted."""

    project_id: str
    channel_id: str


class ProjectDeleted(CamelModel):
    project_id: str


def check_project_deletable(project_id: str) -> tuple[bool, str]:
    """Validate that a project may be deleted.

    Rules:
    - The ``main`` project is permanent.
    """
    if project_id == MAIN_PROJECT_ID:
        return False, f"Cannot delete the {MAIN_PROJECT_ID} project"
    return True, "ok"


def check_channel_deletable(channel_id: str) -> tuple[bool, str]:
    """Validate that a channel may be deleted.

    Rules:
    - ``general`` is permanent in every project.
    """
    if channel_id == GENERAL_CHANNEL_ID:
        return False, f"Cannot delete the {GENERAL_CHANNEL_ID} channel"
    return True, "ok"
