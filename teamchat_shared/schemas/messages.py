from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, Field, computed_field, model_validator

from .common import CamelModel, channel_key


class MessageUser(CamelModel):
    """Snapshot of the sender at send time."""

    username: str
    avatar_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("avatarUrl", "avatar_url", "avatar")
    )


class MessageCreate(CamelModel):
    """Payload of send-message.

    The target channel is either the compound ``channel`` key or the explicit
    ``project_id`` / ``channel_id`` pair.
    """

    user: MessageUser
    text: str
    time: Optional[str] = None
    channel: Optional[str] = None
    project_id: Optional[str] = None
    channel_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_target(self) -> "MessageCreate":
        if not self.channel and not (self.project_id and self.channel_id):
            raise ValueError("channel or projectId/channelId is required")
        return self


class MessageRead(CamelModel):
    id: str
    user: MessageUser
    text: str
    time: str
    project_id: str
    channel_id: str
    created_at: datetime

    @computed_field
    @property
    def channel(self) -> str:
        return channel_key(self.project_id, self.channel_id)


class MessageDeleted(CamelModel):
    """Payload of message-deleted."""

    message_id: str
    channel: str
    project_id: str
    channel_id: str
