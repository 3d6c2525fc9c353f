"""Message model, scoped by (project_id, channel_id) slugs without foreign keys."""

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class Message(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (
        sa.Index("ix_messages_channel_created", "project_id", "channel_id", "created_at"),
    )

    project_id: str = Field(nullable=False, index=True)
    channel_id: str = Field(nullable=False)
    user: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)  # {username, avatarUrl}
    text: str = Field(nullable=False)
    time: str = Field(nullable=False)  # display string, not used for ordering
