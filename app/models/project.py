"""Project model. Channels are embedded as an ordered list of identifiers."""

from typing import List

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class Project(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "projects"

    # Public identifier; the UUID primary key never leaves the server.
    slug: str = Field(nullable=False, unique=True, index=True)
    name: str = Field(nullable=False)
    icon: str = Field(nullable=False)
    channels: List[str] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)
