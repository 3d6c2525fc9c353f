"""
Configuration loading and validation.

Loads client configuration from a YAML file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .previews import avatar_url


class ServerConfig(BaseModel):
    url: str = "http://localhost:3001"
    verify_tls: bool = True
    request_timeout_seconds: int = 30


class UserConfig(BaseModel):
    username: str = "anonymous"
    avatar_url: Optional[str] = None

    @property
    def resolved_avatar_url(self) -> str:
        return self.avatar_url or avatar_url(self.username)


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "text"


class ClientConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    link_previews: bool = False


def load_config(path: str | Path) -> ClientConfig:
    """Load and validate client configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return ClientConfig.model_validate(raw)
