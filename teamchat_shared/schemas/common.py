import re
from typing import Iterable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Permanent workspace and channel
MAIN_PROJECT_ID = "main"
GENERAL_CHANNEL_ID = "general"

# Every new project starts with these channels
DEFAULT_CHANNELS: list[str] = [GENERAL_CHANNEL_ID, "resources"]
MAIN_PROJECT_CHANNELS: list[str] = [GENERAL_CHANNEL_ID, "announcements", "resources"]
MAIN_PROJECT_NAME = "Main Project"

DEFAULT_ICON = "📊"

_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r"[^a-z0-9_-]+")
_REPEATED_HYPHENS = re.compile(r"-{2,}")


class CamelModel(BaseModel):
    """Base for wire schemas: snake_case in Python, camelCase in JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def slugify(value: str) -> str:
    """Derive a URL-safe, lowercase-hyphenated identifier from a display name.

    >>> slugify("QA Test")
    'qa-test'
    """
    slug = _WHITESPACE.sub("-", value.strip().lower())
    slug = _UNSAFE.sub("", slug)
    return _REPEATED_HYPHENS.sub("-", slug).strip("-")


def channel_key(project_id: str, channel_id: str) -> str:
    """Compound key identifying one message history."""
    return f"{project_id}-{channel_id}"


def split_channel_key(key: str, project_ids: Iterable[str] = ()) -> tuple[str, str]:
    """Split a compound channel key into ``(project_id, channel_id)``.

    Project ids may contain hyphens themselves (``qa-test-general``), so the
    longest matching known project id wins. Without a match the key is split
    on its first hyphen.
    """
    for project_id in sorted(project_ids, key=len, reverse=True):
        prefix = f"{project_id}-"
        if key.startswith(prefix) and len(key) > len(prefix):
            return project_id, key[len(prefix):]

    project_id, sep, channel_id = key.partition("-")
    if not sep or not project_id or not channel_id:
        raise ValueError(f"Invalid channel key: {key!r}")
    return project_id, channel_id
