"""
External collaborators used for presentation only: avatar URLs and link
previews. Neither affects synchronization.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from urllib.parse import quote

import httpx
import structlog

log = structlog.get_logger()

AVATAR_BASE_URL = "https://api.dicebear.com/7.x/thumbs/svg"
LINK_PREVIEW_API = "https://jsonlink.io/api/extract"

URL_PATTERN = re.compile(r"https?://[^\s<>()\"']+")


@dataclass
class LinkPreview:
    url: str
    title: str | None = None
    description: str | None = None
    images: list[str] = field(default_factory=list)


def avatar_url(seed: str) -> str:
    """Deterministic avatar image URL for a seed string."""
    return f"{AVATAR_BASE_URL}?seed={quote(seed)}"


def extract_urls(text: str) -> list[str]:
    """Links in a message, in order of appearance, without duplicates."""
    seen: list[str] = []
    for match in URL_PATTERN.findall(text):
        url = match.rstrip(".,;:!?")
        if url not in seen:
            seen.append(url)
    return seen


async def fetch_link_preview(
    client: httpx.AsyncClient,
    url: str,
    api_url: str = LINK_PREVIEW_API,
) -> LinkPreview | None:
    """Fetch title/description/images for a URL. Returns None on any failure."""
    try:
        resp = await client.get(api_url, params={"url": url})
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.debug("previews.fetch_failed", url=url, error=str(exc))
        return None

    # Some proxies wrap the metadata as a JSON string under "contents"
    if isinstance(data, dict) and isinstance(data.get("contents"), str):
        try:
            data = json.loads(data["contents"])
        except ValueError:
            return None
    if not isinstance(data, dict):
        return None

    images = data.get("images") or []
    return LinkPreview(
        url=data.get("url") or url,
        title=data.get("title"),
        description=data.get("description"),
        images=[i for i in images if isinstance(i, str)],
    )
