"""
Shared fixtures.

The store is a throwaway SQLite file so the suite runs without Postgres.
The URL must be in the environment before ``app`` is imported, because
settings and the engine are created at import time.
"""

import os
import tempfile

_db_fd, _db_path = tempfile.mkstemp(suffix=".db")
os.close(_db_fd)
os.environ.setdefault("TEAMCHAT_DATABASE_URL", f"sqlite+aiosqlite:///{_db_path}")
os.environ.setdefault("TEAMCHAT_INVITE_BASE_URL", "http://chat.test")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.core.database import drop_db, get_session_context, init_db  # noqa: E402
from app.core.hub import hub  # noqa: E402
from app.main import app  # noqa: E402
from app.services.projects import ensure_default_project  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_store():
    """Empty store holding only the seeded ``main`` project; empty hub."""
    await drop_db()
    await init_db()
    async with get_session_context() as session:
        await ensure_default_project(session)
    hub.reset()
    yield
    hub.reset()


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def session():
    async with get_session_context() as s:
        yield s


def pytest_sessionfinish(session, exitstatus):
    try:
        os.unlink(_db_path)
    except OSError:
        pass
