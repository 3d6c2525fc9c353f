#!/usr/bin/env python3
"""Seed a development database with the default workspaces and their channels.

Usage:
    python scripts/seed_dev_data.py

Requires TEAMCHAT_DATABASE_URL (or defaults to localhost). Safe to run twice.
"""

import asyncio

from app.core.database import get_session_context, init_db
from app.services.projects import ensure_default_project, ensure_project

# (slug, name, icon, channels)
DEV_PROJECTS = [
    ("frontend", "Frontend Dev", "🎨", ["react", "vue", "css"]),
    ("backend", "Backend Dev", "⚙️", ["node", "python", "databases"]),
    ("mobile", "Mobile App", "📱", ["react-native", "flutter", "testing"]),
    ("design", "Design System", "🎯", ["ui", "ux", "assets"]),
]


async def seed():
    await init_db()
    async with get_session_context() as session:
        main = await ensure_default_project(session)
        print(f"  {main.slug}: {', '.join(main.channels)}")
        for slug, name, icon, channels in DEV_PROJECTS:
            project = await ensure_project(session, slug, name, icon, channels)
            print(f"  {project.slug}: {', '.join(project.channels)}")
    print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(seed())
