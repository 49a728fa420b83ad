"""SQLite implementation of ProjectRepository."""
from __future__ import annotations

import uuid

import aiosqlite

from devarchive.date_utils import utc_now_iso


class SqliteProjectRepository:
    """SQLite-backed project storage. Projects are never deleted here."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get_by_id(self, project_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_by_upstream_url(self, upstream_url: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM projects WHERE upstream_url = ?", (upstream_url,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_unlinked_by_name(self, name: str) -> dict | None:
        """Oldest project with this name and no upstream URL."""
        async with self.db.execute(
            """SELECT * FROM projects
               WHERE name = ? AND upstream_url IS NULL
               ORDER BY created_at, id LIMIT 1""",
            (name,),
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def create(self, name: str, upstream_url: str | None = None) -> str:
        project_id = str(uuid.uuid4())
        now = utc_now_iso()
        await self.db.execute(
            """INSERT INTO projects (id, name, upstream_url, archived, created_at, updated_at)
               VALUES (?, ?, ?, 0, ?, ?)""",
            (project_id, name, upstream_url, now, now),
        )
        return project_id

    async def touch(self, project_id: str) -> None:
        await self.db.execute(
            "UPDATE projects SET updated_at = ? WHERE id = ?",
            (utc_now_iso(), project_id),
        )
