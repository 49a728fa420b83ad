"""SQLite implementation of WorkspaceRepository."""
from __future__ import annotations

import uuid

import aiosqlite


class SqliteWorkspaceRepository:
    """Workspaces are keyed by (host, cwd)."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, host: str, cwd: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM workspaces WHERE host = ? AND cwd = ?", (host, cwd)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_for_host(self, host: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM workspaces WHERE host = ? ORDER BY cwd", (host,)
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]

    async def upsert(
        self,
        host: str,
        cwd: str,
        project_id: str,
        git_repo_id: str | None,
        claude_project_path: str | None,
        now: str,
    ) -> tuple[str, bool]:
        """Link the workspace to its project/checkout. Returns ``(workspace_id, created)``."""
        existing = await self.get(host, cwd)
        if existing:
            await self.db.execute(
                """UPDATE workspaces SET
                    project_id = ?, git_repo_id = ?, claude_project_path = ?, last_synced_at = ?
                WHERE id = ?""",
                (project_id, git_repo_id, claude_project_path, now, existing["id"]),
            )
            return existing["id"], False

        workspace_id = str(uuid.uuid4())
        await self.db.execute(
            """INSERT INTO workspaces (
                id, project_id, git_repo_id, host, cwd, claude_project_path,
                first_seen_at, last_synced_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (workspace_id, project_id, git_repo_id, host, cwd, claude_project_path, now, now),
        )
        return workspace_id, True
