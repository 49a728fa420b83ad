"""SQLite storage for git checkouts, branches and commits."""
from __future__ import annotations

import json
import uuid

import aiosqlite

from devarchive.models import BranchPayload, CommitPayload, RepoPayload


class SqliteGitRepository:
    """Checkouts are keyed by (host, path), branches by (repo, name), commits by (project, sha)."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    # ── Checkouts ───────────────────────────────────────────────────

    async def get_repo(self, host: str, path: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM git_repos WHERE host = ? AND path = ?", (host, path)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_repos_for_host(self, host: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM git_repos WHERE host = ? ORDER BY path", (host,)
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]

    async def upsert_repo(self, project_id: str, repo: RepoPayload, now: str) -> tuple[str, bool]:
        """Insert or overwrite a checkout. Returns ``(repo_id, created)``."""
        snapshot_json = repo.dirtySnapshot.model_dump_json() if repo.dirtySnapshot else None
        existing = await self.get_repo(repo.host, repo.path)
        if existing:
            await self.db.execute(
                """UPDATE git_repos SET
                    project_id = ?, default_branch = ?, current_branch = ?, head_sha = ?,
                    is_dirty = ?, dirty_files_count = ?, dirty_snapshot_json = ?,
                    last_file_change_at = ?, last_scanned_at = ?, updated_at = ?
                WHERE id = ?""",
                (
                    project_id,
                    repo.defaultBranch,
                    repo.currentBranch,
                    repo.headSha,
                    1 if repo.isDirty else 0,
                    repo.dirtyFilesCount,
                    snapshot_json,
                    repo.lastFileChangeAt,
                    now,
                    now,
                    existing["id"],
                ),
            )
            return existing["id"], False

        repo_id = str(uuid.uuid4())
        await self.db.execute(
            """INSERT INTO git_repos (
                id, project_id, host, path, default_branch, current_branch, head_sha,
                is_dirty, dirty_files_count, dirty_snapshot_json, last_file_change_at,
                last_scanned_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                repo_id,
                project_id,
                repo.host,
                repo.path,
                repo.defaultBranch,
                repo.currentBranch,
                repo.headSha,
                1 if repo.isDirty else 0,
                repo.dirtyFilesCount,
                snapshot_json,
                repo.lastFileChangeAt,
                now,
                now,
                now,
            ),
        )
        return repo_id, True

    # ── Branches ────────────────────────────────────────────────────

    async def get_branch(self, repo_id: str, name: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM git_branches WHERE git_repo_id = ? AND name = ?", (repo_id, name)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def insert_branch(self, repo_id: str, branch: BranchPayload, now: str) -> str:
        branch_id = str(uuid.uuid4())
        await self.db.execute(
            """INSERT INTO git_branches (
                id, git_repo_id, name, head_sha, upstream_name, upstream_sha,
                ahead_count, behind_count, last_commit_at, discovered_at, last_seen_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                branch_id,
                repo_id,
                branch.name,
                branch.headSha,
                branch.upstreamName,
                branch.upstreamSha,
                branch.aheadCount,
                branch.behindCount,
                branch.lastCommitAt,
                now,
                now,
            ),
        )
        return branch_id

    async def update_branch(
        self,
        branch_id: str,
        branch: BranchPayload,
        now: str,
        force_pushed: bool = False,
    ) -> None:
        await self.db.execute(
            """UPDATE git_branches SET
                head_sha = ?, upstream_name = ?, upstream_sha = ?,
                ahead_count = ?, behind_count = ?, last_commit_at = ?, last_seen_at = ?,
                force_push_count = force_push_count + ?,
                last_force_push_at = CASE WHEN ? THEN ? ELSE last_force_push_at END
            WHERE id = ?""",
            (
                branch.headSha,
                branch.upstreamName,
                branch.upstreamSha,
                branch.aheadCount,
                branch.behindCount,
                branch.lastCommitAt,
                now,
                1 if force_pushed else 0,
                1 if force_pushed else 0,
                now,
                branch_id,
            ),
        )

    async def list_branches(self, repo_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM git_branches WHERE git_repo_id = ? ORDER BY name", (repo_id,)
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]

    # ── Commits ─────────────────────────────────────────────────────

    async def insert_commit(self, project_id: str, commit: CommitPayload, now: str) -> bool:
        """Insert an immutable commit fact; False when (project, sha) already exists."""
        cur = await self.db.execute(
            """INSERT INTO git_commits (
                id, project_id, sha, message, author_name, author_email, author_date,
                committer_name, committer_date, parent_shas_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, sha) DO NOTHING""",
            (
                str(uuid.uuid4()),
                project_id,
                commit.sha,
                commit.message,
                commit.authorName,
                commit.authorEmail,
                commit.authorDate,
                commit.committerName,
                commit.committerDate,
                json.dumps(commit.parentShas),
                now,
            ),
        )
        inserted = cur.rowcount > 0
        await cur.close()
        return inserted

    async def list_commit_shas(self, project_id: str) -> list[str]:
        async with self.db.execute(
            "SELECT sha FROM git_commits WHERE project_id = ? ORDER BY author_date DESC, sha",
            (project_id,),
        ) as cur:
            rows = await cur.fetchall()
            return [r["sha"] for r in rows]
