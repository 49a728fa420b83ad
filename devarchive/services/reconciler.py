"""Idempotent merge of collector uploads into the project/repo/session graph.

Every step is an upsert keyed on a natural key, so resending the same
payload only refreshes timestamps. Each repository and each workspace is
merged in its own transaction; a failure rolls back that unit and
propagates, leaving units merged earlier in the call committed.
"""
from __future__ import annotations

import logging
import time
from typing import Optional, Protocol

import aiosqlite

from devarchive import observability
from devarchive.date_utils import utc_now_iso
from devarchive.db.connection import transaction
from devarchive.db.factory import (
    get_git_repository,
    get_project_repository,
    get_session_repository,
    get_workspace_repository,
)
from devarchive.models import (
    BranchPayload,
    RepoPayload,
    SessionPayload,
    SyncRequest,
    SyncStats,
    ToolResultPayload,
    WorkspacePayload,
)
from devarchive.remote_urls import normalize_upstream_url, project_name_from_path
from devarchive.services.aggregates import update_session_aggregates
from devarchive.transcripts import tool_use_ids

logger = logging.getLogger("devarchive.sync")


class ForcePushPolicy(Protocol):
    def is_force_push(self, previous_head_sha: str, branch: BranchPayload, repo: RepoPayload) -> bool:
        ...


class NoForcePushDetection:
    """Never reports a force push; rewritten branch heads are simply overwritten."""

    def is_force_push(self, previous_head_sha: str, branch: BranchPayload, repo: RepoPayload) -> bool:
        return False


def path_contains(repo_path: str, cwd: str) -> bool:
    base = repo_path.rstrip("/") or "/"
    if cwd == base:
        return True
    prefix = base if base.endswith("/") else base + "/"
    return cwd.startswith(prefix)


class SyncReconciler:
    def __init__(self, db: aiosqlite.Connection, force_push_policy: Optional[ForcePushPolicy] = None):
        self.db = db
        self.force_push_policy = force_push_policy or NoForcePushDetection()
        self.projects = get_project_repository(db)
        self.git = get_git_repository(db)
        self.workspaces = get_workspace_repository(db)
        self.sessions = get_session_repository(db)

    async def reconcile(self, request: SyncRequest) -> SyncStats:
        stats = SyncStats()
        started = time.perf_counter()
        stage = "repo"
        host = ""
        try:
            for repo in request.gitRepos or []:
                host = repo.host
                with observability.start_span("sync.repo", {"host": repo.host, "path": repo.path}):
                    async with transaction(self.db):
                        stats.merge(await self.reconcile_repo(repo))

            stage = "workspace"
            for workspace in request.workspaces or []:
                host = workspace.host
                with observability.start_span(
                    "sync.workspace",
                    {"host": workspace.host, "cwd": workspace.cwd, "sessions": len(workspace.sessions)},
                ):
                    async with transaction(self.db):
                        stats.merge(await self.reconcile_workspace(workspace))
        except Exception:
            observability.record_sync_failure(stage, host=host)
            observability.record_sync("error", (time.perf_counter() - started) * 1000, host=host)
            logger.exception("Sync run %s failed during %s merge", request.syncRunId, stage)
            raise

        observability.record_sync(
            "success",
            (time.perf_counter() - started) * 1000,
            host=host,
            counters=stats.model_dump(),
        )
        logger.info("Sync run %s reconciled: %s", request.syncRunId, stats.model_dump())
        return stats

    # ── Repositories ────────────────────────────────────────────────

    async def _resolve_repo_project(self, repo: RepoPayload, stats: SyncStats) -> str:
        name = project_name_from_path(repo.path)
        upstream_url = normalize_upstream_url(repo.upstreamUrl or "")
        if upstream_url:
            existing = await self.projects.get_by_upstream_url(upstream_url)
            if existing:
                await self.projects.touch(existing["id"])
                stats.projectsUpdated += 1
                return existing["id"]
            stats.projectsCreated += 1
            return await self.projects.create(name, upstream_url)

        existing_repo = await self.git.get_repo(repo.host, repo.path)
        if existing_repo:
            await self.projects.touch(existing_repo["project_id"])
            stats.projectsUpdated += 1
            return existing_repo["project_id"]
        stats.projectsCreated += 1
        return await self.projects.create(name)

    async def reconcile_repo(self, repo: RepoPayload) -> SyncStats:
        stats = SyncStats()
        now = utc_now_iso()
        project_id = await self._resolve_repo_project(repo, stats)

        repo_id, created = await self.git.upsert_repo(project_id, repo, now)
        if created:
            stats.gitReposCreated += 1
        else:
            stats.gitReposUpdated += 1

        for branch in repo.branches:
            existing = await self.git.get_branch(repo_id, branch.name)
            if existing is None:
                await self.git.insert_branch(repo_id, branch, now)
                stats.branchesCreated += 1
                continue
            force_pushed = False
            if existing["head_sha"] != branch.headSha:
                force_pushed = self.force_push_policy.is_force_push(existing["head_sha"], branch, repo)
                if force_pushed:
                    logger.info("Force push detected on %s:%s branch %s", repo.host, repo.path, branch.name)
            await self.git.update_branch(existing["id"], branch, now, force_pushed=force_pushed)
            stats.branchesUpdated += 1

        for commit in repo.commits:
            if await self.git.insert_commit(project_id, commit, now):
                stats.commitsCreated += 1

        logger.debug(
            "Repository %s:%s merged (%s new commits)", repo.host, repo.path, stats.commitsCreated
        )
        return stats

    # ── Workspaces ──────────────────────────────────────────────────

    async def _resolve_workspace_repo(self, host: str, cwd: str) -> dict | None:
        """The checkout on this host with the longest path containing ``cwd``."""
        best: dict | None = None
        for candidate in await self.git.list_repos_for_host(host):
            if not path_contains(candidate["path"], cwd):
                continue
            if best is None or len(candidate["path"]) > len(best["path"]):
                best = candidate
        return best

    async def _resolve_workspace_project(self, cwd: str, stats: SyncStats) -> str:
        name = project_name_from_path(cwd)
        existing = await self.projects.get_unlinked_by_name(name)
        if existing:
            return existing["id"]
        stats.projectsCreated += 1
        return await self.projects.create(name)

    async def reconcile_workspace(self, workspace: WorkspacePayload) -> SyncStats:
        stats = SyncStats()
        now = utc_now_iso()

        git_repo = await self._resolve_workspace_repo(workspace.host, workspace.cwd)
        if git_repo:
            project_id = git_repo["project_id"]
        else:
            project_id = await self._resolve_workspace_project(workspace.cwd, stats)

        workspace_id, created = await self.workspaces.upsert(
            workspace.host,
            workspace.cwd,
            project_id,
            git_repo["id"] if git_repo else None,
            workspace.claudeProjectPath,
            now,
        )
        if created:
            stats.workspacesCreated += 1
        else:
            stats.workspacesUpdated += 1

        # Pass one: every session and its new entries, before any parent link.
        session_ids: dict[str, str] = {}
        for session in workspace.sessions:
            session_id, session_created = await self.sessions.upsert(workspace_id, session, now)
            session_ids[session.originalSessionId] = session_id
            if session_created:
                stats.sessionsCreated += 1
            else:
                stats.sessionsUpdated += 1
            await self._insert_entries(session_id, session, now, stats)

        # Pass two: parents may appear anywhere in the batch or already be stored.
        for session in workspace.sessions:
            parent_original_id = session.parentOriginalSessionId
            if not parent_original_id:
                continue
            parent_id = session_ids.get(parent_original_id)
            if parent_id is None:
                parent = await self.sessions.get(workspace_id, parent_original_id)
                parent_id = parent["id"] if parent else None
            if parent_id is None:
                logger.debug(
                    "Parent session %s of %s not found in workspace %s",
                    parent_original_id,
                    session.originalSessionId,
                    workspace.cwd,
                )
                continue
            await self.sessions.set_parent(session_ids[session.originalSessionId], parent_id)

        # Agents stored by an earlier upload may have been waiting for one of these parents.
        for original_id, session_id in session_ids.items():
            linked = await self.sessions.link_waiting_children(workspace_id, original_id, session_id)
            if linked:
                logger.debug("Linked %s waiting agent session(s) to %s in %s", linked, original_id, workspace.cwd)

        for session in workspace.sessions:
            await update_session_aggregates(self.db, session_ids[session.originalSessionId], session.fileCreatedAt)

        logger.debug(
            "Workspace %s:%s merged (%s sessions, %s new entries)",
            workspace.host,
            workspace.cwd,
            len(workspace.sessions),
            stats.entriesCreated,
        )
        return stats

    async def _insert_entries(self, session_id: str, session: SessionPayload, now: str, stats: SyncStats) -> None:
        results_by_tool_use: dict[str, ToolResultPayload] = {
            result.toolUseId: result for result in session.toolResults or []
        }
        for entry in session.entries:
            entry_id = await self.sessions.insert_entry(session_id, entry)
            if entry_id is None:
                continue
            stats.entriesCreated += 1
            for tool_use_id in tool_use_ids(entry.data):
                result = results_by_tool_use.get(tool_use_id)
                if result is not None and await self.sessions.insert_tool_result(entry_id, result, now):
                    stats.toolResultsCreated += 1
