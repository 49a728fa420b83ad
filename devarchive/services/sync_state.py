"""Summarize what the server already holds for one host."""
from __future__ import annotations

import aiosqlite

from devarchive.db.factory import (
    get_git_repository,
    get_session_repository,
    get_workspace_repository,
)
from devarchive.models import SessionCursor, SyncStateResponse


async def build_sync_state(db: aiosqlite.Connection, host: str) -> SyncStateResponse:
    """Known commit SHAs per checkout path and session cursors per workspace cwd.

    SHAs are reported for the checkout's whole project, so a second clone of
    the same remote does not re-upload history. The cursor's
    ``lastLineNumber`` is the highest stored line, never the entry count.
    """
    git_repo = get_git_repository(db)
    workspace_repo = get_workspace_repository(db)
    session_repo = get_session_repository(db)

    shas_by_project: dict[str, list[str]] = {}
    git_repos: dict[str, list[str]] = {}
    for repo in await git_repo.list_repos_for_host(host):
        project_id = repo["project_id"]
        if project_id not in shas_by_project:
            shas_by_project[project_id] = await git_repo.list_commit_shas(project_id)
        git_repos[repo["path"]] = shas_by_project[project_id]

    workspaces: dict[str, list[SessionCursor]] = {}
    for workspace in await workspace_repo.list_for_host(host):
        rows = await session_repo.list_cursors(workspace["id"])
        workspaces[workspace["cwd"]] = [
            SessionCursor(
                originalSessionId=row["original_session_id"],
                entryCount=row["entry_count"] or 0,
                lastLineNumber=row["last_line_number"] or 0,
            )
            for row in rows
        ]

    return SyncStateResponse(gitRepos=git_repos, workspaces=workspaces)
