import unittest

import aiosqlite

from devarchive.db.sqlite_migrations import run_migrations
from devarchive.models import (
    CommitPayload,
    EntryPayload,
    RepoPayload,
    SessionPayload,
    SyncRequest,
    WorkspacePayload,
)
from devarchive.services.reconciler import SyncReconciler
from devarchive.services.sync_state import build_sync_state


def _commit(sha: str, date: str) -> CommitPayload:
    return CommitPayload(sha=sha, message=sha, authorName="Ann", authorEmail="ann@example.com", authorDate=date)


def _entries(*lines: int) -> list[EntryPayload]:
    return [EntryPayload(lineNumber=line, type="user", data={"type": "user"}) for line in lines]


class SyncStateTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.reconciler = SyncReconciler(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_empty_host(self) -> None:
        state = await build_sync_state(self.db, "devbox")
        self.assertEqual(state.gitRepos, {})
        self.assertEqual(state.workspaces, {})

    async def test_known_shas_cover_the_whole_project_for_every_checkout(self) -> None:
        await self.reconciler.reconcile(
            SyncRequest(
                syncRunId="run-1",
                gitRepos=[
                    RepoPayload(
                        host="devbox",
                        path="/home/u/app",
                        upstreamUrl="github.com/acme/app",
                        commits=[_commit("old", "2026-01-01T00:00:00.000Z"), _commit("new", "2026-01-02T00:00:00.000Z")],
                    ),
                    RepoPayload(
                        host="devbox",
                        path="/home/u/app-copy",
                        upstreamUrl="git@github.com:acme/app.git",
                        commits=[_commit("branch-only", "2026-01-03T00:00:00.000Z")],
                    ),
                    RepoPayload(
                        host="elsewhere",
                        path="/home/u/other",
                        upstreamUrl="github.com/acme/other",
                        commits=[_commit("foreign", "2026-01-01T00:00:00.000Z")],
                    ),
                ],
            )
        )

        state = await build_sync_state(self.db, "devbox")

        self.assertEqual(set(state.gitRepos), {"/home/u/app", "/home/u/app-copy"})
        self.assertEqual(state.gitRepos["/home/u/app"], ["branch-only", "new", "old"])
        self.assertEqual(state.gitRepos["/home/u/app-copy"], ["branch-only", "new", "old"])

    async def test_cursor_reports_highest_line_not_entry_count(self) -> None:
        await self.reconciler.reconcile(
            SyncRequest(
                syncRunId="run-1",
                workspaces=[
                    WorkspacePayload(
                        host="devbox",
                        cwd="/srv/tool",
                        claudeProjectPath="/claude/-srv-tool",
                        sessions=[
                            SessionPayload(
                                originalSessionId="s-1",
                                filename="s-1.jsonl",
                                fileCreatedAt="2026-01-01T00:00:00.000Z",
                                # Line 2 was malformed on the host and never stored.
                                entries=_entries(1, 3, 4),
                            )
                        ],
                    )
                ],
            )
        )

        state = await build_sync_state(self.db, "devbox")

        cursors = state.workspaces["/srv/tool"]
        self.assertEqual(len(cursors), 1)
        self.assertEqual(cursors[0].originalSessionId, "s-1")
        self.assertEqual(cursors[0].entryCount, 3)
        self.assertEqual(cursors[0].lastLineNumber, 4)
        self.assertEqual(await build_sync_state(self.db, "elsewhere"), type(state)())


if __name__ == "__main__":
    unittest.main()
