import unittest
from unittest.mock import patch

import aiosqlite
from fastapi import HTTPException

from devarchive.db.sqlite_migrations import run_migrations
from devarchive.models import (
    CollectorRegister,
    EntryPayload,
    Heartbeat,
    RunLogBatch,
    RunLogCreate,
    SessionPayload,
    SyncRequest,
    WorkspacePayload,
)
from devarchive.routers import collectors as collectors_router


class CollectorsRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        patcher = patch.object(collectors_router.connection, "get_connection", return_value=self.db)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _register(self, collector_id: str = "c-1", name: str = "laptop") -> None:
        await collectors_router.register_collector(
            CollectorRegister(id=collector_id, name=name, hostname="devbox", version="0.1.0", config={"dirs": ["~/code"]})
        )

    async def test_register_then_reregister_updates_details(self) -> None:
        info = await collectors_router.register_collector(
            CollectorRegister(id="c-1", name="laptop", hostname="devbox", osInfo="Linux 6.1")
        )
        self.assertEqual(info.id, "c-1")
        self.assertTrue(info.isActive)
        self.assertEqual(info.registeredAt, info.lastSeenAt)

        again = await collectors_router.register_collector(
            CollectorRegister(id="c-1", name="renamed", hostname="devbox", config={"k": 1})
        )
        self.assertEqual(again.name, "renamed")
        self.assertEqual(again.config, {"k": 1})
        self.assertEqual(again.registeredAt, info.registeredAt)

        listed = await collectors_router.list_collectors(activeOnly=False)
        self.assertEqual([c.id for c in listed], ["c-1"])

    async def test_get_unknown_collector_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await collectors_router.get_collector("missing")
        self.assertEqual(ctx.exception.status_code, 404)

        await self._register()
        found = await collectors_router.get_collector("c-1")
        self.assertEqual(found.config, {"dirs": ["~/code"]})

    async def test_heartbeat_records_last_sync(self) -> None:
        await self._register()

        result = await collectors_router.collector_heartbeat(
            "c-1", Heartbeat(syncRunId="run-1", syncStatus="partial")
        )
        self.assertEqual(result, {"ok": True})
        # A bare heartbeat keeps the last reported run.
        await collectors_router.collector_heartbeat("c-1", None)

        info = await collectors_router.get_collector("c-1")
        self.assertEqual(info.lastSyncRunId, "run-1")
        self.assertEqual(info.lastSyncStatus, "partial")

    async def test_heartbeat_for_unknown_collector_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await collectors_router.collector_heartbeat("missing", None)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_sync_then_sync_state_round_trip(self) -> None:
        request = SyncRequest(
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
                            entries=[
                                EntryPayload(lineNumber=1, type="user", data={"type": "user"}),
                                EntryPayload(lineNumber=2, type="user", data={"type": "user"}),
                            ],
                        )
                    ],
                )
            ],
        )

        stats = await collectors_router.sync_collector("c-1", request)
        state = await collectors_router.get_sync_state("c-1", host="devbox")

        self.assertEqual(stats.workspacesCreated, 1)
        self.assertEqual(stats.entriesCreated, 2)
        self.assertEqual(state.workspaces["/srv/tool"][0].lastLineNumber, 2)
        self.assertEqual(state.gitRepos, {})

    async def test_logs_require_known_collector(self) -> None:
        batch = RunLogBatch(logs=[RunLogCreate(syncRunId="run-1", level="info", message="hi")])
        with self.assertRaises(HTTPException) as ctx:
            await collectors_router.submit_logs("missing", batch)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_logs_filter_and_limit(self) -> None:
        await self._register()
        result = await collectors_router.submit_logs(
            "c-1",
            RunLogBatch(
                logs=[
                    RunLogCreate(syncRunId="run-1", level="info", message="first", context={"n": 1}),
                    RunLogCreate(syncRunId="run-1", level="error", message="second"),
                    RunLogCreate(syncRunId="run-2", level="error", message="third"),
                ]
            ),
        )
        self.assertEqual(result, {"count": 3})

        everything = await collectors_router.list_logs("c-1", syncRunId=None, level=None, limit=100)
        self.assertEqual([item.message for item in everything["items"]], ["first", "second", "third"])
        self.assertEqual(everything["items"][0].context, {"n": 1})

        run_one = await collectors_router.list_logs("c-1", syncRunId="run-1", level=None, limit=100)
        self.assertEqual([item.message for item in run_one["items"]], ["first", "second"])

        errors = await collectors_router.list_logs("c-1", syncRunId=None, level="error", limit=100)
        self.assertEqual([item.message for item in errors["items"]], ["second", "third"])

        limited = await collectors_router.list_logs("c-1", syncRunId=None, level=None, limit=1)
        self.assertEqual(len(limited["items"]), 1)

        other = await collectors_router.list_logs("c-2", syncRunId=None, level=None, limit=100)
        self.assertEqual(other, {"items": []})

    async def test_active_only_listing(self) -> None:
        await self._register("c-1", "alpha")
        await self._register("c-2", "beta")
        await self.db.execute("UPDATE collectors SET is_active = 0 WHERE id = 'c-2'")
        await self.db.commit()

        active = await collectors_router.list_collectors(activeOnly=True)
        everyone = await collectors_router.list_collectors(activeOnly=False)

        self.assertEqual([c.id for c in active], ["c-1"])
        self.assertEqual([c.id for c in everyone], ["c-1", "c-2"])
        self.assertFalse(everyone[1].isActive)


if __name__ == "__main__":
    unittest.main()
