import json
import os
import tempfile
import unittest
from pathlib import Path

from devarchive.collector.client import ApiError, TransportError
from devarchive.collector.sync import build_sync_requests, run_sync, with_retry
from devarchive.config import CollectorSettings
from devarchive.models import (
    RepoPayload,
    SessionCursor,
    SessionPayload,
    SyncStateResponse,
    SyncStats,
    WorkspacePayload,
)


def _session(session_id: str) -> SessionPayload:
    return SessionPayload(originalSessionId=session_id, filename=f"{session_id}.jsonl", fileCreatedAt="2026-01-01T00:00:00.000Z")


def _workspace(cwd: str, count: int) -> WorkspacePayload:
    return WorkspacePayload(
        host="devbox",
        cwd=cwd,
        claudeProjectPath=f"/claude{cwd}",
        sessions=[_session(f"{cwd.strip('/')}-{i}") for i in range(count)],
    )


class WithRetryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sleeps: list[float] = []

    def test_client_errors_are_not_retried(self) -> None:
        calls = []

        def fn():
            calls.append(1)
            raise ApiError(422, "invalid")

        with self.assertRaises(ApiError):
            with_retry(fn, attempts=3, sleep=self.sleeps.append)
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.sleeps, [])

    def test_server_errors_retry_with_linear_backoff(self) -> None:
        calls = []

        def fn():
            calls.append(1)
            raise ApiError(503, "unavailable")

        with self.assertRaises(ApiError):
            with_retry(fn, attempts=3, delay_seconds=1.0, sleep=self.sleeps.append)
        self.assertEqual(len(calls), 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_transport_error_then_success(self) -> None:
        outcomes = [TransportError("refused"), "ok"]

        def fn():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        self.assertEqual(with_retry(fn, attempts=3, sleep=self.sleeps.append), "ok")
        self.assertEqual(self.sleeps, [1.0])


class BuildSyncRequestsTests(unittest.TestCase):
    def test_first_request_carries_repos_and_first_chunks(self) -> None:
        repos = [RepoPayload(host="devbox", path="/srv/a"), RepoPayload(host="devbox", path="/srv/b")]
        big = _workspace("/big", 5)
        small = _workspace("/small", 2)

        requests_out = build_sync_requests("run-1", repos, [big, small], batch_size=2)

        self.assertEqual(len(requests_out), 3)
        first, second, third = requests_out
        self.assertEqual([r.path for r in first.gitRepos], ["/srv/a", "/srv/b"])
        self.assertEqual([(w.cwd, len(w.sessions)) for w in first.workspaces], [("/big", 2), ("/small", 2)])
        self.assertIsNone(second.gitRepos)
        self.assertEqual([(w.cwd, len(w.sessions)) for w in second.workspaces], [("/big", 2)])
        self.assertEqual([(w.cwd, len(w.sessions)) for w in third.workspaces], [("/big", 1)])
        self.assertEqual(third.workspaces[0].claudeProjectPath, "/claude/big")
        self.assertTrue(all(r.syncRunId == "run-1" for r in requests_out))

        sent = [s.originalSessionId for r in requests_out for w in r.workspaces if w.cwd == "/big" for s in w.sessions]
        self.assertEqual(sent, [s.originalSessionId for s in big.sessions])

    def test_repos_only(self) -> None:
        requests_out = build_sync_requests("run-1", [RepoPayload(host="h", path="/p")], [], batch_size=50)
        self.assertEqual(len(requests_out), 1)
        self.assertIsNone(requests_out[0].workspaces)

    def test_nothing_to_send(self) -> None:
        self.assertEqual(build_sync_requests("run-1", [], [], batch_size=50), [])


class _FakeClient:
    def __init__(self, state: SyncStateResponse | None = None, sync_failures: int = 0) -> None:
        self.state = state or SyncStateResponse()
        self.sync_failures = sync_failures
        self.registered = []
        self.heartbeats = []
        self.sync_requests = []
        self.logs = []
        self.register_error: Exception | None = None

    def register(self, payload):
        if self.register_error:
            raise self.register_error
        self.registered.append(payload)
        return {"id": payload.id}

    def heartbeat(self, collector_id, payload=None):
        self.heartbeats.append(payload)

    def get_sync_state(self, collector_id, host):
        return self.state

    def sync(self, collector_id, request):
        self.sync_requests.append(request)
        if self.sync_failures:
            self.sync_failures -= 1
            raise ApiError(422, "rejected")
        return SyncStats(sessionsCreated=sum(len(w.sessions) for w in request.workspaces or []), entriesCreated=1)

    def submit_logs(self, collector_id, logs):
        self.logs.extend(logs)
        return len(logs)


class RunSyncTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.tmp = Path(tmpdir.name)
        self.projects_dir = self.tmp / "projects"
        self.project = self.projects_dir / "-srv-tool"
        self.project.mkdir(parents=True)
        self.settings = CollectorSettings(server_url="http://archive", api_key="k", collector_name="laptop")

    def _write_session(self, name: str, lines: int, mtime: float) -> None:
        path = self.project / f"{name}.jsonl"
        records = [{"type": "user", "uuid": f"{name}-{i}", "cwd": "/srv/tool"} for i in range(1, lines + 1)]
        path.write_text("\n".join(json.dumps(r) for r in records), encoding="utf-8")
        os.utime(path, (mtime, mtime))

    def _run(self, client, **kwargs):
        return run_sync(
            self.settings,
            [],
            client=client,
            projects_dir=self.projects_dir,
            collector_id_path=self.tmp / "collector-id",
            host="devbox",
            retry_delay_seconds=0,
            **kwargs,
        )

    def test_sends_only_entries_past_server_cursor(self) -> None:
        self._write_session("s-1", 3, mtime=1_800_000_000)
        state = SyncStateResponse(
            workspaces={"/srv/tool": [SessionCursor(originalSessionId="s-1", entryCount=1, lastLineNumber=1)]}
        )
        client = _FakeClient(state)

        result = self._run(client)

        self.assertEqual(result.status, "success")
        self.assertEqual(len(client.sync_requests), 1)
        workspace = client.sync_requests[0].workspaces[0]
        self.assertEqual(workspace.cwd, "/srv/tool")
        self.assertEqual(workspace.host, "devbox")
        self.assertEqual([e.lineNumber for e in workspace.sessions[0].entries], [2, 3])
        self.assertEqual(result.entries_found, 2)
        self.assertEqual(result.stats.sessionsCreated, 1)

        self.assertEqual(client.registered[0].hostname, "devbox")
        self.assertEqual(client.registered[0].name, "laptop")
        self.assertEqual(client.heartbeats[-1].syncStatus, "success")
        self.assertEqual(client.heartbeats[-1].syncRunId, result.sync_run_id)
        self.assertEqual(client.logs[0].level, "info")
        self.assertEqual(client.logs[0].syncRunId, result.sync_run_id)

    def test_collector_id_is_persisted_across_runs(self) -> None:
        first = _FakeClient()
        second = _FakeClient()
        self._run(first)
        self._run(second)
        self.assertEqual(first.registered[0].id, second.registered[0].id)
        self.assertEqual((self.tmp / "collector-id").read_text(encoding="utf-8"), first.registered[0].id)

    def test_failed_upload_makes_run_partial(self) -> None:
        self._write_session("older", 1, mtime=1_700_000_000)
        self._write_session("newer", 1, mtime=1_800_000_000)
        client = _FakeClient(sync_failures=1)

        result = self._run(client, batch_size=1)

        self.assertEqual(result.requests_sent, 2)
        self.assertEqual(result.requests_failed, 1)
        self.assertEqual(result.status, "partial")
        self.assertEqual(len(client.sync_requests), 2)
        self.assertEqual(client.heartbeats[-1].syncStatus, "partial")
        self.assertEqual([log.level for log in client.logs], ["warn", "error"])
        self.assertIn("Upload 1/2", client.logs[1].message)

    def test_every_upload_failing_is_an_error(self) -> None:
        self._write_session("s-1", 1, mtime=1_800_000_000)
        client = _FakeClient(sync_failures=5)

        result = self._run(client)

        self.assertEqual(result.status, "error")

    def test_registration_failure_is_not_fatal(self) -> None:
        self._write_session("s-1", 1, mtime=1_800_000_000)
        client = _FakeClient()
        client.register_error = ApiError(401, "bad key")

        result = self._run(client)

        self.assertEqual(result.status, "success")
        self.assertEqual(len(client.sync_requests), 1)
        self.assertTrue(any("Registration failed" in error for error in result.errors))

    def test_dry_run_never_touches_the_client(self) -> None:
        self._write_session("s-1", 2, mtime=1_800_000_000)
        client = _FakeClient()

        result = self._run(client, dry_run=True)

        self.assertTrue(result.dry_run)
        self.assertIsNone(result.status)
        self.assertEqual(result.sessions_found, 1)
        self.assertEqual(result.entries_found, 2)
        self.assertEqual(client.registered, [])
        self.assertEqual(client.sync_requests, [])
        self.assertEqual(client.heartbeats, [])

    def test_nothing_new_sends_nothing(self) -> None:
        client = _FakeClient()
        result = self._run(client)
        self.assertEqual(client.sync_requests, [])
        self.assertEqual(result.status, "success")


if __name__ == "__main__":
    unittest.main()
