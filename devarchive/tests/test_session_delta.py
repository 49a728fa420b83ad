import json
import os
import tempfile
import unittest
from pathlib import Path

from devarchive.collector.sessions import (
    SessionFile,
    WorkspaceInfo,
    agent_id_from_filename,
    build_workspace_payload,
    decode_project_path,
    list_session_files,
    list_workspaces,
    read_session_delta,
    resolve_workspace_cwd,
)
from devarchive.models import SessionCursor


def _assistant(uuid: str, *tool_ids: str) -> dict:
    return {
        "type": "assistant",
        "uuid": uuid,
        "timestamp": "2026-02-16T10:00:00Z",
        "message": {
            "role": "assistant",
            "model": "claude-sonnet",
            "content": [{"type": "tool_use", "id": tool_id, "name": "Read", "input": {}} for tool_id in tool_ids],
        },
    }


class SessionDeltaTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.projects_dir = Path(tmpdir.name)
        self.project_dir = self.projects_dir / "-home-user-app"
        self.project_dir.mkdir()

    def _write_session(self, name: str, lines: list) -> SessionFile:
        path = self.project_dir / f"{name}.jsonl"
        rendered = [line if isinstance(line, str) else json.dumps(line) for line in lines]
        path.write_text("\n".join(rendered) + "\n", encoding="utf-8")
        return SessionFile(path=path, session_id=name, agent_id=agent_id_from_filename(path.name))

    def _user(self, uuid: str, **extra) -> dict:
        record = {"type": "user", "uuid": uuid, "sessionId": "s-1", "timestamp": "2026-02-16T09:00:00+01:00"}
        record.update(extra)
        return record

    def test_full_read_without_cursor(self) -> None:
        session = self._write_session("s-1", [self._user("u1"), self._user("u2")])

        payload = read_session_delta(session, self.project_dir)

        self.assertEqual(payload.originalSessionId, "s-1")
        self.assertEqual(payload.filename, "s-1.jsonl")
        self.assertIsNone(payload.agentId)
        self.assertIsNone(payload.parentOriginalSessionId)
        self.assertIsNone(payload.toolResults)
        self.assertTrue(payload.fileCreatedAt.endswith("Z"))
        self.assertEqual([e.lineNumber for e in payload.entries], [1, 2])
        self.assertEqual(payload.entries[0].originalUuid, "u1")
        self.assertEqual(payload.entries[0].type, "user")
        self.assertEqual(payload.entries[0].timestamp, "2026-02-16T08:00:00.000Z")
        self.assertEqual(payload.entries[0].data["uuid"], "u1")

    def test_cursor_returns_only_lines_past_last_line_number(self) -> None:
        session = self._write_session("s-1", [self._user(f"u{i}") for i in range(1, 5)])
        cursor = SessionCursor(originalSessionId="s-1", entryCount=2, lastLineNumber=2)

        payload = read_session_delta(session, self.project_dir, cursor)

        self.assertEqual([e.lineNumber for e in payload.entries], [3, 4])
        self.assertEqual([e.originalUuid for e in payload.entries], ["u3", "u4"])

    def test_nothing_new_returns_none(self) -> None:
        session = self._write_session("s-1", [self._user("u1"), self._user("u2")])
        cursor = SessionCursor(originalSessionId="s-1", entryCount=2, lastLineNumber=2)
        self.assertIsNone(read_session_delta(session, self.project_dir, cursor))

    def test_malformed_lines_consume_numbers_and_blank_lines_do_not(self) -> None:
        session = self._write_session(
            "s-1",
            [self._user("u1"), "", "   ", "{not json", "[1, 2]", self._user("u4")],
        )

        payload = read_session_delta(session, self.project_dir)

        self.assertEqual([e.lineNumber for e in payload.entries], [1, 4])
        self.assertEqual([e.originalUuid for e in payload.entries], ["u1", "u4"])

    def test_cursor_past_malformed_gap_uses_line_numbers_not_counts(self) -> None:
        session = self._write_session("s-1", [self._user("u1"), "{bad", self._user("u3"), self._user("u4")])
        # Two stored entries, but the highest stored line is 3.
        cursor = SessionCursor(originalSessionId="s-1", entryCount=2, lastLineNumber=3)

        payload = read_session_delta(session, self.project_dir, cursor)

        self.assertEqual([e.lineNumber for e in payload.entries], [4])

    def test_record_without_type_or_uuid(self) -> None:
        session = self._write_session("s-1", [{"foo": "bar"}])
        entry = read_session_delta(session, self.project_dir).entries[0]
        self.assertEqual(entry.type, "unknown")
        self.assertIsNone(entry.originalUuid)
        self.assertIsNone(entry.timestamp)

    def test_agent_session_takes_parent_from_first_line(self) -> None:
        session = self._write_session(
            "agent-abc123",
            [self._user("a1", sessionId="parent-session"), self._user("a2", sessionId="other")],
        )

        payload = read_session_delta(session, self.project_dir)

        self.assertEqual(payload.agentId, "abc123")
        self.assertEqual(payload.originalSessionId, "agent-abc123")
        self.assertEqual(payload.parentOriginalSessionId, "parent-session")

    def test_agent_parent_is_reported_on_incremental_reads(self) -> None:
        session = self._write_session(
            "agent-abc123",
            [self._user("a1", sessionId="parent-session"), self._user("a2")],
        )
        cursor = SessionCursor(originalSessionId="agent-abc123", entryCount=1, lastLineNumber=1)

        payload = read_session_delta(session, self.project_dir, cursor)

        self.assertEqual([e.lineNumber for e in payload.entries], [2])
        self.assertEqual(payload.parentOriginalSessionId, "parent-session")

    def test_tool_results_are_loaded_for_tool_use_blocks(self) -> None:
        session = self._write_session("s-1", [self._user("u1"), _assistant("a1", "toolu_1", "toolu_missing")])
        results_dir = self.project_dir / "s-1" / "tool-results"
        results_dir.mkdir(parents=True)
        (results_dir / "toolu_1.json").write_text(
            json.dumps({"toolName": "Read", "result": "file contents"}),
            encoding="utf-8",
        )

        payload = read_session_delta(session, self.project_dir)

        self.assertEqual(len(payload.toolResults), 1)
        result = payload.toolResults[0]
        self.assertEqual(result.toolUseId, "toolu_1")
        self.assertEqual(result.toolName, "Read")
        self.assertEqual(result.contentText, "file contents")

    def test_missing_file_returns_none(self) -> None:
        missing = SessionFile(path=self.project_dir / "gone.jsonl", session_id="gone")
        self.assertIsNone(read_session_delta(missing, self.project_dir))


class WorkspaceDiscoveryTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.projects_dir = Path(tmpdir.name)

    def _write(self, path: Path, records: list[dict], mtime: float | None = None) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(json.dumps(r) for r in records), encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))

    def test_decode_project_path(self) -> None:
        self.assertEqual(decode_project_path("-home-user-app"), "/home/user/app")

    def test_agent_filename_pattern(self) -> None:
        self.assertEqual(agent_id_from_filename("agent-0a1b2c.jsonl"), "0a1b2c")
        self.assertIsNone(agent_id_from_filename("agent-XYZ.jsonl"))
        self.assertIsNone(agent_id_from_filename("5f3c.jsonl"))

    def test_sessions_are_listed_newest_first(self) -> None:
        project = self.projects_dir / "-home-user-app"
        self._write(project / "old.jsonl", [{"type": "user"}], mtime=1_700_000_000)
        self._write(project / "new.jsonl", [{"type": "user"}], mtime=1_800_000_000)
        (project / "notes.txt").write_text("ignored", encoding="utf-8")

        sessions = list_session_files(project)

        self.assertEqual([s.session_id for s in sessions], ["new", "old"])

    def test_workspaces_are_sorted_and_ignore_files(self) -> None:
        (self.projects_dir / "-b").mkdir()
        (self.projects_dir / "-a").mkdir()
        (self.projects_dir / "stray.json").write_text("{}", encoding="utf-8")

        workspaces = list_workspaces(self.projects_dir)

        self.assertEqual([w.decoded_path for w in workspaces], ["/a", "/b"])

    def test_missing_projects_dir_yields_no_workspaces(self) -> None:
        self.assertEqual(list_workspaces(self.projects_dir / "missing"), [])

    def test_cwd_comes_from_first_record_that_carries_one(self) -> None:
        project = self.projects_dir / "-home-user-my-app"
        self._write(
            project / "s-1.jsonl",
            [{"type": "summary", "summary": "x"}, {"type": "user", "cwd": "/home/user/my-app"}],
        )
        workspace = list_workspaces(self.projects_dir)[0]

        self.assertEqual(workspace.decoded_path, "/home/user/my/app")
        self.assertEqual(resolve_workspace_cwd(workspace), "/home/user/my-app")

    def test_cwd_falls_back_to_decoded_path(self) -> None:
        project = self.projects_dir / "-srv-tool"
        self._write(project / "s-1.jsonl", [{"type": "user"}])
        workspace = list_workspaces(self.projects_dir)[0]
        self.assertEqual(resolve_workspace_cwd(workspace), "/srv/tool")

    def test_workspace_payload_skips_sessions_without_delta(self) -> None:
        project = self.projects_dir / "-srv-tool"
        self._write(project / "done.jsonl", [{"type": "user"}], mtime=1_700_000_000)
        self._write(project / "fresh.jsonl", [{"type": "user"}, {"type": "user"}], mtime=1_800_000_000)
        workspace = WorkspaceInfo(
            claude_path=project,
            decoded_path="/srv/tool",
            sessions=list_session_files(project),
        )
        known = {
            "done": SessionCursor(originalSessionId="done", entryCount=1, lastLineNumber=1),
            "fresh": SessionCursor(originalSessionId="fresh", entryCount=1, lastLineNumber=1),
        }

        payload = build_workspace_payload(workspace, "/srv/tool", "devbox", known)

        self.assertEqual(payload.host, "devbox")
        self.assertEqual(payload.cwd, "/srv/tool")
        self.assertEqual(payload.claudeProjectPath, str(project))
        self.assertEqual([s.originalSessionId for s in payload.sessions], ["fresh"])
        self.assertEqual([e.lineNumber for e in payload.sessions[0].entries], [2])


if __name__ == "__main__":
    unittest.main()
