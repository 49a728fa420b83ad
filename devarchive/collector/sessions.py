"""Discover Claude workspaces and read transcript deltas into sync payloads."""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from devarchive.collector.probe import read_text
from devarchive.collector.tool_results import load_tool_result
from devarchive.date_utils import file_created_at, normalize_timestamp, utc_now_iso
from devarchive.models import (
    EntryPayload,
    SessionCursor,
    SessionPayload,
    ToolResultPayload,
    WorkspacePayload,
)
from devarchive.transcripts import tool_use_ids

logger = logging.getLogger("devarchive.collector")

_AGENT_FILE_PATTERN = re.compile(r"^agent-([a-f0-9]+)\.jsonl$")


@dataclass
class SessionFile:
    path: Path
    session_id: str
    agent_id: str | None = None

    @property
    def is_agent(self) -> bool:
        return self.agent_id is not None


@dataclass
class WorkspaceInfo:
    claude_path: Path
    decoded_path: str
    sessions: list[SessionFile] = field(default_factory=list)


def decode_project_path(encoded: str) -> str:
    """``-home-user-app`` -> ``/home/user/app`` (lossy for paths containing hyphens)."""
    return encoded.replace("-", "/")


def agent_id_from_filename(filename: str) -> str | None:
    match = _AGENT_FILE_PATTERN.match(filename)
    return match.group(1) if match else None


def list_session_files(project_dir: Path) -> list[SessionFile]:
    """Transcript files of a workspace, newest first."""
    candidates: list[tuple[float, SessionFile]] = []
    try:
        children = list(project_dir.iterdir())
    except OSError:
        return []

    for child in children:
        if child.suffix != ".jsonl":
            continue
        try:
            if not child.is_file():
                continue
            mtime = child.stat().st_mtime
        except OSError:
            continue
        candidates.append(
            (mtime, SessionFile(path=child, session_id=child.stem, agent_id=agent_id_from_filename(child.name)))
        )

    candidates.sort(key=lambda item: (-item[0], item[1].session_id))
    return [session for _, session in candidates]


def list_workspaces(projects_dir: Path) -> list[WorkspaceInfo]:
    """Every directory under the Claude projects root is a workspace."""
    try:
        children = sorted(projects_dir.iterdir(), key=lambda p: p.name)
    except OSError:
        logger.debug("Claude projects directory %s is not readable", projects_dir)
        return []

    workspaces: list[WorkspaceInfo] = []
    for child in children:
        try:
            if not child.is_dir():
                continue
        except OSError:
            continue
        workspaces.append(
            WorkspaceInfo(
                claude_path=child,
                decoded_path=decode_project_path(child.name),
                sessions=list_session_files(child),
            )
        )
    return workspaces


def _numbered_records(content: str):
    """Yield ``(line_number, record_or_None)`` for non-blank lines.

    Blank lines are never numbered; a malformed line still consumes its
    number and yields None.
    """
    line_number = 0
    for line in content.split("\n"):
        if not line.strip():
            continue
        line_number += 1
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            yield line_number, None
            continue
        yield line_number, record if isinstance(record, dict) else None


def extract_cwd_from_session(path: Path) -> str | None:
    probe = read_text(path)
    if not probe.is_found or probe.value is None:
        return None
    for _, record in _numbered_records(probe.value):
        if record is None:
            continue
        cwd = record.get("cwd")
        if isinstance(cwd, str) and cwd:
            return cwd
    return None


def resolve_workspace_cwd(workspace: WorkspaceInfo) -> str:
    for session in workspace.sessions:
        cwd = extract_cwd_from_session(session.path)
        if cwd:
            return cwd
    return workspace.decoded_path


def _entry_from_record(line_number: int, record: dict[str, Any]) -> EntryPayload:
    uuid = record.get("uuid")
    entry_type = record.get("type")
    subtype = record.get("subtype")
    return EntryPayload(
        originalUuid=uuid if isinstance(uuid, str) and uuid else None,
        lineNumber=line_number,
        type=entry_type if isinstance(entry_type, str) and entry_type else "unknown",
        subtype=subtype if isinstance(subtype, str) and subtype else None,
        timestamp=normalize_timestamp(record.get("timestamp")),
        data=record,
    )


def read_session_delta(
    session_file: SessionFile,
    project_dir: Path,
    cursor: SessionCursor | None = None,
) -> SessionPayload | None:
    """Read entries past the cursor; None when there is nothing new.

    Without a cursor every entry is returned. Agent sessions take their
    parent id from the first numbered line's ``sessionId``.
    """
    probe = read_text(session_file.path)
    if not probe.is_found or probe.value is None:
        return None

    last_line = cursor.lastLineNumber if cursor else 0
    entries: list[EntryPayload] = []
    parent_session_id: str | None = None

    for line_number, record in _numbered_records(probe.value):
        if line_number == 1 and session_file.is_agent and record is not None:
            candidate = record.get("sessionId")
            if isinstance(candidate, str) and candidate:
                parent_session_id = candidate
        if record is None or line_number <= last_line:
            continue
        entries.append(_entry_from_record(line_number, record))

    if not entries:
        return None

    tool_results = load_tool_results_for_session(project_dir, session_file.session_id, entries)
    return SessionPayload(
        originalSessionId=session_file.session_id,
        agentId=session_file.agent_id,
        parentOriginalSessionId=parent_session_id,
        filename=f"{session_file.session_id}.jsonl",
        fileCreatedAt=file_created_at(session_file.path) or utc_now_iso(),
        entries=entries,
        toolResults=tool_results or None,
    )


def load_tool_results_for_session(
    project_dir: Path,
    session_id: str,
    entries: list[EntryPayload],
) -> list[ToolResultPayload]:
    results_dir = project_dir / session_id / "tool-results"
    results: list[ToolResultPayload] = []
    for entry in entries:
        for tool_use_id in tool_use_ids(entry.data):
            result = load_tool_result(results_dir, tool_use_id)
            if result is not None:
                results.append(result)
    return results


def build_workspace_payload(
    workspace: WorkspaceInfo,
    cwd: str,
    host: str,
    known_sessions: Mapping[str, SessionCursor],
) -> WorkspacePayload:
    sessions: list[SessionPayload] = []
    for session_file in workspace.sessions:
        delta = read_session_delta(session_file, workspace.claude_path, known_sessions.get(session_file.session_id))
        if delta is not None:
            sessions.append(delta)
    return WorkspacePayload(
        host=host,
        cwd=cwd,
        claudeProjectPath=str(workspace.claude_path),
        sessions=sessions,
    )
