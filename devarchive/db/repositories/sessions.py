"""SQLite storage for sessions, transcript entries and tool results."""
from __future__ import annotations

import base64
import json
import re
import uuid
from typing import Any

import aiosqlite

from devarchive.models import EntryPayload, SessionPayload, ToolResultPayload

_NON_BASE64_RE = re.compile(r"[^A-Za-z0-9+/]")
_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


def decode_base64_lenient(value: str) -> bytes:
    """Decode base64 without rejecting missing padding or stray characters.

    Url-safe letters are accepted. Decoding stops at the first ``=``; a dangling single character is dropped.
    """
    text = _NON_BASE64_RE.sub("", value.split("=", 1)[0].translate(_URLSAFE_TO_STANDARD))
    if len(text) % 4 == 1:
        text = text[:-1]
    return base64.b64decode(text + "=" * (-len(text) % 4))


class SqliteSessionRepository:
    """Sessions are keyed by (workspace, original id); entries by (session, line)."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    # ── Sessions ────────────────────────────────────────────────────

    async def get(self, workspace_id: str, original_session_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM sessions WHERE workspace_id = ? AND original_session_id = ?",
            (workspace_id, original_session_id),
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_by_id(self, session_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def upsert(self, workspace_id: str, session: SessionPayload, now: str) -> tuple[str, bool]:
        """Returns ``(session_id, created)``.

        New sessions start with both entry times set to the transcript file's
        creation time until aggregates are recomputed.
        """
        existing = await self.get(workspace_id, session.originalSessionId)
        if existing:
            await self.db.execute(
                """UPDATE sessions SET
                    agent_id = COALESCE(?, agent_id),
                    parent_original_session_id = COALESCE(?, parent_original_session_id),
                    filename = ?, synced_at = ?
                WHERE id = ?""",
                (session.agentId, session.parentOriginalSessionId, session.filename, now, existing["id"]),
            )
            return existing["id"], False

        session_id = str(uuid.uuid4())
        await self.db.execute(
            """INSERT INTO sessions (
                id, workspace_id, original_session_id, agent_id, parent_original_session_id, filename,
                entry_count, first_entry_at, last_entry_at, synced_at
            ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?)""",
            (
                session_id,
                workspace_id,
                session.originalSessionId,
                session.agentId,
                session.parentOriginalSessionId,
                session.filename,
                session.fileCreatedAt,
                session.fileCreatedAt,
                now,
            ),
        )
        return session_id, True

    async def set_parent(self, session_id: str, parent_session_id: str) -> None:
        await self.db.execute(
            "UPDATE sessions SET parent_session_id = ? WHERE id = ?",
            (parent_session_id, session_id),
        )

    async def link_waiting_children(self, workspace_id: str, original_session_id: str, session_id: str) -> int:
        """Point unlinked sessions that name ``original_session_id`` as parent at ``session_id``."""
        cur = await self.db.execute(
            """UPDATE sessions SET parent_session_id = ?
               WHERE workspace_id = ? AND parent_original_session_id = ?
                 AND parent_session_id IS NULL AND id != ?""",
            (session_id, workspace_id, original_session_id, session_id),
        )
        linked = cur.rowcount
        await cur.close()
        return linked

    async def update_aggregates(self, session_id: str, aggregates: dict[str, Any]) -> None:
        models = aggregates.get("models_used")
        await self.db.execute(
            """UPDATE sessions SET
                entry_count = ?, first_entry_at = ?, last_entry_at = ?,
                models_used_json = ?, total_input_tokens = ?, total_output_tokens = ?,
                summary = ?, synced_at = ?
            WHERE id = ?""",
            (
                aggregates["entry_count"],
                aggregates["first_entry_at"],
                aggregates["last_entry_at"],
                json.dumps(models) if models else None,
                aggregates["total_input_tokens"],
                aggregates["total_output_tokens"],
                aggregates.get("summary"),
                aggregates["synced_at"],
                session_id,
            ),
        )

    async def list_cursors(self, workspace_id: str) -> list[dict]:
        """Per session: stored entry count and the highest stored line number (0 if none)."""
        async with self.db.execute(
            """SELECT s.original_session_id, s.entry_count,
                      COALESCE(MAX(e.line_number), 0) AS last_line_number
               FROM sessions s
               LEFT JOIN entries e ON e.session_id = s.id
               WHERE s.workspace_id = ?
               GROUP BY s.id
               ORDER BY s.original_session_id""",
            (workspace_id,),
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]

    # ── Entries ─────────────────────────────────────────────────────

    async def insert_entry(self, session_id: str, entry: EntryPayload) -> str | None:
        """Insert a transcript line; None when (session, line) is already stored."""
        entry_id = str(uuid.uuid4())
        cur = await self.db.execute(
            """INSERT INTO entries (
                id, session_id, original_uuid, line_number, type, subtype, timestamp, data_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id, line_number) DO NOTHING""",
            (
                entry_id,
                session_id,
                entry.originalUuid,
                entry.lineNumber,
                entry.type,
                entry.subtype,
                entry.timestamp,
                json.dumps(entry.data),
            ),
        )
        inserted = cur.rowcount > 0
        await cur.close()
        return entry_id if inserted else None

    async def list_entries(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM entries WHERE session_id = ? ORDER BY line_number",
            (session_id,),
        ) as cur:
            rows = await cur.fetchall()
        entries = []
        for row in rows:
            item = dict(row)
            item["data"] = json.loads(item.pop("data_json") or "{}")
            entries.append(item)
        return entries

    # ── Tool results ────────────────────────────────────────────────

    async def insert_tool_result(self, entry_id: str, result: ToolResultPayload, now: str) -> bool:
        binary = decode_base64_lenient(result.contentBinary) if result.contentBinary else None
        cur = await self.db.execute(
            """INSERT INTO tool_results (
                id, entry_id, tool_use_id, tool_name, content_type, content_text,
                content_binary, size_bytes, is_error, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(entry_id, tool_use_id) DO NOTHING""",
            (
                str(uuid.uuid4()),
                entry_id,
                result.toolUseId,
                result.toolName,
                result.contentType,
                result.contentText,
                binary,
                result.sizeBytes,
                1 if result.isError else 0,
                now,
            ),
        )
        inserted = cur.rowcount > 0
        await cur.close()
        return inserted

    async def list_tool_results(self, entry_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM tool_results WHERE entry_id = ? ORDER BY tool_use_id",
            (entry_id,),
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]
