"""SQLite storage for the collector registry and collector run logs."""
from __future__ import annotations

import json
import uuid

import aiosqlite

from devarchive.date_utils import utc_now_iso
from devarchive.models import CollectorRegister, RunLogCreate


def _collector_row_to_dict(row: aiosqlite.Row) -> dict:
    item = dict(row)
    raw_config = item.pop("config_json", None)
    item["config"] = json.loads(raw_config) if raw_config else None
    item["is_active"] = bool(item.get("is_active"))
    return item


class SqliteCollectorRepository:
    """Collectors are keyed by their client-generated id."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, collector_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM collectors WHERE id = ?", (collector_id,)) as cur:
            row = await cur.fetchone()
            return _collector_row_to_dict(row) if row else None

    async def list_all(self, active_only: bool = False) -> list[dict]:
        query = "SELECT * FROM collectors"
        if active_only:
            query += " WHERE is_active = 1"
        async with self.db.execute(query + " ORDER BY name, id") as cur:
            rows = await cur.fetchall()
            return [_collector_row_to_dict(r) for r in rows]

    async def register(self, payload: CollectorRegister) -> dict:
        now = utc_now_iso()
        await self.db.execute(
            """INSERT INTO collectors (
                id, name, hostname, os_info, version, config_json,
                registered_at, last_seen_at, is_active
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, hostname=excluded.hostname,
                os_info=excluded.os_info, version=excluded.version,
                config_json=excluded.config_json,
                last_seen_at=excluded.last_seen_at, is_active=1
            """,
            (
                payload.id,
                payload.name,
                payload.hostname,
                payload.osInfo,
                payload.version,
                json.dumps(payload.config) if payload.config is not None else None,
                now,
                now,
            ),
        )
        return await self.get(payload.id) or {}

    async def heartbeat(
        self,
        collector_id: str,
        sync_run_id: str | None = None,
        sync_status: str | None = None,
    ) -> bool:
        """Refresh last_seen_at; False when the collector is unknown."""
        cur = await self.db.execute(
            """UPDATE collectors SET
                last_seen_at = ?,
                last_sync_run_id = COALESCE(?, last_sync_run_id),
                last_sync_status = COALESCE(?, last_sync_status)
            WHERE id = ?""",
            (utc_now_iso(), sync_run_id, sync_status, collector_id),
        )
        updated = cur.rowcount > 0
        await cur.close()
        return updated


class SqliteRunLogRepository:
    """Append-only run log lines reported by collectors."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def add_many(self, collector_id: str, logs: list[RunLogCreate]) -> int:
        now = utc_now_iso()
        await self.db.executemany(
            """INSERT INTO run_logs (
                id, collector_id, sync_run_id, timestamp, level, message, context_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    str(uuid.uuid4()),
                    collector_id,
                    log.syncRunId,
                    now,
                    log.level,
                    log.message,
                    json.dumps(log.context) if log.context is not None else None,
                )
                for log in logs
            ],
        )
        return len(logs)

    async def list_for_collector(
        self,
        collector_id: str,
        sync_run_id: str | None = None,
        level: str | None = None,
        limit: int = 100,
    ) -> list[dict]:
        clauses = ["collector_id = ?"]
        params: list = [collector_id]
        if sync_run_id:
            clauses.append("sync_run_id = ?")
            params.append(sync_run_id)
        if level:
            clauses.append("level = ?")
            params.append(level)
        params.append(limit)

        async with self.db.execute(
            f"""SELECT * FROM run_logs
                WHERE {' AND '.join(clauses)}
                ORDER BY timestamp, rowid
                LIMIT ?""",
            params,
        ) as cur:
            rows = await cur.fetchall()

        items = []
        for row in rows:
            item = dict(row)
            raw_context = item.pop("context_json", None)
            item["context"] = json.loads(raw_context) if raw_context else None
            items.append(item)
        return items
