"""Recompute derived session fields from every stored entry."""
from __future__ import annotations

from typing import Any

import aiosqlite

from devarchive.date_utils import parse_datetime, utc_now_iso
from devarchive.db.factory import get_session_repository
from devarchive.transcripts import assistant_model, assistant_usage, summary_text


def compute_session_aggregates(entries: list[dict[str, Any]], file_created_at: str | None) -> dict[str, Any]:
    """Aggregate entries ordered by line number.

    Entries without a parseable timestamp do not move the first/last bounds;
    when none has one, both bounds fall back to ``file_created_at``.
    """
    timestamps: list[tuple[Any, str]] = []
    models: list[str] = []
    input_tokens = 0
    output_tokens = 0
    summary: str | None = None

    for entry in entries:
        data = entry.get("data") or {}
        raw_ts = entry.get("timestamp")
        parsed = parse_datetime(raw_ts) if isinstance(raw_ts, str) else None
        if parsed is not None:
            timestamps.append((parsed, raw_ts))

        model = assistant_model(data)
        if model and model not in models:
            models.append(model)

        entry_in, entry_out = assistant_usage(data)
        input_tokens += entry_in
        output_tokens += entry_out

        text = summary_text(data)
        if text is not None:
            summary = text

    if timestamps:
        first_entry_at = min(timestamps, key=lambda item: item[0])[1]
        last_entry_at = max(timestamps, key=lambda item: item[0])[1]
    else:
        first_entry_at = last_entry_at = file_created_at

    return {
        "entry_count": len(entries),
        "first_entry_at": first_entry_at,
        "last_entry_at": last_entry_at,
        "models_used": models or None,
        "total_input_tokens": input_tokens,
        "total_output_tokens": output_tokens,
        "summary": summary,
        "synced_at": utc_now_iso(),
    }


async def update_session_aggregates(
    db: aiosqlite.Connection,
    session_id: str,
    file_created_at: str | None,
) -> dict[str, Any] | None:
    """Store recomputed aggregates; a session without entries is left as is."""
    repo = get_session_repository(db)
    entries = await repo.list_entries(session_id)
    if not entries:
        return None
    aggregates = compute_session_aggregates(entries, file_created_at)
    await repo.update_aggregates(session_id, aggregates)
    return aggregates
