"""Accessors for fields inside Claude-style transcript records.

Used by the collector when choosing which tool results to ship and by the
server when attaching them and recomputing session aggregates.
"""
from __future__ import annotations

from typing import Any


def _message(record: dict[str, Any]) -> dict[str, Any]:
    message = record.get("message")
    return message if isinstance(message, dict) else {}


def is_assistant(record: dict[str, Any]) -> bool:
    return record.get("type") == "assistant"


def tool_use_ids(record: dict[str, Any]) -> list[str]:
    """Ids of ``tool_use`` blocks in an assistant record's message content."""
    if not is_assistant(record):
        return []
    content = _message(record).get("content")
    if not isinstance(content, list):
        return []
    ids: list[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "tool_use":
            block_id = block.get("id")
            if isinstance(block_id, str) and block_id:
                ids.append(block_id)
    return ids


def assistant_model(record: dict[str, Any]) -> str | None:
    if not is_assistant(record):
        return None
    model = _message(record).get("model")
    return model if isinstance(model, str) and model else None


def assistant_usage(record: dict[str, Any]) -> tuple[int, int]:
    """(input_tokens, output_tokens) of an assistant record; non-integers count as 0."""
    if not is_assistant(record):
        return 0, 0
    usage = _message(record).get("usage")
    if not isinstance(usage, dict):
        return 0, 0

    def _count(key: str) -> int:
        value = usage.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return int(value)

    return _count("input_tokens"), _count("output_tokens")


def summary_text(record: dict[str, Any]) -> str | None:
    if record.get("type") != "summary":
        return None
    summary = record.get("summary")
    return summary if isinstance(summary, str) else None
