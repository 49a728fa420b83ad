"""Shared timestamp normalization helpers.

Every timestamp that crosses the wire or lands in the database is an
ISO-8601 UTC string with millisecond precision and a trailing ``Z``, so
lexicographic and chronological ordering agree.
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_datetime_utc(datetime.now(timezone.utc))


def parse_datetime(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_timestamp(value: Any) -> str | None:
    """Convert mixed timestamp inputs to the canonical string, or None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return format_datetime_utc(value)
    if isinstance(value, str):
        parsed = parse_datetime(value)
        return format_datetime_utc(parsed) if parsed else None
    return None


def epoch_to_iso(epoch: float) -> str:
    return format_datetime_utc(datetime.fromtimestamp(float(epoch), timezone.utc))


def _file_created_datetime(stats: Any) -> datetime | None:
    for attr in ("st_birthtime",):
        value = getattr(stats, attr, None)
        if isinstance(value, (int, float)) and value > 0:
            return datetime.fromtimestamp(float(value), timezone.utc)
    ctime = getattr(stats, "st_ctime", None)
    if isinstance(ctime, (int, float)) and ctime > 0:
        return datetime.fromtimestamp(float(ctime), timezone.utc)
    return None


def file_created_at(path: Path) -> str | None:
    """Return the file's creation time (ctime where birthtime is missing)."""
    try:
        stats = path.stat()
    except OSError:
        return None
    created = _file_created_datetime(stats)
    return format_datetime_utc(created) if created else None
