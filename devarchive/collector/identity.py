"""Host identity for the collector: effective hostname and persistent collector id."""
from __future__ import annotations

import logging
import os
import socket
import uuid
from pathlib import Path

from devarchive.collector.probe import read_text

logger = logging.getLogger("devarchive.collector")


def effective_hostname() -> str:
    """Hostname, suffixed with the WSL distro so WSL and Windows hosts stay distinct."""
    base = socket.gethostname()
    distro = os.getenv("WSL_DISTRO_NAME", "").strip()
    return f"{base}:{distro}" if distro else base


def read_collector_id(path: Path) -> str | None:
    probe = read_text(path)
    if not probe.is_found or probe.value is None:
        return None
    candidate = probe.value.strip()
    try:
        parsed = uuid.UUID(candidate)
    except ValueError:
        return None
    return candidate if str(parsed) == candidate.lower() else None


def get_or_create_collector_id(path: Path) -> str:
    existing = read_collector_id(path)
    if existing:
        return existing

    new_id = str(uuid.uuid4())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(new_id, encoding="utf-8")
    logger.info("Generated collector id %s at %s", new_id, path)
    return new_id
