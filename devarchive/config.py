"""devarchive configuration.

Server and collector settings are read from the environment once at import
time, the same way for both sides of the sync protocol.
"""
import os
from pathlib import Path

from pydantic import BaseModel


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [token.strip() for token in value.split(",") if token.strip()]


# Project root (one level up from devarchive/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ── Server ──────────────────────────────────────────────────────────

DB_PATH = Path(os.getenv("DEVARCHIVE_DB_PATH", str(PROJECT_ROOT / "data" / "devarchive.db")))

# Accepted X-API-Key values. Empty means the gate is open (local development).
API_KEYS = _env_list("DEVARCHIVE_API_KEYS")

OTEL_ENABLED = _env_bool("DEVARCHIVE_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("DEVARCHIVE_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("DEVARCHIVE_OTEL_SERVICE_NAME", "devarchive-server")
PROM_PORT = _env_int("DEVARCHIVE_PROM_PORT", 0)

HOST = os.getenv("DEVARCHIVE_HOST", "0.0.0.0")
PORT = _env_int("DEVARCHIVE_PORT", 8000)

# ── Collector ───────────────────────────────────────────────────────

CLAUDE_PROJECTS_DIR = Path(
    os.getenv("DEVARCHIVE_CLAUDE_PROJECTS_DIR", str(Path.home() / ".claude" / "projects"))
)
COLLECTOR_ID_PATH = Path(
    os.getenv("DEVARCHIVE_COLLECTOR_ID_PATH", str(Path.home() / ".devarchive" / "collector-id"))
)
COMMIT_LIMIT = _env_int("DEVARCHIVE_COMMIT_LIMIT", 1000)
HTTP_TIMEOUT_SECONDS = _env_int("DEVARCHIVE_HTTP_TIMEOUT_SECONDS", 60)
SESSION_BATCH_SIZE = _env_int("DEVARCHIVE_SESSION_BATCH_SIZE", 50)
RETRY_ATTEMPTS = _env_int("DEVARCHIVE_RETRY_ATTEMPTS", 3)


class CollectorSettings(BaseModel):
    server_url: str
    api_key: str
    collector_name: str
    log_level: str = "info"


_LOG_LEVELS = {"debug", "info", "warn", "warning", "error"}


def load_collector_settings(default_name: str) -> CollectorSettings:
    """Build collector settings from DEVARCHIVE_* variables.

    Raises ValueError naming every missing required variable.
    """
    server_url = os.getenv("DEVARCHIVE_SERVER_URL", "").strip()
    api_key = os.getenv("DEVARCHIVE_API_KEY", "").strip()

    missing = [
        name
        for name, value in (
            ("DEVARCHIVE_SERVER_URL", server_url),
            ("DEVARCHIVE_API_KEY", api_key),
        )
        if not value
    ]
    if missing:
        raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

    if not server_url.startswith(("http://", "https://")):
        raise ValueError(f"DEVARCHIVE_SERVER_URL must be an http(s) URL, got {server_url!r}")

    log_level = os.getenv("DEVARCHIVE_LOG_LEVEL", "info").strip().lower()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"Unsupported DEVARCHIVE_LOG_LEVEL: {log_level!r}")

    return CollectorSettings(
        server_url=server_url,
        api_key=api_key,
        collector_name=os.getenv("DEVARCHIVE_COLLECTOR_NAME", "").strip() or default_name,
        log_level=log_level,
    )
