"""Repository factory. SQLite is the only storage backend."""
from __future__ import annotations

from typing import Any

import aiosqlite

from devarchive.db.repositories import (
    SqliteCollectorRepository,
    SqliteGitRepository,
    SqliteProjectRepository,
    SqliteRunLogRepository,
    SqliteSessionRepository,
    SqliteWorkspaceRepository,
)


def _require_sqlite(db: Any) -> aiosqlite.Connection:
    if not isinstance(db, aiosqlite.Connection):
        raise TypeError(f"Unsupported database handle: {type(db).__name__}")
    return db


def get_project_repository(db: Any):
    return SqliteProjectRepository(_require_sqlite(db))


def get_git_repository(db: Any):
    return SqliteGitRepository(_require_sqlite(db))


def get_workspace_repository(db: Any):
    return SqliteWorkspaceRepository(_require_sqlite(db))


def get_session_repository(db: Any):
    return SqliteSessionRepository(_require_sqlite(db))


def get_collector_repository(db: Any):
    return SqliteCollectorRepository(_require_sqlite(db))


def get_run_log_repository(db: Any):
    return SqliteRunLogRepository(_require_sqlite(db))
