"""Database schema creation and versioning.

All CREATE TABLE statements for the archive.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("devarchive.db")

SCHEMA_VERSION = 2

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Projects ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS projects (
    id            TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    upstream_url  TEXT UNIQUE,
    description   TEXT,
    archived      INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_projects_name ON projects(name);

-- ── 2. Git checkouts, branches and commits ─────────────────────────
CREATE TABLE IF NOT EXISTS git_repos (
    id                   TEXT PRIMARY KEY,
    project_id           TEXT NOT NULL REFERENCES projects(id),
    host                 TEXT NOT NULL,
    path                 TEXT NOT NULL,
    default_branch       TEXT,
    current_branch       TEXT,
    head_sha             TEXT,
    is_dirty             INTEGER NOT NULL DEFAULT 0,
    dirty_files_count    INTEGER,
    dirty_snapshot_json  TEXT,
    last_file_change_at  TEXT,
    last_scanned_at      TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_git_repos_host_path ON git_repos(host, path);
CREATE INDEX IF NOT EXISTS idx_git_repos_project ON git_repos(project_id);

CREATE TABLE IF NOT EXISTS git_branches (
    id                  TEXT PRIMARY KEY,
    git_repo_id         TEXT NOT NULL REFERENCES git_repos(id) ON DELETE CASCADE,
    name                TEXT NOT NULL,
    head_sha            TEXT NOT NULL,
    upstream_name       TEXT,
    upstream_sha        TEXT,
    ahead_count         INTEGER NOT NULL DEFAULT 0,
    behind_count        INTEGER NOT NULL DEFAULT 0,
    last_commit_at      TEXT,
    force_push_count    INTEGER NOT NULL DEFAULT 0,
    last_force_push_at  TEXT,
    discovered_at       TEXT NOT NULL,
    last_seen_at        TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_git_branches_repo_name ON git_branches(git_repo_id, name);

CREATE TABLE IF NOT EXISTS git_commits (
    id                TEXT PRIMARY KEY,
    project_id        TEXT NOT NULL REFERENCES projects(id),
    sha               TEXT NOT NULL,
    message           TEXT NOT NULL,
    author_name       TEXT NOT NULL,
    author_email      TEXT NOT NULL,
    author_date       TEXT NOT NULL,
    committer_name    TEXT,
    committer_date    TEXT,
    parent_shas_json  TEXT NOT NULL DEFAULT '[]',
    created_at        TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_git_commits_project_sha ON git_commits(project_id, sha);
CREATE INDEX IF NOT EXISTS idx_git_commits_author_date ON git_commits(project_id, author_date DESC);

-- ── 3. Workspaces, sessions and transcript entries ─────────────────
CREATE TABLE IF NOT EXISTS workspaces (
    id                   TEXT PRIMARY KEY,
    project_id           TEXT NOT NULL REFERENCES projects(id),
    git_repo_id          TEXT REFERENCES git_repos(id) ON DELETE SET NULL,
    host                 TEXT NOT NULL,
    cwd                  TEXT NOT NULL,
    claude_project_path  TEXT,
    first_seen_at        TEXT NOT NULL,
    last_synced_at       TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_workspaces_host_cwd ON workspaces(host, cwd);
CREATE INDEX IF NOT EXISTS idx_workspaces_project ON workspaces(project_id);

CREATE TABLE IF NOT EXISTS sessions (
    id                   TEXT PRIMARY KEY,
    workspace_id         TEXT NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    original_session_id  TEXT NOT NULL,
    agent_id             TEXT,
    parent_session_id    TEXT REFERENCES sessions(id) ON DELETE SET NULL,
    parent_original_session_id TEXT,
    filename             TEXT NOT NULL,
    entry_count          INTEGER NOT NULL DEFAULT 0,
    first_entry_at       TEXT,
    last_entry_at        TEXT,
    models_used_json     TEXT,
    total_input_tokens   INTEGER NOT NULL DEFAULT 0,
    total_output_tokens  INTEGER NOT NULL DEFAULT 0,
    summary              TEXT,
    synced_at            TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_workspace_original ON sessions(workspace_id, original_session_id);
CREATE INDEX IF NOT EXISTS idx_sessions_parent ON sessions(parent_session_id);
CREATE INDEX IF NOT EXISTS idx_sessions_last_entry ON sessions(last_entry_at DESC);

CREATE TABLE IF NOT EXISTS entries (
    id             TEXT PRIMARY KEY,
    session_id     TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    original_uuid  TEXT,
    line_number    INTEGER NOT NULL,
    type           TEXT NOT NULL,
    subtype        TEXT,
    timestamp      TEXT,
    data_json      TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_entries_session_line ON entries(session_id, line_number);
CREATE INDEX IF NOT EXISTS idx_entries_session_type ON entries(session_id, type);

CREATE TABLE IF NOT EXISTS tool_results (
    id              TEXT PRIMARY KEY,
    entry_id        TEXT NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
    tool_use_id     TEXT NOT NULL,
    tool_name       TEXT NOT NULL,
    content_type    TEXT NOT NULL,
    content_text    TEXT,
    content_binary  BLOB,
    size_bytes      INTEGER NOT NULL DEFAULT 0,
    is_error        INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_tool_results_entry_tool_use ON tool_results(entry_id, tool_use_id);

-- ── 4. Collector registry and run logs ─────────────────────────────
CREATE TABLE IF NOT EXISTS collectors (
    id                TEXT PRIMARY KEY,
    name              TEXT NOT NULL,
    hostname          TEXT NOT NULL,
    os_info           TEXT,
    version           TEXT,
    config_json       TEXT,
    registered_at     TEXT NOT NULL,
    last_seen_at      TEXT NOT NULL,
    last_sync_run_id  TEXT,
    last_sync_status  TEXT,
    is_active         INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS run_logs (
    id            TEXT PRIMARY KEY,
    collector_id  TEXT NOT NULL REFERENCES collectors(id) ON DELETE CASCADE,
    sync_run_id   TEXT NOT NULL,
    timestamp     TEXT NOT NULL,
    level         TEXT NOT NULL,
    message       TEXT NOT NULL,
    context_json  TEXT
);

CREATE INDEX IF NOT EXISTS idx_run_logs_collector_time ON run_logs(collector_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_run_logs_run ON run_logs(collector_id, sync_run_id);
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables and indexes. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
        return

    logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")

    await db.executescript(_TABLES)

    # Added in schema version 2; version 1 sessions tables lack it.
    await _ensure_column(db, "sessions", "parent_original_session_id", "TEXT")
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_sessions_waiting_parent "
        "ON sessions(workspace_id, parent_original_session_id)"
    )

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
