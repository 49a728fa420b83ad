"""Pull-then-push sync run: fetch server state, extract deltas, upload them."""
from __future__ import annotations

import logging
import platform
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, TypeVar

from devarchive import config
from devarchive.collector.client import ApiClient, ApiClientError, ApiError
from devarchive.collector.git import (
    build_repo_payload,
    discover_git_repos,
    extract_branches,
    extract_commits,
)
from devarchive.collector.identity import effective_hostname, get_or_create_collector_id
from devarchive.collector.sessions import (
    build_workspace_payload,
    list_workspaces,
    resolve_workspace_cwd,
)
from devarchive.config import CollectorSettings
from devarchive.models import (
    CollectorRegister,
    Heartbeat,
    RepoPayload,
    RunLogCreate,
    SessionCursor,
    SyncRequest,
    SyncStats,
    WorkspacePayload,
)

logger = logging.getLogger("devarchive.sync")

COLLECTOR_VERSION = "0.1.0"

T = TypeVar("T")


@dataclass
class SyncResult:
    sync_run_id: str
    dry_run: bool = False
    git_repos_processed: int = 0
    git_repos_synced: int = 0
    commits_found: int = 0
    workspaces_processed: int = 0
    workspaces_synced: int = 0
    sessions_found: int = 0
    entries_found: int = 0
    requests_sent: int = 0
    requests_failed: int = 0
    status: Optional[str] = None
    stats: SyncStats = field(default_factory=SyncStats)
    errors: list[str] = field(default_factory=list)


def _is_retryable(exc: ApiClientError) -> bool:
    return not (isinstance(exc, ApiError) and exc.is_client_error)


def with_retry(
    fn: Callable[[], T],
    attempts: int = config.RETRY_ATTEMPTS,
    delay_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``, retrying transport and 5xx failures with linear backoff.

    4xx responses are raised immediately.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except ApiClientError as exc:
            if not _is_retryable(exc) or attempt >= attempts:
                raise
            logger.debug("Attempt %s/%s failed: %s", attempt, attempts, exc)
            sleep(delay_seconds * attempt)
            attempt += 1


def build_sync_requests(
    sync_run_id: str,
    repos: list[RepoPayload],
    workspaces: list[WorkspacePayload],
    batch_size: int = config.SESSION_BATCH_SIZE,
) -> list[SyncRequest]:
    """Pack the run into as few uploads as session batching allows.

    The first upload carries every repository plus the first chunk of each
    workspace. Workspaces with more than ``batch_size`` sessions spill their
    remaining chunks into follow-up uploads; every chunk repeats the
    workspace header.
    """
    batch_size = max(1, batch_size)
    rounds: list[list[WorkspacePayload]] = []
    for workspace in workspaces:
        sessions = workspace.sessions
        for index, start in enumerate(range(0, len(sessions), batch_size)):
            chunk = workspace.model_copy(update={"sessions": sessions[start:start + batch_size]})
            if index == len(rounds):
                rounds.append([])
            rounds[index].append(chunk)

    if not repos and not rounds:
        return []

    requests_out = [
        SyncRequest(
            syncRunId=sync_run_id,
            gitRepos=repos or None,
            workspaces=(rounds[0] if rounds else None),
        )
    ]
    for chunk_round in rounds[1:]:
        requests_out.append(SyncRequest(syncRunId=sync_run_id, workspaces=chunk_round))
    return requests_out


def _describe(exc: Exception) -> str:
    if isinstance(exc, ApiError) and exc.body:
        return f"{exc} (response: {exc.body})"
    return str(exc)


def _final_status(sent: int, failed: int) -> str:
    if failed == 0:
        return "success"
    return "partial" if failed < sent else "error"


def run_sync(
    settings: CollectorSettings,
    source_dirs: Iterable[str | Path],
    *,
    dry_run: bool = False,
    client: Optional[ApiClient] = None,
    projects_dir: Optional[Path] = None,
    collector_id_path: Optional[Path] = None,
    host: Optional[str] = None,
    commit_limit: int = config.COMMIT_LIMIT,
    batch_size: int = config.SESSION_BATCH_SIZE,
    retry_delay_seconds: float = 1.0,
) -> SyncResult:
    sync_run_id = str(uuid.uuid4())
    result = SyncResult(sync_run_id=sync_run_id, dry_run=dry_run)
    host = host or effective_hostname()
    projects_dir = projects_dir or config.CLAUDE_PROJECTS_DIR
    collector_id = get_or_create_collector_id(collector_id_path or config.COLLECTOR_ID_PATH)
    if dry_run:
        client = None
    elif client is None:
        client = ApiClient(settings.server_url, settings.api_key, timeout=config.HTTP_TIMEOUT_SECONDS)

    def retry(fn: Callable[[], T]) -> T:
        return with_retry(fn, delay_seconds=retry_delay_seconds)

    logger.info("Starting sync run %s for host %s%s", sync_run_id, host, " (dry run)" if dry_run else "")

    known_commits: dict[str, set[str]] = {}
    known_sessions: dict[str, dict[str, SessionCursor]] = {}

    if client is not None:
        try:
            retry(lambda: client.register(
                CollectorRegister(
                    id=collector_id,
                    name=settings.collector_name,
                    hostname=host,
                    osInfo=f"{platform.system()} {platform.release()}",
                    version=COLLECTOR_VERSION,
                )
            ))
        except ApiClientError as exc:
            logger.error("Failed to register collector %s: %s", collector_id, exc)
            result.errors.append(f"Registration failed: {exc}")

        try:
            retry(lambda: client.heartbeat(collector_id, Heartbeat(syncRunId=sync_run_id)))
        except ApiClientError as exc:
            logger.warning("Initial heartbeat failed: %s", exc)

        try:
            state = retry(lambda: client.get_sync_state(collector_id, host))
            known_commits = {path: set(shas) for path, shas in state.gitRepos.items()}
            known_sessions = {
                cwd: {cursor.originalSessionId: cursor for cursor in cursors}
                for cwd, cursors in state.workspaces.items()
            }
            logger.info("Server knows %s repos and %s workspaces", len(known_commits), len(known_sessions))
        except ApiClientError as exc:
            logger.warning("Could not fetch sync state, sending everything: %s", exc)

    repos = _collect_repos(source_dirs, host, known_commits, commit_limit, result)
    workspaces = _collect_workspaces(projects_dir, host, known_sessions, result)

    sync_requests = build_sync_requests(sync_run_id, repos, workspaces, batch_size)
    if client is None:
        logger.info(
            "[dry run] would send %s upload(s): %s repos, %s commits, %s workspaces, %s sessions, %s entries",
            len(sync_requests),
            result.git_repos_synced,
            result.commits_found,
            result.workspaces_synced,
            result.sessions_found,
            result.entries_found,
        )
        return result

    for index, sync_request in enumerate(sync_requests, start=1):
        result.requests_sent += 1
        try:
            stats = retry(lambda: client.sync(collector_id, sync_request))
            result.stats.merge(stats)
        except ApiClientError as exc:
            result.requests_failed += 1
            message = _describe(exc)
            logger.error("Upload %s/%s of run %s failed: %s", index, len(sync_requests), sync_run_id, message)
            result.errors.append(f"Upload {index}/{len(sync_requests)}: {message}")

    result.status = _final_status(result.requests_sent, result.requests_failed)
    logger.info(
        "Sync run %s finished with %s: %s",
        sync_run_id,
        result.status,
        result.stats.model_dump(),
    )

    _submit_run_logs(client, collector_id, result)
    try:
        client.heartbeat(collector_id, Heartbeat(syncRunId=sync_run_id, syncStatus=result.status))
    except ApiClientError as exc:
        logger.warning("Final heartbeat failed: %s", exc)
    return result


def _collect_repos(
    source_dirs: Iterable[str | Path],
    host: str,
    known_commits: dict[str, set[str]],
    commit_limit: int,
    result: SyncResult,
) -> list[RepoPayload]:
    repos: list[RepoPayload] = []
    for info in discover_git_repos(source_dirs):
        result.git_repos_processed += 1
        try:
            branches = extract_branches(info.path)
            commits = extract_commits(info.path, known_commits.get(info.path, set()), limit=commit_limit)
        except (OSError, ValueError) as exc:
            logger.error("Error processing repository %s: %s", info.path, exc)
            result.errors.append(f"Git repo {info.path}: {exc}")
            continue

        if not commits:
            logger.debug("Repository %s has no new commits", info.path)
            continue
        repos.append(build_repo_payload(info, branches, commits, host))
        result.git_repos_synced += 1
        result.commits_found += len(commits)
        logger.debug("Repository %s: %s branches, %s new commits", info.path, len(branches), len(commits))
    return repos


def _collect_workspaces(
    projects_dir: Path,
    host: str,
    known_sessions: dict[str, dict[str, SessionCursor]],
    result: SyncResult,
) -> list[WorkspacePayload]:
    workspaces: list[WorkspacePayload] = []
    for workspace in list_workspaces(projects_dir):
        result.workspaces_processed += 1
        cwd = resolve_workspace_cwd(workspace)
        try:
            payload = build_workspace_payload(workspace, cwd, host, known_sessions.get(cwd, {}))
        except (OSError, ValueError) as exc:
            logger.error("Error processing workspace %s: %s", cwd, exc)
            result.errors.append(f"Workspace {cwd}: {exc}")
            continue

        if not payload.sessions:
            continue
        workspaces.append(payload)
        result.workspaces_synced += 1
        result.sessions_found += len(payload.sessions)
        result.entries_found += sum(len(session.entries) for session in payload.sessions)
    return workspaces


def _submit_run_logs(client: ApiClient, collector_id: str, result: SyncResult) -> None:
    logs = [
        RunLogCreate(
            syncRunId=result.sync_run_id,
            level="info" if result.status == "success" else "warn",
            message=f"Sync run finished with status {result.status}",
            context=result.stats.model_dump(),
        )
    ]
    logs.extend(
        RunLogCreate(syncRunId=result.sync_run_id, level="error", message=error)
        for error in result.errors
    )
    try:
        client.submit_logs(collector_id, logs)
    except ApiClientError as exc:
        logger.warning("Could not submit run logs: %s", exc)
