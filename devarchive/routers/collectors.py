"""Collector-facing API: registration, heartbeats, delta sync and run logs."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from devarchive.auth import require_api_key
from devarchive.db import connection
from devarchive.db.factory import get_collector_repository, get_run_log_repository
from devarchive.models import (
    CollectorInfo,
    CollectorRegister,
    Heartbeat,
    LogLevel,
    RunLog,
    RunLogBatch,
    SyncRequest,
    SyncStateResponse,
    SyncStats,
)
from devarchive.services.reconciler import SyncReconciler
from devarchive.services.sync_state import build_sync_state

logger = logging.getLogger("devarchive.api")

collectors_router = APIRouter(
    prefix="/api/collectors",
    tags=["collectors"],
    dependencies=[Depends(require_api_key)],
)


def _collector_info(row: dict[str, Any]) -> CollectorInfo:
    return CollectorInfo(
        id=row["id"],
        name=row["name"],
        hostname=row["hostname"],
        osInfo=row.get("os_info"),
        version=row.get("version"),
        config=row.get("config"),
        registeredAt=row["registered_at"],
        lastSeenAt=row["last_seen_at"],
        lastSyncRunId=row.get("last_sync_run_id"),
        lastSyncStatus=row.get("last_sync_status"),
        isActive=bool(row.get("is_active", True)),
    )


def _run_log(row: dict[str, Any]) -> RunLog:
    return RunLog(
        id=row["id"],
        collectorId=row["collector_id"],
        syncRunId=row["sync_run_id"],
        timestamp=row["timestamp"],
        level=row["level"],
        message=row["message"],
        context=row.get("context"),
    )


@collectors_router.post("/register", response_model=CollectorInfo)
async def register_collector(payload: CollectorRegister):
    """Register a collector, or refresh its details when the id is known."""
    db = await connection.get_connection()
    repo = get_collector_repository(db)
    async with connection.transaction(db):
        row = await repo.register(payload)
    logger.info("Collector %s registered (%s on %s)", payload.id, payload.name, payload.hostname)
    return _collector_info(row)


@collectors_router.get("", response_model=list[CollectorInfo])
async def list_collectors(activeOnly: bool = Query(False, description="Only active collectors")):
    db = await connection.get_connection()
    rows = await get_collector_repository(db).list_all(active_only=activeOnly)
    return [_collector_info(row) for row in rows]


@collectors_router.get("/{collector_id}", response_model=CollectorInfo)
async def get_collector(collector_id: str):
    db = await connection.get_connection()
    row = await get_collector_repository(db).get(collector_id)
    if not row:
        raise HTTPException(status_code=404, detail="Collector not found")
    return _collector_info(row)


@collectors_router.post("/{collector_id}/heartbeat")
async def collector_heartbeat(collector_id: str, payload: Optional[Heartbeat] = None):
    db = await connection.get_connection()
    repo = get_collector_repository(db)
    body = payload or Heartbeat()
    async with connection.transaction(db):
        found = await repo.heartbeat(collector_id, body.syncRunId, body.syncStatus)
    if not found:
        raise HTTPException(status_code=404, detail="Collector not found")
    return {"ok": True}


@collectors_router.get("/{collector_id}/sync-state", response_model=SyncStateResponse)
async def get_sync_state(
    collector_id: str,
    host: str = Query(..., min_length=1, description="Effective hostname of the collector"),
):
    """Everything the server already holds for ``host``, for client-side delta computation."""
    db = await connection.get_connection()
    state = await build_sync_state(db, host)
    logger.info(
        "Sync state for collector %s host %s: %s repos, %s workspaces",
        collector_id,
        host,
        len(state.gitRepos),
        len(state.workspaces),
    )
    return state


@collectors_router.post("/{collector_id}/sync", response_model=SyncStats)
async def sync_collector(collector_id: str, payload: SyncRequest):
    db = await connection.get_connection()
    logger.info(
        "Sync run %s from collector %s: %s repos, %s workspaces",
        payload.syncRunId,
        collector_id,
        len(payload.gitRepos or []),
        len(payload.workspaces or []),
    )
    return await SyncReconciler(db).reconcile(payload)


@collectors_router.post("/{collector_id}/logs")
async def submit_logs(collector_id: str, payload: RunLogBatch):
    db = await connection.get_connection()
    if not await get_collector_repository(db).get(collector_id):
        raise HTTPException(status_code=404, detail="Collector not found")
    async with connection.transaction(db):
        count = await get_run_log_repository(db).add_many(collector_id, payload.logs)
    return {"count": count}


@collectors_router.get("/{collector_id}/logs")
async def list_logs(
    collector_id: str,
    syncRunId: Optional[str] = Query(None, description="Only lines from this sync run"),
    level: Optional[LogLevel] = Query(None, description="Only lines at this level"),
    limit: int = Query(100, ge=1, le=1000),
):
    db = await connection.get_connection()
    rows = await get_run_log_repository(db).list_for_collector(
        collector_id,
        sync_run_id=syncRunId,
        level=level,
        limit=limit,
    )
    return {"items": [_run_log(row) for row in rows]}
