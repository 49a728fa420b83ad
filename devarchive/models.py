"""Pydantic models for the collector-to-server sync protocol.

Field names are the camelCase wire names; the collector builds these models
and the server validates request bodies against the same classes.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

SyncStatus = Literal["success", "error", "partial"]
LogLevel = Literal["debug", "info", "warn", "error"]


# ── Git payloads ────────────────────────────────────────────────────

class DirtyFile(BaseModel):
    path: str
    status: str
    mtime: Optional[str] = None


class DirtySnapshot(BaseModel):
    status: str
    files: list[DirtyFile] = Field(default_factory=list)
    capturedAt: str


class BranchPayload(BaseModel):
    name: str
    headSha: str
    upstreamName: Optional[str] = None
    upstreamSha: Optional[str] = None
    aheadCount: int = 0
    behindCount: int = 0
    lastCommitAt: Optional[str] = None


class CommitPayload(BaseModel):
    sha: str
    message: str
    authorName: str
    authorEmail: str
    authorDate: str
    committerName: Optional[str] = None
    committerDate: Optional[str] = None
    parentShas: list[str] = Field(default_factory=list)


class RepoPayload(BaseModel):
    host: str
    path: str
    upstreamUrl: Optional[str] = None
    defaultBranch: Optional[str] = None
    currentBranch: Optional[str] = None
    headSha: Optional[str] = None
    isDirty: bool = False
    dirtyFilesCount: Optional[int] = None
    dirtySnapshot: Optional[DirtySnapshot] = None
    lastFileChangeAt: Optional[str] = None
    branches: list[BranchPayload] = Field(default_factory=list)
    commits: list[CommitPayload] = Field(default_factory=list)


# ── Session payloads ────────────────────────────────────────────────

class EntryPayload(BaseModel):
    originalUuid: Optional[str] = None
    lineNumber: int = Field(ge=1)
    type: str = "unknown"
    subtype: Optional[str] = None
    timestamp: Optional[str] = None
    data: dict[str, Any]


class ToolResultPayload(BaseModel):
    toolUseId: str
    toolName: str = "unknown"
    contentType: str
    contentText: Optional[str] = None
    contentBinary: Optional[str] = None  # base64
    sizeBytes: int = 0
    isError: bool = False


class SessionPayload(BaseModel):
    originalSessionId: str
    agentId: Optional[str] = None
    parentOriginalSessionId: Optional[str] = None
    filename: str
    fileCreatedAt: str
    entries: list[EntryPayload] = Field(default_factory=list)
    toolResults: Optional[list[ToolResultPayload]] = None


class WorkspacePayload(BaseModel):
    host: str
    cwd: str
    claudeProjectPath: str
    sessions: list[SessionPayload] = Field(default_factory=list)


# ── Sync request/response ───────────────────────────────────────────

class SyncRequest(BaseModel):
    syncRunId: str
    gitRepos: Optional[list[RepoPayload]] = None
    workspaces: Optional[list[WorkspacePayload]] = None


class SyncStats(BaseModel):
    projectsCreated: int = 0
    projectsUpdated: int = 0
    gitReposCreated: int = 0
    gitReposUpdated: int = 0
    workspacesCreated: int = 0
    workspacesUpdated: int = 0
    sessionsCreated: int = 0
    sessionsUpdated: int = 0
    entriesCreated: int = 0
    toolResultsCreated: int = 0
    commitsCreated: int = 0
    branchesCreated: int = 0
    branchesUpdated: int = 0

    def merge(self, other: "SyncStats") -> None:
        for name in type(self).model_fields:
            setattr(self, name, getattr(self, name) + getattr(other, name))


class SessionCursor(BaseModel):
    originalSessionId: str
    entryCount: int = 0
    lastLineNumber: int = 0


class SyncStateResponse(BaseModel):
    gitRepos: dict[str, list[str]] = Field(default_factory=dict)
    workspaces: dict[str, list[SessionCursor]] = Field(default_factory=dict)


# ── Collector registry and run logs ─────────────────────────────────

class CollectorRegister(BaseModel):
    id: str
    name: str
    hostname: str
    osInfo: Optional[str] = None
    version: Optional[str] = None
    config: Optional[dict[str, Any]] = None


class CollectorInfo(BaseModel):
    id: str
    name: str
    hostname: str
    osInfo: Optional[str] = None
    version: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    registeredAt: str
    lastSeenAt: str
    lastSyncRunId: Optional[str] = None
    lastSyncStatus: Optional[SyncStatus] = None
    isActive: bool = True


class Heartbeat(BaseModel):
    syncRunId: Optional[str] = None
    syncStatus: Optional[SyncStatus] = None


class RunLogCreate(BaseModel):
    syncRunId: str
    level: LogLevel
    message: str
    context: Optional[dict[str, Any]] = None


class RunLogBatch(BaseModel):
    logs: list[RunLogCreate]


class RunLog(BaseModel):
    id: str
    collectorId: str
    syncRunId: str
    timestamp: str
    level: LogLevel
    message: str
    context: Optional[dict[str, Any]] = None
