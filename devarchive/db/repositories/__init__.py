"""Repository package for database access."""

from .projects import SqliteProjectRepository
from .git import SqliteGitRepository
from .workspaces import SqliteWorkspaceRepository
from .sessions import SqliteSessionRepository
from .collectors import SqliteCollectorRepository, SqliteRunLogRepository

__all__ = [
    "SqliteProjectRepository",
    "SqliteGitRepository",
    "SqliteWorkspaceRepository",
    "SqliteSessionRepository",
    "SqliteCollectorRepository",
    "SqliteRunLogRepository",
]
