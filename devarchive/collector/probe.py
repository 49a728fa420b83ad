"""Tri-state results for existence/value probes (git commands, file reads)."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Generic, Optional, TypeVar

logger = logging.getLogger("devarchive.collector")

T = TypeVar("T")

GIT_TIMEOUT_SECONDS = 30


class ProbeStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeResult(Generic[T]):
    status: ProbeStatus
    value: Optional[T] = None
    error: str = ""

    @classmethod
    def found(cls, value: T) -> "ProbeResult[T]":
        return cls(ProbeStatus.FOUND, value)

    @classmethod
    def not_found(cls, reason: str = "") -> "ProbeResult[T]":
        return cls(ProbeStatus.NOT_FOUND, None, reason)

    @classmethod
    def failed(cls, error: str) -> "ProbeResult[T]":
        return cls(ProbeStatus.ERROR, None, error)

    @property
    def is_found(self) -> bool:
        return self.status is ProbeStatus.FOUND

    def value_or_none(self) -> Optional[T]:
        return self.value if self.is_found else None


def run_git(repo_path: Path | str, *args: str) -> ProbeResult[str]:
    """Run a git command in ``repo_path``.

    A non-zero exit is NOT_FOUND (the ref, remote or repo does not exist);
    failing to start git at all, or a timeout, is ERROR.
    """
    cmd = ["git", *args]
    try:
        result = subprocess.run(
            cmd,
            cwd=str(repo_path),
            capture_output=True,
            text=True,
            check=False,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git %s failed in %s: %s", " ".join(args), repo_path, exc)
        return ProbeResult.failed(str(exc))

    if result.returncode != 0:
        return ProbeResult.not_found(result.stderr.strip())
    # Only trailing newlines: porcelain status lines start with a significant space.
    return ProbeResult.found(result.stdout.rstrip("\r\n"))


def read_text(path: Path) -> ProbeResult[str]:
    """Read a UTF-8 file; a missing file is NOT_FOUND, other OS errors are ERROR."""
    try:
        return ProbeResult.found(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return ProbeResult.not_found(str(path))
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Could not read %s: %s", path, exc)
        return ProbeResult.failed(str(exc))
