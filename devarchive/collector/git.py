"""Git repository discovery and state extraction.

Every git invocation goes through ``run_git`` and yields a ProbeResult, so a
missing fact (no remote, no upstream, unreadable status) degrades to None
instead of aborting the repository. Only a missing HEAD disqualifies a
directory entirely.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from devarchive.collector.probe import run_git
from devarchive.date_utils import epoch_to_iso, normalize_timestamp, utc_now_iso
from devarchive.models import (
    BranchPayload,
    CommitPayload,
    DirtyFile,
    DirtySnapshot,
    RepoPayload,
)
from devarchive.remote_urls import normalize_upstream_url

logger = logging.getLogger("devarchive.collector")

SKIP_DIRECTORIES = frozenset({"node_modules", "vendor", "__pycache__", ".cache", ".git"})
MAX_SEARCH_DEPTH = 5
DEFAULT_COMMIT_LIMIT = 1000

# ASCII unit/record separators keep "|" and tabs in commit subjects harmless.
FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"
_LOG_FORMAT = FIELD_SEP.join(["%H", "%s", "%an", "%ae", "%aI", "%cn", "%cI", "%P"]) + RECORD_SEP
_BRANCH_FORMAT = "\t".join(
    ["%(refname:short)", "%(objectname)", "%(upstream:short)", "%(upstream:track)", "%(authordate:iso-strict)"]
)
_REMOTE_REF_FORMAT = "%(refname:short)\t%(objectname)"

_AHEAD_RE = re.compile(r"ahead (\d+)")
_BEHIND_RE = re.compile(r"behind (\d+)")
_ORIGIN_HEAD_PREFIX = "refs/remotes/origin/"


@dataclass
class GitRepoInfo:
    path: str
    head_sha: str
    upstream_url: str | None = None
    default_branch: str | None = None
    current_branch: str | None = None
    is_dirty: bool = False
    dirty_files_count: int | None = None
    dirty_snapshot: DirtySnapshot | None = None
    last_file_change_at: str | None = None


# ── Discovery ───────────────────────────────────────────────────────

def is_git_checkout(path: Path) -> bool:
    return (path / ".git").exists()


def discover_git_repos(search_paths: Iterable[str | Path]) -> list[GitRepoInfo]:
    """Find and extract every repository under the search roots.

    The walk never descends into a repository; roots that are repositories
    themselves are extracted without walking.
    """
    repos: list[GitRepoInfo] = []
    visited: set[str] = set()

    for raw_root in search_paths:
        root = Path(raw_root).expanduser().resolve()
        if not root.is_dir():
            logger.debug("Search path %s does not exist, skipping", root)
            continue

        if is_git_checkout(root):
            info = extract_git_info(root)
            if info:
                repos.append(info)
            continue

        worklist: list[tuple[Path, int]] = [(root, 0)]
        while worklist:
            directory, depth = worklist.pop()
            if depth > MAX_SEARCH_DEPTH:
                continue
            key = _visit_key(directory)
            if key in visited:
                continue
            visited.add(key)

            try:
                children = sorted(directory.iterdir(), key=lambda p: p.name)
            except OSError:
                continue

            subdirs: list[Path] = []
            for child in children:
                if child.name in SKIP_DIRECTORIES:
                    continue
                try:
                    if not child.is_dir():
                        continue
                except OSError:
                    continue
                if is_git_checkout(child):
                    info = extract_git_info(child)
                    if info:
                        repos.append(info)
                    continue
                subdirs.append(child)

            # Reversed so the stack pops children in name order.
            worklist.extend((subdir, depth + 1) for subdir in reversed(subdirs))

    return repos


def _visit_key(path: Path) -> str:
    try:
        return str(path.resolve())
    except OSError:
        return str(path)


# ── Repository facts ────────────────────────────────────────────────

def extract_git_info(repo_path: str | Path) -> GitRepoInfo | None:
    """Extract head/remote/branch/dirty facts; None if HEAD cannot be resolved."""
    path = Path(repo_path).expanduser().resolve()
    head = run_git(path, "rev-parse", "HEAD")
    if not head.is_found or not head.value:
        logger.debug("No HEAD in %s (%s), not a repository", path, head.error or head.status.value)
        return None

    origin = run_git(path, "remote", "get-url", "origin").value_or_none()
    upstream_url = normalize_upstream_url(origin) if origin else None

    current_branch = (run_git(path, "branch", "--show-current").value_or_none() or "").strip() or None

    info = GitRepoInfo(
        path=str(path),
        head_sha=head.value.strip(),
        upstream_url=upstream_url or None,
        default_branch=detect_default_branch(path),
        current_branch=current_branch,
    )

    status = run_git(path, "status", "--porcelain")
    if status.is_found:
        files = parse_status_output(status.value or "", path)
        info.is_dirty = bool(files)
        info.dirty_files_count = len(files)
        if files:
            info.dirty_snapshot = DirtySnapshot(
                status=status.value or "",
                files=files,
                capturedAt=utc_now_iso(),
            )
            mtimes = [f.mtime for f in files if f.mtime]
            info.last_file_change_at = max(mtimes) if mtimes else None
    return info


def detect_default_branch(repo_path: Path) -> str | None:
    symbolic = run_git(repo_path, "symbolic-ref", "refs/remotes/origin/HEAD").value_or_none()
    if symbolic:
        name = symbolic.strip()
        if name.startswith(_ORIGIN_HEAD_PREFIX):
            name = name[len(_ORIGIN_HEAD_PREFIX):]
        if name:
            return name

    for candidate in ("main", "master"):
        if run_git(repo_path, "show-ref", "--verify", "--quiet", f"refs/heads/{candidate}").is_found:
            return candidate
    return None


def parse_status_output(output: str, repo_path: Path) -> list[DirtyFile]:
    """Parse ``git status --porcelain`` lines into dirty-file entries.

    Renames contribute their destination path. The mtime is None when the
    file cannot be stat'ed (deleted files).
    """
    files: list[DirtyFile] = []
    for line in output.split("\n"):
        if not line.strip():
            continue
        code = line[:2].strip()
        file_path = line[3:]
        if " -> " in file_path:
            file_path = file_path.split(" -> ", 1)[1]
        if len(file_path) >= 2 and file_path.startswith('"') and file_path.endswith('"'):
            file_path = file_path[1:-1]

        mtime: str | None = None
        try:
            mtime = epoch_to_iso((repo_path / file_path).stat().st_mtime)
        except (OSError, ValueError):
            mtime = None
        files.append(DirtyFile(path=file_path, status=code, mtime=mtime))
    return files


# ── Branches ────────────────────────────────────────────────────────

def parse_ahead_behind(track: str | None) -> tuple[int, int]:
    """``"[ahead 2, behind 1]"`` -> (2, 1); absent terms default to 0."""
    if not track:
        return 0, 0
    ahead = _AHEAD_RE.search(track)
    behind = _BEHIND_RE.search(track)
    return (int(ahead.group(1)) if ahead else 0, int(behind.group(1)) if behind else 0)


def parse_branch_output(output: str, upstream_shas: Mapping[str, str]) -> list[BranchPayload]:
    """Parse tab-separated ``for-each-ref`` output for ``refs/heads/``.

    Columns: name, head SHA, upstream short name, tracking descriptor,
    head commit author date.
    """
    branches: list[BranchPayload] = []
    for line in output.split("\n"):
        if not line.strip():
            continue
        parts = line.split("\t")
        parts += [""] * (5 - len(parts))
        name, head_sha, upstream_name, track, author_date = (p.strip() for p in parts[:5])
        if not name or not head_sha:
            continue

        ahead, behind = parse_ahead_behind(track)
        branches.append(
            BranchPayload(
                name=name,
                headSha=head_sha,
                upstreamName=upstream_name or None,
                upstreamSha=upstream_shas.get(upstream_name) if upstream_name else None,
                aheadCount=ahead,
                behindCount=behind,
                lastCommitAt=normalize_timestamp(author_date),
            )
        )
    return branches


def extract_branches(repo_path: str | Path) -> list[BranchPayload]:
    path = Path(repo_path)
    heads = run_git(path, "for-each-ref", f"--format={_BRANCH_FORMAT}", "refs/heads/")
    if not heads.is_found or not heads.value:
        return []

    upstream_shas: dict[str, str] = {}
    remotes = run_git(path, "for-each-ref", f"--format={_REMOTE_REF_FORMAT}", "refs/remotes/")
    for line in (remotes.value_or_none() or "").split("\n"):
        ref, _, sha = line.partition("\t")
        if ref.strip() and sha.strip():
            upstream_shas[ref.strip()] = sha.strip()

    return parse_branch_output(heads.value, upstream_shas)


# ── Commits ─────────────────────────────────────────────────────────

def parse_git_log_output(output: str, known_shas: set[str] | frozenset[str]) -> list[CommitPayload]:
    """Parse ``git log`` records; drops known SHAs and unparseable author dates."""
    commits: list[CommitPayload] = []
    for record in output.split(RECORD_SEP):
        record = record.strip("\r\n")
        if not record.strip():
            continue
        parts = record.split(FIELD_SEP)
        if len(parts) < 7:
            continue
        parts += [""] * (8 - len(parts))
        sha, message, author_name, author_email, author_date, committer_name, committer_date, parents = parts[:8]
        sha = sha.strip()
        if not sha or sha in known_shas:
            continue

        normalized_author_date = normalize_timestamp(author_date)
        if not normalized_author_date:
            logger.debug("Dropping commit %s with unparseable author date %r", sha, author_date)
            continue

        commits.append(
            CommitPayload(
                sha=sha,
                message=message,
                authorName=author_name,
                authorEmail=author_email,
                authorDate=normalized_author_date,
                committerName=committer_name or None,
                committerDate=normalize_timestamp(committer_date),
                parentShas=parents.split(),
            )
        )
    return commits


def extract_commits(
    repo_path: str | Path,
    known_shas: set[str] | frozenset[str] = frozenset(),
    limit: int = DEFAULT_COMMIT_LIMIT,
) -> list[CommitPayload]:
    result = run_git(Path(repo_path), "log", "--all", f"--format={_LOG_FORMAT}", "-n", str(limit))
    if not result.is_found or not result.value:
        return []
    return parse_git_log_output(result.value, known_shas)


def build_repo_payload(
    info: GitRepoInfo,
    branches: list[BranchPayload],
    commits: list[CommitPayload],
    host: str,
) -> RepoPayload:
    return RepoPayload(
        host=host,
        path=info.path,
        upstreamUrl=info.upstream_url,
        defaultBranch=info.default_branch,
        currentBranch=info.current_branch,
        headSha=info.head_sha,
        isDirty=info.is_dirty,
        dirtyFilesCount=info.dirty_files_count,
        dirtySnapshot=info.dirty_snapshot,
        lastFileChangeAt=info.last_file_change_at,
        branches=branches,
        commits=commits,
    )
