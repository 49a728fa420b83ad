"""Canonical form for git remote URLs.

The normalized URL is the durable identity of a Project, so the collector
and the server must agree on it byte-for-byte.
"""
from __future__ import annotations

import re

_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.-]*)://", re.IGNORECASE)
# user@host:path or host:path, but not host/path:... (a colon after a slash is part of the path)
# and not host:port/path, which is what a normalized http(s) URL with a port looks like.
_SCP_RE = re.compile(r"^(?:[^@/]+@)?([^:/]+):(?!//)(?!\d+(?:/|$))(.+)$")
_PORT_RE = re.compile(r":\d*$")
_SSH_SCHEMES = frozenset({"ssh", "git+ssh", "ssh+git"})


def normalize_upstream_url(url: str) -> str:
    """Normalize a remote URL to ``host/path``.

    - git@github.com:user/repo.git          -> github.com/user/repo
    - https://github.com/user/repo.git      -> github.com/user/repo
    - ssh://git@github.com:22/user/repo.git -> github.com/user/repo
    - https://token@github.com/User/Repo    -> github.com/user/repo
    """
    value = (url or "").strip()
    if not value:
        return ""

    scheme = _SCHEME_RE.match(value)
    if scheme:
        rest = value[scheme.end():]
        authority, _, path = rest.partition("/")
        if "@" in authority:
            authority = authority.rsplit("@", 1)[1]
        if scheme.group(1).lower() in _SSH_SCHEMES:
            authority = _PORT_RE.sub("", authority)
        value = f"{authority}/{path}" if path else authority
    else:
        scp = _SCP_RE.match(value)
        if scp:
            value = f"{scp.group(1)}/{scp.group(2).lstrip('/')}"

    value = value.rstrip("/")
    if value.lower().endswith(".git"):
        value = value[:-4]
    return value.rstrip("/").lower()


def project_name_from_path(path: str) -> str:
    """Display name for a project: the last segment of a checkout or cwd path."""
    segments = [segment for segment in re.split(r"[\\/]", path or "") if segment]
    return segments[-1] if segments else "unknown"
