#!/usr/bin/env python3
"""Run one collector sync against the devarchive server.

Usage:
  python -m devarchive.scripts.collect --source-dir ~/code
  python -m devarchive.scripts.collect --source-dir ~/code --source-dir ~/work --dry-run
"""
from __future__ import annotations

import argparse
import logging
import socket

from devarchive.collector.sync import run_sync
from devarchive.config import load_collector_settings

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync local git repositories and Claude sessions to devarchive")
    parser.add_argument(
        "--source-dir",
        "-s",
        action="append",
        default=[],
        dest="source_dirs",
        help="Directory to search for git repositories (repeatable)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Extract and report without contacting the server")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_collector_settings(default_name=socket.gethostname())
    except ValueError as exc:
        logging.basicConfig(level=logging.INFO)
        logging.getLogger("devarchive.collector").error("Configuration error: %s", exc)
        return 2

    level = logging.DEBUG if args.verbose else _LOG_LEVELS.get(settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    result = run_sync(settings, args.source_dirs, dry_run=args.dry_run)
    print(
        f"Sync run {result.sync_run_id}: "
        f"{result.git_repos_synced}/{result.git_repos_processed} repos, {result.commits_found} commits, "
        f"{result.workspaces_synced}/{result.workspaces_processed} workspaces, "
        f"{result.sessions_found} sessions, {result.entries_found} entries"
        + (" (dry run)" if result.dry_run else f", status {result.status}")
    )
    for error in result.errors:
        print(f"  error: {error}")
    return 1 if result.status == "error" else 0


if __name__ == "__main__":
    raise SystemExit(main())
