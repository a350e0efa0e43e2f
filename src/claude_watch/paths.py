"""Filesystem locations used by claude-watch."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
import sys

PORT_FILE_NAME = ".claude-watch-port"


def resolve_data_dir() -> Path:
    """Directory for claude-watch's own state (config, stores, logs)."""
    override = os.environ.get("CLAUDE_WATCH_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".claude-watch"


def resolve_claude_dir() -> Path:
    """Claude Code's config directory."""
    override = os.environ.get("CLAUDE_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".claude"


def resolve_projects_dir() -> Path:
    """Root of the per-project transcript directories."""
    return resolve_claude_dir() / "projects"


def resolve_port_file() -> Path:
    """Endpoint discovery file read by hook emitters."""
    return resolve_claude_dir() / PORT_FILE_NAME


def store_path_for_workspace(workspace: str | None) -> Path:
    """
    Persisted-session store for one workspace.

    Each workspace gets its own file so that several registries running at
    once never write each other's state.
    """
    base = resolve_data_dir()
    if not workspace:
        return base / "sessions.json"
    digest = hashlib.sha1(normalize_path(workspace).encode("utf-8")).hexdigest()[:12]
    return base / f"sessions-{digest}.json"


def normalize_path(path: str) -> str:
    """Resolve symlinks and trailing separators; case-fold on macOS."""
    try:
        resolved = os.path.realpath(path)
    except (OSError, ValueError):
        resolved = os.path.normpath(path)
    if sys.platform == "darwin":
        return resolved.lower()
    return resolved


def cwd_equals(left: str | None, right: str | None) -> bool:
    """True when two working directories name the same place."""
    if not left or not right:
        return False
    return normalize_path(left) == normalize_path(right)
