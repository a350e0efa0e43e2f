"""
Logging configuration for claude-watch.

The MCP stdio transport owns stdout, so nothing is ever logged there. The
server logs to a gzip-rotated file under ~/.claude-watch/logs/ and mirrors
warnings to stderr, which MCP clients surface. The hook emitter runs inside
Claude Code's hook pipeline and only ever writes warnings to stderr.
"""

from __future__ import annotations

import gzip
import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
import shutil

from claude_watch.config import get_int_env
from claude_watch.paths import resolve_data_dir

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging() -> Path:
    """
    Configure server logging with on-disk rotation.

    Levels come from CLAUDE_WATCH_LOG_LEVEL (file, default INFO) and
    CLAUDE_WATCH_STDERR_LOG_LEVEL (stderr, default WARNING).

    Returns:
        Path to the primary log file.
    """
    log_dir = resolve_data_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "claude-watch.log"

    max_mb = get_int_env("CLAUDE_WATCH_LOG_MAX_SIZE_MB", default=10, min_value=1)
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=get_int_env("CLAUDE_WATCH_LOG_BACKUP_COUNT", default=5, min_value=1),
        encoding="utf-8",
    )
    file_handler.namer = lambda name: f"{name}.gz"
    file_handler.rotator = _gzip_rotate

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(_level_from_env("CLAUDE_WATCH_STDERR_LOG_LEVEL", logging.WARNING))
    stderr_handler.setFormatter(formatter)

    _install(_level_from_env("CLAUDE_WATCH_LOG_LEVEL", logging.INFO), file_handler, stderr_handler)
    return log_path


def configure_hook_logging() -> None:
    """Stderr-only logging for the short-lived hook emitter."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("claude-watch hook: %(message)s"))
    _install(_level_from_env("CLAUDE_WATCH_HOOK_LOG_LEVEL", logging.WARNING), handler)


def _install(level: int, *handlers: logging.Handler) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    # Replace rather than add so repeated configuration never duplicates output.
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        root.addHandler(handler)


def _level_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else default


def _gzip_rotate(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    try:
        os.remove(source)
    except FileNotFoundError:
        pass
