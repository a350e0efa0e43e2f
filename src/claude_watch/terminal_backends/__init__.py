"""Terminal backends for claude-watch."""

from __future__ import annotations

import os

from .base import TerminalBackend, TerminalSession
from .tmux import TmuxBackend, TmuxError

__all__ = [
    "TerminalBackend",
    "TerminalSession",
    "TmuxBackend",
    "TmuxError",
    "select_backend_id",
]


def select_backend_id(configured: str | None = None) -> str:
    """
    Pick the terminal backend.

    Order: explicit configuration, CLAUDE_WATCH_TERMINAL_BACKEND, running
    inside tmux, running inside iTerm2, and finally tmux.
    """
    choice = configured or os.environ.get("CLAUDE_WATCH_TERMINAL_BACKEND")
    if choice:
        return choice.strip().lower()
    if os.environ.get("TMUX"):
        return "tmux"
    if os.environ.get("TERM_PROGRAM") == "iTerm.app":
        return "iterm"
    return "tmux"
