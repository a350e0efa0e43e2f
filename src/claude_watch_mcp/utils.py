"""Shared helpers for MCP tool responses."""


def error_response(message: str, hint: str | None = None, **details) -> dict:
    """Tool result describing a failure; ``hint`` says what the caller can try next."""
    result = {"error": message, **details}
    if hint:
        result["hint"] = hint
    return result


HINTS = {
    "session_not_found": (
        "Run list_sessions to see the active sessions; only active sessions "
        "and their agents can be targeted"
    ),
    "terminal_not_found": (
        "No open terminal hosts this session. It may have been started outside "
        "a tmux pane or iTerm2 session, or its terminal was closed"
    ),
    "cwd_missing": "Pass an existing absolute directory, or set a workspace with --workspace",
    "terminal_backend": (
        "Check that tmux is installed (or that iTerm2 is running with its Python "
        "API enabled) and that CLAUDE_WATCH_TERMINAL_BACKEND names the right one"
    ),
}
