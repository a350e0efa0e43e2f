"""iTerm2 terminal backend using the iterm2 Python API."""

from __future__ import annotations

import logging
import shlex

import iterm2

from .base import TerminalSession

logger = logging.getLogger("claude-watch.iterm")


class ItermBackend:
    """
    Terminal backend for iTerm2 sessions.

    The connection comes from the caller so it can be refreshed when the
    websocket goes stale.
    """

    backend_id = "iterm"

    def __init__(self, connection: "iterm2.Connection", app: "iterm2.App") -> None:
        self.connection = connection
        self.app = app

    def _wrap(self, session: "iterm2.Session") -> TerminalSession:
        return TerminalSession(
            backend_id="iterm",
            native_id=session.session_id,
            handle=session,
            name=session.name or "",
        )

    async def list_sessions(self) -> list[TerminalSession]:
        sessions = []
        for window in self.app.terminal_windows:
            for tab in window.tabs:
                for session in tab.sessions:
                    sessions.append(self._wrap(session))
        return sessions

    async def get_process_id(self, session: TerminalSession) -> int | None:
        pid = await session.handle.async_get_variable("pid")
        if pid is None:
            return None
        try:
            return int(pid)
        except (TypeError, ValueError):
            return None

    async def show(self, session: TerminalSession) -> None:
        await self.app.async_activate()
        await session.handle.async_activate(select_tab=True, order_window_front=True)

    async def open_terminal(self, cwd: str, name: str) -> TerminalSession:
        window = await iterm2.Window.async_create(self.connection)
        if window is None or window.current_tab is None:
            raise RuntimeError("iTerm2 did not create a window")
        session = window.current_tab.current_session
        await session.async_set_name(name)
        await session.async_send_text(f"cd {shlex.quote(cwd)}\r")
        return self._wrap(session)

    async def send_text(self, session: TerminalSession, text: str) -> None:
        await session.handle.async_send_text(text + "\r")
