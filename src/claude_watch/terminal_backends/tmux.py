"""tmux terminal backend, driven through the tmux CLI."""

from __future__ import annotations

import asyncio
import logging

from .base import TerminalSession

logger = logging.getLogger("claude-watch.tmux")

PANE_FORMAT = "#{pane_id}\t#{pane_pid}\t#{pane_title}\t#{window_name}"
TMUX_TIMEOUT_SECONDS = 5.0


class TmuxError(RuntimeError):
    """Raised when a tmux command fails."""


class TmuxBackend:
    """Terminal backend for tmux panes. The pane pid is the pane's shell."""

    backend_id = "tmux"

    def __init__(self, tmux_bin: str = "tmux") -> None:
        self._tmux_bin = tmux_bin

    async def _run(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._tmux_bin,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TmuxError(f"tmux not available: {exc}") from exc
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=TMUX_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TmuxError(f"tmux {args[0]} timed out") from exc
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise TmuxError(f"tmux {args[0]} failed: {message}")
        return stdout.decode("utf-8", errors="replace")

    async def list_sessions(self) -> list[TerminalSession]:
        output = await self._run("list-panes", "-a", "-F", PANE_FORMAT)
        sessions = []
        for line in output.splitlines():
            pane = parse_pane_line(line)
            if pane is not None:
                sessions.append(pane)
        return sessions

    async def get_process_id(self, session: TerminalSession) -> int | None:
        if session.process_id is not None:
            return session.process_id
        output = await self._run("display-message", "-p", "-t", session.native_id, "#{pane_pid}")
        try:
            return int(output.strip())
        except ValueError:
            return None

    async def show(self, session: TerminalSession) -> None:
        target = session.native_id
        await self._run("select-window", "-t", target)
        await self._run("select-pane", "-t", target)
        try:
            await self._run("switch-client", "-t", target)
        except TmuxError as exc:
            # No attached client; the pane is still selected for the next attach.
            logger.debug("switch-client skipped: %s", exc)

    async def open_terminal(self, cwd: str, name: str) -> TerminalSession:
        output = await self._run(
            "new-window", "-d", "-P", "-F", PANE_FORMAT, "-n", name, "-c", cwd
        )
        pane = parse_pane_line(output.strip())
        if pane is None:
            raise TmuxError(f"Unexpected new-window output: {output!r}")
        return pane

    async def send_text(self, session: TerminalSession, text: str) -> None:
        await self._run("send-keys", "-t", session.native_id, "-l", text)
        await self._run("send-keys", "-t", session.native_id, "Enter")


def parse_pane_line(line: str) -> TerminalSession | None:
    """Parse one PANE_FORMAT line."""
    parts = line.split("\t")
    if len(parts) < 2 or not parts[0]:
        return None
    try:
        pid = int(parts[1])
    except ValueError:
        pid = None
    title = parts[2] if len(parts) > 2 else ""
    window_name = parts[3] if len(parts) > 3 else ""
    return TerminalSession(
        backend_id="tmux",
        native_id=parts[0],
        handle=parts[0],
        name=window_name or title,
        process_id=pid,
    )
