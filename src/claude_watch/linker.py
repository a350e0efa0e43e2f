"""
Terminal linking: which open terminal hosts which session.

Terminals opened on the user's behalf wait in a bounded pending queue until a
session-start event names their shell as its parent. Sessions started any
other way are matched lazily by walking the session's process ancestry until
an open terminal's shell pid turns up.
"""

from __future__ import annotations

from collections import OrderedDict
import logging
import os
from typing import Awaitable, Callable

from .process import get_process_ancestors
from .terminal_backends import TerminalBackend, TerminalSession

logger = logging.getLogger("claude-watch.linker")

MAX_PENDING_TERMINALS = 50
TERMINAL_NAME_MARKER = "claude"

AncestorLookup = Callable[[int], Awaitable["list[int] | None"]]
PidCorrection = Callable[[int], None]


class TerminalLinker:
    """Session-to-terminal association with a reverse index for close handling."""

    def __init__(
        self,
        backend: TerminalBackend,
        *,
        ancestors: AncestorLookup = get_process_ancestors,
    ) -> None:
        self.backend = backend
        self._ancestors = ancestors
        self._linked: dict[str, TerminalSession] = {}
        self._terminal_to_session: dict[str, str] = {}
        self._pending: OrderedDict[str, TerminalSession] = OrderedDict()

    # -- pending queue -----------------------------------------------------

    def register_pending_terminal(self, terminal: TerminalSession) -> None:
        """Queue a terminal we opened; the oldest entry is dropped at capacity."""
        if terminal.native_id in self._pending:
            self._pending.move_to_end(terminal.native_id)
            self._pending[terminal.native_id] = terminal
            return
        while len(self._pending) >= MAX_PENDING_TERMINALS:
            dropped_id, _ = self._pending.popitem(last=False)
            logger.debug("Pending terminal queue full; dropped %s", dropped_id)
        self._pending[terminal.native_id] = terminal

    def pending_terminals(self) -> list[TerminalSession]:
        return list(self._pending.values())

    async def link_pending(self, session_id: str, ppid: int) -> TerminalSession | None:
        """Link session_id to the pending terminal whose shell pid is ppid."""
        for native_id, terminal in list(self._pending.items()):
            pid = await self._terminal_pid(terminal)
            if pid is None or pid != ppid:
                continue
            if self._pending.pop(native_id, None) is None:
                # Claimed or closed while we were querying.
                continue
            self.link(session_id, terminal)
            logger.info("Linked session %s to pending terminal %s", session_id, terminal)
            return terminal
        return None

    # -- links -------------------------------------------------------------

    def link(self, session_id: str, terminal: TerminalSession) -> None:
        previous = self._linked.get(session_id)
        if previous is not None and previous.native_id != terminal.native_id:
            self._terminal_to_session.pop(previous.native_id, None)
        other = self._terminal_to_session.get(terminal.native_id)
        if other is not None and other != session_id:
            self._linked.pop(other, None)
        self._linked[session_id] = terminal
        self._terminal_to_session[terminal.native_id] = session_id

    def get_linked_terminal(self, session_id: str) -> TerminalSession | None:
        return self._linked.get(session_id)

    def has_linked_terminal(self, session_id: str) -> bool:
        return session_id in self._linked

    def session_for_terminal(self, native_id: str) -> str | None:
        return self._terminal_to_session.get(native_id)

    def remove_linked_terminal(self, session_id: str) -> None:
        terminal = self._linked.pop(session_id, None)
        if terminal is not None and self._terminal_to_session.get(terminal.native_id) == session_id:
            del self._terminal_to_session[terminal.native_id]

    def handle_terminal_close(self, terminal: TerminalSession) -> str | None:
        """Forget a closed terminal; returns the session it was linked to, if any."""
        self._pending.pop(terminal.native_id, None)
        session_id = self._terminal_to_session.pop(terminal.native_id, None)
        if session_id is not None:
            self._linked.pop(session_id, None)
            logger.info("Terminal %s closed; unlinked session %s", terminal, session_id)
        return session_id

    async def prune_closed_terminals(self) -> list[str]:
        """
        Drop links and pending entries for terminals that no longer exist.

        Returns the session ids that lost their terminal. When the backend
        cannot list terminals nothing is pruned.
        """
        open_terminals = await self._list_terminals()
        if open_terminals is None:
            return []
        open_ids = {terminal.native_id for terminal in open_terminals}
        unlinked = []
        for terminal in list(self._linked.values()) + list(self._pending.values()):
            if terminal.native_id in open_ids:
                continue
            session_id = self.handle_terminal_close(terminal)
            if session_id is not None:
                unlinked.append(session_id)
        return unlinked

    def clear(self) -> None:
        self._linked.clear()
        self._terminal_to_session.clear()
        self._pending.clear()

    # -- discovery ---------------------------------------------------------

    async def find_terminal(
        self,
        ppid: int,
        pid: int | None = None,
        *,
        on_pid_corrected: PidCorrection | None = None,
        cwd: str | None = None,
    ) -> TerminalSession | None:
        """
        Locate the open terminal hosting a session.

        A terminal whose shell pid equals ppid wins outright. Otherwise the
        ancestry of pid is walked nearest-first and the first ancestor that is
        some terminal's shell is used; on_pid_corrected then receives that
        ancestor so the caller can fix its recorded parent. The name heuristic
        is used only when ancestry cannot be resolved at all.
        """
        terminals = await self._list_terminals()
        if not terminals:
            return None

        terminal_pids: list[tuple[TerminalSession, int]] = []
        for terminal in terminals:
            terminal_pid = await self._terminal_pid(terminal)
            if terminal_pid is None:
                continue
            if terminal_pid == ppid:
                return terminal
            terminal_pids.append((terminal, terminal_pid))

        chain: list[int] | None = None
        if pid:
            chain = await self._ancestors(pid)
            if chain:
                by_pid = {terminal_pid: terminal for terminal, terminal_pid in terminal_pids}
                for ancestor in chain:
                    terminal = by_pid.get(ancestor)
                    if terminal is None:
                        continue
                    if ancestor != ppid and on_pid_corrected is not None:
                        on_pid_corrected(ancestor)
                    return terminal

        if chain is None and cwd:
            return match_terminal_by_name(terminals, cwd)
        return None

    async def try_lazy_link(
        self,
        session_id: str,
        ppid: int,
        pid: int | None = None,
        *,
        on_pid_corrected: PidCorrection | None = None,
        cwd: str | None = None,
    ) -> bool:
        """Link session_id to its terminal if one can be found."""
        if self.has_linked_terminal(session_id):
            return True
        terminal = await self.find_terminal(
            ppid, pid, on_pid_corrected=on_pid_corrected, cwd=cwd
        )
        if terminal is None:
            return False
        owner = self._terminal_to_session.get(terminal.native_id)
        if owner is not None and owner != session_id:
            logger.debug("Terminal %s already linked to %s", terminal, owner)
            return False
        self._pending.pop(terminal.native_id, None)
        self.link(session_id, terminal)
        logger.info("Lazily linked session %s to terminal %s", session_id, terminal)
        return True

    async def can_link(self, pid: int, ppid: int) -> bool:
        """
        True when the process pair still lives in one of our terminals.

        Either some open terminal's shell pid equals ppid, or a shell turns up
        on pid's ancestor chain (wrappers and nested shells included).
        """
        terminals = await self._list_terminals()
        if not terminals:
            return False
        terminal_pids = set()
        for terminal in terminals:
            terminal_pid = await self._terminal_pid(terminal)
            if terminal_pid is not None:
                terminal_pids.add(terminal_pid)
        if ppid in terminal_pids:
            return True
        chain = await self._ancestors(pid)
        return bool(chain) and any(ancestor in terminal_pids for ancestor in chain)

    async def _list_terminals(self) -> list[TerminalSession] | None:
        try:
            return await self.backend.list_sessions()
        except Exception as exc:
            logger.debug("%s list_sessions failed: %s", self.backend.backend_id, exc)
            return None

    async def _terminal_pid(self, terminal: TerminalSession) -> int | None:
        try:
            return await self.backend.get_process_id(terminal)
        except Exception as exc:
            logger.debug("Could not get pid for terminal %s: %s", terminal, exc)
            return None


def match_terminal_by_name(
    terminals: list[TerminalSession], cwd: str
) -> TerminalSession | None:
    """First terminal whose name carries the marker and the cwd's base name."""
    folder = os.path.basename(os.path.normpath(cwd)).lower()
    if not folder:
        return None
    for terminal in terminals:
        name = terminal.name.lower()
        if TERMINAL_NAME_MARKER in name and folder in name:
            return terminal
    return None
