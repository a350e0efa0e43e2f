"""
Session Registry for claude-watch

Owns the live model of monitored sessions. Hook events create, update and
archive records; transcript snapshots are attached as files change; the
terminal linker is asked to associate each record with the terminal hosting
it. Observers receive one debounced (active, inactive) view per burst of
changes.

All mutations run synchronously on the event loop. Anything that awaits
(process queries, terminal queries) re-checks that the record it started
with is still the live one before touching state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import os
import shlex
import time
from typing import Any, Awaitable, Callable, Coroutine

from .config import RegistryConfig
from .events import PostToolUse, PreToolUse, SessionEnd, SessionStart
from .linker import TerminalLinker
from .paths import cwd_equals, resolve_projects_dir
from .process import get_process_start_time, is_process_valid
from .store import PersistedSession, PersistedTool, SessionStore
from .terminal_backends import TerminalSession
from .transcript import (
    SessionState,
    SessionStatus,
    is_agent_file,
    is_transcript_file,
    parse_transcript,
)

logger = logging.getLogger("claude-watch.registry")

RECENT_TOOLS_CAPACITY = 15
MAX_ORPHANED_AGENTS = 500

SessionsListener = Callable[[list["SessionView"], list[SessionState]], None]
ProcessValidator = Callable[[int, "str | None"], Awaitable["bool | None"]]
StartTimeLookup = Callable[[int], Awaitable["str | None"]]
TranscriptParser = Callable[[str], "SessionState | None"]


def now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class CurrentTool:
    """A tool invocation that has started but not finished."""

    name: str
    input: dict[str, Any]
    start_time: float


@dataclass(frozen=True)
class RecentTool:
    """A completed tool invocation (timestamps in epoch milliseconds)."""

    name: str
    input: dict[str, Any]
    result: Any
    timestamp: float
    duration_ms: float

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "input": self.input,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
        }


@dataclass
class SessionRecord:
    """
    Identity and live state for one active session.

    The identity fields come from the session-start event. pid_start_time is
    filled in asynchronously and fences pid reuse on later validation.
    """

    session_id: str
    transcript_path: str
    cwd: str
    pid: int
    ppid: int
    tty: str = ""
    pid_start_time: str | None = None
    state: SessionState | None = None
    current_tool: CurrentTool | None = None
    recent_tools: list[RecentTool] = field(default_factory=list)
    last_activity: float = field(default_factory=time.time)
    stale_timer: asyncio.TimerHandle | None = field(default=None, repr=False, compare=False)

    def add_recent_tool(self, tool: RecentTool) -> None:
        self.recent_tools.insert(0, tool)
        del self.recent_tools[RECENT_TOOLS_CAPACITY:]

    def cancel_stale_timer(self) -> None:
        if self.stale_timer is not None:
            self.stale_timer.cancel()
            self.stale_timer = None


def effective_status(state: SessionState, current_tool: CurrentTool | None = None) -> SessionStatus:
    """
    Status shown to observers.

    A tool in flight always means Working. In-progress todos upgrade a
    non-terminal transcript status to Working too.
    """
    if current_tool is not None:
        return SessionStatus.WORKING
    if state.has_in_progress_todos and state.status is not SessionStatus.DONE:
        return SessionStatus.WORKING
    return state.status


@dataclass(frozen=True)
class SessionView:
    """Read-only projection of a session handed to observers and tools."""

    state: SessionState
    status: SessionStatus
    current_tool: CurrentTool | None = None
    recent_tools: tuple[RecentTool, ...] = ()
    terminal_linked: bool = False
    children: tuple["SessionView", ...] = ()
    pid: int | None = None

    @property
    def session_id(self) -> str:
        return self.state.session_id

    def to_dict(self) -> dict:
        result = self.state.to_dict()
        result["status"] = self.status.value
        result["pid"] = self.pid
        result["terminal_linked"] = self.terminal_linked
        result["current_tool"] = (
            {
                "name": self.current_tool.name,
                "input": self.current_tool.input,
                "start_time": self.current_tool.start_time,
            }
            if self.current_tool
            else None
        )
        result["recent_tools"] = [tool.to_dict() for tool in self.recent_tools]
        result["children"] = [child.to_dict() for child in self.children]
        return result


class SessionRegistry:
    """
    Registry of active and inactive sessions.

    Active sessions are indexed by session id, transcript path, pid and ppid;
    each index holds exactly one entry per active record. Inactive sessions
    are transcript snapshots only (archived or never claimed by a process).
    """

    def __init__(
        self,
        linker: TerminalLinker,
        store: SessionStore | None = None,
        *,
        config: RegistryConfig | None = None,
        workspace: str | None = None,
        projects_dir: str | None = None,
        parse: TranscriptParser = parse_transcript,
        validate_process: ProcessValidator = is_process_valid,
        lookup_start_time: StartTimeLookup = get_process_start_time,
    ) -> None:
        self._linker = linker
        self._store = store
        self._config = config or RegistryConfig()
        self.workspace = workspace
        self.projects_dir = projects_dir or str(resolve_projects_dir())
        self._parse = parse
        self._validate_process = validate_process
        self._lookup_start_time = lookup_start_time

        self._active: dict[str, SessionRecord] = {}
        self._pid_index: dict[int, str] = {}
        self._ppid_index: dict[int, str] = {}
        self._path_index: dict[str, str] = {}
        self._inactive: dict[str, SessionState] = {}
        self._agents: dict[str, SessionState] = {}
        self._orphaned_agents: dict[str, str] = {}
        self._file_mtimes: dict[str, int] = {}

        self._listeners: list[SessionsListener] = []
        self._notify_handle: asyncio.TimerHandle | None = None
        self._flushing = False
        self._tasks: set[asyncio.Task] = set()
        self._sweep_task: asyncio.Task | None = None
        self._stopped = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Restore persisted sessions, scan transcripts and begin sweeping."""
        self._stopped = False
        restored = await self.restore_persisted_sessions()
        if restored:
            logger.info("Restored %d session(s) from %s", restored, self._store.path)
        await self.scan_projects()
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        self._schedule_notify()

    async def stop(self) -> None:
        """Cancel timers and background work, then flush persistence."""
        self._stopped = True
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        if self._notify_handle is not None:
            self._notify_handle.cancel()
            self._notify_handle = None
        for record in self._active.values():
            record.cancel_stale_timer()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._persist()

    def subscribe(self, listener: SessionsListener) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # =========================================================================
    # Hook events
    # =========================================================================

    def on_session_start(self, event: SessionStart) -> None:
        if self._stopped:
            return
        if event.pid <= 0:
            logger.warning("Ignoring SessionStart for %s without a pid", event.session_id)
            return

        # A pid, shell or transcript can belong to only one session; whatever held it is gone.
        for index, key in (
            (self._pid_index, event.pid),
            (self._ppid_index, event.ppid),
            (self._path_index, event.transcript_path),
        ):
            holder = index.get(key) if key else None
            if holder is not None and holder != event.session_id:
                logger.info("Session %s replaced by %s; archiving", holder, event.session_id)
                self._archive(holder, reparse=False)

        previous = self._active.get(event.session_id)
        if previous is not None:
            self._remove_record(previous)

        record = SessionRecord(
            session_id=event.session_id,
            transcript_path=event.transcript_path,
            cwd=event.cwd,
            pid=event.pid,
            ppid=event.ppid,
            tty=event.tty,
            recent_tools=list(previous.recent_tools) if previous else [],
        )
        self._add_record(record)
        self._inactive.pop(record.session_id, None)
        self._persist()
        logger.info("Session started: %s (pid %d, ppid %d)", record.session_id, record.pid, record.ppid)

        self._spawn(self._backfill_start_time(record))
        self._spawn(self._link_terminal(record, use_pending=True))

        self._file_mtimes.pop(record.transcript_path, None)
        self._parse_and_update(record.transcript_path)
        self._recheck_orphaned_agents()
        self._schedule_notify()

    def on_session_end(self, event: SessionEnd) -> None:
        if self._stopped:
            return
        if self._archive(event.session_id) is None:
            logger.debug("SessionEnd for unknown session %s", event.session_id)
            return
        logger.info("Session ended: %s", event.session_id)
        self._persist()
        self._schedule_notify()

    def on_tool_start(self, event: PreToolUse) -> None:
        if self._stopped:
            return
        record = self._active.get(event.session_id) or self._adopt(event)
        if record is None:
            return
        record.cancel_stale_timer()
        tool = CurrentTool(
            name=event.tool_name,
            input=dict(event.tool_input),
            start_time=event.timestamp or now_ms(),
        )
        record.current_tool = tool
        record.last_activity = time.time()
        record.stale_timer = asyncio.get_running_loop().call_later(
            self._config.stale_tool_timeout_seconds,
            self._expire_tool,
            record.session_id,
            tool,
        )
        if not self._linker.has_linked_terminal(record.session_id):
            self._spawn(self._link_terminal(record, use_pending=False))
        self._schedule_notify()

    def on_tool_end(self, event: PostToolUse) -> None:
        if self._stopped:
            return
        record = self._active.get(event.session_id) or self._adopt(event)
        if record is None:
            return
        record.cancel_stale_timer()
        current = record.current_tool
        end_time = event.timestamp or now_ms()
        if event.duration_ms is not None:
            duration = event.duration_ms
        elif current is not None and current.name == event.tool_name:
            duration = max(0.0, end_time - current.start_time)
        else:
            duration = 0.0
        tool_input = event.tool_input or (current.input if current is not None else {})
        record.add_recent_tool(
            RecentTool(
                name=event.tool_name,
                input=dict(tool_input),
                result=event.tool_result,
                timestamp=end_time,
                duration_ms=duration,
            )
        )
        record.current_tool = None
        record.last_activity = time.time()
        self._persist()
        self._schedule_notify()

    def _adopt(self, event: PreToolUse | PostToolUse) -> SessionRecord | None:
        """Register a session first seen through a tool event."""
        if event.pid <= 0 or not event.transcript_path:
            logger.debug("Tool event for unknown session %s", event.session_id)
            return None
        logger.info("Adopting session %s from tool event", event.session_id)
        self.on_session_start(
            SessionStart(
                session_id=event.session_id,
                transcript_path=event.transcript_path,
                cwd=event.cwd,
                pid=event.pid,
                ppid=event.ppid,
                tty=event.tty,
            )
        )
        return self._active.get(event.session_id)

    def _expire_tool(self, session_id: str, tool: CurrentTool) -> None:
        record = self._active.get(session_id)
        if record is None or record.current_tool is not tool:
            return
        logger.debug("Tool %s on %s went stale; clearing", tool.name, session_id)
        record.current_tool = None
        record.stale_timer = None
        self._schedule_notify()

    # =========================================================================
    # Transcript files
    # =========================================================================

    def handle_file_change(self, path: str) -> bool:
        """Re-parse a transcript after the watcher reports a change."""
        if not is_transcript_file(os.path.basename(path)):
            return False
        return self._parse_and_update(path)

    def handle_file_delete(self, path: str) -> None:
        self._file_mtimes.pop(path, None)
        self._orphaned_agents.pop(path, None)
        changed = self._agents.pop(path, None) is not None
        session_id = self._path_index.get(path)
        if session_id is not None:
            record = self._active[session_id]
            if record.state is not None:
                record.state = None
                changed = True
        for inactive_id, state in list(self._inactive.items()):
            if state.file_path == path:
                del self._inactive[inactive_id]
                changed = True
        if changed:
            self._schedule_notify()

    async def scan_projects(self) -> int:
        """Parse every new or changed transcript under the projects root."""
        try:
            project_dirs = [entry.path for entry in os.scandir(self.projects_dir) if entry.is_dir()]
        except OSError as exc:
            logger.debug("Cannot scan %s: %s", self.projects_dir, exc)
            return 0

        updated = 0
        for project_dir in project_dirs:
            try:
                names = [entry.name for entry in os.scandir(project_dir) if entry.is_file()]
            except OSError as exc:
                logger.debug("Cannot scan %s: %s", project_dir, exc)
                continue
            # Parents first so their agents attach in the same pass.
            names.sort(key=lambda name: (is_agent_file(name), name))
            for name in names:
                if is_transcript_file(name) and self._parse_and_update(
                    os.path.join(project_dir, name)
                ):
                    updated += 1
            await asyncio.sleep(0)
        return updated

    def _parse_and_update(self, path: str, *, force: bool = False) -> bool:
        try:
            mtime = os.stat(path).st_mtime_ns
        except OSError as exc:
            logger.debug("Cannot stat %s: %s", path, exc)
            return False
        last_seen = self._file_mtimes.get(path)
        if not force and last_seen is not None and mtime <= last_seen:
            return False
        self._file_mtimes[path] = mtime

        state = self._safe_parse(path)
        if state is None:
            return False
        if state.is_agent:
            return self._update_agent(path, state)

        session_id = self._path_index.get(path) or state.session_id
        record = self._active.get(session_id)
        if record is not None:
            record.state = state
        else:
            self._inactive[state.session_id] = state
        self._schedule_notify()
        return True

    def _safe_parse(self, path: str) -> SessionState | None:
        try:
            return self._parse(path)
        except Exception:
            logger.exception("Failed to parse transcript %s", path)
            return None

    def _update_agent(self, path: str, state: SessionState) -> bool:
        parent = state.parent_session_id
        if not parent:
            return False
        if parent in self._active:
            self._orphaned_agents.pop(path, None)
            self._agents[path] = state
            self._schedule_notify()
            return True
        self._agents.pop(path, None)
        self._orphaned_agents.pop(path, None)
        self._orphaned_agents[path] = parent
        while len(self._orphaned_agents) > MAX_ORPHANED_AGENTS:
            del self._orphaned_agents[next(iter(self._orphaned_agents))]
        return False

    def _recheck_orphaned_agents(self) -> None:
        ready = [path for path, parent in self._orphaned_agents.items() if parent in self._active]
        for path in ready:
            self._orphaned_agents.pop(path, None)
            self._parse_and_update(path, force=True)

    # =========================================================================
    # Liveness, restore and sweeping
    # =========================================================================

    async def cleanup_dead_sessions(self) -> list[str]:
        """Archive records whose process exited or whose pid was reused."""
        dead = []
        for record in list(self._active.values()):
            valid = await self._validate_process(record.pid, record.pid_start_time)
            if valid is False:
                dead.append(record)

        archived = []
        for record in dead:
            if self._active.get(record.session_id) is not record:
                continue
            logger.info("Session %s: process %d is gone", record.session_id, record.pid)
            self._archive(record.session_id)
            archived.append(record.session_id)
        if archived:
            self._persist()
            self._schedule_notify()
        return archived

    async def restore_persisted_sessions(self) -> int:
        """
        Re-admit persisted sessions that are provably still the same process.

        Gates, in order: pid alive with a matching start-time fingerprint,
        working directory inside our workspace, and the process still living
        in one of our terminals. Entries failing any gate are dropped.
        """
        self._file_mtimes.clear()
        entries = self._store.load() if self._store is not None else []
        restored = 0
        for entry in entries:
            if entry.session_id in self._active:
                continue
            valid = await self._validate_process(entry.pid, entry.pid_start_time)
            if valid is not True:
                logger.info("Not restoring %s: pid %d gone or reused", entry.session_id, entry.pid)
                continue
            if self.workspace and not cwd_equals(entry.cwd, self.workspace):
                continue
            if not await self._linker.can_link(entry.pid, entry.ppid):
                logger.info("Not restoring %s: no terminal hosts pid %d", entry.session_id, entry.pid)
                continue
            # A live SessionStart may have claimed these ids while we awaited.
            if (
                entry.session_id in self._active
                or entry.pid in self._pid_index
                or entry.ppid in self._ppid_index
                or entry.transcript_path in self._path_index
            ):
                continue

            record = _record_from_persisted(entry)
            self._add_record(record)
            self._inactive.pop(record.session_id, None)
            self._parse_and_update(record.transcript_path, force=True)
            if record.pid_start_time is None:
                self._spawn(self._backfill_start_time(record))
            self._spawn(self._link_terminal(record, use_pending=False))
            self._schedule_notify()
            restored += 1
        self._persist()
        return restored

    async def sweep(self) -> None:
        await self.scan_projects()
        await self.cleanup_dead_sessions()
        if await self._linker.prune_closed_terminals():
            self._schedule_notify()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Session sweep failed")

    # =========================================================================
    # Commands
    # =========================================================================

    def get_session_record(self, session_id: str) -> SessionRecord | None:
        return self._active.get(session_id)

    def get_parent_session(self, session_id: str) -> str | None:
        """Parent session id for an agent, or None."""
        for state in self._agents.values():
            if state.session_id == session_id:
                return state.parent_session_id
        return None

    async def find_terminal_for_session(self, session_id: str) -> TerminalSession | None:
        """Terminal hosting a session; agents resolve to their parent's terminal."""
        target = self.get_parent_session(session_id) or session_id
        record = self._active.get(target)
        if record is None:
            return None
        terminal = self._linker.get_linked_terminal(target)
        if terminal is not None:
            return terminal
        await self._link_terminal(record, use_pending=False)
        return self._linker.get_linked_terminal(target)

    async def show_terminal(self, session_id: str) -> bool:
        terminal = await self.find_terminal_for_session(session_id)
        if terminal is None:
            return False
        await self._linker.backend.show(terminal)
        return True

    def terminate_session(self, session_id: str) -> bool:
        """Archive an active session on request."""
        if self._archive(session_id) is None:
            return False
        logger.info("Session %s archived on request", session_id)
        self._persist()
        self._schedule_notify()
        return True

    async def refresh(self) -> list[str]:
        archived = await self.cleanup_dead_sessions()
        self._schedule_notify()
        return archived

    async def open_session(self, cwd: str, *, resume_session_id: str | None = None) -> TerminalSession:
        """Open a terminal running claude in cwd and queue it for linking."""
        backend = self._linker.backend
        terminal = await backend.open_terminal(cwd, f"claude {os.path.basename(cwd.rstrip(os.sep))}")
        self._linker.register_pending_terminal(terminal)
        command = "claude"
        if resume_session_id:
            command = f"claude --resume {shlex.quote(resume_session_id)}"
        await backend.send_text(terminal, command)
        return terminal

    # =========================================================================
    # Views
    # =========================================================================

    def get_active_sessions(self) -> list[SessionView]:
        children_by_parent: dict[str, list[SessionState]] = {}
        for agent in self._agents.values():
            if agent.parent_session_id:
                children_by_parent.setdefault(agent.parent_session_id, []).append(agent)

        views = []
        for record in self._active.values():
            state = record.state
            if state is None:
                continue
            if self.workspace and not cwd_equals(state.cwd or record.cwd, self.workspace):
                continue
            children = sorted(
                children_by_parent.get(record.session_id, []),
                key=lambda child: child.created,
                reverse=True,
            )
            views.append(
                SessionView(
                    state=state,
                    status=effective_status(state, record.current_tool),
                    current_tool=record.current_tool,
                    recent_tools=tuple(record.recent_tools),
                    terminal_linked=self._linker.has_linked_terminal(record.session_id),
                    children=tuple(
                        SessionView(state=child, status=effective_status(child)) for child in children
                    ),
                    pid=record.pid,
                )
            )
        views.sort(key=lambda view: view.state.created, reverse=True)
        return views

    def get_inactive_sessions(self, limit: int | None = None) -> list[SessionState]:
        states = [
            state
            for state in self._inactive.values()
            if not state.is_agent
            and state.last_user_prompt
            and state.session_id not in self._active
            and (not self.workspace or cwd_equals(state.cwd, self.workspace))
        ]
        states.sort(key=lambda state: state.last_modified, reverse=True)
        return states[: limit or self._config.inactive_display_limit]

    def count(self) -> int:
        return len(self._active)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._active

    # =========================================================================
    # Internals
    # =========================================================================

    def _add_record(self, record: SessionRecord) -> None:
        self._active[record.session_id] = record
        self._pid_index[record.pid] = record.session_id
        # ppid 0 means the emitter could not resolve the parent; it is not indexed.
        if record.ppid > 0:
            self._ppid_index[record.ppid] = record.session_id
        if record.transcript_path:
            self._path_index[record.transcript_path] = record.session_id

    def _remove_record(self, record: SessionRecord) -> None:
        record.cancel_stale_timer()
        if self._active.get(record.session_id) is record:
            del self._active[record.session_id]
        for index, key in (
            (self._pid_index, record.pid),
            (self._ppid_index, record.ppid),
            (self._path_index, record.transcript_path),
        ):
            if index.get(key) == record.session_id:
                del index[key]

    def _archive(self, session_id: str, *, reparse: bool = True) -> SessionRecord | None:
        """Move an active record to the inactive map."""
        record = self._active.get(session_id)
        if record is None:
            return None
        self._remove_record(record)
        self._linker.remove_linked_terminal(session_id)
        state = record.state
        if reparse:
            state = self._safe_parse(record.transcript_path) or state
        if state is not None and not state.is_agent:
            self._inactive[session_id] = state
        for path, agent in list(self._agents.items()):
            if agent.parent_session_id == session_id:
                del self._agents[path]
        return record

    def _correct_ppid(self, record: SessionRecord, new_ppid: int) -> None:
        if self._active.get(record.session_id) is not record or record.ppid == new_ppid:
            return
        owner = self._ppid_index.get(new_ppid)
        if owner is not None and owner != record.session_id:
            logger.debug("Not moving %s to ppid %d held by %s", record.session_id, new_ppid, owner)
            return
        if self._ppid_index.get(record.ppid) == record.session_id:
            del self._ppid_index[record.ppid]
        logger.debug("Session %s ppid corrected %d -> %d", record.session_id, record.ppid, new_ppid)
        record.ppid = new_ppid
        self._ppid_index[new_ppid] = record.session_id
        self._persist()

    async def _backfill_start_time(self, record: SessionRecord) -> None:
        start_time = await self._lookup_start_time(record.pid)
        if start_time is None or self._active.get(record.session_id) is not record:
            return
        record.pid_start_time = start_time
        self._persist()

    async def _link_terminal(self, record: SessionRecord, *, use_pending: bool) -> None:
        session_id = record.session_id
        linked = False
        if use_pending:
            linked = await self._linker.link_pending(session_id, record.ppid) is not None
        if not linked:
            linked = await self._linker.try_lazy_link(
                session_id,
                record.ppid,
                record.pid,
                on_pid_corrected=lambda new_ppid: self._correct_ppid(record, new_ppid),
                cwd=record.cwd,
            )
        if session_id not in self._active:
            self._linker.remove_linked_terminal(session_id)
            return
        if linked:
            self._schedule_notify()

    def _trim_inactive(self) -> None:
        excess = len(self._inactive) - self._config.max_inactive_sessions
        if excess <= 0:
            return
        oldest = sorted(self._inactive.values(), key=lambda state: state.last_modified)[:excess]
        for state in oldest:
            del self._inactive[state.session_id]

    def _persist(self) -> None:
        if self._store is None:
            return
        sessions = [_persisted_from_record(record) for record in self._active.values()]
        try:
            self._store.save(sessions)
        except OSError as exc:
            logger.warning("Failed to persist sessions to %s: %s", self._store.path, exc)

    def _schedule_notify(self) -> None:
        if self._stopped or self._flushing:
            return
        if self._notify_handle is not None:
            self._notify_handle.cancel()
        self._notify_handle = asyncio.get_running_loop().call_later(
            self._config.notify_debounce_ms / 1000, self._flush_notify
        )

    def _flush_notify(self) -> None:
        self._notify_handle = None
        self._flushing = True
        try:
            self._recheck_orphaned_agents()
            self._trim_inactive()
            active = self.get_active_sessions()
            inactive = self.get_inactive_sessions()
        finally:
            self._flushing = False
        for listener in list(self._listeners):
            try:
                listener(active, inactive)
            except Exception:
                logger.exception("Session listener failed")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background registry task failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait until no background work (linking, fingerprinting) is pending."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _persisted_from_record(record: SessionRecord) -> PersistedSession:
    return PersistedSession(
        session_id=record.session_id,
        transcript_path=record.transcript_path,
        cwd=record.cwd,
        pid=record.pid,
        ppid=record.ppid,
        tty=record.tty,
        pid_start_time=record.pid_start_time,
        recent_tools=[
            PersistedTool(
                name=tool.name,
                input=tool.input,
                result=tool.result,
                timestamp=tool.timestamp,
                duration_ms=tool.duration_ms,
            )
            for tool in record.recent_tools
        ],
    )


def _record_from_persisted(entry: PersistedSession) -> SessionRecord:
    return SessionRecord(
        session_id=entry.session_id,
        transcript_path=entry.transcript_path,
        cwd=entry.cwd,
        pid=entry.pid,
        ppid=entry.ppid,
        tty=entry.tty,
        pid_start_time=entry.pid_start_time,
        recent_tools=[
            RecentTool(
                name=tool.name,
                input=tool.input,
                result=tool.result,
                timestamp=tool.timestamp,
                duration_ms=tool.duration_ms,
            )
            for tool in entry.recent_tools[:RECENT_TOOLS_CAPACITY]
        ],
    )
