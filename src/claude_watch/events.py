"""
Hook event source.

Hook emitters connect to a local TCP listener and write one JSON object per
line. Each object carries an ``event`` discriminator naming one of the four
lifecycle variants. The listener's address is published in a shared
discovery file so emitters can find every running registry.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import socket
from typing import Any, Protocol, Union

import msgspec

from .paths import resolve_port_file

try:
    import fcntl
except ImportError:  # pragma: no cover - platform-specific
    fcntl = None

logger = logging.getLogger("claude-watch.events")

MAX_LINE_BYTES = 8 * 1024 * 1024
ENDPOINT_PROBE_TIMEOUT = 0.2


# =============================================================================
# Wire format
# =============================================================================


class _HookEvent(msgspec.Struct, tag_field="event", rename="camel", kw_only=True):
    session_id: str
    transcript_path: str = ""
    cwd: str = ""
    pid: int = 0
    ppid: int = 0
    tty: str = ""


class SessionStart(_HookEvent, tag="SessionStart"):
    """A monitored process started (or resumed) a session."""


class SessionEnd(_HookEvent, tag="SessionEnd"):
    """A monitored process ended its session."""


class PreToolUse(_HookEvent, tag="PreToolUse", kw_only=True):
    """A tool invocation is starting."""

    tool_name: str
    tool_input: dict[str, Any] = msgspec.field(default_factory=dict)
    timestamp: float = 0.0


class PostToolUse(_HookEvent, tag="PostToolUse", kw_only=True):
    """A tool invocation finished."""

    tool_name: str
    tool_input: dict[str, Any] = msgspec.field(default_factory=dict)
    tool_result: Any = None
    timestamp: float = 0.0
    duration_ms: float | None = None


HookEvent = Union[SessionStart, SessionEnd, PreToolUse, PostToolUse]

_decoder = msgspec.json.Decoder(HookEvent)
_encoder = msgspec.json.Encoder()


def decode_event(line: bytes | str) -> HookEvent:
    """
    Decode one wire line.

    Raises:
        msgspec.DecodeError: For malformed JSON, unknown event names or
            missing/mistyped fields.
    """
    return _decoder.decode(line)


def encode_event(event: HookEvent) -> bytes:
    return _encoder.encode(event)


class HookListener(Protocol):
    """Receiver for decoded hook events."""

    def on_session_start(self, event: SessionStart) -> None: ...

    def on_session_end(self, event: SessionEnd) -> None: ...

    def on_tool_start(self, event: PreToolUse) -> None: ...

    def on_tool_end(self, event: PostToolUse) -> None: ...


# =============================================================================
# Listener
# =============================================================================


class HookServer:
    """Line-delimited JSON listener on an ephemeral localhost port."""

    def __init__(
        self,
        listener: HookListener,
        *,
        port_file: Path | None = None,
        host: str = "127.0.0.1",
    ) -> None:
        self._listener = listener
        self._port_file = port_file or resolve_port_file()
        self._host = host
        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._stopped = False
        self.address: str | None = None

    async def start(self) -> str:
        """Bind, publish the endpoint and return ``host:port``."""
        self._stopped = False
        self._server = await asyncio.start_server(
            self._handle_connection, self._host, 0, limit=MAX_LINE_BYTES
        )
        port = self._server.sockets[0].getsockname()[1]
        self.address = f"{self._host}:{port}"
        try:
            await asyncio.to_thread(publish_endpoint, self._port_file, self.address)
        except OSError as exc:
            logger.warning("Could not publish endpoint to %s: %s", self._port_file, exc)
        logger.info("Hook listener on %s", self.address)
        return self.address

    async def stop(self) -> None:
        """Stop accepting events and withdraw our endpoint entry."""
        if self._stopped:
            return
        self._stopped = True
        if self._server is not None:
            self._server.close()
        for writer in list(self._writers):
            writer.close()
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None
        if self.address is not None:
            try:
                unpublish_endpoint(self._port_file, self.address)
            except OSError as exc:
                logger.warning("Could not update endpoint file %s: %s", self._port_file, exc)
        logger.info("Hook listener stopped")

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._writers.add(writer)
        try:
            while not self._stopped:
                try:
                    line = await reader.readline()
                except ValueError:
                    logger.warning("Hook line exceeded %d bytes; closing connection", MAX_LINE_BYTES)
                    break
                except ConnectionError:
                    break
                if not line:
                    break
                self.handle_line(line)
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    def handle_line(self, line: bytes) -> None:
        """Decode and dispatch one line; malformed lines are dropped."""
        if self._stopped or not line.strip():
            return
        try:
            event = decode_event(line)
        except msgspec.DecodeError as exc:
            logger.warning("Dropping malformed hook event: %s", exc)
            return
        self.dispatch(event)

    def dispatch(self, event: HookEvent) -> None:
        if self._stopped:
            return
        try:
            if isinstance(event, SessionStart):
                self._listener.on_session_start(event)
            elif isinstance(event, SessionEnd):
                self._listener.on_session_end(event)
            elif isinstance(event, PreToolUse):
                self._listener.on_tool_start(event)
            elif isinstance(event, PostToolUse):
                self._listener.on_tool_end(event)
        except Exception:
            logger.exception("Hook listener failed on %s", type(event).__name__)


# =============================================================================
# Endpoint discovery file
# =============================================================================


def read_endpoints(path: Path) -> list[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def publish_endpoint(path: Path, address: str) -> None:
    """Append address, pruning entries that no longer accept connections."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a+", encoding="utf-8") as handle:
        _lock_file(handle)
        try:
            handle.seek(0)
            existing = [line.strip() for line in handle.read().splitlines() if line.strip()]
            kept = [
                entry
                for entry in dict.fromkeys(existing)
                if entry != address and is_endpoint_alive(entry)
            ]
            dropped = len(set(existing)) - len(kept) - (1 if address in existing else 0)
            if dropped:
                logger.debug("Pruned %d dead endpoint(s) from %s", dropped, path)
            kept.append(address)
            _rewrite_locked(handle, kept)
        finally:
            _unlock_file(handle)


def unpublish_endpoint(path: Path, address: str) -> None:
    """Remove only address; delete the file when nothing remains."""
    if not path.exists():
        return
    with path.open("r+", encoding="utf-8") as handle:
        _lock_file(handle)
        try:
            remaining = [
                line.strip()
                for line in handle.read().splitlines()
                if line.strip() and line.strip() != address
            ]
            _rewrite_locked(handle, remaining)
        finally:
            _unlock_file(handle)
    if not remaining:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def is_endpoint_alive(address: str, timeout: float = ENDPOINT_PROBE_TIMEOUT) -> bool:
    host, _, port = address.rpartition(":")
    if not host:
        host = "127.0.0.1"
    try:
        with socket.create_connection((host, int(port)), timeout=timeout):
            return True
    except (OSError, ValueError):
        return False


def _rewrite_locked(handle, entries: list[str]) -> None:
    handle.seek(0)
    handle.truncate()
    if entries:
        handle.write("\n".join(entries) + "\n")
    handle.flush()


def _lock_file(handle) -> None:
    if fcntl is not None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(handle) -> None:
    if fcntl is not None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
