"""
Versioned on-disk store for active session identities.

The file holds ``{"version": N, "sessions": [...]}``. A version mismatch or a
document that fails validation is discarded wholesale; restore then starts
from an empty registry.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
import tempfile
from typing import Any

import msgspec

logger = logging.getLogger("claude-watch.store")

STORE_VERSION = 1


class PersistedTool(msgspec.Struct, rename="camel"):
    name: str
    input: dict[str, Any] = msgspec.field(default_factory=dict)
    result: Any = None
    timestamp: float = 0.0
    duration_ms: float = 0.0


class PersistedSession(msgspec.Struct, rename="camel"):
    session_id: str
    transcript_path: str
    cwd: str
    pid: int
    ppid: int
    tty: str = ""
    pid_start_time: str | None = None
    recent_tools: list[PersistedTool] = msgspec.field(default_factory=list)


class StoreDocument(msgspec.Struct):
    version: int
    sessions: list[PersistedSession] = msgspec.field(default_factory=list)


class _VersionProbe(msgspec.Struct):
    version: Any = None


class SessionStore:
    """Whole-file rewrite store for one registry instance."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> list[PersistedSession]:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Cannot read session store %s: %s", self.path, exc)
            return []

        try:
            probe = msgspec.json.decode(data, type=_VersionProbe)
        except msgspec.DecodeError as exc:
            logger.warning("Discarding unreadable session store %s: %s", self.path, exc)
            self.clear()
            return []
        if probe.version != STORE_VERSION:
            logger.info(
                "Discarding session store %s with version %r (expected %d)",
                self.path,
                probe.version,
                STORE_VERSION,
            )
            self.clear()
            return []

        try:
            document = msgspec.json.decode(data, type=StoreDocument)
        except msgspec.DecodeError as exc:
            logger.warning("Discarding invalid session store %s: %s", self.path, exc)
            self.clear()
            return []
        return document.sessions

    def save(self, sessions: list[PersistedSession]) -> None:
        """Atomically replace the store contents."""
        payload = msgspec.json.encode(StoreDocument(version=STORE_VERSION, sessions=sessions))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Cannot remove session store %s: %s", self.path, exc)
