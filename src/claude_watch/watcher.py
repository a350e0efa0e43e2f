"""Transcript file watcher using watchfiles."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from watchfiles import Change, awatch

from .registry import SessionRegistry
from .transcript import is_transcript_file

logger = logging.getLogger("claude-watch.watcher")

ROOT_POLL_SECONDS = 5.0


class TranscriptWatcher:
    """
    Watches the projects root and feeds transcript changes to the registry.

    Changes to one file are coalesced by a short per-file timer before the
    registry re-parses it. Deletions are delivered immediately.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        root: Path,
        *,
        debounce_seconds: float = 0.1,
    ) -> None:
        self._registry = registry
        self._root = root
        self._debounce = debounce_seconds
        self._pending: dict[str, asyncio.TimerHandle] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        if self._task is not None:
            logger.warning("Transcript watcher already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        logger.info("Transcript watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _watch_loop(self) -> None:
        while not self._root.exists():
            if self._stop_event.is_set():
                return
            await asyncio.sleep(ROOT_POLL_SECONDS)

        logger.info("Watching transcripts under %s", self._root)
        try:
            async for changes in awatch(self._root, stop_event=self._stop_event, recursive=True):
                self.handle_changes(changes)
        except Exception:
            logger.exception("Transcript watcher failed; relying on periodic sweep")

    def handle_changes(self, changes: set[tuple[Change, str]]) -> None:
        for change, path in changes:
            if not is_transcript_file(Path(path).name):
                continue
            if change == Change.deleted:
                handle = self._pending.pop(path, None)
                if handle is not None:
                    handle.cancel()
                self._registry.handle_file_delete(path)
            else:
                self._schedule(path)

    def _schedule(self, path: str) -> None:
        handle = self._pending.pop(path, None)
        if handle is not None:
            handle.cancel()
        self._pending[path] = asyncio.get_running_loop().call_later(
            self._debounce, self._fire, path
        )

    def _fire(self, path: str) -> None:
        self._pending.pop(path, None)
        try:
            self._registry.handle_file_change(path)
        except Exception:
            logger.exception("Failed to process change to %s", path)
