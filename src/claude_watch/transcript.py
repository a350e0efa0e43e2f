"""
Snapshot parsing for Claude Code JSONL transcripts.

parse_transcript() turns one transcript file into an immutable SessionState.
It never raises for bad content: unreadable files and files without a session
id yield None, and undecodable lines are skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from pathlib import Path
import re
from typing import Any

import msgspec

logger = logging.getLogger("claude-watch.transcript")

AGENT_FILE_PREFIX = "agent-"
TODO_TOOL_NAME = "TodoWrite"
INTERRUPT_MARKER = "[Request interrupted"

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


class SessionStatus(str, Enum):
    """Status derived from a transcript."""

    WORKING = "working"  # Turn in progress or waiting on a tool
    PAUSED = "paused"  # Turn ended with unfinished todos
    DONE = "done"  # Turn ended, nothing outstanding


@dataclass(frozen=True)
class TodoItem:
    content: str
    status: str
    active_form: str = ""

    @property
    def is_in_progress(self) -> bool:
        return self.status == "in_progress"


@dataclass(frozen=True)
class TokenUsage:
    """Latest context window size plus cumulative output."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    @property
    def context_tokens(self) -> int:
        return self.input_tokens + self.cache_read_tokens + self.cache_write_tokens


@dataclass(frozen=True)
class SessionState:
    """Point-in-time snapshot of one transcript."""

    session_id: str
    file_path: str
    cwd: str
    status: SessionStatus
    created: float
    last_modified: float
    is_agent: bool = False
    parent_session_id: str | None = None
    last_user_prompt: str | None = None
    summary: str | None = None
    model: str | None = None
    message_count: int = 0
    todos: tuple[TodoItem, ...] = ()
    token_usage: TokenUsage = TokenUsage()

    @property
    def has_in_progress_todos(self) -> bool:
        return any(todo.is_in_progress for todo in self.todos)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "file_path": self.file_path,
            "cwd": self.cwd,
            "status": self.status.value,
            "created": self.created,
            "last_modified": self.last_modified,
            "is_agent": self.is_agent,
            "parent_session_id": self.parent_session_id,
            "last_user_prompt": self.last_user_prompt,
            "summary": self.summary,
            "model": self.model,
            "message_count": self.message_count,
            "todos": [
                {"content": t.content, "status": t.status, "active_form": t.active_form}
                for t in self.todos
            ],
            "context_tokens": self.token_usage.context_tokens,
            "output_tokens": self.token_usage.output_tokens,
        }


class _Message(msgspec.Struct):
    content: Any = None
    model: str | None = None
    stop_reason: str | None = None
    usage: dict[str, Any] | None = None


class _Entry(msgspec.Struct, rename="camel"):
    type: str = ""
    session_id: str | None = None
    agent_id: str | None = None
    is_sidechain: bool = False
    is_meta: bool = False
    cwd: str | None = None
    timestamp: str | None = None
    summary: str | None = None
    message: _Message | None = None


_entry_decoder = msgspec.json.Decoder(_Entry)


def is_agent_file(name: str) -> bool:
    return name.startswith(AGENT_FILE_PREFIX)


def is_transcript_file(name: str) -> bool:
    """True for ``<uuid>.jsonl`` and ``agent-*.jsonl`` names."""
    if not name.endswith(".jsonl"):
        return False
    stem = name[: -len(".jsonl")]
    return is_agent_file(stem) or bool(_UUID_RE.match(stem))


def parse_transcript(path: str | Path) -> SessionState | None:
    """Parse a transcript into a SessionState, or None if it has no session."""
    path = Path(path)
    try:
        stat = path.stat()
        data = path.read_bytes()
    except OSError as exc:
        logger.debug("Cannot read transcript %s: %s", path, exc)
        return None

    session_id: str | None = None
    agent_id: str | None = None
    is_agent = is_agent_file(path.name)
    cwd: str | None = None
    created: float | None = None
    summary: str | None = None
    model: str | None = None
    last_prompt: str | None = None
    todos: tuple[TodoItem, ...] = ()
    usage = TokenUsage()
    output_total = 0
    message_count = 0
    turn_open = False
    saw_message = False

    for line in data.splitlines():
        if not line.strip():
            continue
        try:
            entry = _entry_decoder.decode(line)
        except msgspec.DecodeError:
            continue

        if entry.type == "summary":
            summary = entry.summary or summary
            continue
        if entry.session_id and session_id is None:
            session_id = entry.session_id
        if entry.agent_id and agent_id is None:
            agent_id = entry.agent_id
        if entry.is_sidechain:
            is_agent = True
        if entry.cwd and cwd is None:
            cwd = entry.cwd
        if entry.timestamp and created is None:
            created = _parse_timestamp(entry.timestamp)

        message = entry.message
        if message is None or entry.type not in ("user", "assistant"):
            continue
        saw_message = True
        message_count += 1

        if entry.type == "user":
            text = _text_of(message.content)
            if text and text.startswith(INTERRUPT_MARKER):
                turn_open = False
                continue
            turn_open = True
            if text and not entry.is_meta and not text.startswith("<"):
                last_prompt = text
            continue

        if message.model and not message.model.startswith("<"):
            model = message.model
        used_tool = message.stop_reason == "tool_use"
        for block in _blocks(message.content):
            if block.get("type") != "tool_use":
                continue
            used_tool = True
            if block.get("name") == TODO_TOOL_NAME:
                todos = _parse_todos(block.get("input"))
        turn_open = used_tool
        if message.usage:
            usage, output_total = _update_usage(message.usage, output_total)

    if not session_id:
        return None

    parent_session_id = None
    if is_agent:
        parent_session_id = session_id
        if is_agent_file(path.stem):
            session_id = path.stem
        elif agent_id:
            session_id = f"{AGENT_FILE_PREFIX}{agent_id}"

    if turn_open:
        status = SessionStatus.WORKING
    elif saw_message and any(t.status != "completed" for t in todos):
        status = SessionStatus.PAUSED
    else:
        status = SessionStatus.DONE

    return SessionState(
        session_id=session_id,
        file_path=str(path),
        cwd=cwd or "",
        status=status,
        created=created if created is not None else stat.st_mtime,
        last_modified=stat.st_mtime,
        is_agent=is_agent,
        parent_session_id=parent_session_id,
        last_user_prompt=last_prompt,
        summary=summary,
        model=model,
        message_count=message_count,
        todos=todos,
        token_usage=TokenUsage(
            input_tokens=usage.input_tokens,
            output_tokens=output_total,
            cache_read_tokens=usage.cache_read_tokens,
            cache_write_tokens=usage.cache_write_tokens,
        ),
    )


def _parse_timestamp(value: str) -> float | None:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def _blocks(content: Any) -> list[dict]:
    if isinstance(content, list):
        return [block for block in content if isinstance(block, dict)]
    return []


def _text_of(content: Any) -> str | None:
    """Plain text of a user message; None for tool results."""
    if isinstance(content, str):
        return content.strip() or None
    parts = [
        block.get("text", "")
        for block in _blocks(content)
        if block.get("type") == "text" and isinstance(block.get("text"), str)
    ]
    text = " ".join(parts).strip()
    return text or None


def _parse_todos(raw: Any) -> tuple[TodoItem, ...]:
    if not isinstance(raw, dict) or not isinstance(raw.get("todos"), list):
        return ()
    items = []
    for todo in raw["todos"]:
        if not isinstance(todo, dict):
            continue
        items.append(
            TodoItem(
                content=str(todo.get("content", "")),
                status=str(todo.get("status", "pending")),
                active_form=str(todo.get("activeForm", "")),
            )
        )
    return tuple(items)


def _update_usage(raw: dict[str, Any], output_total: int) -> tuple[TokenUsage, int]:
    def _int(key: str) -> int:
        value = raw.get(key)
        return value if isinstance(value, int) else 0

    usage = TokenUsage(
        input_tokens=_int("input_tokens"),
        cache_read_tokens=_int("cache_read_input_tokens"),
        cache_write_tokens=_int("cache_creation_input_tokens"),
    )
    return usage, output_total + _int("output_tokens")
