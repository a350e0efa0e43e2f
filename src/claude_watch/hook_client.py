"""
Hook emitter: forwards Claude Code hook payloads to running registries.

Claude Code runs ``claude-watch hook <EventName>`` with the hook payload on
stdin. The emitter adds the identity of the monitored process (pid, parent
pid, tty) and a timestamp, then writes one line to every endpoint listed in
the discovery file. Delivery is best effort and never raises.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import subprocess
import time
from pathlib import Path
from typing import Any

from .events import (
    HookEvent,
    PostToolUse,
    PreToolUse,
    SessionEnd,
    SessionStart,
    encode_event,
    read_endpoints,
)
from .paths import resolve_port_file

logger = logging.getLogger("claude-watch.hook")

SEND_TIMEOUT_SECONDS = 0.5
MAX_ANCESTOR_SEARCH = 20
CLAUDE_PROCESS_MARKER = "claude"

EVENT_TYPES: dict[str, type] = {
    "SessionStart": SessionStart,
    "SessionEnd": SessionEnd,
    "PreToolUse": PreToolUse,
    "PostToolUse": PostToolUse,
}


def _ps_fields(pid: int, columns: str) -> list[str] | None:
    try:
        result = subprocess.run(
            ["ps", "-p", str(pid), "-o", columns],
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    output = result.stdout.strip()
    if result.returncode != 0 or not output:
        return None
    return output.split(None, 1)


def find_ancestor_claude_pid(start_pid: int | None = None) -> int | None:
    """Walk up from our parent to the nearest process named like claude."""
    current = start_pid or os.getppid()
    for _ in range(MAX_ANCESTOR_SEARCH):
        fields = _ps_fields(current, "ppid=,comm=")
        if not fields:
            return None
        try:
            ppid = int(fields[0])
        except ValueError:
            return None
        command = fields[1] if len(fields) > 1 else ""
        if CLAUDE_PROCESS_MARKER in os.path.basename(command).lower():
            return current
        if ppid <= 1:
            return None
        current = ppid
    return None


def describe_process(pid: int) -> tuple[int, str]:
    """(parent pid, controlling tty) for pid; (0, "") when unknown."""
    fields = _ps_fields(pid, "ppid=,tty=")
    if not fields:
        return 0, ""
    try:
        ppid = int(fields[0])
    except ValueError:
        ppid = 0
    tty = fields[1] if len(fields) > 1 else ""
    if tty in ("?", "??"):
        tty = ""
    return ppid, tty


def build_event(event_name: str, payload: dict[str, Any], *, pid: int | None = None) -> HookEvent:
    """
    Build a wire event from a Claude Code hook payload.

    Raises:
        ValueError: For unknown event names or payloads without a session id.
    """
    event_type = EVENT_TYPES.get(event_name)
    if event_type is None:
        raise ValueError(f"Unknown hook event: {event_name}")
    session_id = payload.get("session_id")
    if not isinstance(session_id, str) or not session_id:
        raise ValueError("Hook payload has no session_id")

    if pid is None:
        pid = find_ancestor_claude_pid() or os.getppid()
    ppid, tty = describe_process(pid)

    fields: dict[str, Any] = {
        "session_id": session_id,
        "transcript_path": str(payload.get("transcript_path") or ""),
        "cwd": str(payload.get("cwd") or os.getcwd()),
        "pid": pid,
        "ppid": ppid,
        "tty": tty,
    }
    if event_type in (PreToolUse, PostToolUse):
        tool_input = payload.get("tool_input")
        fields["tool_name"] = str(payload.get("tool_name") or "unknown")
        fields["tool_input"] = tool_input if isinstance(tool_input, dict) else {}
        fields["timestamp"] = time.time() * 1000
    if event_type is PostToolUse:
        fields["tool_result"] = payload.get("tool_response")
    return event_type(**fields)


def send_event(event: HookEvent, port_file: Path | None = None) -> int:
    """Deliver event to every published endpoint; returns the delivery count."""
    line = encode_event(event) + b"\n"
    delivered = 0
    for address in read_endpoints(port_file or resolve_port_file()):
        host, _, port = address.rpartition(":")
        try:
            with socket.create_connection(
                (host or "127.0.0.1", int(port)), timeout=SEND_TIMEOUT_SECONDS
            ) as sock:
                sock.sendall(line)
            delivered += 1
        except (OSError, ValueError) as exc:
            logger.debug("Endpoint %s unreachable: %s", address, exc)
    return delivered


def run_hook(event_name: str, stdin_text: str, port_file: Path | None = None) -> int:
    """Entry point for the ``hook`` subcommand. Always returns exit status 0."""
    try:
        payload = json.loads(stdin_text) if stdin_text.strip() else {}
    except json.JSONDecodeError as exc:
        logger.warning("Hook payload is not JSON: %s", exc)
        return 0
    if not isinstance(payload, dict):
        return 0
    try:
        event = build_event(event_name, payload)
    except ValueError as exc:
        logger.warning("Cannot build %s event: %s", event_name, exc)
        return 0
    send_event(event, port_file)
    return 0
