"""
OS process queries used for terminal linking and liveness checks.

Everything here shells out to ``ps``. Any failure (missing binary, timeout,
unparseable output) degrades to "unknown" or "not found" rather than raising,
so callers never have to guard these calls.
"""

from __future__ import annotations

import asyncio
import logging
import os

logger = logging.getLogger("claude-watch.process")

PS_TIMEOUT_SECONDS = 2.0
MAX_ANCESTOR_DEPTH = 10


async def _run_ps(*args: str) -> tuple[int, str] | None:
    """Run ps with the given arguments; None when ps could not be run."""
    env = {**os.environ, "LC_ALL": "C"}
    try:
        proc = await asyncio.create_subprocess_exec(
            "ps",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            env=env,
        )
    except OSError as exc:
        logger.debug("ps unavailable: %s", exc)
        return None
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=PS_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.debug("ps %s timed out", " ".join(args))
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        return None
    return proc.returncode or 0, stdout.decode("utf-8", errors="replace").strip()


async def get_parent_pid(pid: int) -> int | None:
    """Parent pid of pid, or None when unknown."""
    result = await _run_ps("-o", "ppid=", "-p", str(pid))
    if result is None:
        return None
    returncode, output = result
    if returncode != 0 or not output:
        return None
    try:
        return int(output.split()[0])
    except ValueError:
        return None


async def get_process_ancestors(pid: int, max_depth: int = MAX_ANCESTOR_DEPTH) -> list[int] | None:
    """
    Walk up the process tree from pid, nearest ancestor first.

    Stops at init (0 or 1), on a cycle, on a failed lookup, or after
    max_depth hops. Returns None when not even the first lookup could be
    made, meaning ancestry is unavailable on this system.
    """
    ancestors: list[int] = []
    seen = {pid}
    current = pid
    for depth in range(max_depth):
        parent = await get_parent_pid(current)
        if parent is None:
            if depth == 0 and not await _ps_available():
                return None
            break
        if parent <= 1 or parent in seen:
            break
        ancestors.append(parent)
        seen.add(parent)
        current = parent
    return ancestors


async def _ps_available() -> bool:
    return await _run_ps("-o", "pid=", "-p", str(os.getpid())) is not None


async def get_process_start_time(pid: int) -> str | None:
    """
    Start-time fingerprint for pid (the ``lstart`` column), or None.

    Combined with the pid this identifies one process instance, so a reused
    pid can be told apart from the process that originally held it.
    """
    if pid <= 0:
        return None
    result = await _run_ps("-o", "lstart=", "-p", str(pid))
    if result is None:
        return None
    returncode, output = result
    if returncode != 0 or not output:
        return None
    return " ".join(output.split())


async def is_process_running(pid: int) -> bool | None:
    """True/False when known; None when ps could not answer."""
    if pid <= 0:
        return False
    result = await _run_ps("-o", "pid=", "-p", str(pid))
    if result is None:
        return None
    returncode, output = result
    return returncode == 0 and bool(output)


async def is_process_valid(pid: int, start_time: str | None) -> bool | None:
    """
    Check that pid is alive and, when a fingerprint is known, still the same process.

    Returns None when liveness could not be determined.
    """
    if start_time is None:
        return await is_process_running(pid)
    if pid <= 0:
        return False
    result = await _run_ps("-o", "lstart=", "-p", str(pid))
    if result is None:
        return None
    returncode, output = result
    if returncode != 0 or not output:
        return False
    return " ".join(output.split()) == start_time
