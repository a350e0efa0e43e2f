"""
New session tool.

Opens a terminal running Claude Code (optionally resuming a session) and
queues that terminal so the session links to it as soon as it starts.
"""

import logging
import os
from typing import TYPE_CHECKING

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

if TYPE_CHECKING:
    from ..server import AppContext

from ..utils import HINTS, error_response

logger = logging.getLogger("claude-watch.mcp")


def register_tools(mcp: FastMCP) -> None:
    """Register new_session tool on the MCP server."""

    @mcp.tool()
    async def new_session(
        ctx: Context[ServerSession, "AppContext"],
        cwd: str | None = None,
        resume_session_id: str | None = None,
    ) -> dict:
        """
        Start Claude Code in a new terminal.

        Args:
            cwd: Working directory; defaults to the server's workspace
            resume_session_id: Resume this session id instead of starting fresh

        Returns:
            Dict with the terminal id and working directory
        """
        app_ctx = ctx.request_context.lifespan_context
        registry = app_ctx.registry
        directory = cwd or registry.workspace
        if not directory or not os.path.isdir(directory):
            return error_response(
                f"Working directory not found: {directory}",
                hint=HINTS["cwd_missing"],
            )
        try:
            terminal = await registry.open_session(
                directory, resume_session_id=resume_session_id
            )
        except Exception as exc:
            logger.warning("Could not open terminal in %s: %s", directory, exc)
            return error_response(
                f"Could not open terminal: {exc}",
                hint=HINTS["terminal_backend"],
            )
        return {
            "terminal": str(terminal),
            "cwd": directory,
            "resume_session_id": resume_session_id,
        }
