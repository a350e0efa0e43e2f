"""
List sessions tool.

Provides list_sessions for viewing active and recent Claude Code sessions.
"""

import logging
from typing import TYPE_CHECKING

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from claude_watch.transcript import SessionStatus

if TYPE_CHECKING:
    from ..server import AppContext

from ..utils import error_response

logger = logging.getLogger("claude-watch.mcp")


def register_tools(mcp: FastMCP) -> None:
    """Register list_sessions tool on the MCP server."""

    @mcp.tool()
    async def list_sessions(
        ctx: Context[ServerSession, "AppContext"],
        status_filter: str | None = None,
        include_inactive: bool = False,
    ) -> dict:
        """
        List monitored Claude Code sessions.

        Active sessions are those whose process is running and was announced
        by a hook. Each carries its effective status, the tool in flight, the
        most recent completed tools and any sub-agents as children.

        Args:
            status_filter: Optional filter by status - "working", "paused", "done"
            include_inactive: Also return recent sessions that are no longer running

        Returns:
            Dict with:
                - sessions: List of active session dicts, newest first
                - count: Number of active sessions returned
                - inactive: Recent inactive sessions (only when requested)
        """
        registry = ctx.request_context.lifespan_context.registry
        return build_session_listing(
            registry.get_active_sessions(),
            registry.get_inactive_sessions() if include_inactive else None,
            status_filter=status_filter,
        )


def build_session_listing(active, inactive=None, *, status_filter: str | None = None) -> dict:
    """Shape registry views into the list_sessions response."""
    if status_filter:
        try:
            status = SessionStatus(status_filter)
        except ValueError:
            valid = [s.value for s in SessionStatus]
            return error_response(
                f"Invalid status filter: {status_filter}",
                hint=f"Valid statuses are: {', '.join(valid)}",
            )
        active = [view for view in active if view.status is status]

    result = {
        "sessions": [view.to_dict() for view in active],
        "count": len(active),
    }
    if inactive is not None:
        result["inactive"] = [state.to_dict() for state in inactive]
    return result
