"""
Terminate session tool.

Archives an active session so it moves to the inactive list. The process
itself is left alone.
"""

from typing import TYPE_CHECKING

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

if TYPE_CHECKING:
    from ..server import AppContext

from ..utils import HINTS, error_response


def register_tools(mcp: FastMCP) -> None:
    """Register terminate_session tool on the MCP server."""

    @mcp.tool()
    async def terminate_session(
        ctx: Context[ServerSession, "AppContext"],
        session_id: str,
    ) -> dict:
        """
        Stop tracking a session and move it to the inactive list.

        Args:
            session_id: Active session id from list_sessions

        Returns:
            Dict with session_id and terminated=True
        """
        registry = ctx.request_context.lifespan_context.registry
        if not registry.terminate_session(session_id):
            return error_response(
                f"Session not found: {session_id}",
                hint=HINTS["session_not_found"],
            )
        return {"session_id": session_id, "terminated": True}
