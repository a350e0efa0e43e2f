"""
Show terminal tool.

Brings the terminal hosting a session (or an agent's parent session) to the
front.
"""

import logging
from typing import TYPE_CHECKING

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

if TYPE_CHECKING:
    from ..server import AppContext

from ..utils import HINTS, error_response

logger = logging.getLogger("claude-watch.mcp")


def register_tools(mcp: FastMCP) -> None:
    """Register show_terminal tool on the MCP server."""

    @mcp.tool()
    async def show_terminal(
        ctx: Context[ServerSession, "AppContext"],
        session_id: str,
    ) -> dict:
        """
        Focus the terminal running a session.

        Agents resolve to their parent session's terminal. If the session has
        not been linked yet, its process ancestry is searched first.

        Args:
            session_id: Session (or agent) id from list_sessions

        Returns:
            Dict with session_id and the terminal that was shown
        """
        registry = ctx.request_context.lifespan_context.registry
        target = registry.get_parent_session(session_id) or session_id
        if registry.get_session_record(target) is None:
            return error_response(
                f"Session not found: {session_id}",
                hint=HINTS["session_not_found"],
            )
        try:
            terminal = await registry.find_terminal_for_session(session_id)
            if terminal is None:
                return error_response(
                    f"No terminal found for session {session_id}",
                    hint=HINTS["terminal_not_found"],
                    session_id=session_id,
                )
            await registry.show_terminal(session_id)
        except Exception as exc:
            logger.warning("Could not show terminal for %s: %s", session_id, exc)
            return error_response(
                f"Could not show terminal: {exc}",
                hint=HINTS["terminal_backend"],
                session_id=session_id,
            )
        return {"session_id": session_id, "terminal": str(terminal), "shown": True}
