"""
Refresh sessions tool.

Re-validates every active session's process and rescans transcripts.
"""

from typing import TYPE_CHECKING

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

if TYPE_CHECKING:
    from ..server import AppContext


def register_tools(mcp: FastMCP) -> None:
    """Register refresh_sessions tool on the MCP server."""

    @mcp.tool()
    async def refresh_sessions(ctx: Context[ServerSession, "AppContext"]) -> dict:
        """
        Archive sessions whose process has exited and pick up new transcripts.

        Returns:
            Dict with:
                - archived: Session ids archived by this refresh
                - updated_transcripts: Number of transcripts re-parsed
                - active_count: Active sessions after the refresh
        """
        registry = ctx.request_context.lifespan_context.registry
        updated = await registry.scan_projects()
        archived = await registry.refresh()
        return {
            "archived": archived,
            "updated_transcripts": updated,
            "active_count": len(registry.get_active_sessions()),
        }
