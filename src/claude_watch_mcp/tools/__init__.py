"""MCP tools for claude-watch."""

from mcp.server.fastmcp import FastMCP

from . import list_sessions, new_session, refresh_sessions, show_terminal, terminate_session


def register_all_tools(mcp: FastMCP) -> None:
    """Register every tool module on the server."""
    list_sessions.register_tools(mcp)
    show_terminal.register_tools(mcp)
    new_session.register_tools(mcp)
    terminate_session.register_tools(mcp)
    refresh_sessions.register_tools(mcp)
