"""MCP server exposing the claude-watch session registry."""
