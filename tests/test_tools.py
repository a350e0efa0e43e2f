"""Tests for MCP tool registration and response shaping."""

import pytest
from mcp.server.fastmcp import FastMCP

from claude_watch.registry import CurrentTool, SessionView
from claude_watch.transcript import SessionState, SessionStatus
from claude_watch_mcp.tools import register_all_tools
from claude_watch_mcp.tools.list_sessions import build_session_listing
from claude_watch_mcp.utils import error_response


def _state(session_id, status=SessionStatus.DONE):
    return SessionState(
        session_id=session_id,
        file_path=f"/p/{session_id}.jsonl",
        cwd="/work",
        status=status,
        created=1.0,
        last_modified=2.0,
    )


def _view(session_id, status, **kwargs):
    return SessionView(state=_state(session_id, status), status=status, **kwargs)


class TestBuildSessionListing:
    def test_filters_by_effective_status(self):
        active = [
            _view("a", SessionStatus.WORKING, current_tool=CurrentTool("Bash", {"command": "ls"}, 5.0)),
            _view("b", SessionStatus.DONE),
        ]

        result = build_session_listing(active, status_filter="working")

        assert result["count"] == 1
        assert result["sessions"][0]["session_id"] == "a"
        assert result["sessions"][0]["current_tool"]["name"] == "Bash"
        assert "inactive" not in result

    def test_invalid_filter(self):
        result = build_session_listing([], status_filter="sleeping")

        assert result["error"] == "Invalid status filter: sleeping"
        assert "working" in result["hint"]

    def test_includes_inactive_when_given(self):
        child = _view("agent-1", SessionStatus.WORKING)
        result = build_session_listing(
            [_view("a", SessionStatus.PAUSED, children=(child,), terminal_linked=True, pid=10)],
            [_state("old")],
        )

        session = result["sessions"][0]
        assert session["status"] == "paused"
        assert session["terminal_linked"] is True
        assert session["children"][0]["session_id"] == "agent-1"
        assert [s["session_id"] for s in result["inactive"]] == ["old"]


@pytest.mark.asyncio
async def test_all_tools_registered():
    server = FastMCP("test")
    register_all_tools(server)

    names = {tool.name for tool in await server.list_tools()}

    assert names == {
        "list_sessions",
        "show_terminal",
        "terminate_session",
        "refresh_sessions",
        "new_session",
    }


def test_error_response_shape():
    assert error_response("Session not found: s1") == {"error": "Session not found: s1"}
    assert error_response("No terminal", hint="open one", session_id="s1") == {
        "error": "No terminal",
        "session_id": "s1",
        "hint": "open one",
    }
