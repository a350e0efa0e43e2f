"""Tests for terminal backends and backend selection."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from claude_watch.terminal_backends import select_backend_id
from claude_watch.terminal_backends.iterm import ItermBackend
from claude_watch.terminal_backends.tmux import parse_pane_line


class TestParsePaneLine:
    def test_full_line(self):
        pane = parse_pane_line("%12\t4321\tzsh\tclaude: api")

        assert pane.native_id == "%12"
        assert pane.process_id == 4321
        assert pane.name == "claude: api"

    def test_falls_back_to_title(self):
        assert parse_pane_line("%3\t99\tmy title\t").name == "my title"

    def test_bad_pid(self):
        assert parse_pane_line("%3\tnope").process_id is None

    def test_rejects_short_lines(self):
        assert parse_pane_line("") is None
        assert parse_pane_line("%3") is None


class TestSelectBackend:
    def test_configured_wins(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_WATCH_TERMINAL_BACKEND", "tmux")
        assert select_backend_id("iTerm") == "iterm"

    def test_env_then_detection(self, monkeypatch):
        monkeypatch.delenv("CLAUDE_WATCH_TERMINAL_BACKEND", raising=False)
        monkeypatch.delenv("TMUX", raising=False)
        monkeypatch.setenv("TERM_PROGRAM", "iTerm.app")
        assert select_backend_id() == "iterm"

        monkeypatch.setenv("TMUX", "/tmp/tmux-501/default,1,0")
        assert select_backend_id() == "tmux"

        monkeypatch.setenv("CLAUDE_WATCH_TERMINAL_BACKEND", "iterm")
        assert select_backend_id() == "iterm"


def _iterm_session(session_id, name, pid):
    session = MagicMock()
    session.session_id = session_id
    session.name = name
    session.async_get_variable = AsyncMock(return_value=pid)
    session.async_activate = AsyncMock()
    session.async_send_text = AsyncMock()
    return session


class TestItermBackend:
    def _backend(self, *sessions):
        tab = MagicMock()
        tab.sessions = list(sessions)
        window = MagicMock()
        window.tabs = [tab]
        app = MagicMock()
        app.terminal_windows = [window]
        app.async_activate = AsyncMock()
        return ItermBackend(MagicMock(), app)

    @pytest.mark.asyncio
    async def test_lists_sessions_and_pids(self):
        backend = self._backend(_iterm_session("uuid-1", "claude: api", 321), _iterm_session("uuid-2", None, "bad"))

        terminals = await backend.list_sessions()

        assert [t.native_id for t in terminals] == ["uuid-1", "uuid-2"]
        assert terminals[1].name == ""
        assert await backend.get_process_id(terminals[0]) == 321
        assert await backend.get_process_id(terminals[1]) is None

    @pytest.mark.asyncio
    async def test_show_and_send_text(self):
        session = _iterm_session("uuid-1", "x", 1)
        backend = self._backend(session)
        terminal = (await backend.list_sessions())[0]

        await backend.show(terminal)
        await backend.send_text(terminal, "claude")

        backend.app.async_activate.assert_awaited_once()
        session.async_activate.assert_awaited_once_with(select_tab=True, order_window_front=True)
        session.async_send_text.assert_awaited_once_with("claude\r")
