"""Tests for TerminalLinker."""

from __future__ import annotations

import pytest

from claude_watch.linker import MAX_PENDING_TERMINALS, TerminalLinker, match_terminal_by_name
from claude_watch.terminal_backends import TerminalSession


class _FakeBackend:
    backend_id = "tmux"

    def __init__(self, terminals: dict[str, int] | None = None, *, raise_on_list: bool = False) -> None:
        self.terminals = dict(terminals or {})
        self.names: dict[str, str] = {}
        self.raise_on_list = raise_on_list
        self.failing_pids: set[str] = set()

    async def list_sessions(self) -> list[TerminalSession]:
        if self.raise_on_list:
            raise RuntimeError("tmux unavailable")
        return [_terminal(native_id, self.names.get(native_id, "")) for native_id in self.terminals]

    async def get_process_id(self, session: TerminalSession) -> int | None:
        if session.native_id in self.failing_pids:
            raise RuntimeError("pid lookup failed")
        return self.terminals.get(session.native_id)


def _terminal(native_id: str, name: str = "") -> TerminalSession:
    return TerminalSession(backend_id="tmux", native_id=native_id, handle=native_id, name=name)


def _linker(backend: _FakeBackend, *, chain=None) -> TerminalLinker:
    async def _ancestors(pid):
        return chain

    return TerminalLinker(backend, ancestors=_ancestors)


class TestPendingTerminals:
    """Tests for the bounded pending queue."""

    def test_queue_drops_oldest_at_capacity(self):
        """Registering past capacity evicts the oldest entry."""
        linker = _linker(_FakeBackend())
        for i in range(MAX_PENDING_TERMINALS + 3):
            linker.register_pending_terminal(_terminal(f"%{i}"))

        pending = [t.native_id for t in linker.pending_terminals()]
        assert len(pending) == MAX_PENDING_TERMINALS
        assert pending[0] == "%3"
        assert pending[-1] == f"%{MAX_PENDING_TERMINALS + 2}"

    @pytest.mark.asyncio
    async def test_link_pending_matches_shell_pid(self):
        """The pending terminal whose shell is the session's parent is linked."""
        backend = _FakeBackend({"%1": 100, "%2": 200})
        linker = _linker(backend)
        linker.register_pending_terminal(_terminal("%1"))
        linker.register_pending_terminal(_terminal("%2"))

        terminal = await linker.link_pending("s1", 200)

        assert terminal.native_id == "%2"
        assert linker.get_linked_terminal("s1").native_id == "%2"
        assert [t.native_id for t in linker.pending_terminals()] == ["%1"]

    @pytest.mark.asyncio
    async def test_link_pending_tolerates_pid_failures(self):
        """A terminal whose pid lookup fails is skipped, not fatal."""
        backend = _FakeBackend({"%1": 100, "%2": 200})
        backend.failing_pids.add("%1")
        linker = _linker(backend)
        linker.register_pending_terminal(_terminal("%1"))
        linker.register_pending_terminal(_terminal("%2"))

        assert (await linker.link_pending("s1", 200)).native_id == "%2"
        assert await linker.link_pending("s2", 100) is None


class TestFindTerminal:
    """Tests for terminal discovery."""

    @pytest.mark.asyncio
    async def test_direct_parent_match(self):
        """A terminal whose shell pid equals ppid wins without an ancestry walk."""
        linker = _linker(_FakeBackend({"%1": 4000}), chain=[1])

        terminal = await linker.find_terminal(4000, 5000)

        assert terminal.native_id == "%1"

    @pytest.mark.asyncio
    async def test_nearest_ancestor_wins_and_reports_correction(self):
        """The first ancestor that is a shell is used; the caller learns its pid."""
        corrected = []
        linker = _linker(_FakeBackend({"%far": 2000, "%near": 3000}), chain=[4000, 3000, 2000])

        terminal = await linker.find_terminal(4000, 5000, on_pid_corrected=corrected.append)

        assert terminal.native_id == "%near"
        assert corrected == [3000]

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self):
        linker = _linker(_FakeBackend({"%1": 10}), chain=[4000, 3000])

        assert await linker.find_terminal(4000, 5000) is None

    @pytest.mark.asyncio
    async def test_name_heuristic_only_without_ancestry(self):
        """The name fallback is used only when ancestry is unavailable."""
        backend = _FakeBackend({"%1": 10})
        backend.names["%1"] = "Claude: my-project"

        with_chain = _linker(backend, chain=[])
        assert await with_chain.find_terminal(4000, 5000, cwd="/src/my-project") is None

        without_chain = _linker(backend, chain=None)
        terminal = await without_chain.find_terminal(4000, 5000, cwd="/src/my-project")
        assert terminal.native_id == "%1"

    @pytest.mark.asyncio
    async def test_listing_failure_finds_nothing(self):
        linker = _linker(_FakeBackend({"%1": 4000}, raise_on_list=True))

        assert await linker.find_terminal(4000, 5000) is None

    @pytest.mark.asyncio
    async def test_try_lazy_link_refuses_terminal_owned_by_other_session(self):
        """A terminal already linked elsewhere is not stolen."""
        backend = _FakeBackend({"%1": 4000})
        linker = _linker(backend)
        linker.link("owner", _terminal("%1"))

        assert await linker.try_lazy_link("other", 4000, 5000) is False
        assert linker.session_for_terminal("%1") == "owner"


class TestCanLink:
    """Tests for restore-time terminal gating."""

    @pytest.mark.asyncio
    async def test_recorded_parent_is_a_shell(self):
        linker = _linker(_FakeBackend({"%1": 4000}))

        assert await linker.can_link(5000, 4000) is True

    @pytest.mark.asyncio
    async def test_actual_parent_is_a_shell(self):
        """A reparented process still counts when its new parent is a shell."""
        linker = _linker(_FakeBackend({"%1": 3000}), chain=[3000])

        assert await linker.can_link(5000, 4000) is True

    @pytest.mark.asyncio
    async def test_shell_further_up_the_chain(self):
        """A wrapper between the session and its shell does not block restore."""
        linker = _linker(_FakeBackend({"%1": 4000}), chain=[4500, 4000])

        assert (await linker.find_terminal(9999, 5000)).native_id == "%1"
        assert await linker.can_link(5000, 9999) is True

    @pytest.mark.asyncio
    async def test_no_shell_on_chain(self):
        linker = _linker(_FakeBackend({"%1": 4000}), chain=[4500, 1200])

        assert await linker.can_link(5000, 9999) is False

    @pytest.mark.asyncio
    async def test_unavailable_ancestry(self):
        linker = _linker(_FakeBackend({"%1": 4000}), chain=None)

        assert await linker.can_link(5000, 9999) is False

    @pytest.mark.asyncio
    async def test_no_terminals(self):
        linker = _linker(_FakeBackend({}), chain=[3000])

        assert await linker.can_link(5000, 4000) is False


class TestTerminalClose:
    """Tests for close handling and the reverse index."""

    def test_close_clears_both_directions(self):
        linker = _linker(_FakeBackend())
        terminal = _terminal("%1")
        linker.link("s1", terminal)

        assert linker.handle_terminal_close(terminal) == "s1"
        assert linker.get_linked_terminal("s1") is None
        assert linker.session_for_terminal("%1") is None

    def test_relinking_moves_reverse_entry(self):
        linker = _linker(_FakeBackend())
        linker.link("s1", _terminal("%1"))
        linker.link("s1", _terminal("%2"))

        assert linker.session_for_terminal("%1") is None
        assert linker.session_for_terminal("%2") == "s1"

    @pytest.mark.asyncio
    async def test_prune_closed_terminals(self):
        backend = _FakeBackend({"%1": 1, "%2": 2})
        linker = _linker(backend)
        linker.link("s1", _terminal("%1"))
        linker.register_pending_terminal(_terminal("%2"))
        backend.terminals.clear()

        assert await linker.prune_closed_terminals() == ["s1"]
        assert linker.pending_terminals() == []

    @pytest.mark.asyncio
    async def test_prune_skipped_when_listing_fails(self):
        backend = _FakeBackend({"%1": 1}, raise_on_list=True)
        linker = _linker(backend)
        linker.link("s1", _terminal("%1"))

        assert await linker.prune_closed_terminals() == []
        assert linker.has_linked_terminal("s1")


class TestMatchTerminalByName:
    """Tests for the name heuristic."""

    def test_requires_marker_and_folder(self):
        terminals = [_terminal("%1", "my-project"), _terminal("%2", "claude other"), _terminal("%3", "claude my-project")]

        assert match_terminal_by_name(terminals, "/work/my-project/").native_id == "%3"

    def test_no_match(self):
        assert match_terminal_by_name([_terminal("%1", "zsh")], "/work/app") is None
