"""Terminal backend protocol and shared types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class TerminalSession:
    """
    A terminal known to a backend.

    Attributes:
        backend_id: Backend identifier ("tmux", "iterm")
        native_id: The backend's own id (tmux pane id, iTerm session UUID)
        handle: Backend object used to drive the terminal
        name: Display name / title, used by the name heuristic
        process_id: Shell pid when the backend reports it at listing time
    """

    backend_id: str
    native_id: str
    handle: Any = field(compare=False, repr=False)
    name: str = ""
    process_id: int | None = None

    def __str__(self) -> str:
        return f"{self.backend_id}:{self.native_id}"


class TerminalBackend(Protocol):
    """Operations the linker and registry need from a terminal host."""

    backend_id: str

    async def list_sessions(self) -> list[TerminalSession]:
        """All currently open terminals."""
        ...

    async def get_process_id(self, session: TerminalSession) -> int | None:
        """Pid of the terminal's shell, or None when unknown."""
        ...

    async def show(self, session: TerminalSession) -> None:
        """Bring the terminal to the front."""
        ...

    async def open_terminal(self, cwd: str, name: str) -> TerminalSession:
        """Open a new terminal with a shell in cwd."""
        ...

    async def send_text(self, session: TerminalSession, text: str) -> None:
        """Type text into the terminal followed by Enter."""
        ...
