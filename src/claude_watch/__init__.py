"""Live registry of Claude Code sessions and the terminals hosting them."""

__version__ = "0.1.0"
