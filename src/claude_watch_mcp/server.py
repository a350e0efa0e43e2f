"""
claude-watch MCP Server

FastMCP server exposing a live registry of the Claude Code sessions running
on this machine: what each is doing, which terminal hosts it, and which
sessions ended recently. Hook events arrive over a local socket; transcript
files are watched for state changes.
"""

import asyncio
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from claude_watch.config import WatchConfig, load_effective_config
from claude_watch.events import HookServer
from claude_watch.linker import TerminalLinker
from claude_watch.paths import resolve_projects_dir, store_path_for_workspace
from claude_watch.registry import SessionRegistry, SessionView
from claude_watch.store import SessionStore
from claude_watch.terminal_backends import TerminalBackend, TmuxBackend, select_backend_id
from claude_watch.transcript import SessionState
from claude_watch.watcher import TranscriptWatcher

from .logging_setup import configure_hook_logging, configure_logging
from .tools import register_all_tools

logger = logging.getLogger("claude-watch.mcp")


# =============================================================================
# Application Context
# =============================================================================


@dataclass
class AppContext:
    """
    Everything a tool invocation can reach.

    One instance per server; built and torn down by WatchService.
    """

    config: WatchConfig
    terminal_backend: TerminalBackend
    linker: TerminalLinker
    store: SessionStore
    registry: SessionRegistry
    hook_server: HookServer
    watcher: TranscriptWatcher


async def connect_terminal_backend(backend_id: str) -> TerminalBackend:
    """
    Create the terminal backend named by backend_id.

    Raises:
        RuntimeError: If the backend is unknown or cannot be reached
    """
    if backend_id == "tmux":
        return TmuxBackend()
    if backend_id != "iterm":
        raise RuntimeError(f"Unsupported terminal backend {backend_id!r} (expected tmux or iterm)")

    # iterm2 is only imported when selected.
    try:
        from iterm2.app import async_get_app
        from iterm2.connection import Connection

        from claude_watch.terminal_backends.iterm import ItermBackend
    except ImportError as e:
        logger.error(
            "The iterm2 backend needs the iterm2 package and the iTerm2 Python API "
            "(Settings > General > Magic > Enable Python API)"
        )
        raise RuntimeError("iterm2 backend unavailable") from e

    logger.info("Opening iTerm2 API connection")
    try:
        connection = await Connection.async_create()
        app = await async_get_app(connection)
        if app is None:
            raise RuntimeError("iTerm2 returned no app object")
    except Exception as e:
        logger.error("iTerm2 API connection failed: %s", e)
        raise RuntimeError("iTerm2 API unreachable") from e
    logger.info("iTerm2 API connected")
    return ItermBackend(connection, app)


class WatchService:
    """
    Builds the registry and its event sources, and runs them while in use.

    HTTP transports enter the lifespan once per client session; the service
    starts on the first entry and stops after the last exit.
    """

    def __init__(self, config: WatchConfig) -> None:
        self.config = config
        self.context: AppContext | None = None
        self._users = 0
        self._lock = asyncio.Lock()

    async def acquire(self) -> AppContext:
        async with self._lock:
            if self.context is None:
                self.context = await self._start()
            self._users += 1
            return self.context

    async def release(self) -> None:
        async with self._lock:
            self._users -= 1
            if self._users > 0 or self.context is None:
                return
            context, self.context = self.context, None
            await self._stop(context)

    async def _start(self) -> AppContext:
        config = self.config
        backend_id = select_backend_id(config.terminal.backend)
        logger.info("Selecting terminal backend: %s", backend_id)
        backend = await connect_terminal_backend(backend_id)

        projects_dir = Path(config.projects_dir).expanduser() if config.projects_dir else resolve_projects_dir()
        linker = TerminalLinker(backend)
        store = SessionStore(store_path_for_workspace(config.workspace))
        registry = SessionRegistry(
            linker,
            store,
            config=config.registry,
            workspace=config.workspace,
            projects_dir=str(projects_dir),
        )
        registry.subscribe(_log_update)
        hook_server = HookServer(registry)
        watcher = TranscriptWatcher(
            registry,
            projects_dir,
            debounce_seconds=config.registry.file_debounce_ms / 1000,
        )

        await registry.start()
        await hook_server.start()
        await watcher.start()
        logger.info(
            "Watching sessions (workspace=%s, active=%d)",
            config.workspace or "*",
            registry.count(),
        )
        return AppContext(
            config=config,
            terminal_backend=backend,
            linker=linker,
            store=store,
            registry=registry,
            hook_server=hook_server,
            watcher=watcher,
        )

    async def _stop(self, context: AppContext) -> None:
        logger.info("claude-watch shutting down...")
        await context.watcher.stop()
        await context.hook_server.stop()
        await context.registry.stop()
        logger.info("claude-watch stopped")


def _log_update(active: list[SessionView], inactive: list[SessionState]) -> None:
    logger.debug("Sessions updated: %d active, %d inactive", len(active), len(inactive))


# =============================================================================
# FastMCP Server Factory
# =============================================================================


def create_mcp_server(
    config: WatchConfig | None = None,
    host: str = "127.0.0.1",
    port: int = 8767,
) -> FastMCP:
    """Build the FastMCP server with its tools, resource and lifespan."""
    service = WatchService(config or load_effective_config())

    @asynccontextmanager
    async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
        context = await service.acquire()
        try:
            yield context
        finally:
            await service.release()

    server = FastMCP("claude-watch", lifespan=app_lifespan, host=host, port=port)
    register_all_tools(server)

    @server.resource("sessions://list")
    async def resource_sessions(ctx: Context[ServerSession, AppContext]) -> list[dict]:
        """
        Active Claude Code sessions with status, current tool and agents.

        Read-only alternative to the list_sessions tool.
        """
        registry = ctx.request_context.lifespan_context.registry
        return [view.to_dict() for view in registry.get_active_sessions()]

    return server


# =============================================================================
# Server Entry Point
# =============================================================================


def run_server(config: WatchConfig, transport: str = "stdio", port: int = 8767) -> None:
    """
    Run the MCP server.

    Args:
        config: Effective configuration
        transport: Transport mode - "stdio" or "streamable-http"
        port: Port for HTTP transport (default 8767)
    """
    log_path = configure_logging()
    if transport == "streamable-http":
        logger.info("Starting claude-watch (HTTP on port %s). Logs: %s", port, log_path)
        create_mcp_server(config, host="127.0.0.1", port=port).run(transport="streamable-http")
    else:
        logger.info("Starting claude-watch (stdio). Logs: %s", log_path)
        create_mcp_server(config).run(transport="stdio")


def main():
    """Entry point for the claude-watch command."""
    import argparse
    from dataclasses import replace

    parser = argparse.ArgumentParser(description="claude-watch MCP server")
    parser.add_argument(
        "--http",
        action="store_true",
        help="Run in HTTP mode (streamable-http) instead of stdio",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8767,
        help="Port for HTTP mode (default: 8767)",
    )
    parser.add_argument(
        "--workspace",
        default=None,
        help="Only show sessions whose working directory is this path",
    )
    subparsers = parser.add_subparsers(dest="command")

    hook_parser = subparsers.add_parser(
        "hook",
        help="Forward a Claude Code hook payload (stdin) to running servers",
    )
    hook_parser.add_argument(
        "event",
        choices=["SessionStart", "SessionEnd", "PreToolUse", "PostToolUse"],
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Manage claude-watch configuration",
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    init_parser = config_subparsers.add_parser("init", help="Write default config to disk")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing config file",
    )
    config_subparsers.add_parser("show", help="Show effective config (file + env overrides)")

    args = parser.parse_args()

    if args.command == "hook":
        from claude_watch.hook_client import run_hook

        configure_hook_logging()
        raise SystemExit(run_hook(args.event, sys.stdin.read()))

    if args.command == "config":
        from claude_watch.config import ConfigError, init_config, render_config_json

        try:
            if args.config_command == "init":
                print(init_config(force=args.force))
            elif args.config_command == "show":
                print(render_config_json())
            else:
                config_parser.print_help()
                raise SystemExit(2)
        except ConfigError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            raise SystemExit(1) from exc
        return

    config = load_effective_config()
    if args.workspace:
        config = replace(config, workspace=os.path.abspath(args.workspace))

    if args.http:
        run_server(config, transport="streamable-http", port=args.port)
    else:
        run_server(config, transport="stdio")


if __name__ == "__main__":
    main()
