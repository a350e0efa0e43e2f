"""
Configuration for claude-watch.

Settings live in ~/.claude-watch/config.json (versioned JSON). Environment
variables override the file so a single server launch can be tuned without
editing it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
import json
import logging
import os
from pathlib import Path

from .paths import resolve_data_dir

logger = logging.getLogger("claude-watch.config")

CONFIG_VERSION = 1
CONFIG_PATH = resolve_data_dir() / "config.json"


class ConfigError(Exception):
    """Raised when the config file cannot be read or is invalid."""


@dataclass
class RegistryConfig:
    """Timing and retention knobs for the session registry."""

    sweep_interval_seconds: float = 5.0
    notify_debounce_ms: int = 150
    file_debounce_ms: int = 100
    stale_tool_timeout_seconds: float = 30.0
    max_inactive_sessions: int = 100
    inactive_display_limit: int = 20


@dataclass
class TerminalConfig:
    """Terminal backend selection ("tmux", "iterm" or None for auto)."""

    backend: str | None = None


@dataclass
class WatchConfig:
    version: int = CONFIG_VERSION
    workspace: str | None = None
    projects_dir: str | None = None
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    terminal: TerminalConfig = field(default_factory=TerminalConfig)

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: Path | None = None) -> WatchConfig:
    """
    Load config from disk, returning defaults when the file is missing.

    Raises:
        ConfigError: If the file is unreadable, not JSON, has the wrong
            version, or contains unknown keys or wrongly typed values.
    """
    path = path or CONFIG_PATH
    if not path.exists():
        return WatchConfig()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    return parse_config(raw)


def parse_config(raw: object) -> WatchConfig:
    """Validate a decoded config document."""
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be an object")
    version = raw.get("version", CONFIG_VERSION)
    if version != CONFIG_VERSION:
        raise ConfigError(f"Unsupported config version: {version!r}")

    known = {"version", "workspace", "projects_dir", "registry", "terminal"}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    return WatchConfig(
        version=CONFIG_VERSION,
        workspace=_optional_str(raw, "workspace"),
        projects_dir=_optional_str(raw, "projects_dir"),
        registry=_parse_section(raw.get("registry", {}), RegistryConfig, "registry"),
        terminal=_parse_section(raw.get("terminal", {}), TerminalConfig, "terminal"),
    )


def apply_env_overrides(config: WatchConfig) -> WatchConfig:
    """Return a copy of config with CLAUDE_WATCH_* environment overrides applied."""
    registry = replace(
        config.registry,
        sweep_interval_seconds=get_float_env(
            "CLAUDE_WATCH_SWEEP_INTERVAL_SECONDS",
            default=config.registry.sweep_interval_seconds,
            min_value=0.1,
        ),
        notify_debounce_ms=get_int_env(
            "CLAUDE_WATCH_NOTIFY_DEBOUNCE_MS",
            default=config.registry.notify_debounce_ms,
            min_value=0,
        ),
        file_debounce_ms=get_int_env(
            "CLAUDE_WATCH_FILE_DEBOUNCE_MS",
            default=config.registry.file_debounce_ms,
            min_value=0,
        ),
        stale_tool_timeout_seconds=get_float_env(
            "CLAUDE_WATCH_STALE_TOOL_TIMEOUT_SECONDS",
            default=config.registry.stale_tool_timeout_seconds,
            min_value=0.1,
        ),
        max_inactive_sessions=get_int_env(
            "CLAUDE_WATCH_MAX_INACTIVE_SESSIONS",
            default=config.registry.max_inactive_sessions,
            min_value=1,
        ),
    )
    terminal = replace(
        config.terminal,
        backend=os.environ.get("CLAUDE_WATCH_TERMINAL_BACKEND") or config.terminal.backend,
    )
    return replace(
        config,
        workspace=os.environ.get("CLAUDE_WATCH_WORKSPACE") or config.workspace,
        registry=registry,
        terminal=terminal,
    )


def load_effective_config() -> WatchConfig:
    """File config plus env overrides; falls back to defaults on ConfigError."""
    try:
        config = load_config()
    except ConfigError as exc:
        logger.warning("Invalid config file; using defaults: %s", exc)
        config = WatchConfig()
    return apply_env_overrides(config)


def render_config_json(config: WatchConfig | None = None) -> str:
    if config is None:
        config = apply_env_overrides(load_config())
    return json.dumps(config.to_dict(), indent=2, sort_keys=True)


def init_config(*, force: bool = False, path: Path | None = None) -> Path:
    """Write the default config to disk."""
    path = path or CONFIG_PATH
    if path.exists() and not force:
        raise ConfigError(f"Config already exists at {path} (use --force to overwrite)")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_config_json(WatchConfig()) + "\n", encoding="utf-8")
    return path


def get_int_env(name: str, *, default: int, min_value: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    if parsed < min_value:
        return default
    return parsed


def get_float_env(name: str, *, default: float, min_value: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    if parsed < min_value:
        return default
    return parsed


def _optional_str(raw: dict, key: str) -> str | None:
    value = raw.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _parse_section(raw: object, cls: type, name: str):
    if not isinstance(raw, dict):
        raise ConfigError(f"{name} must be an object")
    allowed = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(allowed))
    if unknown:
        raise ConfigError(f"Unknown {name} keys: {', '.join(unknown)}")
    defaults = cls()
    values = {}
    for key, value in raw.items():
        expected = getattr(defaults, key)
        if isinstance(expected, bool) or isinstance(value, bool):
            raise ConfigError(f"{name}.{key} has an invalid value: {value!r}")
        if isinstance(expected, int) and not isinstance(expected, bool):
            if not isinstance(value, int) or value < 0:
                raise ConfigError(f"{name}.{key} must be a non-negative integer")
        elif isinstance(expected, float):
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name}.{key} must be a positive number")
            value = float(value)
        elif value is not None and not isinstance(value, str):
            raise ConfigError(f"{name}.{key} must be a string")
        values[key] = value
    return cls(**values)
