"""XDG config loading/saving."""

from __future__ import annotations

import re
import tomllib
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from termdock.logging import LOG_LEVELS

DEFAULT_CONFIG_PATH = Path("~/.config/termdock/config.toml").expanduser()
DEFAULT_MAX_TERMINALS = 20
DEFAULT_MAX_SPAWNS_PER_MINUTE = 10
DEFAULT_RATE_WINDOW_SECONDS = 60
DEFAULT_DEDUP_TTL_SECONDS = 5.0
DEFAULT_SPAWN_HISTORY_LIMIT = 100
DEFAULT_GRACE_PERIOD_SECONDS = 30.0
DEFAULT_KILL_TIMEOUT_SECONDS = 2.0
DEFAULT_RECONNECT_STAGGER_SECONDS = 0.15
DEFAULT_AUTO_EXECUTE_DELAY_SECONDS = 1.2
DEFAULT_SESSION_PREFIX = "td"
DEFAULT_COLS = 80
DEFAULT_ROWS = 30
DEFAULT_EVENT_INBOX_SIZE = 1024

_SESSION_PREFIX_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_]{0,15}$")


@dataclass(frozen=True)
class SpawnSettings:
    max_terminals: int = DEFAULT_MAX_TERMINALS
    max_spawns_per_minute: int = DEFAULT_MAX_SPAWNS_PER_MINUTE
    rate_window_seconds: float = DEFAULT_RATE_WINDOW_SECONDS
    dedup_ttl_seconds: float = DEFAULT_DEDUP_TTL_SECONDS
    history_limit: int = DEFAULT_SPAWN_HISTORY_LIMIT


@dataclass(frozen=True)
class RegistrySettings:
    session_prefix: str = DEFAULT_SESSION_PREFIX
    default_cols: int = DEFAULT_COLS
    default_rows: int = DEFAULT_ROWS
    event_inbox_size: int = DEFAULT_EVENT_INBOX_SIZE
    event_log_size: int = 500
    reconnect_stagger_seconds: float = DEFAULT_RECONNECT_STAGGER_SECONDS


@dataclass(frozen=True)
class AttachmentSettings:
    grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS
    kill_timeout_seconds: float = DEFAULT_KILL_TIMEOUT_SECONDS
    auto_execute_delay_seconds: float = DEFAULT_AUTO_EXECUTE_DELAY_SECONDS
    session_prefix: str = DEFAULT_SESSION_PREFIX
    tmux_config_path: str = ""


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    max_terminals: int = Field(default=DEFAULT_MAX_TERMINALS, ge=1, le=200)
    max_spawns_per_minute: int = Field(default=DEFAULT_MAX_SPAWNS_PER_MINUTE, ge=1, le=1000)
    rate_window_seconds: int = Field(default=DEFAULT_RATE_WINDOW_SECONDS, ge=1, le=3600)
    dedup_ttl_seconds: float = Field(default=DEFAULT_DEDUP_TTL_SECONDS, ge=0, le=60)
    spawn_history_limit: int = Field(default=DEFAULT_SPAWN_HISTORY_LIMIT, ge=1, le=10_000)
    grace_period_seconds: float = Field(default=DEFAULT_GRACE_PERIOD_SECONDS, ge=0, le=3600)
    kill_timeout_seconds: float = Field(default=DEFAULT_KILL_TIMEOUT_SECONDS, gt=0, le=60)
    reconnect_stagger_seconds: float = Field(default=DEFAULT_RECONNECT_STAGGER_SECONDS, ge=0, le=10)
    auto_execute_delay_seconds: float = Field(default=DEFAULT_AUTO_EXECUTE_DELAY_SECONDS, ge=0, le=30)
    session_prefix: str = DEFAULT_SESSION_PREFIX
    default_cols: int = Field(default=DEFAULT_COLS, ge=20, le=500)
    default_rows: int = Field(default=DEFAULT_ROWS, ge=10, le=200)
    event_inbox_size: int = Field(default=DEFAULT_EVENT_INBOX_SIZE, ge=16, le=1_000_000)
    tmux_config_path: str = ""
    log_level: str = "INFO"

    @field_validator("session_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if not _SESSION_PREFIX_PATTERN.match(value):
            raise ValueError(f"Invalid session prefix: {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized

    def spawn_settings(self) -> SpawnSettings:
        return SpawnSettings(
            max_terminals=self.max_terminals,
            max_spawns_per_minute=self.max_spawns_per_minute,
            rate_window_seconds=self.rate_window_seconds,
            dedup_ttl_seconds=self.dedup_ttl_seconds,
            history_limit=self.spawn_history_limit,
        )

    def registry_settings(self) -> RegistrySettings:
        return RegistrySettings(
            session_prefix=self.session_prefix,
            default_cols=self.default_cols,
            default_rows=self.default_rows,
            event_inbox_size=self.event_inbox_size,
            reconnect_stagger_seconds=self.reconnect_stagger_seconds,
        )

    def attachment_settings(self) -> AttachmentSettings:
        return AttachmentSettings(
            grace_period_seconds=self.grace_period_seconds,
            kill_timeout_seconds=self.kill_timeout_seconds,
            auto_execute_delay_seconds=self.auto_execute_delay_seconds,
            session_prefix=self.session_prefix,
            tmux_config_path=self.tmux_config_path,
        )


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()
    for name, field in AppConfig.model_fields.items():
        if name not in raw:
            continue
        value = raw[name]
        expected = field.annotation
        # bool is an int subclass; never let `true` stand in for a count.
        if isinstance(value, bool) and expected is not bool:
            continue
        if expected is float and isinstance(value, int):
            value = float(value)
        if expected in (int, float, str) and not isinstance(value, expected):
            continue
        try:
            setattr(cfg, name, value)
        except ValueError:
            continue
    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return AppConfig()
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    lines = [f"{name} = {_toml_scalar(getattr(config, name))}" for name in AppConfig.model_fields]
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
