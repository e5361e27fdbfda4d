"""Terminal orchestration domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TerminalState(str, Enum):
    SPAWNING = "spawning"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    ERROR = "error"


# Terminals in these states hold their name; closed terminals are simply absent.
NAME_HOLDING_STATES = frozenset({TerminalState.SPAWNING, TerminalState.ACTIVE, TerminalState.DISCONNECTED})
CAPACITY_STATES = frozenset({TerminalState.SPAWNING, TerminalState.ACTIVE})


class TerminalConfig(BaseModel):
    """Merged creation options, retained on the terminal for reattachment."""

    model_config = ConfigDict(extra="allow")

    terminal_type: str
    id: str = ""
    name: str = ""
    working_dir: str = ""
    session_name: str | None = None
    use_tmux: bool = False
    from_extension: bool = False
    shell: str = "bash"
    command: str | None = None
    commands: list[str] = Field(default_factory=list)
    tool_name: str | None = None
    is_tui_tool: bool = False
    prompt: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    cols: int = 80
    rows: int = 30
    resumable: bool = False
    platform: str = "local"
    color: str = "#888888"
    icon: str = ">_"
    is_dark: bool = True
    profile: dict[str, Any] | None = None

    def merged_with(self, other: TerminalConfig) -> TerminalConfig:
        """Overlay the options explicitly set on ``other``."""
        update = other.model_dump(exclude_unset=True)
        if "env" in update:
            update["env"] = {**self.env, **other.env}
        return self.model_copy(update=update, deep=True)


@dataclass(frozen=True)
class AttachmentHandle:
    terminal_id: str
    attachment_id: str
    command: tuple[str, ...]
    working_dir: str
    pid: int | None = None
    session_name: str | None = None
    reattached: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Terminal:
    id: str
    name: str
    terminal_type: str
    working_dir: str
    config: TerminalConfig
    state: TerminalState = TerminalState.SPAWNING
    session_name: str | None = None
    attachment: AttachmentHandle | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    exit_code: int | None = None
    signal: int | None = None
    error: str = ""

    @property
    def is_multiplexed(self) -> bool:
        return bool(self.session_name)

    def touch(self) -> None:
        self.last_activity = _utcnow()

    def snapshot(self) -> TerminalSnapshot:
        cfg = self.config
        return TerminalSnapshot(
            id=self.id,
            name=self.name,
            terminal_type=self.terminal_type,
            state=self.state,
            working_dir=self.working_dir,
            session_name=self.session_name,
            attached=self.attachment is not None,
            pid=self.attachment.pid if self.attachment else None,
            created_at=self.created_at,
            last_activity=self.last_activity,
            exit_code=self.exit_code,
            signal=self.signal,
            error=self.error,
            platform=cfg.platform,
            resumable=cfg.resumable,
            color=cfg.color,
            icon=cfg.icon,
            profile=dict(cfg.profile) if cfg.profile else None,
            commands=tuple(cfg.commands),
            tool_name=cfg.tool_name,
            is_tui_tool=cfg.is_tui_tool,
        )


@dataclass(frozen=True)
class TerminalSnapshot:
    id: str
    name: str
    terminal_type: str
    state: TerminalState
    working_dir: str
    session_name: str | None
    attached: bool
    pid: int | None
    created_at: datetime
    last_activity: datetime
    exit_code: int | None = None
    signal: int | None = None
    error: str = ""
    platform: str = "local"
    resumable: bool = False
    color: str = "#888888"
    icon: str = ">_"
    profile: dict[str, Any] | None = None
    commands: tuple[str, ...] = ()
    tool_name: str | None = None
    is_tui_tool: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "terminal_type": self.terminal_type,
            "state": self.state.value,
            "working_dir": self.working_dir,
            "session_name": self.session_name,
            "attached": self.attached,
            "pid": self.pid,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "exit_code": self.exit_code,
            "signal": self.signal,
            "error": self.error,
            "platform": self.platform,
            "resumable": self.resumable,
            "color": self.color,
            "icon": self.icon,
            "profile": self.profile,
            "commands": list(self.commands),
            "tool_name": self.tool_name,
            "is_tui_tool": self.is_tui_tool,
        }


def expand_home(path: str) -> str:
    """Expand a leading ``~`` the way a login shell would; other paths pass through."""
    if path == "~" or path.startswith("~/"):
        return str(Path.home()) + path[1:]
    return path
