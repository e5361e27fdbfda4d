"""Terminal type table and the per-type spawn handlers keyed on it."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from termdock.errors import UnknownTypeError, ValidationError
from termdock.terminal.models import TerminalConfig

if TYPE_CHECKING:
    from termdock.spawn.gateway import SpawnRequest

LOCAL_PLATFORM = "local"
DEFAULT_DASHBOARD_COMMAND = 'echo "Dashboard terminal ready"'

TUI_TOOL_COMMANDS = MappingProxyType(
    {
        "lazygit": "lazygit",
        "bottom": "bottom",
        "calcure": "calcure",
        "htop": "htop",
        "micro": "micro",
        "lnav": "lnav",
    }
)


@dataclass(frozen=True)
class TerminalTypeConfig:
    name: str
    shell: str = "bash"
    command: str | None = None
    color: str = "#6b7280"
    icon: str = ">_"
    resumable: bool = False
    default_env: Mapping[str, str] = field(default_factory=dict)
    platforms: tuple[str, ...] = (LOCAL_PLATFORM,)

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.name,
            "shell": self.shell,
            "command": self.command,
            "color": self.color,
            "icon": self.icon,
            "resumable": self.resumable,
            "default_env": dict(self.default_env),
            "platforms": list(self.platforms),
        }


TERMINAL_TYPES: Mapping[str, TerminalTypeConfig] = MappingProxyType(
    {
        config.name: config
        for config in (
            TerminalTypeConfig(
                "claude-code",
                command="claude",
                color="#ff6b35",
                icon="🤖",
                resumable=True,
                default_env={"CLAUDE_CODE_ENABLED": "true"},
            ),
            TerminalTypeConfig(
                "opencode",
                command="opencode",
                color="#9333ea",
                icon="💜",
                resumable=True,
                default_env={"OPENCODE_ENABLED": "true"},
            ),
            TerminalTypeConfig("codex", color="#06b6d4", icon="📚", resumable=True),
            TerminalTypeConfig(
                "orchestrator",
                command="claude --orchestrator",
                color="#fbbf24",
                icon="👑",
                default_env={"ORCHESTRATOR_MODE": "true"},
            ),
            TerminalTypeConfig(
                "gemini",
                command="gemini",
                color="#22c55e",
                icon="✨",
                default_env={"GEMINI_ENABLED": "true"},
            ),
            TerminalTypeConfig(
                "docker-ai",
                command="docker ai",
                color="#2496ed",
                icon="🐳",
                default_env={"DOCKER_AI_ENABLED": "true"},
            ),
            TerminalTypeConfig("bash", color="#6b7280", icon="📟"),
            TerminalTypeConfig("dashboard", color="#3b82f6", icon="📊"),
            TerminalTypeConfig("script", color="#10b981", icon="📜"),
            TerminalTypeConfig("tui-tool", color="#f59e0b", icon="🛠️"),
        )
    }
)


class TypeHandler:
    """Default variant: type defaults overlaid with the caller's options."""

    def __init__(self, config: TerminalTypeConfig) -> None:
        self.config = config

    @property
    def platforms(self) -> tuple[str, ...]:
        return self.config.platforms

    def validate(self, request: SpawnRequest) -> None:
        del request

    def prepare(self, request: SpawnRequest, options: dict[str, Any]) -> None:
        del request, options

    def build_config(self, request: SpawnRequest) -> TerminalConfig:
        cols, rows = request.terminal_size()
        caller = request.model_dump(
            exclude_none=True,
            exclude={"request_id", "size", "cols", "rows", "dashboard_script", "env"},
        )
        options: dict[str, Any] = {
            "shell": self.config.shell,
            "command": self.config.command,
            "color": self.config.color,
            "icon": self.config.icon,
            **caller,
            "terminal_type": self.config.name,
            "env": {**self.config.default_env, **request.env},
            "cols": cols,
            "rows": rows,
            "resumable": self.config.resumable,
        }
        if self.config.resumable:
            options["use_tmux"] = True
        self.prepare(request, options)
        return TerminalConfig.model_validate(options)


class TuiToolHandler(TypeHandler):
    def validate(self, request: SpawnRequest) -> None:
        if not (request.tool_name or request.commands or request.command):
            raise ValidationError(
                "TUI tool requires either tool_name or commands.",
                hint="Name a tool such as lazygit, or pass the command to run.",
            )

    def prepare(self, request: SpawnRequest, options: dict[str, Any]) -> None:
        command = request.command or (request.commands[0] if request.commands else "")
        if not command and request.tool_name:
            command = TUI_TOOL_COMMANDS.get(request.tool_name, request.tool_name)
        options["command"] = command or "bash"
        options["tool_name"] = request.tool_name or "custom"
        options["is_tui_tool"] = True


class DashboardHandler(TypeHandler):
    def prepare(self, request: SpawnRequest, options: dict[str, Any]) -> None:
        options["command"] = request.dashboard_script or DEFAULT_DASHBOARD_COMMAND


class BashHandler(TypeHandler):
    def prepare(self, request: SpawnRequest, options: dict[str, Any]) -> None:
        if request.commands:
            options["command"] = " && ".join(request.commands)


_HANDLER_VARIANTS: dict[str, type[TypeHandler]] = {
    "tui-tool": TuiToolHandler,
    "dashboard": DashboardHandler,
    "bash": BashHandler,
}


def build_handlers(types: Mapping[str, TerminalTypeConfig] = TERMINAL_TYPES) -> dict[str, TypeHandler]:
    return {name: _HANDLER_VARIANTS.get(name, TypeHandler)(config) for name, config in types.items()}


def resolve_handler(handlers: Mapping[str, TypeHandler], terminal_type: str) -> TypeHandler:
    handler = handlers.get(terminal_type)
    if handler is None:
        raise UnknownTypeError(
            f"Unknown terminal type: {terminal_type}",
            hint=f"Use one of: {', '.join(sorted(handlers))}.",
        )
    return handler
