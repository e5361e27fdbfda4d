"""Single validated entry point for terminal creation."""

from __future__ import annotations

import logging as py_logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from termdock.config import SpawnSettings
from termdock.errors import (
    AttachmentError,
    CapacityError,
    PlatformUnsupportedError,
    TermdockError,
    ValidationError,
)
from termdock.spawn.limits import Clock, DedupGuard, RateWindow, SpawnHistory, SpawnRecord
from termdock.spawn.types import TERMINAL_TYPES, TerminalTypeConfig, TypeHandler, build_handlers, resolve_handler
from termdock.terminal.models import TerminalConfig, TerminalSnapshot, expand_home

logger = py_logging.getLogger(__name__)

CHAR_WIDTH_PX = 9
LINE_HEIGHT_PX = 17
_FIVE_MINUTES = 300.0


class PixelSize(BaseModel):
    width: int = Field(default=800, gt=0)
    height: int = Field(default=600, gt=0)


class SpawnRequest(BaseModel):
    """Caller options for one spawn; unknown keys are carried through to the terminal config."""

    model_config = ConfigDict(extra="allow")

    request_id: str = ""
    terminal_type: str = ""
    name: str = ""
    working_dir: str = ""
    session_name: str | None = None
    platform: str = "local"
    size: PixelSize | None = None
    cols: int | None = Field(default=None, gt=0)
    rows: int | None = Field(default=None, gt=0)
    env: dict[str, str] = Field(default_factory=dict)
    commands: list[str] = Field(default_factory=list)
    command: str | None = None
    tool_name: str | None = None
    is_tui_tool: bool = False
    shell: str | None = None
    use_tmux: bool = False
    from_extension: bool = False
    profile: dict[str, Any] | None = None
    prompt: str = ""
    dashboard_script: str | None = None
    is_dark: bool = True
    color: str | None = None
    icon: str | None = None

    def terminal_size(self) -> tuple[int, int]:
        size = self.size or PixelSize()
        cols = self.cols or size.width // CHAR_WIDTH_PX
        rows = self.rows or size.height // LINE_HEIGHT_PX
        return max(1, cols), max(1, rows)


@dataclass(frozen=True)
class SpawnResult:
    success: bool
    request_id: str
    terminal: TerminalSnapshot | None = None
    error: str = ""
    code: str = ""
    retry_after: float | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": self.success, "request_id": self.request_id}
        if self.terminal is not None:
            payload["terminal"] = self.terminal.to_dict()
        if not self.success:
            payload["error"] = self.error
            payload["code"] = self.code
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload


class TerminalRegistryPort(Protocol):
    def get_active_terminal_count(self) -> int: ...

    def get_terminal(self, terminal_id: str) -> TerminalSnapshot | None: ...

    async def register_terminal(self, config: TerminalConfig) -> TerminalSnapshot: ...


class SpawnGateway:
    def __init__(
        self,
        registry: TerminalRegistryPort,
        *,
        settings: SpawnSettings | None = None,
        types: Mapping[str, TerminalTypeConfig] = TERMINAL_TYPES,
        clock: Clock = time.monotonic,
    ) -> None:
        self._registry = registry
        self._settings = settings or SpawnSettings()
        self._types = types
        self._handlers: dict[str, TypeHandler] = build_handlers(types)
        self._clock = clock
        self._rate = RateWindow(
            self._settings.max_spawns_per_minute,
            self._settings.rate_window_seconds,
            clock=clock,
        )
        self._dedup = DedupGuard(self._settings.dedup_ttl_seconds, clock=clock)
        self._history = SpawnHistory(self._settings.history_limit)
        self._in_progress: set[str] = set()

    async def spawn(self, options: SpawnRequest | Mapping[str, Any]) -> SpawnResult:
        request_id = _request_id_of(options) or uuid4().hex
        try:
            request = self._parse(options, request_id)
            return await self._spawn(request)
        except TermdockError as exc:
            logger.warning(
                "spawn-rejected request=%s kind=%s error=%s",
                request_id,
                exc.kind,
                exc.message,
            )
            return _failure(request_id, exc)
        except Exception as exc:
            logger.exception("spawn-failed request=%s", request_id)
            return _failure(request_id, AttachmentError(str(exc) or "Failed to spawn terminal."))

    def _parse(self, options: SpawnRequest | Mapping[str, Any], request_id: str) -> SpawnRequest:
        if not isinstance(options, (SpawnRequest, Mapping)):
            raise ValidationError("Spawn options are required.", hint="Pass a mapping of spawn options.")
        try:
            if isinstance(options, SpawnRequest):
                request = options
            else:
                request = SpawnRequest.model_validate(dict(options))
        except pydantic.ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ())) or "options"
            raise ValidationError(
                f"Invalid spawn option '{location}': {first.get('msg', 'invalid value')}",
                hint="Check the spawn request payload.",
            ) from exc
        return request.model_copy(update={"request_id": request_id})

    async def _spawn(self, request: SpawnRequest) -> SpawnResult:
        started = self._clock()
        request = self._validate_request(request)
        self._rate.check()
        self._check_capacity()
        handler = resolve_handler(self._handlers, request.terminal_type)
        handler.validate(request)
        if request.platform not in handler.platforms:
            raise PlatformUnsupportedError(
                f"Terminal type {request.terminal_type} does not support platform {request.platform}",
                hint=f"Supported platforms: {', '.join(handler.platforms)}.",
            )

        config = handler.build_config(request)
        key = DedupGuard.key_for(request.terminal_type, request.name, request.session_name)
        self._dedup.claim(key, is_live=self._is_live)
        # The slot is taken before the first suspension point so concurrent spawns see it.
        slot = self._rate.reserve()

        self._in_progress.add(request.request_id)
        try:
            terminal = await self._registry.register_terminal(config)
        except Exception as exc:
            self._rate.release(slot)
            self._dedup.release(key)
            self._record(request, "", started, error=exc)
            raise
        finally:
            self._in_progress.discard(request.request_id)

        self._dedup.bind(key, terminal.id)
        self._record(request, terminal.id, started)
        logger.info(
            "spawn-complete request=%s terminal=%s type=%s name=%s",
            request.request_id,
            terminal.id,
            request.terminal_type,
            terminal.name,
        )
        return SpawnResult(success=True, request_id=request.request_id, terminal=terminal)

    def _validate_request(self, request: SpawnRequest) -> SpawnRequest:
        if not request.terminal_type.strip():
            raise ValidationError("Terminal type is required.", hint="Pass terminal_type, e.g. 'bash'.")
        update: dict[str, Any] = {}
        if not request.name:
            update["name"] = f"{request.terminal_type}-{int(time.time() * 1000)}"
        if request.working_dir:
            working_dir = expand_home(request.working_dir)
            path = Path(working_dir)
            if not path.exists():
                raise ValidationError(
                    f"Working directory does not exist: {working_dir}",
                    hint="Pass an existing directory.",
                )
            if not path.is_dir():
                raise ValidationError(
                    f"Working directory must be a directory: {working_dir}",
                    hint="Pass a directory, not a file.",
                )
            update["working_dir"] = working_dir
        return request.model_copy(update=update) if update else request

    def _check_capacity(self) -> None:
        active = self._registry.get_active_terminal_count()
        if active >= self._settings.max_terminals:
            raise CapacityError(
                f"Maximum terminal limit reached ({self._settings.max_terminals}).",
                hint="Close some terminals before spawning more.",
            )

    def _is_live(self, terminal_id: str) -> bool:
        return self._registry.get_terminal(terminal_id) is not None

    def _record(
        self,
        request: SpawnRequest,
        terminal_id: str,
        started: float,
        *,
        error: BaseException | None = None,
    ) -> None:
        now = self._clock()
        self._history.append(
            SpawnRecord(
                request_id=request.request_id,
                terminal_id=terminal_id,
                terminal_type=request.terminal_type,
                platform=request.platform,
                timestamp=now,
                duration=now - started,
                success=error is None,
                error="" if error is None else str(error),
            )
        )

    def get_stats(self) -> dict[str, object]:
        now = self._clock()
        return {
            "active_terminals": self._registry.get_active_terminal_count(),
            "max_terminals": self._settings.max_terminals,
            "spawns_in_progress": len(self._in_progress),
            "spawns_last_minute": self._history.count_since(now - 60.0),
            "spawns_last_five_minutes": self._history.count_since(now - _FIVE_MINUTES),
            "rate_limit": self._settings.max_spawns_per_minute,
            "rate_limit_remaining": self._rate.remaining(),
        }

    def get_available_types(self) -> list[dict[str, object]]:
        return [
            {"type": name, "platforms": list(handler.platforms), "resumable": handler.config.resumable}
            for name, handler in self._handlers.items()
        ]

    def is_spawn_in_progress(self, request_id: str) -> bool:
        return request_id in self._in_progress

    def get_spawn_history(self, limit: int = 10) -> list[SpawnRecord]:
        return self._history.recent(limit)

    def get_terminal_type_config(self, terminal_type: str) -> TerminalTypeConfig | None:
        return self._types.get(terminal_type)

    def get_terminal_types(self) -> list[str]:
        return list(self._types)

    def get_all_terminal_configs(self) -> dict[str, dict[str, object]]:
        return {name: config.to_dict() for name, config in self._types.items()}


def _request_id_of(options: object) -> str:
    if isinstance(options, SpawnRequest):
        return options.request_id
    if isinstance(options, Mapping):
        value = options.get("request_id")
        return value if isinstance(value, str) else ""
    return ""


def _failure(request_id: str, error: TermdockError) -> SpawnResult:
    retry_after = getattr(error, "retry_after", None)
    return SpawnResult(
        success=False,
        request_id=request_id,
        error=str(error),
        code=error.kind,
        retry_after=retry_after,
    )
