"""PTY-backed process attachments for terminals, bare or attached to tmux."""

from __future__ import annotations

import asyncio
import codecs
import logging as py_logging
import os
import shlex
import signal as py_signal
from collections.abc import Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from termdock.config import AttachmentSettings
from termdock.errors import AttachmentError, NotFoundError, TermdockError
from termdock.logging import payload_summary
from termdock.terminal.models import AttachmentHandle, TerminalConfig
from termdock.terminal.multiplexer import TmuxClient

logger = py_logging.getLogger(__name__)

MIN_COLS, MAX_COLS = 20, 500
MIN_ROWS, MAX_ROWS = 10, 200
_READ_CHUNK = 65536
_COPY_MODE_CANCEL_DELAY = 0.15
_REFRESH_DELAY = 0.1
_KILL_POLL_INTERVAL = 0.05

# Variables leaking the host terminal's identity into nested sessions.
_PARENT_TERMINAL_VARS = frozenset(
    {
        "WT_SESSION",
        "WT_PROFILE_ID",
        "WEZTERM_EXECUTABLE",
        "WEZTERM_PANE",
        "ALACRITTY_SOCKET",
        "KITTY_WINDOW_ID",
    }
)
_TUI_NAME_HINTS = ("pyradio", "lazygit", "bottom", "micro")
_INTERACTIVE_SHELL_TYPES = frozenset({"bash", "dashboard", "script"})
_AGENT_BINARIES = {
    "claude-code": "claude",
    "opencode": "opencode",
    "codex": "codex",
    "gemini": "gemini",
}
_FIXED_STARTUP = {
    "orchestrator": 'echo "Orchestrator terminal ready"',
    "docker-ai": "docker ai",
}


@dataclass(frozen=True)
class AttachmentOutput:
    terminal_id: str
    attachment_id: str
    data: str


@dataclass(frozen=True)
class AttachmentClosed:
    terminal_id: str
    attachment_id: str
    exit_code: int | None = None
    signal: int | None = None


AttachmentEvent = AttachmentOutput | AttachmentClosed
AttachmentListener = Callable[[AttachmentEvent], None]
PtySpawn = Callable[[list[str], str, dict[str, str], tuple[int, int]], Any]


class ProcessAttachment(Protocol):
    def set_listener(self, listener: AttachmentListener | None) -> None: ...

    async def create(self, config: TerminalConfig) -> AttachmentHandle: ...

    def write(self, terminal_id: str, data: str) -> None: ...

    def resize(self, terminal_id: str, cols: int, rows: int) -> tuple[int, int]: ...

    def disconnect_with_grace(self, terminal_id: str) -> None: ...

    def cancel_disconnect(self, terminal_id: str) -> bool: ...

    def reconnect(self, terminal_id: str) -> AttachmentHandle | None: ...

    def get(self, terminal_id: str) -> AttachmentHandle | None: ...

    def rename(self, terminal_id: str, new_id: str) -> AttachmentHandle: ...

    async def kill(self, terminal_id: str) -> None: ...

    async def kill_all(self) -> None: ...


def build_environment(config: TerminalConfig, base_env: Mapping[str, str]) -> dict[str, str]:
    env = {key: value for key, value in base_env.items() if key not in _PARENT_TERMINAL_VARS}
    env.update(config.env)
    lowered_name = config.name.lower()
    is_tui = (
        config.is_tui_tool
        or config.terminal_type == "tui-tool"
        or any(hint in lowered_name for hint in _TUI_NAME_HINTS)
    )
    env.update(
        {
            "TERM": "xterm-256color",
            "LANG": base_env.get("LANG", "en_US.UTF-8"),
            "LC_ALL": base_env.get("LC_ALL", "en_US.UTF-8"),
            "COLUMNS": str(config.cols),
            "LINES": str(config.rows),
            "TERMDOCK_PROCESS": "true",
            "TERMDOCK_TYPE": config.terminal_type,
            "TERMDOCK_NAME": config.name,
            "TERMDOCK_ID": config.id,
            "CLAUDE_CODE_AUTO_CONNECT_IDE": "false",
            "COLORTERM": "truecolor",
            "FORCE_COLOR": "1",
            "COLORFGBG": color_fg_bg(config.is_dark),
        }
    )
    if is_tui:
        env["NCURSES_NO_UTF8_ACS"] = "1"
        env["LESSCHARSET"] = "utf-8"
    return env


def color_fg_bg(is_dark: bool) -> str:
    return "15;0" if is_dark else "0;15"


def bare_shell_command(config: TerminalConfig) -> list[str]:
    shell = config.shell or "bash"
    if config.terminal_type in _INTERACTIVE_SHELL_TYPES:
        return [shell, "-i"]
    return [shell]


def build_startup_input(config: TerminalConfig) -> list[str]:
    """Lines typed into a freshly created session once the shell is up."""
    command = config.command
    if not command and config.commands:
        return [_as_line(item) for item in config.commands if item.strip()]
    command = command or _AGENT_BINARIES.get(config.terminal_type) or _FIXED_STARTUP.get(config.terminal_type)
    if not command:
        return []
    prompt = config.prompt.strip()
    if prompt and config.terminal_type in _AGENT_BINARIES and prompt != command:
        return [f"{command.rstrip()} {shlex.quote(prompt)}\n"]
    return [_as_line(command)]


def clamp_size(cols: int, rows: int) -> tuple[int, int]:
    return (
        max(MIN_COLS, min(MAX_COLS, cols or 80)),
        max(MIN_ROWS, min(MAX_ROWS, rows or 30)),
    )


def session_base_name(config: TerminalConfig, prefix: str) -> str:
    if config.id.startswith(f"{prefix}-"):
        base = config.id
    else:
        base = config.session_name or config.name or "term"
    # tmux rejects "." and ":" in session names.
    cleaned = base.replace(".", "-").replace(":", "-").strip()
    return cleaned or "term"


def _as_line(command: str) -> str:
    return command if command.endswith("\n") else command + "\n"


def _spawn_with_ptyprocess(
    argv: list[str],
    cwd: str,
    env: dict[str, str],
    dimensions: tuple[int, int],
) -> Any:
    try:
        from ptyprocess import PtyProcess
    except Exception as exc:
        raise AttachmentError(
            "ptyprocess backend is unavailable.",
            hint="Install termdock on a POSIX host with its runtime dependencies.",
        ) from exc
    return PtyProcess.spawn(argv, cwd=cwd, env=env, dimensions=dimensions)


@dataclass
class _Attachment:
    handle: AttachmentHandle
    process: Any
    decoder: codecs.IncrementalDecoder
    disconnected: bool = False
    grace_timer: asyncio.TimerHandle | None = None
    silenced: bool = False

    @property
    def terminal_id(self) -> str:
        return self.handle.terminal_id


class PtyAttachmentBackend:
    def __init__(
        self,
        multiplexer: TmuxClient,
        *,
        settings: AttachmentSettings | None = None,
        spawn: PtySpawn | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self._multiplexer = multiplexer
        self._settings = settings or AttachmentSettings()
        self._spawn = spawn or _spawn_with_ptyprocess
        self._base_env = dict(os.environ if base_env is None else base_env)
        self._attachments: dict[str, _Attachment] = {}
        self._listener: AttachmentListener | None = None
        self._background: set[asyncio.Future[Any]] = set()

    def set_listener(self, listener: AttachmentListener | None) -> None:
        self._listener = listener

    def list_handles(self) -> list[AttachmentHandle]:
        return [self._attachments[key].handle for key in sorted(self._attachments)]

    async def create(self, config: TerminalConfig) -> AttachmentHandle:
        if not config.id:
            raise AttachmentError("Attachment requires a terminal id.", hint="Register the terminal first.")
        if config.id in self._attachments:
            raise AttachmentError(
                f"Terminal already attached: {config.id}",
                hint="Kill the current attachment before creating a new one.",
            )
        loop = asyncio.get_running_loop()
        working_dir = config.working_dir or str(Path.home())
        env = build_environment(config, self._base_env)

        session_name: str | None = None
        reattached = False
        if config.use_tmux:
            session_name, reattached = await asyncio.to_thread(self._prepare_session, config, working_dir, env)
            if reattached:
                await self._drop_session_attachments(session_name, keep=config.id)
            argv = self._multiplexer.attach_command(session_name)
        else:
            argv = bare_shell_command(config)

        try:
            process = self._spawn(argv, working_dir, env, (config.rows, config.cols))
        except TermdockError:
            raise
        except Exception as exc:
            raise AttachmentError(
                f"Failed to start PTY process for {config.name or config.id}.",
                hint=str(exc) or "Check the shell and working directory.",
            ) from exc

        handle = AttachmentHandle(
            terminal_id=config.id,
            attachment_id=uuid4().hex,
            command=tuple(argv),
            working_dir=working_dir,
            pid=getattr(process, "pid", None),
            session_name=session_name,
            reattached=reattached,
        )
        record = _Attachment(handle=handle, process=process, decoder=codecs.getincrementaldecoder("utf-8")("replace"))
        self._attachments[config.id] = record
        loop.add_reader(process.fd, self._on_readable, record)

        if reattached and session_name:
            loop.call_later(_COPY_MODE_CANCEL_DELAY, self._run_background, self._multiplexer.cancel_copy_mode, session_name)
        else:
            startup = build_startup_input(config)
            if startup:
                loop.call_later(self._settings.auto_execute_delay_seconds, self._write_startup, record, startup)

        logger.info(
            "attachment-created terminal=%s pid=%s session=%s reattached=%s",
            config.id,
            handle.pid,
            session_name or "-",
            reattached,
        )
        return handle

    def _prepare_session(self, config: TerminalConfig, working_dir: str, env: dict[str, str]) -> tuple[str, bool]:
        requested = config.session_name
        if requested and self._multiplexer.session_exists(requested):
            self._multiplexer.set_remain_on_exit(requested, False)
            return requested, True

        name = self._multiplexer.unique_session_name(session_base_name(config, self._settings.session_prefix))
        self._multiplexer.new_session(
            name,
            working_dir=working_dir,
            cols=config.cols,
            rows=config.rows,
            env=env,
            session_env={
                "COLORFGBG": color_fg_bg(config.is_dark),
                "COLORTERM": "truecolor",
                "FORCE_COLOR": "1",
            },
        )
        self._multiplexer.set_remain_on_exit(name, False)
        return name, False

    async def _drop_session_attachments(self, session_name: str, *, keep: str) -> None:
        stale = [
            record
            for terminal_id, record in self._attachments.items()
            if record.handle.session_name == session_name and terminal_id != keep
        ]
        for record in stale:
            logger.info("attachment-stale terminal=%s session=%s", record.terminal_id, session_name)
            self._attachments.pop(record.terminal_id, None)
            await self._terminate(record)

    def write(self, terminal_id: str, data: str) -> None:
        record = self._require(terminal_id)
        if record.disconnected:
            raise AttachmentError(
                f"Terminal attachment is disconnected: {terminal_id}",
                hint="Reconnect before sending input.",
            )
        try:
            record.process.write(data.encode("utf-8"))
        except Exception as exc:
            raise AttachmentError(
                f"Failed to write to terminal {terminal_id}.",
                hint=str(exc) or "Verify terminal process health.",
            ) from exc
        logger.debug("attachment-write terminal=%s payload=%s", terminal_id, payload_summary(data))

    def resize(self, terminal_id: str, cols: int, rows: int) -> tuple[int, int]:
        record = self._require(terminal_id)
        applied_cols, applied_rows = clamp_size(cols, rows)
        try:
            record.process.setwinsize(applied_rows, applied_cols)
        except OSError as exc:
            # ENOTTY while the PTY is still coming up; the size is re-sent later.
            logger.debug("attachment-resize-ignored terminal=%s error=%s", terminal_id, exc)
        session_name = record.handle.session_name
        if session_name:
            asyncio.get_running_loop().call_later(
                _REFRESH_DELAY, self._run_background, self._multiplexer.refresh_client, session_name
            )
        return applied_cols, applied_rows

    def disconnect_with_grace(self, terminal_id: str) -> None:
        record = self._attachments.get(terminal_id)
        if record is None:
            return
        if record.grace_timer is not None:
            record.grace_timer.cancel()
        loop = asyncio.get_running_loop()
        record.grace_timer = loop.call_later(self._settings.grace_period_seconds, self._expire, record)
        record.disconnected = True
        logger.info(
            "attachment-grace terminal=%s seconds=%s",
            terminal_id,
            self._settings.grace_period_seconds,
        )

    def cancel_disconnect(self, terminal_id: str) -> bool:
        record = self._attachments.get(terminal_id)
        if record is None or record.grace_timer is None:
            return False
        record.grace_timer.cancel()
        record.grace_timer = None
        record.disconnected = False
        logger.info("attachment-grace-cancelled terminal=%s", terminal_id)
        return True

    def reconnect(self, terminal_id: str) -> AttachmentHandle | None:
        if self.cancel_disconnect(terminal_id):
            return self._attachments[terminal_id].handle
        return None

    def get(self, terminal_id: str) -> AttachmentHandle | None:
        record = self._attachments.get(terminal_id)
        if record is None or not _is_alive(record.process):
            return None
        return record.handle

    def rename(self, terminal_id: str, new_id: str) -> AttachmentHandle:
        record = self._attachments.pop(terminal_id, None)
        if record is None:
            raise NotFoundError(f"Terminal not attached: {terminal_id}", hint="Select an attached terminal.")
        record.handle = replace(record.handle, terminal_id=new_id)
        self._attachments[new_id] = record
        return record.handle

    async def kill(self, terminal_id: str) -> None:
        record = self._attachments.pop(terminal_id, None)
        if record is None:
            return
        await self._terminate(record)
        logger.info("attachment-killed terminal=%s pid=%s", terminal_id, record.handle.pid)

    async def kill_all(self) -> None:
        for terminal_id in list(self._attachments):
            await self.kill(terminal_id)

    def _require(self, terminal_id: str) -> _Attachment:
        record = self._attachments.get(terminal_id)
        if record is None:
            raise NotFoundError(
                f"Terminal not attached: {terminal_id}",
                hint="Reconnect the terminal before PTY I/O operations.",
            )
        return record

    def _on_readable(self, record: _Attachment) -> None:
        try:
            chunk = os.read(record.process.fd, _READ_CHUNK)
        except OSError:
            # EIO on a PTY master means the child side has gone.
            chunk = b""
        if not chunk:
            self._stop_reading(record)
            self._track(asyncio.ensure_future(self._finalize(record)))
            return
        text = record.decoder.decode(chunk)
        if text and not record.silenced:
            self._emit(AttachmentOutput(record.terminal_id, record.handle.attachment_id, text))

    async def _finalize(self, record: _Attachment) -> None:
        exit_code, signal = await asyncio.to_thread(_reap, record.process)
        if record.silenced:
            return
        record.silenced = True
        if record.grace_timer is not None:
            record.grace_timer.cancel()
            record.grace_timer = None
        if self._attachments.get(record.terminal_id) is record:
            del self._attachments[record.terminal_id]
        logger.info("attachment-exited terminal=%s code=%s signal=%s", record.terminal_id, exit_code, signal)
        self._emit(AttachmentClosed(record.terminal_id, record.handle.attachment_id, exit_code, signal))

    def _expire(self, record: _Attachment) -> None:
        record.grace_timer = None
        if self._attachments.get(record.terminal_id) is not record:
            return
        del self._attachments[record.terminal_id]
        logger.info("attachment-grace-expired terminal=%s", record.terminal_id)
        self._track(asyncio.ensure_future(self._expire_async(record)))

    async def _expire_async(self, record: _Attachment) -> None:
        await self._terminate(record)
        self._emit(
            AttachmentClosed(
                record.terminal_id,
                record.handle.attachment_id,
                getattr(record.process, "exitstatus", None),
                getattr(record.process, "signalstatus", None),
            )
        )

    async def _terminate(self, record: _Attachment) -> None:
        record.silenced = True
        if record.grace_timer is not None:
            record.grace_timer.cancel()
            record.grace_timer = None
        self._stop_reading(record)
        process = record.process
        with suppress(ProcessLookupError, OSError):
            process.kill(py_signal.SIGTERM)
        deadline = asyncio.get_running_loop().time() + self._settings.kill_timeout_seconds
        while _is_alive(process) and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(_KILL_POLL_INTERVAL)
        if _is_alive(process):
            with suppress(ProcessLookupError, OSError):
                process.kill(py_signal.SIGKILL)
        with suppress(Exception):
            process.close(force=True)

    def _stop_reading(self, record: _Attachment) -> None:
        with suppress(Exception):
            asyncio.get_running_loop().remove_reader(record.process.fd)

    def _write_startup(self, record: _Attachment, lines: list[str]) -> None:
        if self._attachments.get(record.terminal_id) is not record or record.silenced:
            return
        try:
            for line in lines:
                record.process.write(line.encode("utf-8"))
        except Exception:
            logger.warning("attachment-startup-failed terminal=%s", record.terminal_id, exc_info=True)

    def _run_background(self, func: Callable[..., object], *args: object) -> None:
        self._track(asyncio.get_running_loop().run_in_executor(None, func, *args))

    def _track(self, future: asyncio.Future[Any]) -> None:
        self._background.add(future)
        future.add_done_callback(self._background.discard)

    def _emit(self, event: AttachmentEvent) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:
            logger.exception("attachment-listener-failed terminal=%s", event.terminal_id)


def _is_alive(process: object) -> bool:
    if hasattr(process, "isalive"):
        try:
            return bool(process.isalive())
        except Exception:
            return False
    return True


def _reap(process: Any) -> tuple[int | None, int | None]:
    with suppress(Exception):
        process.wait()
    return getattr(process, "exitstatus", None), getattr(process, "signalstatus", None)
