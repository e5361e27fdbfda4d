"""Authoritative in-memory store of logical terminals and their reconnection state machine."""

from __future__ import annotations

import asyncio
import logging as py_logging
import re
import secrets
from collections import Counter, deque
from collections.abc import Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from termdock.config import RegistrySettings
from termdock.errors import AttachmentError, NotFoundError, TermdockError, ValidationError
from termdock.terminal.attachment import AttachmentClosed, AttachmentEvent, AttachmentOutput, ProcessAttachment
from termdock.terminal.models import (
    CAPACITY_STATES,
    NAME_HOLDING_STATES,
    AttachmentHandle,
    Terminal,
    TerminalConfig,
    TerminalSnapshot,
    TerminalState,
    expand_home,
)
from termdock.terminal.multiplexer import SessionMultiplexerClient

logger = py_logging.getLogger(__name__)

_ID_BYTES = 4
_MAX_SLUG_LENGTH = 20


@dataclass(frozen=True)
class TerminalEvent:
    terminal_id: str
    step: str
    message: str


EventListener = Callable[[TerminalEvent], None]
OutputListener = Callable[[str, str], None]


def sanitize_slug(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower())[:_MAX_SLUG_LENGTH].strip("-")
    return slug or "term"


class TerminalRegistry:
    """Owns every logical terminal; attachment events are consumed through a bounded inbox.

    Mutations happen only on the event loop. Attachment backends may post events
    from other threads through :meth:`post_event`; they are applied one at a time
    either by the pump task started with :meth:`start` or by :meth:`drain_events`.
    """

    def __init__(
        self,
        attachments: ProcessAttachment,
        multiplexer: SessionMultiplexerClient,
        *,
        settings: RegistrySettings | None = None,
    ) -> None:
        self._attachments = attachments
        self._multiplexer = multiplexer
        self._settings = settings or RegistrySettings()
        self._terminals: dict[str, Terminal] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._events: deque[TerminalEvent] = deque(maxlen=self._settings.event_log_size)
        self._listeners: list[EventListener] = []
        self._output_listeners: list[OutputListener] = []
        self._inbox: asyncio.Queue[AttachmentEvent] = asyncio.Queue(maxsize=self._settings.event_inbox_size)
        # Close events that arrived while the inbox was full; they are never dropped.
        self._overflow: deque[AttachmentClosed] = deque()
        self._dispatch_lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pump: asyncio.Task[None] | None = None
        attachments.set_listener(self.post_event)

    @property
    def settings(self) -> RegistrySettings:
        return self._settings

    # -- attachment event inbox -------------------------------------------------

    def post_event(self, event: AttachmentEvent) -> None:
        loop = self._loop
        if loop is None:
            with suppress(RuntimeError):
                loop = self._loop = asyncio.get_running_loop()
        if loop is not None and loop.is_running() and not _on_loop(loop):
            loop.call_soon_threadsafe(self._enqueue, event)
            return
        self._enqueue(event)

    def _enqueue(self, event: AttachmentEvent) -> None:
        try:
            self._inbox.put_nowait(event)
        except asyncio.QueueFull:
            if isinstance(event, AttachmentClosed):
                self._overflow.append(event)
                return
            logger.warning("attachment-output-dropped terminal=%s reason=inbox-full", event.terminal_id)

    def start(self) -> None:
        if self._pump is not None and not self._pump.done():
            return
        self._loop = asyncio.get_running_loop()
        self._pump = self._loop.create_task(self._run_pump())

    async def stop(self) -> None:
        pump, self._pump = self._pump, None
        if pump is not None:
            pump.cancel()
            with suppress(asyncio.CancelledError):
                await pump
        await self.drain_events()

    async def drain_events(self) -> int:
        processed = 0
        while True:
            if not self._inbox.empty():
                event: AttachmentEvent = self._inbox.get_nowait()
                self._inbox.task_done()
            elif self._overflow:
                event = self._overflow.popleft()
            else:
                return processed
            await self._dispatch(event)
            processed += 1

    async def _run_pump(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self._dispatch(event)
            finally:
                self._inbox.task_done()
            while self._overflow:
                await self._dispatch(self._overflow.popleft())

    async def _dispatch(self, event: AttachmentEvent) -> None:
        async with self._dispatch_lock:
            try:
                if isinstance(event, AttachmentOutput):
                    self.on_attachment_output(event)
                else:
                    await self.on_attachment_closed(event)
            except Exception:
                logger.exception("attachment-event-failed terminal=%s", event.terminal_id)

    def on_attachment_output(self, event: AttachmentOutput) -> None:
        terminal = self._current_owner(event.terminal_id, event.attachment_id)
        if terminal is None:
            return
        terminal.touch()
        for listener in list(self._output_listeners):
            try:
                listener(terminal.id, event.data)
            except Exception:
                logger.exception("output-listener-failed terminal=%s", terminal.id)

    async def on_attachment_closed(self, event: AttachmentClosed) -> None:
        terminal = self._current_owner(event.terminal_id, event.attachment_id)
        if terminal is None:
            logger.debug(
                "attachment-closed-ignored terminal=%s attachment=%s",
                event.terminal_id,
                event.attachment_id,
            )
            return
        terminal.attachment = None
        terminal.exit_code = event.exit_code
        terminal.signal = event.signal

        if not terminal.is_multiplexed:
            self._remove(terminal, f"Process exited (code={event.exit_code}, signal={event.signal}).")
            return

        alive = await self._session_alive(terminal.session_name or "")
        if self._terminals.get(terminal.id) is not terminal or terminal.attachment is not None:
            return
        if alive:
            terminal.state = TerminalState.DISCONNECTED
            self._record(terminal.id, "disconnected", "Attachment closed; multiplexed session is still alive.")
            return
        self._remove(terminal, "Multiplexed session has ended.")

    def _current_owner(self, terminal_id: str, attachment_id: str) -> Terminal | None:
        terminal = self._terminals.get(terminal_id)
        if terminal is None or terminal.attachment is None:
            return None
        if terminal.attachment.attachment_id != attachment_id:
            return None
        return terminal

    # -- registration -----------------------------------------------------------

    async def register_terminal(self, config: TerminalConfig | Mapping[str, Any]) -> TerminalSnapshot:
        self._bind_loop()
        cfg = self._normalize(config)

        explicit = cfg.session_name or cfg.id
        if explicit:
            await self._discard_failed(explicit)
        if cfg.session_name:
            existing = self._find_by_session(cfg.session_name)
            if existing is not None:
                return await self._reattach(existing, cfg)
        return await self._register_new(cfg)

    async def _discard_failed(self, terminal_id: str) -> None:
        """Drop an errored terminal that still holds the requested id so a retry can take it."""
        stale = self._terminals.get(terminal_id)
        if stale is None or stale.state is not TerminalState.ERROR:
            return
        async with self._lock_for(stale.id):
            if self._terminals.get(stale.id) is not stale or stale.state is not TerminalState.ERROR:
                return
            await self._detach(stale)
            self._remove(stale, "Replaced after a failed attach.")

    def _normalize(self, config: TerminalConfig | Mapping[str, Any]) -> TerminalConfig:
        cfg = config if isinstance(config, TerminalConfig) else TerminalConfig.model_validate(dict(config))
        update: dict[str, Any] = {}
        if cfg.working_dir:
            update["working_dir"] = expand_home(cfg.working_dir)
        if cfg.terminal_type == "gemini" and cfg.command and cfg.command.strip() == "bash":
            update["command"] = None
        if "cols" not in cfg.model_fields_set:
            update["cols"] = self._settings.default_cols
        if "rows" not in cfg.model_fields_set:
            update["rows"] = self._settings.default_rows
        return cfg.model_copy(update=update) if update else cfg

    async def _reattach(self, terminal: Terminal, cfg: TerminalConfig) -> TerminalSnapshot:
        async with self._lock_for(terminal.id):
            if self._terminals.get(terminal.id) is not terminal:
                return await self._register_new(cfg)
            merged = terminal.config.merged_with(cfg).model_copy(
                update={
                    "id": terminal.id,
                    "name": terminal.name,
                    "session_name": terminal.session_name,
                    "use_tmux": True,
                }
            )
            await self._detach(terminal)
            terminal.config = merged
            self._record(terminal.id, "reattach", f"Reattaching to session '{terminal.session_name}'.")
            await self._attach(terminal)
            return terminal.snapshot()

    async def _register_new(self, cfg: TerminalConfig) -> TerminalSnapshot:
        terminal_id = self._choose_id(cfg)
        name = self._unique_name(cfg.name or cfg.terminal_type)
        use_tmux = cfg.use_tmux or bool(cfg.session_name)
        terminal = Terminal(
            id=terminal_id,
            name=name,
            terminal_type=cfg.terminal_type,
            working_dir=cfg.working_dir,
            config=cfg.model_copy(update={"id": terminal_id, "name": name, "use_tmux": use_tmux}),
        )
        self._terminals[terminal_id] = terminal
        self._record(terminal_id, "register", f"Registered {cfg.terminal_type} terminal '{name}'.")

        async with self._lock_for(terminal_id):
            if self._terminals.get(terminal_id) is not terminal:
                raise AttachmentError(
                    f"Terminal closed while spawning: {name}",
                    hint="Spawn the terminal again.",
                )
            await self._attach(terminal)
            if terminal.session_name and terminal.session_name != terminal.id:
                self._adopt_session_id(terminal)
            return terminal.snapshot()

    def _choose_id(self, cfg: TerminalConfig) -> str:
        explicit = cfg.session_name or cfg.id
        if explicit:
            if explicit in self._terminals:
                raise ValidationError(
                    f"Terminal id already in use: {explicit}",
                    hint="Close the existing terminal or choose another session name.",
                )
            return explicit
        if cfg.from_extension or cfg.use_tmux:
            profile_name = (cfg.profile or {}).get("name")
            slug = sanitize_slug(str(profile_name or cfg.name or cfg.terminal_type))
            prefix = f"{self._settings.session_prefix}-{slug}"
            return self._fresh_id(lambda: f"{prefix}-{secrets.token_hex(_ID_BYTES)}")
        return self._fresh_id(lambda: secrets.token_hex(_ID_BYTES))

    def _fresh_id(self, generate: Callable[[], str]) -> str:
        candidate = generate()
        while candidate in self._terminals:
            candidate = generate()
        return candidate

    def _unique_name(self, base: str) -> str:
        taken = {terminal.name for terminal in self._terminals.values() if terminal.state in NAME_HOLDING_STATES}
        if base not in taken:
            return base
        counter = 2
        while f"{base}-{counter}" in taken:
            counter += 1
        return f"{base}-{counter}"

    def _adopt_session_id(self, terminal: Terminal) -> None:
        session_name = terminal.session_name or ""
        if session_name in self._terminals:
            logger.warning(
                "terminal-session-mismatch terminal=%s session=%s reason=id-taken",
                terminal.id,
                session_name,
            )
            return
        self._rekey(terminal, session_name)

    # -- attachment management --------------------------------------------------

    async def _attach(self, terminal: Terminal) -> AttachmentHandle:
        try:
            handle = await self._attachments.create(terminal.config)
        except Exception as exc:
            error = exc if isinstance(exc, TermdockError) else AttachmentError(
                f"Failed to attach terminal {terminal.id}.",
                hint=str(exc) or "Check the shell and working directory.",
            )
            if self._terminals.get(terminal.id) is terminal:
                terminal.state = TerminalState.ERROR
                terminal.error = error.message
                self._record(terminal.id, "error", error.message)
            if error is exc:
                raise
            raise error from exc

        if self._terminals.get(terminal.id) is not terminal:
            await self._attachments.kill(handle.terminal_id)
            raise AttachmentError(
                f"Terminal closed while attaching: {terminal.id}",
                hint="Spawn the terminal again.",
            )
        self._activate(terminal, handle)
        return handle

    def _activate(self, terminal: Terminal, handle: AttachmentHandle) -> None:
        terminal.attachment = handle
        if handle.session_name:
            terminal.session_name = handle.session_name
            if terminal.config.session_name != handle.session_name:
                terminal.config = terminal.config.model_copy(update={"session_name": handle.session_name})
        terminal.state = TerminalState.ACTIVE
        terminal.error = ""
        terminal.exit_code = None
        terminal.signal = None
        terminal.touch()
        self._record(terminal.id, "active", f"Attached pid={handle.pid} session={handle.session_name or '-'}.")

    async def _detach(self, terminal: Terminal) -> None:
        handle, terminal.attachment = terminal.attachment, None
        # Also reaps an attachment the terminal lost track of; killing an unknown id is a no-op.
        await self._attachments.kill(terminal.id)
        if handle is not None:
            self._record(terminal.id, "detach", "Previous attachment killed.")

    # -- queries ----------------------------------------------------------------

    def get_terminal(self, terminal_id: str) -> TerminalSnapshot | None:
        terminal = self._terminals.get(terminal_id)
        return terminal.snapshot() if terminal else None

    def get_all_terminals(self) -> list[TerminalSnapshot]:
        return [self._terminals[key].snapshot() for key in sorted(self._terminals)]

    def get_active_terminal_count(self) -> int:
        return sum(1 for terminal in self._terminals.values() if terminal.state in CAPACITY_STATES)

    def get_terminals_by_type(self, terminal_type: str) -> list[TerminalSnapshot]:
        return [snapshot for snapshot in self.get_all_terminals() if snapshot.terminal_type == terminal_type]

    def get_terminal_by_name(self, name: str) -> TerminalSnapshot | None:
        for snapshot in self.get_all_terminals_by_name(name):
            return snapshot
        return None

    def get_all_terminals_by_name(self, name: str) -> list[TerminalSnapshot]:
        matches = [terminal for terminal in self._terminals.values() if terminal.name == name]
        matches.sort(key=lambda terminal: terminal.created_at)
        return [terminal.snapshot() for terminal in matches]

    def get_stats(self) -> dict[str, object]:
        by_type = Counter(terminal.terminal_type for terminal in self._terminals.values())
        by_state = Counter(terminal.state.value for terminal in self._terminals.values())
        return {
            "total_terminals": len(self._terminals),
            "local_terminals": sum(1 for terminal in self._terminals.values() if terminal.config.platform == "local"),
            "terminals_by_type": dict(by_type),
            "terminals_by_state": dict(by_state),
        }

    # -- operations -------------------------------------------------------------

    async def send_command(self, terminal_id: str, data: str) -> None:
        await self.ensure_active(terminal_id)
        terminal = self._require(terminal_id)
        self._attachments.write(terminal_id, data)
        terminal.touch()

    async def resize_terminal(self, terminal_id: str, cols: int, rows: int) -> tuple[int, int]:
        if cols <= 0 or rows <= 0:
            raise ValidationError(
                f"Invalid terminal size: {cols}x{rows}",
                hint="Columns and rows must be positive.",
            )
        await self.ensure_active(terminal_id)
        terminal = self._require(terminal_id)
        applied_cols, applied_rows = self._attachments.resize(terminal_id, cols, rows)
        terminal.config = terminal.config.model_copy(update={"cols": applied_cols, "rows": applied_rows})
        terminal.touch()
        return applied_cols, applied_rows

    async def ensure_active(self, terminal_id: str) -> TerminalSnapshot:
        """Return an active terminal, reconnecting it first when needed."""
        terminal = self._require(terminal_id)
        if terminal.state is TerminalState.ACTIVE and terminal.attachment is not None:
            return terminal.snapshot()
        return await self.reconnect_to_terminal(terminal_id)

    def disconnect_terminal(self, terminal_id: str) -> TerminalSnapshot:
        terminal = self._require(terminal_id)
        if terminal.is_multiplexed:
            logger.debug("terminal-disconnect-skipped terminal=%s reason=multiplexed", terminal_id)
            return terminal.snapshot()
        if terminal.state is not TerminalState.ACTIVE or terminal.attachment is None:
            return terminal.snapshot()
        terminal.state = TerminalState.DISCONNECTED
        self._attachments.disconnect_with_grace(terminal_id)
        self._record(terminal_id, "disconnect", "Client disconnected; grace period started.")
        return terminal.snapshot()

    def cancel_disconnect(self, terminal_id: str) -> bool:
        terminal = self._terminals.get(terminal_id)
        if terminal is None:
            return False
        cancelled = self._attachments.cancel_disconnect(terminal_id)
        if terminal.state is TerminalState.DISCONNECTED and terminal.attachment is not None:
            live = self._attachments.get(terminal_id)
            if live is not None and live.attachment_id == terminal.attachment.attachment_id:
                terminal.state = TerminalState.ACTIVE
                terminal.touch()
                self._record(terminal_id, "reconnect", "Grace period cancelled.")
        return cancelled

    async def reconnect_to_terminal(self, terminal_id: str, new_id: str | None = None) -> TerminalSnapshot:
        self._bind_loop()
        terminal = self._require(terminal_id)
        if new_id and new_id != terminal_id and new_id in self._terminals:
            raise ValidationError(
                f"Terminal id already in use: {new_id}",
                hint="Reconnect under a different id.",
            )
        async with self._lock_for(terminal_id):
            if self._terminals.get(terminal_id) is not terminal:
                raise NotFoundError(f"Terminal not found: {terminal_id}", hint="Refresh the terminal list.")
            self._attachments.cancel_disconnect(terminal_id)
            current = terminal.attachment

            live = self._attachments.get(terminal_id)
            if live is not None and current is not None and live.attachment_id == current.attachment_id:
                self._resume(terminal, live, "Existing attachment is alive.")
            elif (resumed := self._attachments.reconnect(terminal_id)) is not None and current is not None:
                self._resume(terminal, resumed, "Disconnected attachment resumed.")
            elif terminal.is_multiplexed:
                await self._reattach_session(terminal)
            else:
                await self._detach(terminal)
                self._remove(terminal, "Process is gone and there is no session to reattach.")
                raise AttachmentError(
                    f"Terminal process has exited: {terminal_id}",
                    hint="Spawn a new terminal.",
                )

        if new_id and new_id != terminal_id:
            self._rename_after_reconnect(terminal, new_id)
        return terminal.snapshot()

    def _resume(self, terminal: Terminal, handle: AttachmentHandle, message: str) -> None:
        terminal.attachment = handle
        terminal.state = TerminalState.ACTIVE
        terminal.touch()
        self._record(terminal.id, "reconnect", message)

    async def _reattach_session(self, terminal: Terminal) -> None:
        session_name = terminal.session_name or ""
        alive = await self._session_alive(session_name)
        if self._terminals.get(terminal.id) is not terminal:
            raise NotFoundError(f"Terminal not found: {terminal.id}", hint="Refresh the terminal list.")
        if not alive:
            await self._detach(terminal)
            self._remove(terminal, "Multiplexed session has ended.")
            raise NotFoundError(
                f"Multiplexed session has ended: {session_name}",
                hint="Spawn a new terminal.",
            )
        await self._detach(terminal)
        terminal.config = terminal.config.model_copy(
            update={"id": terminal.id, "session_name": session_name, "use_tmux": True}
        )
        self._record(terminal.id, "reattach", f"Creating a new attachment for session '{session_name}'.")
        await self._attach(terminal)

    def _rename_after_reconnect(self, terminal: Terminal, new_id: str) -> None:
        if terminal.is_multiplexed:
            logger.warning(
                "terminal-rename-skipped terminal=%s new_id=%s reason=multiplexed",
                terminal.id,
                new_id,
            )
            return
        if new_id in self._terminals:
            raise ValidationError(f"Terminal id already in use: {new_id}", hint="Reconnect under a different id.")
        self._rekey(terminal, new_id)

    def _rekey(self, terminal: Terminal, new_id: str) -> None:
        old_id = terminal.id
        del self._terminals[old_id]
        if terminal.attachment is not None:
            terminal.attachment = self._attachments.rename(old_id, new_id)
        terminal.id = new_id
        terminal.config = terminal.config.model_copy(update={"id": new_id})
        self._terminals[new_id] = terminal
        lock = self._locks.pop(old_id, None)
        if lock is not None:
            self._locks[new_id] = lock
        self._record(new_id, "rename", f"Terminal re-keyed from {old_id}.")

    async def close_terminal(self, terminal_id: str, force: bool = False) -> bool:
        terminal = self._terminals.get(terminal_id)
        if terminal is None:
            return True
        async with self._lock_for(terminal_id):
            if self._terminals.get(terminal_id) is not terminal:
                return True
            if terminal.is_multiplexed:
                await self._detach(terminal)
                if force:
                    session_name = terminal.session_name or ""
                    await asyncio.to_thread(self._kill_session, session_name)
                    self._remove(terminal, f"Session '{session_name}' destroyed.")
                else:
                    terminal.state = TerminalState.DISCONNECTED
                    self._record(terminal_id, "detach", "Attachment closed; session kept for reattachment.")
                return True

            if force or terminal.attachment is None:
                await self._detach(terminal)
                self._remove(terminal, "Terminal closed.")
                return True
            terminal.state = TerminalState.DISCONNECTED
            self._attachments.disconnect_with_grace(terminal_id)
            self._record(terminal_id, "disconnect", "Close requested; grace period started.")
            return True

    async def verify_sessions(self) -> list[str]:
        """Drop disconnected multiplexed terminals whose session has ended."""
        removed: list[str] = []
        candidates = [
            terminal
            for terminal in list(self._terminals.values())
            if terminal.is_multiplexed and terminal.state is TerminalState.DISCONNECTED
        ]
        for terminal in candidates:
            alive = await self._session_alive(terminal.session_name or "")
            if alive or self._terminals.get(terminal.id) is not terminal:
                continue
            if terminal.state is not TerminalState.DISCONNECTED or terminal.attachment is not None:
                continue
            self._remove(terminal, "Multiplexed session has ended.")
            removed.append(terminal.id)
        return removed

    async def cleanup(self) -> None:
        count = len(self._terminals)
        self._terminals.clear()
        self._locks.clear()
        await self._attachments.kill_all()
        self._record("*", "cleanup", f"Killed all attachments; {count} terminals cleared.")

    # -- events -----------------------------------------------------------------

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: _discard(self._listeners, listener)

    def subscribe_output(self, listener: OutputListener) -> Callable[[], None]:
        self._output_listeners.append(listener)
        return lambda: _discard(self._output_listeners, listener)

    def list_events(self) -> list[TerminalEvent]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events.clear()
        logger.info("terminal-event terminal=* step=clear-events message=Terminal events cleared.")

    # -- helpers ----------------------------------------------------------------

    def _require(self, terminal_id: str) -> Terminal:
        terminal = self._terminals.get(terminal_id)
        if terminal is None:
            raise NotFoundError(f"Terminal not found: {terminal_id}", hint="Refresh the terminal list.")
        return terminal

    def _find_by_session(self, session_name: str) -> Terminal | None:
        for terminal in self._terminals.values():
            if terminal.session_name == session_name:
                return terminal
        return None

    def _lock_for(self, terminal_id: str) -> asyncio.Lock:
        lock = self._locks.get(terminal_id)
        if lock is None:
            lock = self._locks[terminal_id] = asyncio.Lock()
        return lock

    def _bind_loop(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

    async def _session_alive(self, session_name: str) -> bool:
        if not session_name:
            return False
        try:
            return bool(await asyncio.to_thread(self._multiplexer.session_exists, session_name))
        except Exception:
            logger.warning("session-check-failed session=%s", session_name, exc_info=True)
            return False

    def _kill_session(self, session_name: str) -> None:
        try:
            self._multiplexer.kill_session(session_name)
        except Exception:
            logger.debug("session-kill-failed session=%s", session_name, exc_info=True)

    def _remove(self, terminal: Terminal, message: str) -> None:
        if self._terminals.get(terminal.id) is not terminal:
            return
        del self._terminals[terminal.id]
        self._locks.pop(terminal.id, None)
        self._record(terminal.id, "closed", message)

    def _record(self, terminal_id: str, step: str, message: str) -> None:
        event = TerminalEvent(terminal_id=terminal_id, step=step, message=message)
        self._events.append(event)
        logger.info("terminal-event terminal=%s step=%s message=%s", terminal_id, step, message)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("event-listener-failed terminal=%s step=%s", terminal_id, step)


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


def _discard(listeners: list[Any], listener: Any) -> None:
    with suppress(ValueError):
        listeners.remove(listener)
