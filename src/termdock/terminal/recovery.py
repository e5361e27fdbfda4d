"""Reconnection bursts and startup recovery of multiplexed sessions."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from termdock.errors import TermdockError
from termdock.terminal.models import TerminalConfig, TerminalSnapshot
from termdock.terminal.multiplexer import SessionMultiplexerClient
from termdock.terminal.registry import TerminalRegistry

logger = py_logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[object]]

_COMMAND_TYPES = {
    "claude": "claude-code",
    "opencode": "opencode",
    "codex": "codex",
    "gemini": "gemini",
    "lazygit": "tui-tool",
    "btm": "tui-tool",
    "htop": "tui-tool",
    "calcure": "tui-tool",
    "micro": "tui-tool",
    "lnav": "tui-tool",
}


@dataclass(frozen=True)
class ReconnectOutcome:
    terminal_id: str
    success: bool
    error: str = ""


def guess_terminal_type(command: str) -> str:
    binary = command.strip().rsplit("/", 1)[-1].lower()
    return _COMMAND_TYPES.get(binary, "bash")


async def reconnect_all(
    registry: TerminalRegistry,
    terminal_ids: Iterable[str],
    *,
    stagger: float | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> list[ReconnectOutcome]:
    """Reconnect terminals one at a time, in the given order, pausing between each.

    The pause defaults to the registry's configured reconnect stagger.
    """
    if stagger is None:
        stagger = registry.settings.reconnect_stagger_seconds
    outcomes: list[ReconnectOutcome] = []
    for index, terminal_id in enumerate(terminal_ids):
        if index and stagger > 0:
            await sleep(stagger)
        try:
            await registry.reconnect_to_terminal(terminal_id)
        except TermdockError as exc:
            logger.warning("reconnect-failed terminal=%s error=%s", terminal_id, exc.message)
            outcomes.append(ReconnectOutcome(terminal_id, False, exc.message))
            continue
        outcomes.append(ReconnectOutcome(terminal_id, True))
    return outcomes


async def recover_sessions(
    registry: TerminalRegistry,
    multiplexer: SessionMultiplexerClient,
    *,
    prefix: str | None = None,
    stagger: float | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> list[TerminalSnapshot]:
    """Re-register every prefixed tmux session the registry does not know about yet."""
    prefix = registry.settings.session_prefix if prefix is None else prefix
    stagger = registry.settings.reconnect_stagger_seconds if stagger is None else stagger
    sessions = await asyncio.to_thread(multiplexer.list_sessions)
    known = {snapshot.session_name for snapshot in registry.get_all_terminals()}
    candidates = [
        session.name
        for session in sessions
        if session.name.startswith(f"{prefix}-") and session.name not in known
    ]
    recovered: list[TerminalSnapshot] = []
    for index, session_name in enumerate(candidates):
        if index and stagger > 0:
            await sleep(stagger)
        panes = await asyncio.to_thread(multiplexer.list_panes_metadata, session_name)
        first = panes[0] if panes else None
        config = TerminalConfig(
            terminal_type=guess_terminal_type(first.command) if first else "bash",
            name=session_name,
            session_name=session_name,
            use_tmux=True,
            working_dir=first.working_dir if first else "",
        )
        try:
            snapshot = await registry.register_terminal(config)
        except TermdockError as exc:
            logger.warning("session-recovery-failed session=%s error=%s", session_name, exc.message)
            continue
        logger.info("session-recovered session=%s type=%s", session_name, snapshot.terminal_type)
        recovered.append(snapshot)
    return recovered
