from __future__ import annotations

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from fakes import FakeAttachments, FakeMultiplexer
from termdock.terminal import TerminalRegistry
from termdock.terminal.models import NAME_HOLDING_STATES

_NAMES = st.sampled_from(["Shell", "Agent", "Shell-2", "logs"])
_REGISTER = st.tuples(st.just("register"), _NAMES, st.booleans())
_CLOSE = st.tuples(st.just("close"), st.integers(min_value=0, max_value=30), st.booleans())
_OPERATIONS = st.lists(st.one_of(_REGISTER, _CLOSE), max_size=25)


async def _apply(registry: TerminalRegistry, operation: tuple[str, object, bool]) -> None:
    kind, argument, flag = operation
    if kind == "register":
        await registry.register_terminal({"terminal_type": "bash", "name": argument, "use_tmux": flag})
        return
    terminals = registry.get_all_terminals()
    if terminals:
        target = terminals[int(argument) % len(terminals)]
        await registry.close_terminal(target.id, force=flag)


@given(_OPERATIONS)
@settings(max_examples=60, deadline=None)
def test_ids_and_held_names_stay_unique(operations: list[tuple[str, object, bool]]) -> None:
    async def scenario() -> None:
        registry = TerminalRegistry(FakeAttachments(), FakeMultiplexer())
        for operation in operations:
            await _apply(registry, operation)
            snapshots = registry.get_all_terminals()
            ids = [snapshot.id for snapshot in snapshots]
            names = [snapshot.name for snapshot in snapshots if snapshot.state in NAME_HOLDING_STATES]
            assert len(ids) == len(set(ids))
            assert len(names) == len(set(names))

    asyncio.run(scenario())


@given(st.integers(min_value=1, max_value=12), st.sampled_from(["Shell", "codex", "a b"]))
@settings(max_examples=30, deadline=None)
def test_repeated_names_get_strictly_increasing_suffixes(count: int, base: str) -> None:
    async def scenario() -> list[str]:
        registry = TerminalRegistry(FakeAttachments(), FakeMultiplexer())
        return [(await registry.register_terminal({"terminal_type": "bash", "name": base})).name for _ in range(count)]

    names = asyncio.run(scenario())

    assert names == [base] + [f"{base}-{index}" for index in range(2, count + 1)]


@given(_OPERATIONS, st.text(min_size=1, max_size=12))
@settings(max_examples=40, deadline=None)
def test_closing_absent_terminal_always_succeeds(operations: list[tuple[str, object, bool]], missing: str) -> None:
    async def scenario() -> bool:
        registry = TerminalRegistry(FakeAttachments(), FakeMultiplexer())
        for operation in operations:
            await _apply(registry, operation)
        if registry.get_terminal(missing) is not None:
            await registry.close_terminal(missing, force=True)
        return await registry.close_terminal(missing)

    assert asyncio.run(scenario()) is True


@given(st.lists(st.booleans(), min_size=1, max_size=6))
@settings(max_examples=30, deadline=None)
def test_multiplexed_terminal_is_only_deleted_when_session_ends(session_alive_each_time: list[bool]) -> None:
    async def scenario() -> None:
        attachments = FakeAttachments()
        multiplexer = FakeMultiplexer({"sess-1"})
        registry = TerminalRegistry(attachments, multiplexer)
        await registry.register_terminal({"terminal_type": "bash", "session_name": "sess-1", "use_tmux": True})
        for alive in session_alive_each_time:
            if not alive:
                multiplexer.sessions.discard("sess-1")
            attachments.exit("sess-1")
            await registry.drain_events()
            snapshot = registry.get_terminal("sess-1")
            if not alive:
                assert snapshot is None
                assert [event.step for event in registry.list_events()].count("closed") == 1
                return
            assert snapshot is not None
            await registry.reconnect_to_terminal("sess-1")

    asyncio.run(scenario())
