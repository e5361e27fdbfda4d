from __future__ import annotations

import asyncio
import signal
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from fakes import FakePtySpawner
from termdock.config import AttachmentSettings
from termdock.errors import AttachmentError, MultiplexerError, NotFoundError
from termdock.terminal import AttachmentClosed, AttachmentOutput, PtyAttachmentBackend, TerminalConfig, TmuxClient
from termdock.terminal.attachment import (
    bare_shell_command,
    build_environment,
    build_startup_input,
    clamp_size,
    session_base_name,
)


def _no_tmux(cmd: list[str], **_: object) -> subprocess.CompletedProcess:
    raise AssertionError(f"unexpected tmux call: {cmd}")


def _cp(returncode: int) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr="")


async def _until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _backend(
    spawner: FakePtySpawner,
    *,
    runner: Callable[..., subprocess.CompletedProcess] = _no_tmux,
    base_env: dict[str, str] | None = None,
    **settings: object,
) -> tuple[PtyAttachmentBackend, list[object]]:
    events: list[object] = []
    backend = PtyAttachmentBackend(
        TmuxClient(runner=runner),
        settings=AttachmentSettings(**settings),  # type: ignore[arg-type]
        spawn=spawner,
        base_env=base_env if base_env is not None else {"PATH": "/usr/bin", "WT_SESSION": "abc"},
    )
    backend.set_listener(events.append)
    return backend, events


def _config(tmp_path: Path, **overrides: object) -> TerminalConfig:
    data: dict[str, object] = {
        "terminal_type": "bash",
        "id": "t1",
        "name": "Shell",
        "working_dir": str(tmp_path),
        "cols": 100,
        "rows": 30,
    }
    data.update(overrides)
    return TerminalConfig.model_validate(data)


@pytest.mark.asyncio
async def test_bare_create_spawns_interactive_shell_with_filtered_env(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, _ = _backend(spawner)

    handle = await backend.create(_config(tmp_path))

    argv, cwd, env, dimensions = spawner.calls[0]
    assert argv == ["bash", "-i"]
    assert cwd == str(tmp_path)
    assert dimensions == (30, 100)
    assert "WT_SESSION" not in env
    assert env["PATH"] == "/usr/bin"
    assert env["TERMDOCK_ID"] == "t1"
    assert env["COLUMNS"] == "100"
    assert handle.pid == 4242
    assert handle.session_name is None
    assert backend.get("t1") == handle
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_output_is_decoded_across_chunk_boundaries(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, events = _backend(spawner)
    handle = await backend.create(_config(tmp_path))
    process = spawner.processes[0]

    process.emit("price: ".encode() + b"\xe2\x82")
    await _until(lambda: len(events) >= 1)
    process.emit(b"\xac\n")
    await _until(lambda: "".join(event.data for event in events) == "price: €\n")  # type: ignore[attr-defined]

    assert all(isinstance(event, AttachmentOutput) for event in events)
    assert {event.attachment_id for event in events} == {handle.attachment_id}  # type: ignore[attr-defined]
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_process_exit_emits_closed_event(tmp_path: Path) -> None:
    spawner = FakePtySpawner(exit_code=3)
    backend, events = _backend(spawner)
    handle = await backend.create(_config(tmp_path))

    spawner.processes[0].hang_up()
    await _until(lambda: any(isinstance(event, AttachmentClosed) for event in events))

    [closed] = [event for event in events if isinstance(event, AttachmentClosed)]
    assert closed == AttachmentClosed("t1", handle.attachment_id, 3, None)
    assert backend.get("t1") is None
    spawner.release()


@pytest.mark.asyncio
async def test_explicit_kill_is_silent(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, events = _backend(spawner)
    await backend.create(_config(tmp_path))

    await backend.kill("t1")
    await asyncio.sleep(0.02)

    process = spawner.processes[0]
    assert process.signals == [signal.SIGTERM]
    assert process.closed is True
    assert events == []
    assert backend.get("t1") is None
    await backend.kill("t1")
    spawner.release()


@pytest.mark.asyncio
async def test_kill_escalates_to_sigkill(tmp_path: Path) -> None:
    spawner = FakePtySpawner(ignore_term=True)
    backend, _ = _backend(spawner, kill_timeout_seconds=0.05)
    await backend.create(_config(tmp_path))

    await backend.kill("t1")

    assert spawner.processes[0].signals == [signal.SIGTERM, signal.SIGKILL]
    spawner.release()


@pytest.mark.asyncio
async def test_grace_period_expiry_kills_and_reports_close(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, events = _backend(spawner, grace_period_seconds=0.05, kill_timeout_seconds=0.05)
    handle = await backend.create(_config(tmp_path))

    backend.disconnect_with_grace("t1")
    with pytest.raises(AttachmentError):
        backend.write("t1", "ls\n")
    await _until(lambda: bool(events))

    assert events == [AttachmentClosed("t1", handle.attachment_id, None, signal.SIGTERM)]
    assert spawner.processes[0].closed is True
    assert backend.get("t1") is None
    spawner.release()


@pytest.mark.asyncio
async def test_cancelled_grace_period_keeps_process(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, events = _backend(spawner, grace_period_seconds=0.05)
    handle = await backend.create(_config(tmp_path))

    assert backend.cancel_disconnect("t1") is False
    backend.disconnect_with_grace("t1")
    assert backend.reconnect("t1") == handle
    await asyncio.sleep(0.1)

    assert events == []
    assert backend.reconnect("t1") is None
    backend.write("t1", "ls\n")
    assert spawner.processes[0].written == [b"ls\n"]
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_write_and_resize_require_attachment(tmp_path: Path) -> None:
    backend, _ = _backend(FakePtySpawner())

    with pytest.raises(NotFoundError):
        backend.write("missing", "x")
    with pytest.raises(NotFoundError):
        backend.resize("missing", 80, 24)


@pytest.mark.asyncio
async def test_resize_is_clamped(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, _ = _backend(spawner)
    await backend.create(_config(tmp_path))

    applied = backend.resize("t1", 5, 1000)

    assert applied == (20, 200)
    assert spawner.processes[0].winsize == (200, 20)
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_duplicate_create_and_spawn_failure_raise(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, _ = _backend(spawner)
    await backend.create(_config(tmp_path))

    with pytest.raises(AttachmentError):
        await backend.create(_config(tmp_path))

    spawner.error = OSError("no more ptys")
    with pytest.raises(AttachmentError) as exc:
        await backend.create(_config(tmp_path, id="t2"))
    assert "no more ptys" in exc.value.hint
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_rename_moves_attachment(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, _ = _backend(spawner)
    await backend.create(_config(tmp_path))

    handle = backend.rename("t1", "t9")

    assert handle.terminal_id == "t9"
    assert backend.get("t1") is None
    assert backend.get("t9") == handle
    with pytest.raises(NotFoundError):
        backend.rename("t1", "t2")
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_startup_command_is_typed_after_delay(tmp_path: Path) -> None:
    spawner = FakePtySpawner()
    backend, _ = _backend(spawner, auto_execute_delay_seconds=0.01)

    await backend.create(_config(tmp_path, terminal_type="claude-code", prompt="fix it"))
    process = spawner.processes[0]
    await _until(lambda: bool(process.written))

    assert spawner.calls[0][0] == ["bash"]
    assert process.written == [b"claude 'fix it'\n"]
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_tmux_mode_creates_session_named_after_prefixed_id(tmp_path: Path) -> None:
    seen: list[list[str]] = []

    def runner(cmd: list[str], **_: object) -> subprocess.CompletedProcess:
        seen.append(cmd)
        if cmd[1] == "has-session":
            return _cp(1)
        return _cp(0)

    spawner = FakePtySpawner()
    backend, _ = _backend(spawner, runner=runner)

    handle = await backend.create(_config(tmp_path, id="td-shell-0a1b2c3d", use_tmux=True))

    assert handle.session_name == "td-shell-0a1b2c3d"
    assert handle.reattached is False
    assert spawner.calls[0][0] == ["tmux", "attach-session", "-t", "=td-shell-0a1b2c3d"]
    new_session = next(cmd for cmd in seen if cmd[1] == "new-session")
    assert new_session[:5] == ["tmux", "new-session", "-d", "-s", "td-shell-0a1b2c3d"]
    assert "COLORFGBG=15;0" in new_session
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_tmux_mode_reattaches_existing_session_without_startup(tmp_path: Path) -> None:
    seen: list[list[str]] = []

    def runner(cmd: list[str], **_: object) -> subprocess.CompletedProcess:
        seen.append(cmd)
        return _cp(0)

    spawner = FakePtySpawner()
    backend, _ = _backend(spawner, runner=runner, auto_execute_delay_seconds=0.01)

    handle = await backend.create(
        _config(tmp_path, id="td-old", terminal_type="claude-code", session_name="td-old", use_tmux=True)
    )
    await _until(lambda: any(cmd[1] == "send-keys" for cmd in seen))

    assert handle.reattached is True
    assert handle.session_name == "td-old"
    assert not any(cmd[1] == "new-session" for cmd in seen)
    assert ["tmux", "set-option", "-t", "=td-old:", "remain-on-exit", "off"] in seen
    assert spawner.processes[0].written == []
    await backend.kill_all()
    spawner.release()


@pytest.mark.asyncio
async def test_tmux_session_creation_failure_propagates(tmp_path: Path) -> None:
    def runner(cmd: list[str], **_: object) -> subprocess.CompletedProcess:
        return _cp(1)

    spawner = FakePtySpawner()
    backend, _ = _backend(spawner, runner=runner)

    with pytest.raises(MultiplexerError):
        await backend.create(_config(tmp_path, use_tmux=True))

    assert spawner.calls == []


def test_build_environment_marks_tui_tools_and_theme() -> None:
    config = TerminalConfig(terminal_type="tui-tool", id="t1", name="lazygit", is_dark=False, env={"A": "1"})

    env = build_environment(config, {"KITTY_WINDOW_ID": "3", "LANG": "C.UTF-8"})

    assert "KITTY_WINDOW_ID" not in env
    assert env["A"] == "1"
    assert env["LANG"] == "C.UTF-8"
    assert env["COLORFGBG"] == "0;15"
    assert env["NCURSES_NO_UTF8_ACS"] == "1"
    assert env["TERMDOCK_TYPE"] == "tui-tool"


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({"terminal_type": "bash"}, []),
        ({"terminal_type": "bash", "command": "htop"}, ["htop\n"]),
        ({"terminal_type": "script", "commands": ["make", " ", "make test"]}, ["make\n", "make test\n"]),
        ({"terminal_type": "codex"}, ["codex\n"]),
        ({"terminal_type": "gemini", "prompt": "gemini"}, ["gemini\n"]),
        ({"terminal_type": "orchestrator"}, ['echo "Orchestrator terminal ready"\n']),
        ({"terminal_type": "claude-code", "command": "claude", "prompt": "it's"}, ["claude 'it'\"'\"'s'\n"]),
    ],
)
def test_build_startup_input(overrides: dict[str, object], expected: list[str]) -> None:
    assert build_startup_input(TerminalConfig.model_validate(overrides)) == expected


def test_shell_and_size_helpers() -> None:
    assert bare_shell_command(TerminalConfig(terminal_type="dashboard")) == ["bash", "-i"]
    assert bare_shell_command(TerminalConfig(terminal_type="codex", shell="zsh")) == ["zsh"]
    assert clamp_size(0, 0) == (80, 30)
    assert clamp_size(600, 5) == (500, 10)
    assert session_base_name(TerminalConfig(terminal_type="bash", id="abc", name="my.shell:1"), "td") == "my-shell-1"
    assert session_base_name(TerminalConfig(terminal_type="bash", id="abc"), "td") == "term"
