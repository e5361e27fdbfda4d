from __future__ import annotations

from pathlib import Path

from termdock.terminal import AttachmentHandle, Terminal, TerminalConfig, TerminalState
from termdock.terminal.models import CAPACITY_STATES, NAME_HOLDING_STATES, expand_home


def test_merged_with_overlays_only_explicit_options() -> None:
    base = TerminalConfig(terminal_type="claude-code", name="Agent", cols=120, env={"A": "1", "B": "1"})

    merged = base.merged_with(TerminalConfig(terminal_type="claude-code", prompt="go", env={"B": "2"}))

    assert merged.name == "Agent"
    assert merged.cols == 120
    assert merged.prompt == "go"
    assert merged.env == {"A": "1", "B": "2"}
    assert base.prompt == ""


def test_unknown_options_are_retained() -> None:
    config = TerminalConfig.model_validate({"terminal_type": "bash", "launcher": "panel"})

    assert config.model_dump()["launcher"] == "panel"


def test_snapshot_reflects_attachment_and_config() -> None:
    terminal = Terminal(
        id="td-shell-1",
        name="Shell",
        terminal_type="bash",
        working_dir="/work",
        config=TerminalConfig(terminal_type="bash", commands=["make"], resumable=True, profile={"name": "dev"}),
        state=TerminalState.ACTIVE,
        session_name="td-shell-1",
        attachment=AttachmentHandle("td-shell-1", "att-1", ("tmux",), "/work", pid=77, session_name="td-shell-1"),
    )

    payload = terminal.snapshot().to_dict()

    assert terminal.is_multiplexed is True
    assert payload["state"] == "active"
    assert payload["attached"] is True
    assert payload["pid"] == 77
    assert payload["commands"] == ["make"]
    assert payload["profile"] == {"name": "dev"}
    assert payload["resumable"] is True


def test_state_groups() -> None:
    assert TerminalState.DISCONNECTED in NAME_HOLDING_STATES
    assert TerminalState.ERROR not in NAME_HOLDING_STATES
    assert CAPACITY_STATES == {TerminalState.SPAWNING, TerminalState.ACTIVE}


def test_expand_home_only_touches_leading_tilde() -> None:
    assert expand_home("~") == str(Path.home())
    assert expand_home("~/src") == str(Path.home()) + "/src"
    assert expand_home("/tmp/~x") == "/tmp/~x"
    assert expand_home("~other/src") == "~other/src"
