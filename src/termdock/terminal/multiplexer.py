"""tmux CLI wrapper used for session discovery, persistence checks and teardown."""

from __future__ import annotations

import logging as py_logging
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

from termdock.errors import MultiplexerError

logger = py_logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

_FIELD_SEPARATOR = "|"
_SESSION_FORMAT = "#{session_name}|#{session_windows}|#{session_attached}|#{session_created}"
_PANE_FORMAT = "#{pane_id}|#{pane_current_path}|#{pane_current_command}|#{pane_title}"


@dataclass(frozen=True)
class SessionInfo:
    name: str
    windows: int
    attached: bool
    created: int


@dataclass(frozen=True)
class PaneMetadata:
    pane_id: str
    working_dir: str
    command: str
    title: str


class SessionMultiplexerClient(Protocol):
    def session_exists(self, name: str) -> bool: ...

    def kill_session(self, name: str) -> None: ...

    def list_sessions(self) -> list[SessionInfo]: ...

    def list_panes_metadata(self, session_name: str) -> list[PaneMetadata]: ...

    def capture_recent_output(self, session_name: str, lines: int = 100) -> str: ...


class TmuxClient:
    def __init__(
        self,
        *,
        runner: Runner = subprocess.run,
        binary: str = "tmux",
        config_path: str = "",
    ) -> None:
        self._runner = runner
        self._binary = binary
        self._config_path = config_path

    def _run(self, *args: str, env: Mapping[str, str] | None = None) -> subprocess.CompletedProcess:
        command = [self._binary, *args]
        kwargs: dict[str, object] = {"capture_output": True, "text": True, "check": False}
        if env is not None:
            kwargs["env"] = dict(env)
        return self._runner(command, **kwargs)

    def _run_quietly(self, *args: str) -> subprocess.CompletedProcess | None:
        try:
            return self._run(*args)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("tmux command failed args=%s error=%s", args[:1], exc)
            return None

    def session_exists(self, name: str) -> bool:
        if not name:
            return False
        result = self._run_quietly("has-session", "-t", _exact(name))
        return result is not None and result.returncode == 0

    def kill_session(self, name: str) -> None:
        result = self._run_quietly("kill-session", "-t", _exact(name))
        if result is None or result.returncode != 0:
            logger.debug("tmux session already gone session=%s", name)
            return
        logger.info("tmux session killed session=%s", name)

    def list_sessions(self) -> list[SessionInfo]:
        result = self._run_quietly("list-sessions", "-F", _SESSION_FORMAT)
        if result is None or result.returncode != 0:
            return []
        sessions: list[SessionInfo] = []
        for line in result.stdout.splitlines():
            parts = line.strip().split(_FIELD_SEPARATOR)
            if len(parts) != 4 or not parts[0]:
                continue
            sessions.append(
                SessionInfo(
                    name=parts[0],
                    windows=_as_int(parts[1]),
                    attached=_as_int(parts[2]) > 0,
                    created=_as_int(parts[3]),
                )
            )
        return sessions

    def list_panes_metadata(self, session_name: str) -> list[PaneMetadata]:
        result = self._run_quietly("list-panes", "-s", "-t", _exact(session_name), "-F", _PANE_FORMAT)
        if result is None or result.returncode != 0:
            return []
        panes: list[PaneMetadata] = []
        for line in result.stdout.splitlines():
            # Pane titles may themselves contain the separator.
            parts = line.rstrip("\n").split(_FIELD_SEPARATOR, 3)
            if len(parts) != 4 or not parts[0]:
                continue
            panes.append(PaneMetadata(pane_id=parts[0], working_dir=parts[1], command=parts[2], title=parts[3]))
        return panes

    def capture_recent_output(self, session_name: str, lines: int = 100) -> str:
        panes = self.list_panes_metadata(session_name)
        if not panes:
            return ""
        result = self._run_quietly("capture-pane", "-p", "-e", "-S", f"-{max(1, lines)}", "-t", panes[0].pane_id)
        if result is None or result.returncode != 0:
            return ""
        return result.stdout

    def new_session(
        self,
        name: str,
        *,
        working_dir: str,
        cols: int,
        rows: int,
        env: Mapping[str, str] | None = None,
        session_env: Mapping[str, str] | None = None,
    ) -> None:
        args: list[str] = []
        if self._config_path:
            args.extend(["-f", self._config_path])
        args.extend(["new-session", "-d", "-s", name, "-c", working_dir, "-x", str(cols), "-y", str(rows)])
        for key, value in (session_env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        try:
            result = self._run(*args, env=env)
        except (OSError, subprocess.SubprocessError) as exc:
            raise MultiplexerError(
                f"Failed to create tmux session: {name}",
                hint=str(exc) or "Verify tmux is installed.",
            ) from exc
        if result.returncode != 0:
            raise MultiplexerError(
                f"Failed to create tmux session: {name}",
                hint=(result.stderr or "").strip()[:200] or "Inspect tmux server state.",
            )
        logger.info("tmux session created session=%s cwd=%s size=%sx%s", name, working_dir, cols, rows)

    def set_remain_on_exit(self, name: str, enabled: bool = False) -> None:
        result = self._run_quietly("set-option", "-t", _exact_pane(name), "remain-on-exit", "on" if enabled else "off")
        if result is None or result.returncode != 0:
            logger.warning("Failed to set remain-on-exit session=%s", name)

    def unique_session_name(self, base: str) -> str:
        if not self.session_exists(base):
            return base
        counter = 2
        while self.session_exists(f"{base}-{counter}"):
            counter += 1
        return f"{base}-{counter}"

    def refresh_client(self, name: str) -> None:
        self._run_quietly("refresh-client", "-t", _exact(name))

    def cancel_copy_mode(self, name: str) -> None:
        self._run_quietly("send-keys", "-t", _exact_pane(name), "-X", "cancel")

    def attach_command(self, name: str) -> list[str]:
        return [self._binary, "attach-session", "-t", _exact(name)]


def _exact(name: str) -> str:
    # "=name" disables tmux prefix matching, so "td-a" never resolves to "td-ab".
    return f"={name}"


def _exact_pane(name: str) -> str:
    # Pane and option targets need the trailing ":" after an exact session name.
    return f"={name}:"


def _as_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0
