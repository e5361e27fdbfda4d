"""Command-line entrypoint for inspecting and spawning persistent terminals."""

from __future__ import annotations

import argparse
import asyncio
import logging as py_logging
import subprocess
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from .config import AppConfig, load_config
from .errors import ExitCode, NotFoundError, TermdockError, ValidationError, exit_code_for_kind, user_facing_error
from .logging import configure_logging, default_log_path
from .spawn import TERMINAL_TYPES, SpawnGateway
from .terminal import PtyAttachmentBackend, TerminalRegistry, TmuxClient
from .terminal.attachment import PtySpawn
from .terminal.multiplexer import Runner

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_DETACH_MARGIN_SECONDS = 0.3


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _lines_type(value: str) -> int:
    try:
        lines = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--lines must be an integer") from exc
    if lines < 1 or lines > 10_000:
        raise argparse.ArgumentTypeError("--lines must be between 1 and 10000")
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="termdock")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("types", help="List spawnable terminal types")

    sessions = commands.add_parser("sessions", help="List tmux sessions owned by termdock")
    sessions.add_argument("--all", action="store_true", help="Include sessions without the termdock prefix")

    spawn = commands.add_parser("spawn", help="Spawn a persistent terminal and detach from it")
    spawn.add_argument("--type", dest="terminal_type", required=True)
    spawn.add_argument("--name", default="")
    spawn.add_argument("--cwd", default="")
    spawn.add_argument("--command", dest="startup_command", default=None)
    spawn.add_argument("--prompt", default="")

    capture = commands.add_parser("capture", help="Print recent output of a session")
    capture.add_argument("session")
    capture.add_argument("--lines", type=_lines_type, default=100)

    kill = commands.add_parser("kill", help="Destroy a session")
    kill.add_argument("session")
    return parser


@dataclass
class Stack:
    config: AppConfig
    multiplexer: TmuxClient
    attachments: PtyAttachmentBackend
    registry: TerminalRegistry
    gateway: SpawnGateway


def build_stack(
    config: AppConfig,
    *,
    runner: Runner = subprocess.run,
    pty_spawn: PtySpawn | None = None,
) -> Stack:
    multiplexer = TmuxClient(runner=runner, config_path=config.tmux_config_path)
    attachments = PtyAttachmentBackend(multiplexer, settings=config.attachment_settings(), spawn=pty_spawn)
    registry = TerminalRegistry(attachments, multiplexer, settings=config.registry_settings())
    gateway = SpawnGateway(registry, settings=config.spawn_settings())
    return Stack(config, multiplexer, attachments, registry, gateway)


def _print_types(out: TextIO) -> int:
    for name, type_config in TERMINAL_TYPES.items():
        flags = "resumable" if type_config.resumable else "-"
        print(f"{name}\t{flags}\t{type_config.command or '-'}", file=out)
    return int(ExitCode.SUCCESS)


def _print_sessions(stack: Stack, *, show_all: bool, out: TextIO) -> int:
    prefix = f"{stack.config.session_prefix}-"
    for session in stack.multiplexer.list_sessions():
        if not show_all and not session.name.startswith(prefix):
            continue
        state = "attached" if session.attached else "detached"
        print(f"{session.name}\t{session.windows} windows\t{state}", file=out)
    return int(ExitCode.SUCCESS)


async def _spawn_detached(
    stack: Stack,
    namespace: argparse.Namespace,
    *,
    sleep: Callable[[float], Awaitable[object]],
) -> str:
    options: dict[str, object] = {
        "terminal_type": namespace.terminal_type,
        "name": namespace.name,
        "working_dir": namespace.cwd,
        "use_tmux": True,
        "prompt": namespace.prompt,
    }
    if namespace.startup_command:
        options["command"] = namespace.startup_command
    result = await stack.gateway.spawn(options)
    if not result.success or result.terminal is None:
        raise TermdockError(result.error or "Spawn failed.", code=exit_code_for_kind(result.code))
    terminal = result.terminal
    try:
        # The startup command is typed after a delay; stay attached until it has been sent.
        await sleep(stack.config.auto_execute_delay_seconds + _DETACH_MARGIN_SECONDS)
        await stack.registry.close_terminal(terminal.id, force=False)
    finally:
        await stack.registry.stop()
    return terminal.session_name or terminal.id


def _capture(stack: Stack, session: str, lines: int, out: TextIO) -> int:
    if not stack.multiplexer.session_exists(session):
        raise NotFoundError(f"Session not found: {session}", hint="Run `termdock sessions` to list sessions.")
    out.write(stack.multiplexer.capture_recent_output(session, lines))
    return int(ExitCode.SUCCESS)


def _kill(stack: Stack, session: str, out: TextIO) -> int:
    if not stack.multiplexer.session_exists(session):
        raise NotFoundError(f"Session not found: {session}", hint="Run `termdock sessions` to list sessions.")
    stack.multiplexer.kill_session(session)
    print(f"Killed {session}", file=out)
    return int(ExitCode.SUCCESS)


def run_command(
    namespace: argparse.Namespace,
    stack: Stack,
    *,
    out: TextIO,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> int:
    if namespace.command == "types":
        return _print_types(out)
    if namespace.command == "sessions":
        return _print_sessions(stack, show_all=namespace.all, out=out)
    if namespace.command == "spawn":
        session = asyncio.run(_spawn_detached(stack, namespace, sleep=sleep))
        print(session, file=out)
        return int(ExitCode.SUCCESS)
    if namespace.command == "capture":
        return _capture(stack, namespace.session, namespace.lines, out)
    if namespace.command == "kill":
        return _kill(stack, namespace.session, out)
    raise ValidationError(f"Unknown command: {namespace.command}", code=ExitCode.INVALID_ARGS)


def main(
    argv: Sequence[str] | None = None,
    *,
    runner: Runner = subprocess.run,
    pty_spawn: PtySpawn | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    out: TextIO | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or config.log_level, log_file=log_path)

    try:
        stack = build_stack(config, runner=runner, pty_spawn=pty_spawn)
        return run_command(namespace, stack, out=out or sys.stdout, sleep=sleep)
    except TermdockError as exc:
        logger.error(
            "Handled TermdockError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(user_facing_error("Unexpected runtime failure", hint=f"Inspect logs: {log_path}"), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
