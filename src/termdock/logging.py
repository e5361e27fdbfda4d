"""Logging setup for the terminal orchestration service."""

from __future__ import annotations

import logging as py_logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
ROOT_LOGGER = "termdock"
DEFAULT_LOG_PATH = Path("~/.config/termdock/logs/termdock.log")
_CWD_LOG_PATH = Path(".termdock/logs/termdock.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"
_LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
_LOG_FILE_BACKUPS = 3


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        return (Path.cwd() / _CWD_LOG_PATH).resolve()
    if not resolved.is_absolute():
        resolved = resolved.resolve()
    return resolved


def resolve_level(level: str) -> int:
    return LOG_LEVELS.get(level.strip().upper(), py_logging.INFO)


def payload_summary(data: str | bytes) -> str:
    """Describe a terminal payload without echoing it.

    Raw PTY data carries escape sequences that corrupt the host terminal when
    logged, so only the size is ever written.
    """
    return f"<{len(data)} {'bytes' if isinstance(data, bytes) else 'chars'}>"


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    resolved = resolve_level(level)
    formatter = py_logging.Formatter(_FORMAT)

    logger = py_logging.getLogger(ROOT_LOGGER)
    logger.setLevel(py_logging.DEBUG if log_file else resolved)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(resolved)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        _attach_file_handler(logger, Path(log_file), formatter)
    if len(logger.handlers) == 1:
        logger.setLevel(resolved)

    logger.propagate = False
    return logger


def _attach_file_handler(logger: py_logging.Logger, path: Path, formatter: py_logging.Formatter) -> None:
    try:
        path = path.expanduser()
    except RuntimeError:
        pass
    if not path.is_absolute():
        path = path.resolve()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=_LOG_FILE_MAX_BYTES,
            backupCount=_LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    except OSError:
        # File logging is best effort.
        return
    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
