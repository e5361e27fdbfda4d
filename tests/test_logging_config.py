from __future__ import annotations

import io
import logging as py_logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import termdock.logging as td_logging


def test_default_log_path_is_expanded() -> None:
    path = td_logging.default_log_path()

    assert path.is_absolute()
    assert path.name == "termdock.log"


def test_warning_alias_maps_to_warning_level() -> None:
    logger = td_logging.configure_logging("warning")

    assert logger.level == td_logging.LOG_LEVELS["WARN"]


def test_unknown_log_level_falls_back_to_info() -> None:
    logger = td_logging.configure_logging("not-a-level")

    assert logger.level == py_logging.INFO


def test_configure_logging_resets_existing_handlers() -> None:
    logger = td_logging.configure_logging("INFO")
    assert len(logger.handlers) == 1

    logger = td_logging.configure_logging("INFO")

    assert len(logger.handlers) == 1


def test_configure_logging_adds_rotating_debug_file_handler(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "termdock.log"

    logger = td_logging.configure_logging("ERROR", log_file=log_file)
    file_handlers = [handler for handler in logger.handlers if isinstance(handler, RotatingFileHandler)]

    assert len(file_handlers) == 1
    assert file_handlers[0].level == py_logging.DEBUG
    assert logger.level == py_logging.DEBUG
    assert log_file.exists()


def test_configure_logging_ignores_file_handler_oserror(monkeypatch, tmp_path: Path) -> None:
    def raise_os_error(*args: object, **kwargs: object) -> py_logging.Handler:
        raise OSError("disk full")

    monkeypatch.setattr(td_logging, "RotatingFileHandler", raise_os_error)

    logger = td_logging.configure_logging("INFO", log_file=tmp_path / "nope" / "termdock.log")

    assert len(logger.handlers) == 1
    assert type(logger.handlers[0]) is py_logging.StreamHandler
    assert logger.level == py_logging.INFO


def test_module_loggers_write_key_value_lines() -> None:
    stream = io.StringIO()
    td_logging.configure_logging("DEBUG", stream)

    py_logging.getLogger("termdock.terminal.registry").info("terminal-event terminal=%s step=%s", "t1", "active")

    assert "terminal-event terminal=t1 step=active" in stream.getvalue()


def test_payload_summary_never_echoes_data() -> None:
    assert td_logging.payload_summary("\x1b[31msecret") == "<11 chars>"
    assert td_logging.payload_summary(b"abc") == "<3 bytes>"
