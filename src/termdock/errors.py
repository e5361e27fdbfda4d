"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    TMUX_ERROR = 6
    VALIDATION_ERROR = 7
    UNSUPPORTED_PLATFORM = 8
    NOT_FOUND = 9
    RATE_LIMITED = 10
    CAPACITY_EXCEEDED = 11
    DUPLICATE_SPAWN = 12
    UNKNOWN_TYPE = 13
    ATTACHMENT_ERROR = 14


@dataclass
class TermdockError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    kind: ClassVar[str] = "TermdockError"

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class ValidationError(TermdockError):
    code: ExitCode = ExitCode.VALIDATION_ERROR

    kind: ClassVar[str] = "ValidationError"


@dataclass
class RateLimitError(TermdockError):
    code: ExitCode = ExitCode.RATE_LIMITED
    retry_after: int = 0

    kind: ClassVar[str] = "RateLimitError"


@dataclass
class CapacityError(TermdockError):
    code: ExitCode = ExitCode.CAPACITY_EXCEEDED

    kind: ClassVar[str] = "CapacityError"


@dataclass
class UnknownTypeError(TermdockError):
    code: ExitCode = ExitCode.UNKNOWN_TYPE

    kind: ClassVar[str] = "UnknownTypeError"


@dataclass
class PlatformUnsupportedError(TermdockError):
    code: ExitCode = ExitCode.UNSUPPORTED_PLATFORM

    kind: ClassVar[str] = "PlatformUnsupportedError"


@dataclass
class DuplicateSpawnError(TermdockError):
    code: ExitCode = ExitCode.DUPLICATE_SPAWN
    retry_after: float = 0.0

    kind: ClassVar[str] = "DuplicateSpawnError"


@dataclass
class AttachmentError(TermdockError):
    code: ExitCode = ExitCode.ATTACHMENT_ERROR

    kind: ClassVar[str] = "AttachmentError"


@dataclass
class NotFoundError(TermdockError):
    code: ExitCode = ExitCode.NOT_FOUND

    kind: ClassVar[str] = "NotFoundError"


@dataclass
class MultiplexerError(TermdockError):
    code: ExitCode = ExitCode.TMUX_ERROR

    kind: ClassVar[str] = "MultiplexerError"


_KIND_CODES: dict[str, ExitCode] = {
    error_type.kind: error_type.code
    for error_type in (
        ValidationError,
        RateLimitError,
        CapacityError,
        UnknownTypeError,
        PlatformUnsupportedError,
        DuplicateSpawnError,
        AttachmentError,
        NotFoundError,
        MultiplexerError,
    )
}


def exit_code_for_kind(kind: str) -> ExitCode:
    """Exit code for an error reported only by its kind name, e.g. in a spawn result."""
    return _KIND_CODES.get(kind, ExitCode.RUNTIME_ERROR)


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
