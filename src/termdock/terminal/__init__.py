"""Terminal session orchestration domain package."""

from .attachment import (
    AttachmentClosed,
    AttachmentOutput,
    ProcessAttachment,
    PtyAttachmentBackend,
    build_environment,
    build_startup_input,
)
from .models import AttachmentHandle, Terminal, TerminalConfig, TerminalSnapshot, TerminalState
from .multiplexer import PaneMetadata, SessionInfo, SessionMultiplexerClient, TmuxClient
from .recovery import ReconnectOutcome, reconnect_all, recover_sessions
from .registry import TerminalEvent, TerminalRegistry

__all__ = [
    "AttachmentClosed",
    "AttachmentHandle",
    "AttachmentOutput",
    "build_environment",
    "build_startup_input",
    "PaneMetadata",
    "ProcessAttachment",
    "PtyAttachmentBackend",
    "reconnect_all",
    "ReconnectOutcome",
    "recover_sessions",
    "SessionInfo",
    "SessionMultiplexerClient",
    "Terminal",
    "TerminalConfig",
    "TerminalEvent",
    "TerminalRegistry",
    "TerminalSnapshot",
    "TerminalState",
    "TmuxClient",
]
