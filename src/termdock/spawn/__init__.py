"""Validated terminal creation: type table, admission control and the spawn gateway."""

from .gateway import PixelSize, SpawnGateway, SpawnRequest, SpawnResult
from .limits import DedupGuard, RateWindow, SpawnHistory, SpawnRecord
from .types import TERMINAL_TYPES, TerminalTypeConfig, TypeHandler, build_handlers

__all__ = [
    "build_handlers",
    "DedupGuard",
    "PixelSize",
    "RateWindow",
    "SpawnGateway",
    "SpawnHistory",
    "SpawnRecord",
    "SpawnRequest",
    "SpawnResult",
    "TERMINAL_TYPES",
    "TerminalTypeConfig",
    "TypeHandler",
]
