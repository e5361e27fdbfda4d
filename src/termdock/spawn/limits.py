"""Admission control for spawn requests: rolling rate window, dedup keys, bounded history."""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone

from termdock.errors import DuplicateSpawnError, RateLimitError

Clock = Callable[[], float]


@dataclass(frozen=True)
class SpawnRecord:
    request_id: str
    terminal_id: str
    terminal_type: str
    platform: str
    timestamp: float
    duration: float
    success: bool = True
    error: str = ""
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, object]:
        return {
            "request_id": self.request_id,
            "terminal_id": self.terminal_id,
            "terminal_type": self.terminal_type,
            "platform": self.platform,
            "duration": round(self.duration, 4),
            "success": self.success,
            "error": self.error,
            "recorded_at": self.recorded_at.isoformat(),
        }


class RateWindow:
    """Rolling log of accepted spawn timestamps."""

    def __init__(self, limit: int, window_seconds: float = 60.0, *, clock: Clock = time.monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._accepted: deque[float] = deque()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._accepted and self._accepted[0] <= cutoff:
            self._accepted.popleft()

    def check(self) -> None:
        now = self._clock()
        self._prune(now)
        if len(self._accepted) < self.limit:
            return
        retry_after = max(1, math.ceil(self._accepted[0] + self.window_seconds - now))
        raise RateLimitError(
            f"Rate limit exceeded. Maximum {self.limit} spawns per {self.window_seconds:g} seconds.",
            hint=f"Retry in {retry_after} seconds.",
            retry_after=retry_after,
        )

    def record(self) -> float:
        now = self._clock()
        self._prune(now)
        self._accepted.append(now)
        return now

    def reserve(self) -> float:
        """Check the ceiling and take a slot in one step; returns the slot for :meth:`release`."""
        self.check()
        return self.record()

    def release(self, slot: float) -> None:
        with suppress(ValueError):
            self._accepted.remove(slot)

    def count(self) -> int:
        self._prune(self._clock())
        return len(self._accepted)

    def remaining(self) -> int:
        return max(0, self.limit - self.count())


@dataclass
class _DedupEntry:
    expires_at: float
    terminal_id: str | None = None


class DedupGuard:
    """Suppresses identical spawn requests issued within a short TTL.

    A key is held from the moment its spawn is admitted until the TTL lapses.
    Failed spawns release their key at once, and a key whose terminal has
    already been closed no longer blocks a new spawn.
    """

    def __init__(self, ttl_seconds: float = 5.0, *, clock: Clock = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _DedupEntry] = {}

    @staticmethod
    def key_for(terminal_type: str, name: str, session_name: str | None = None) -> str:
        if session_name:
            return f"{terminal_type}_{name}_{session_name}"
        return f"{terminal_type}_{name}"

    def _prune(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def claim(self, key: str, *, is_live: Callable[[str], bool] | None = None) -> None:
        now = self._clock()
        self._prune(now)
        entry = self._entries.get(key)
        if entry is not None:
            closed = entry.terminal_id is not None and is_live is not None and not is_live(entry.terminal_id)
            if not closed:
                remaining = max(0.0, entry.expires_at - now)
                raise DuplicateSpawnError(
                    f"Terminal spawn already in progress: {key}",
                    hint=f"Wait {remaining:.1f}s before requesting the same terminal again.",
                    retry_after=remaining,
                )
        self._entries[key] = _DedupEntry(expires_at=now + self.ttl_seconds)

    def bind(self, key: str, terminal_id: str) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.terminal_id = terminal_id

    def release(self, key: str) -> None:
        self._entries.pop(key, None)

    def active_keys(self) -> list[str]:
        self._prune(self._clock())
        return sorted(self._entries)


class SpawnHistory:
    """Bounded ring buffer of spawn outcomes."""

    def __init__(self, limit: int = 100) -> None:
        self._records: deque[SpawnRecord] = deque(maxlen=limit)

    def append(self, record: SpawnRecord) -> None:
        self._records.append(record)

    def recent(self, limit: int = 10) -> list[SpawnRecord]:
        if limit <= 0:
            return []
        return list(self._records)[-limit:]

    def count_since(self, since: float) -> int:
        return sum(1 for record in self._records if record.timestamp > since)

    def __len__(self) -> int:
        return len(self._records)
