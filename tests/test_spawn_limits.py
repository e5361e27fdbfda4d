from __future__ import annotations

import pytest

from termdock.errors import DuplicateSpawnError, ExitCode, RateLimitError
from termdock.spawn import DedupGuard, RateWindow, SpawnHistory, SpawnRecord


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _record(request_id: str, timestamp: float) -> SpawnRecord:
    return SpawnRecord(
        request_id=request_id,
        terminal_id=f"t-{request_id}",
        terminal_type="bash",
        platform="local",
        timestamp=timestamp,
        duration=0.01,
    )


def test_rate_window_retry_after_tracks_oldest_entry() -> None:
    clock = _Clock()
    window = RateWindow(2, 60, clock=clock)
    window.record()
    clock.now = 20.0
    window.record()
    clock.now = 45.5

    with pytest.raises(RateLimitError) as exc:
        window.check()

    assert exc.value.retry_after == 15
    assert exc.value.code == ExitCode.RATE_LIMITED
    assert window.remaining() == 0

    clock.now = 60.0
    window.check()
    assert window.count() == 1


def test_rate_window_retry_after_is_at_least_one_second() -> None:
    clock = _Clock()
    window = RateWindow(1, 60, clock=clock)
    window.record()
    clock.now = 59.9

    with pytest.raises(RateLimitError) as exc:
        window.check()

    assert exc.value.retry_after == 1


def test_dedup_key_shape() -> None:
    assert DedupGuard.key_for("bash", "Shell") == "bash_Shell"
    assert DedupGuard.key_for("bash", "Shell", "s1") == "bash_Shell_s1"


def test_dedup_guard_expires_keys() -> None:
    clock = _Clock()
    guard = DedupGuard(5.0, clock=clock)
    guard.claim("k")

    clock.now = 2.0
    with pytest.raises(DuplicateSpawnError) as exc:
        guard.claim("k")
    assert exc.value.retry_after == pytest.approx(3.0)
    assert guard.active_keys() == ["k"]

    clock.now = 5.0
    guard.claim("k")


def test_dedup_guard_releases_closed_terminals_only() -> None:
    guard = DedupGuard(5.0, clock=_Clock())
    guard.claim("k")
    guard.bind("k", "t1")

    with pytest.raises(DuplicateSpawnError):
        guard.claim("k", is_live=lambda terminal_id: terminal_id == "t1")
    guard.claim("k", is_live=lambda terminal_id: False)

    guard.release("k")
    assert guard.active_keys() == []


def test_spawn_history_is_bounded() -> None:
    history = SpawnHistory(limit=3)
    for index in range(5):
        history.append(_record(str(index), float(index)))

    assert len(history) == 3
    assert [record.request_id for record in history.recent(2)] == ["3", "4"]
    assert history.recent(0) == []
    assert history.count_since(2.5) == 2
    assert history.recent(10)[0].to_dict()["terminal_id"] == "t-2"


def test_rate_window_reserve_takes_slot_and_release_returns_it() -> None:
    clock = _Clock()
    window = RateWindow(1, 60, clock=clock)

    slot = window.reserve()
    with pytest.raises(RateLimitError):
        window.reserve()
    window.release(slot)
    window.release(slot)

    assert window.remaining() == 1
    window.reserve()
    assert window.count() == 1
