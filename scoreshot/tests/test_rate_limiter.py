from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from scoreshot.rate_limiter import UploadRateLimiter  # noqa: E402


class _FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_allows_up_to_limit_then_blocks():
    clock = _FakeClock()
    limiter = UploadRateLimiter(limit=3, window_seconds=60, clock=clock)

    decisions = [limiter.check("user:alice") for _ in range(4)]

    assert [decision.allowed for decision in decisions] == [True, True, True, False]
    assert [decision.remaining for decision in decisions] == [2, 1, 0, 0]
    assert decisions[-1].reset_at == 1060.0


def test_window_resets_after_expiry():
    clock = _FakeClock()
    limiter = UploadRateLimiter(limit=1, window_seconds=60, clock=clock)

    assert limiter.check("host:10.0.0.1").allowed is True
    assert limiter.check("host:10.0.0.1").allowed is False

    clock.now += 61
    decision = limiter.check("host:10.0.0.1")
    assert decision.allowed is True
    assert decision.reset_at == 1121.0


def test_keys_are_counted_independently():
    limiter = UploadRateLimiter(limit=1, window_seconds=60, clock=_FakeClock())

    assert limiter.check("user:alice").allowed is True
    assert limiter.check("user:bob").allowed is True
    assert limiter.check("user:alice").allowed is False


def test_sweep_drops_only_expired_windows():
    clock = _FakeClock()
    limiter = UploadRateLimiter(limit=5, window_seconds=60, clock=clock)
    limiter.check("user:alice")
    clock.now += 30
    limiter.check("user:bob")

    clock.now += 31
    assert limiter.sweep() == 1
    assert len(limiter) == 1


def test_check_drops_expired_windows_without_explicit_sweep():
    clock = _FakeClock()
    limiter = UploadRateLimiter(limit=5, window_seconds=60, sweep_interval_seconds=300, clock=clock)

    for index in range(5000):
        limiter.check(f"host:10.0.{index // 256}.{index % 256}")
        clock.now += 61

    # At most one sweep interval's worth of windows can be pending.
    assert len(limiter) <= 300 // 61 + 2


def test_check_sweeps_at_most_once_per_interval():
    clock = _FakeClock()
    limiter = UploadRateLimiter(limit=5, window_seconds=10, sweep_interval_seconds=300, clock=clock)
    limiter.check("user:alice")
    clock.now += 20
    limiter.check("user:bob")

    assert len(limiter) == 2

    clock.now += 290
    limiter.check("user:carol")

    assert len(limiter) == 1


@pytest.mark.parametrize(
    ("limit", "window_seconds", "sweep_interval_seconds"),
    [(0, 60, 300), (5, 0, 300), (-1, 60, 300), (5, 60, 0)],
)
def test_rejects_non_positive_configuration(limit, window_seconds, sweep_interval_seconds):
    with pytest.raises(ValueError):
        UploadRateLimiter(
            limit=limit,
            window_seconds=window_seconds,
            sweep_interval_seconds=sweep_interval_seconds,
        )


def test_from_env_falls_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("SCORESHOT_UPLOAD_RATE_LIMIT", "0")
    monkeypatch.setenv("SCORESHOT_UPLOAD_RATE_WINDOW_SECONDS", "900")

    limiter = UploadRateLimiter.from_env()

    assert limiter.limit == 10
    assert limiter.window_seconds == 900
