from __future__ import annotations

import threading

import allure
import pytest

from debate_core.jobs.rate_limit import StartRateLimiter

pytestmark = [
    allure.epic("Job Runtime"),
    allure.feature("Worker Dispatch Limits"),
]


class _Ticks:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


def test_window_admits_at_most_max_starts() -> None:
    ticks = _Ticks()
    limiter = StartRateLimiter(3, 60.0, clock=ticks)

    tokens = [limiter.try_reserve() for _ in range(4)]

    assert tokens[:3] == [100.0, 100.0, 100.0]
    assert tokens[3] is None
    assert limiter.seconds_until_available() == pytest.approx(60.0)

    ticks.value = 130.0
    assert limiter.try_reserve() is None
    assert limiter.seconds_until_available() == pytest.approx(30.0)

    ticks.value = 160.0
    assert limiter.try_reserve() == 160.0


def test_cancel_returns_slot() -> None:
    ticks = _Ticks()
    limiter = StartRateLimiter(1, 60.0, clock=ticks)
    token = limiter.try_reserve()
    assert token is not None

    limiter.cancel(token)
    limiter.cancel(token)

    assert limiter.try_reserve() == token


def test_reserve_returns_none_when_stopped() -> None:
    limiter = StartRateLimiter(1, 60.0, clock=_Ticks())
    limiter.try_reserve()
    stop_event = threading.Event()
    stop_event.set()

    assert limiter.reserve(stop_event) is None


def test_rejects_invalid_limits() -> None:
    with pytest.raises(ValueError, match="max_starts"):
        StartRateLimiter(0, 60.0)
    with pytest.raises(ValueError, match="window_seconds"):
        StartRateLimiter(1, 0)
