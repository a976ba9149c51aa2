from __future__ import annotations

import threading

import pytest

from espa.services.control.rate_limit import RateLimiter


class _MsClock:
    def __init__(self) -> None:
        self.now = 1_000_000.0

    def __call__(self) -> float:
        return self.now


def test_fixed_window_admits_up_to_limit():
    clock = _MsClock()
    limiter = RateLimiter(max_requests=5, window_ms=60_000, clock=clock)
    remaining = [limiter.admit(("a@x.fi", "pi-1")).remaining for _ in range(5)]
    assert remaining == [4, 3, 2, 1, 0]

    clock.now += 10_500
    denied = limiter.admit(("a@x.fi", "pi-1"))
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.retry_after_seconds == 50


def test_keys_are_independent():
    limiter = RateLimiter(max_requests=1, window_ms=60_000, clock=_MsClock())
    assert limiter.admit(("a@x.fi", "pi-1")).allowed
    assert limiter.admit(("a@x.fi", "pi-2")).allowed
    assert limiter.admit(("b@x.fi", "pi-1")).allowed
    assert not limiter.admit(("a@x.fi", "pi-1")).allowed


def test_window_resets_only_after_it_elapses():
    clock = _MsClock()
    limiter = RateLimiter(max_requests=1, window_ms=1_000, clock=clock)
    assert limiter.admit("k").allowed
    clock.now += 1_000
    # boundary instant still belongs to the old window
    assert not limiter.admit("k").allowed
    clock.now += 1
    result = limiter.admit("k")
    assert result.allowed and result.remaining == 0


def test_concurrent_admissions_never_exceed_limit():
    limiter = RateLimiter(max_requests=5, window_ms=60_000)
    results: list[bool] = []
    lock = threading.Lock()

    def worker():
        allowed = limiter.admit(("a@x.fi", "pi-1")).allowed
        with lock:
            results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(40)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results.count(True) == 5


def test_invalid_limits_rejected():
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)
