"""Per (user, device) fixed-window command counter.

State is process local; losing it on restart only relaxes limits for one
window.  A burst straddling a window boundary can get up to twice the limit
through.
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Hashable

__all__ = ["AdmitResult", "RateLimiter"]


@dataclass(slots=True, frozen=True)
class AdmitResult:
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


@dataclass(slots=True)
class _Window:
    count: int
    reset_at_ms: float


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    # expired windows are swept once the map grows beyond this
    _SWEEP_THRESHOLD = 10_000

    def __init__(
        self,
        *,
        max_requests: int = 5,
        window_ms: int = 60_000,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if max_requests < 1 or window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")
        self._max = max_requests
        self._window_ms = window_ms
        self._clock = clock or _monotonic_ms
        self._windows: dict[Hashable, _Window] = {}
        self._lock = threading.Lock()

    def admit(self, key: Hashable) -> AdmitResult:
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now > window.reset_at_ms:
                if len(self._windows) >= self._SWEEP_THRESHOLD:
                    self._sweep(now)
                self._windows[key] = _Window(count=1, reset_at_ms=now + self._window_ms)
                return AdmitResult(allowed=True, remaining=self._max - 1)
            if window.count < self._max:
                window.count += 1
                return AdmitResult(allowed=True, remaining=self._max - window.count)
            retry = math.ceil((window.reset_at_ms - now) / 1000)
            return AdmitResult(allowed=False, remaining=0, retry_after_seconds=max(retry, 0))

    def _sweep(self, now: float) -> None:
        for key in [k for k, w in self._windows.items() if now > w.reset_at_ms]:
            del self._windows[key]
