"""Time provider abstractions for the decision core.

Core operations take ``now_ms`` explicitly; providers only supply the default
when a caller omits it.  :class:`ManualTimeProvider` gives tests a
deterministic clock.
"""
from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class TimeProvider(Protocol):
    """Protocol describing objects that can provide timestamps."""

    def time(self) -> float:
        """Return the current time in seconds."""

    def time_ms(self) -> int:
        """Return the current time in milliseconds."""


class RealTimeProvider:
    """Concrete :class:`TimeProvider` using :func:`time.time`."""

    def time(self) -> float:
        return time.time()

    def time_ms(self) -> int:
        return int(self.time() * 1000.0)


class ManualTimeProvider:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = int(start_ms)
        self._lock = threading.Lock()

    def time(self) -> float:
        return self.time_ms() / 1000.0

    def time_ms(self) -> int:
        with self._lock:
            return self._now_ms

    def set_ms(self, now_ms: int) -> None:
        with self._lock:
            self._now_ms = int(now_ms)

    def advance_ms(self, delta_ms: int) -> int:
        with self._lock:
            self._now_ms += max(0, int(delta_ms))
            return self._now_ms


__all__ = ["TimeProvider", "RealTimeProvider", "ManualTimeProvider"]
