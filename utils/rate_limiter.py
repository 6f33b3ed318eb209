from __future__ import annotations

from dataclasses import dataclass, field
import threading

from core_constants import RATE_WINDOW_MS
from core_models import RateBudgetSnapshot


@dataclass
class FixedWindowCounter:
    """Fixed-window admission counter.

    Parameters
    ----------
    capacity:
        Maximum number of grants per window.  Values below ``1`` are raised
        to ``1``.
    window_ms:
        Window length in milliseconds.  Non-positive values fall back to
        :data:`core_constants.RATE_WINDOW_MS`.

    The window restarts lazily on the first :meth:`try_acquire` at or after
    ``window_start_ms + window_ms``.  Up to ``2 * capacity`` grants may land
    around a window edge.
    """

    capacity: int
    window_ms: int = RATE_WINDOW_MS
    window_start_ms: int | None = None
    _count: int = field(default=0, init=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self.capacity = max(1, int(self.capacity))
        self.window_ms = int(self.window_ms)
        if self.window_ms <= 0:
            self.window_ms = RATE_WINDOW_MS

    def _roll(self, now_ms: int) -> None:
        if self.window_start_ms is None or now_ms - self.window_start_ms >= self.window_ms:
            self.window_start_ms = now_ms
            self._count = 0

    def try_acquire(self, now_ms: int) -> bool:
        """Grant one unit if the current window has room.

        Check and increment happen under one lock, so concurrent callers can
        never overshoot ``capacity``.
        """
        now_ms = int(now_ms)
        with self._lock:
            self._roll(now_ms)
            if self._count >= self.capacity:
                return False
            self._count += 1
            return True

    def snapshot(self, now_ms: int) -> RateBudgetSnapshot:
        """Return usage without touching the counter.

        A window that has already expired reports ``used=0``.
        """
        now_ms = int(now_ms)
        with self._lock:
            start = self.window_start_ms
            if start is None or now_ms - start >= self.window_ms:
                return RateBudgetSnapshot(used=0, limit=self.capacity, reset_in_ms=0)
            return RateBudgetSnapshot(
                used=self._count,
                limit=self.capacity,
                reset_in_ms=max(0, start + self.window_ms - now_ms),
            )

    def reset(self) -> None:
        """Reset internal counters and timers."""
        with self._lock:
            self._count = 0
            self.window_start_ms = None


__all__ = ["FixedWindowCounter"]
