"""Bounded worker inbox with backpressure handling.

The inbox holds at most ``queue_size`` ticks.  When it is full, new items are
dropped according to ``drop_policy``:

``"newest"``  – drop the incoming item (``put_nowait`` raises
:class:`queue.Full`).

``"oldest"``  – remove the oldest queued item and enqueue the new one.

Producers never wait.  Consumers block in :meth:`get` until an item arrives,
the timeout expires, or the channel is closed.
"""
from __future__ import annotations

import asyncio
from collections import deque
import logging
import queue
import threading
from typing import Any, Deque

from core_config import DispatchConfig
from core_constants import DROP_NEWEST, DROP_OLDEST

from . import monitoring

logger = logging.getLogger(__name__)


class TickChannel:
    """Thread-safe bounded inbox for one strategy worker."""

    def __init__(self, queue_size: int, drop_policy: str = DROP_NEWEST) -> None:
        """Create a new inbox.

        Parameters
        ----------
        queue_size:
            Maximum number of queued items; values below ``1`` become ``1``.
        drop_policy:
            ``"newest"`` or ``"oldest"``.  Historical aliases
            ``"drop_newest"`` and ``"drop_oldest"`` are also accepted.
        """

        if drop_policy not in {DROP_OLDEST, DROP_NEWEST, "drop_oldest", "drop_newest"}:
            raise ValueError("drop_policy must be 'oldest' or 'newest'")
        self._drop_oldest = drop_policy in {DROP_OLDEST, "drop_oldest"}
        self._maxsize = max(1, int(queue_size))
        self._items: Deque[Any] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    @classmethod
    def from_config(cls, cfg: DispatchConfig) -> "TickChannel":
        return cls(cfg.queue_size, cfg.drop_policy)

    # ------------------------------------------------------------------
    def put_nowait(self, item: Any) -> None:
        """Enqueue ``item`` honoring the drop policy; never blocks.

        Raises :class:`queue.Full` when the item itself is dropped: the inbox
        is full under ``"newest"`` or the channel is closed.
        """

        with self._cond:
            if self._closed:
                self.dropped += 1
                monitoring.channel_dropped.inc()
                raise queue.Full
            if len(self._items) >= self._maxsize:
                self.dropped += 1
                monitoring.channel_dropped.inc()
                if not self._drop_oldest:
                    raise queue.Full
                self._items.popleft()
            self._items.append(item)
            self._cond.notify()

    def offer(self, item: Any) -> bool:
        """Like :meth:`put_nowait` but returns ``False`` instead of raising."""
        try:
            self.put_nowait(item)
        except queue.Full:
            return False
        return True

    # ------------------------------------------------------------------
    def get(self, timeout: float | None = None) -> Any:
        """Return the next item, or ``None`` on timeout or after :meth:`close`."""

        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout):
                return None
            if self._items:
                return self._items.popleft()
            return None

    def get_nowait(self) -> Any:
        """Return the next item or raise :class:`queue.Empty`."""
        with self._cond:
            if not self._items:
                raise queue.Empty
            return self._items.popleft()

    def drain(self) -> list[Any]:
        """Remove and return everything currently queued."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            return items

    @property
    def depth(self) -> int:
        """Current number of queued items."""

        with self._cond:
            return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    def close(self) -> None:
        """Signal that no more items will be published.

        Items already queued stay readable; blocked consumers wake up.
        """

        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __enter__(self) -> "TickChannel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class LoopQueueSink:
    """Hand ticks from dispatcher threads to an ``asyncio.Queue`` on its loop.

    ``asyncio.Queue`` is not thread-safe: a ``put_nowait`` from a foreign
    thread does not wake a consumer awaiting ``get()``.  This adapter schedules
    the put on ``loop`` with ``call_soon_threadsafe``.  Overflow is detected on
    the loop, after dispatch has returned, so it is only visible in
    :attr:`dropped` and the ``channel_dropped`` metric.
    """

    def __init__(self, target: "asyncio.Queue[Any]", loop: asyncio.AbstractEventLoop) -> None:
        self._queue = target
        self._loop = loop
        self._lock = threading.Lock()
        self.dropped = 0

    def _count_drop(self) -> None:
        with self._lock:
            self.dropped += 1
        monitoring.channel_dropped.inc()

    def put_nowait(self, item: Any) -> None:
        """Schedule ``item`` on the loop; raises :class:`queue.Full` if the loop is closed."""
        try:
            self._loop.call_soon_threadsafe(self._deliver, item)
        except RuntimeError:
            self._count_drop()
            raise queue.Full from None

    def _deliver(self, item: Any) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._count_drop()
            logger.debug("Loop queue full, dropped %r", item)


__all__ = ["TickChannel", "LoopQueueSink"]
