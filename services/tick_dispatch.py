# -*- coding: utf-8 -*-
"""Маршрутизация тиков к стратегиям-воркерам.

Registry of strategy workers keyed by instrument.  Each tick is fanned out to
every worker registered for its symbol with a non-blocking ``put_nowait``; a
full inbox loses that one delivery (at-most-once, best effort).  A slow worker
therefore never stalls ingestion for the others.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import queue
import threading
from typing import Dict, List, Set

from core_contracts import TickSink
from core_models import Tick, normalize_symbol

from . import monitoring


logger = logging.getLogger(__name__)

_OVERFLOW = (queue.Full, asyncio.QueueFull)


@dataclass(frozen=True)
class _WorkerRegistration:
    worker_id: str
    symbol: str
    endpoint: TickSink


class StrategyWorkerRegistry:
    """Symbol → workers index with fire-and-forget tick fan-out.

    ``_workers`` (worker → registration) and ``_by_symbol`` (symbol → worker
    ids) are only mutated together under ``_lock``.
    """

    def __init__(self) -> None:
        self._workers: Dict[str, _WorkerRegistration] = {}
        self._by_symbol: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def _detach(self, worker_id: str) -> _WorkerRegistration | None:
        existing = self._workers.pop(worker_id, None)
        if existing is None:
            return None
        ids = self._by_symbol.get(existing.symbol)
        if ids is not None:
            ids.discard(worker_id)
            if not ids:
                del self._by_symbol[existing.symbol]
        return existing

    def register(self, worker_id: str, symbol: str, endpoint: TickSink) -> None:
        """Register ``worker_id`` for ``symbol``, replacing any prior registration."""
        worker_id = str(worker_id)
        key = normalize_symbol(symbol)
        with self._lock:
            previous = self._detach(worker_id)
            self._workers[worker_id] = _WorkerRegistration(worker_id, key, endpoint)
            self._by_symbol.setdefault(key, set()).add(worker_id)
            monitoring.dispatch_workers.set(len(self._workers))
        if previous is not None and previous.symbol != key:
            logger.info("Worker %s moved from %s to %s", worker_id, previous.symbol, key)
        else:
            logger.debug("Worker %s registered for %s", worker_id, key)

    def unregister(self, worker_id: str) -> None:
        """Remove ``worker_id``; unknown ids are ignored."""
        with self._lock:
            removed = self._detach(str(worker_id))
            monitoring.dispatch_workers.set(len(self._workers))
        if removed is not None:
            logger.debug("Worker %s unregistered from %s", worker_id, removed.symbol)

    # ------------------------------------------------------------------
    def dispatch(self, tick: Tick) -> int:
        """Deliver ``tick`` to every worker of its symbol.

        Returns the number of inboxes that accepted the tick.  Overflowing or
        failing inboxes are skipped; nothing here raises or waits.
        """
        key = normalize_symbol(tick.symbol)
        delivered = 0
        dropped = 0
        with self._lock:
            worker_ids = self._by_symbol.get(key)
            if not worker_ids:
                return 0
            for worker_id in sorted(worker_ids):
                registration = self._workers[worker_id]
                try:
                    registration.endpoint.put_nowait(tick)
                except _OVERFLOW:
                    dropped += 1
                    logger.debug("Inbox of %s full, dropped tick %s", worker_id, tick.trade_id)
                    continue
                except Exception:
                    dropped += 1
                    logger.warning(
                        "Inbox of %s failed, dropped tick %s", worker_id, tick.trade_id, exc_info=True
                    )
                    continue
                delivered += 1
        if delivered:
            monitoring.ticks_delivered.labels(key).inc(delivered)
        if dropped:
            monitoring.ticks_dropped.labels(key).inc(dropped)
        return delivered

    # ------------------------------------------------------------------
    def worker_ids_for_symbol(self, symbol: str) -> List[str]:
        """Return worker ids for ``symbol`` in lexical order."""
        key = normalize_symbol(symbol)
        with self._lock:
            return sorted(self._by_symbol.get(key, ()))

    def symbol_for_worker(self, worker_id: str) -> str | None:
        with self._lock:
            registration = self._workers.get(str(worker_id))
            return registration.symbol if registration is not None else None

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._by_symbol)

    def __len__(self) -> int:
        with self._lock:
            return len(self._workers)

    def __contains__(self, worker_id: object) -> bool:
        with self._lock:
            return worker_id in self._workers


__all__ = ["StrategyWorkerRegistry"]
