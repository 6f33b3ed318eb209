"""Admission control for outbound exchange calls.

One global fixed-window budget plus one budget per endpoint group
(:class:`core_models.EndpointGroup`).  Every budget owns its own lock, so a
reservation against ``orders`` never waits on ``global`` or ``account``.

Denial is a normal outcome: callers skip the call or retry later.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping

from core_config import RateBudgetConfig
from core_constants import (
    GLOBAL_BUDGET_NAME,
    RATE_ENDPOINT_BUDGET_EXCEEDED,
    RATE_GLOBAL_BUDGET_EXCEEDED,
    RATE_WINDOW_MS,
)
from core_models import EndpointGroup, RateBudgetSnapshot
from utils.rate_limiter import FixedWindowCounter
from utils.time_provider import RealTimeProvider, TimeProvider

from . import monitoring


logger = logging.getLogger(__name__)


class RateBudgetGate:
    """Global and per-endpoint-group request budgets.

    Parameters
    ----------
    global_per_minute:
        Capacity of the global budget per window.
    endpoint_limits:
        Mapping of :class:`EndpointGroup` (or its string value) to capacity.
        Groups missing from the mapping get ``global_per_minute``.
    window_ms:
        Window length shared by all budgets.
    time_provider:
        Source of ``now`` when a caller does not pass ``now_ms``.
    """

    def __init__(
        self,
        global_per_minute: int,
        endpoint_limits: Mapping[EndpointGroup | str, int] | None = None,
        *,
        window_ms: int = RATE_WINDOW_MS,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self._time = time_provider or RealTimeProvider()
        self._global = FixedWindowCounter(global_per_minute, window_ms)
        limits: Dict[EndpointGroup, int] = {}
        for key, value in (endpoint_limits or {}).items():
            limits[EndpointGroup.parse(key)] = int(value)
        self._groups: Dict[EndpointGroup, FixedWindowCounter] = {
            group: FixedWindowCounter(limits.get(group, global_per_minute), window_ms)
            for group in EndpointGroup
        }

    @classmethod
    def from_config(
        cls, cfg: RateBudgetConfig, *, time_provider: TimeProvider | None = None
    ) -> "RateBudgetGate":
        return cls(
            cfg.global_per_minute,
            {group: cfg.endpoints.limit_for(group) for group in EndpointGroup},
            window_ms=cfg.window_ms,
            time_provider=time_provider,
        )

    # ------------------------------------------------------------------
    def _now(self, now_ms: int | None) -> int:
        return int(self._time.time_ms() if now_ms is None else now_ms)

    @staticmethod
    def _record(name: str, counter: FixedWindowCounter, granted: bool, reason: str, now_ms: int) -> None:
        if granted:
            monitoring.rate_budget_granted.labels(name).inc()
        else:
            monitoring.rate_budget_denied.labels(name, reason).inc()
            logger.debug("Rate budget %s exhausted (%s)", name, reason)
        monitoring.rate_budget_used.labels(name).set(counter.snapshot(now_ms).used)

    # ------------------------------------------------------------------
    def reserve_rate_budget(self, now_ms: int | None = None) -> bool:
        """Reserve one unit of the global budget.  Never blocks or retries."""
        now = self._now(now_ms)
        granted = self._global.try_acquire(now)
        self._record(GLOBAL_BUDGET_NAME, self._global, granted, RATE_GLOBAL_BUDGET_EXCEEDED, now)
        return granted

    def reserve_endpoint_budget(
        self, group: EndpointGroup | str, now_ms: int | None = None
    ) -> bool:
        """Reserve one unit of ``group``'s budget, independent of all others."""
        group = EndpointGroup.parse(group)
        counter = self._groups[group]
        now = self._now(now_ms)
        granted = counter.try_acquire(now)
        self._record(group.value, counter, granted, RATE_ENDPOINT_BUDGET_EXCEEDED, now)
        return granted

    def endpoint_budget_snapshot(
        self, group: EndpointGroup | str, now_ms: int | None = None
    ) -> RateBudgetSnapshot:
        """Return ``{used, limit, reset_in_ms}`` for ``group`` without mutating it."""
        return self._groups[EndpointGroup.parse(group)].snapshot(self._now(now_ms))

    def rate_budget_snapshot(self, now_ms: int | None = None) -> RateBudgetSnapshot:
        """Return ``{used, limit, reset_in_ms}`` for the global budget."""
        return self._global.snapshot(self._now(now_ms))


__all__ = ["RateBudgetGate"]
