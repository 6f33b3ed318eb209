# -*- coding: utf-8 -*-
"""
position_lifecycle.py
Сопровождение открытой позиции от исполнения входа до закрытия.

Движок хранит не более одного состояния на инструмент, обновляет MFE/MAE
на каждом тике и сообщает о срабатывании условия выхода. Оркестратор
выхода переводит триггер в стабильный код причины для телеметрии.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from dataclasses import replace
from typing import Dict, List, Mapping, Optional

from core_constants import MIN_HOLDING_MS
from core_models import (
    EntryExpectancySnapshot,
    ExitTrigger,
    PositionLifecycleState,
    normalize_symbol,
)
from services import monitoring

logger = logging.getLogger(__name__)


def _new_position_id() -> str:
    return f"pos-{uuid.uuid4().hex[:8]}"


class PositionLifecycleEngine:
    """Потокобезопасный реестр открытых позиций, ключ — нормализованный инструмент.

    Состояния неизменяемы; наружу отдаются сами снимки, внутри они
    заменяются через ``dataclasses.replace`` под общей блокировкой.
    """

    def __init__(self) -> None:
        self._states: Dict[str, PositionLifecycleState] = {}
        self._lock = threading.Lock()

    def on_entry_filled(
        self,
        instrument: str,
        source_tag: str,
        entry_price: float,
        qty: float,
        expectancy: EntryExpectancySnapshot,
        now_ms: int,
    ) -> str:
        """Start tracking a filled entry and return the new position id.

        A position already tracked for ``instrument`` is replaced.
        """
        key = normalize_symbol(instrument)
        state = PositionLifecycleState(
            position_id=_new_position_id(),
            source_tag=str(source_tag).lower(),
            instrument=key,
            opened_at_ms=int(now_ms),
            entry_price=float(entry_price),
            qty=float(qty),
            expected_holding_ms=max(MIN_HOLDING_MS, int(expectancy.expected_holding_ms)),
        )
        with self._lock:
            previous = self._states.get(key)
            self._states[key] = state
            monitoring.positions_open.set(len(self._states))
        if previous is not None:
            logger.warning(
                "Position %s on %s replaced by %s", previous.position_id, key, state.position_id
            )
        logger.info(
            "Opened %s %s qty=%s @ %s (expected holding %d ms)",
            state.position_id,
            key,
            state.qty,
            state.entry_price,
            state.expected_holding_ms,
        )
        return state.position_id

    def on_tick(self, instrument: str, mark_price: float, now_ms: int) -> Optional[ExitTrigger]:
        """Update excursions at ``mark_price``; return MAX_HOLDING_TIME once due."""
        key = normalize_symbol(instrument)
        mark = float(mark_price)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            if math.isfinite(mark):
                unrealized = (mark - state.entry_price) * state.qty
                if unrealized > state.mfe or unrealized < state.mae:
                    state = replace(
                        state,
                        mfe=max(state.mfe, unrealized),
                        mae=min(state.mae, unrealized),
                    )
                    self._states[key] = state
            if state.held_ms(now_ms) >= state.expected_holding_ms:
                return ExitTrigger.MAX_HOLDING_TIME
        return None

    def set_stop_loss_order_id(self, instrument: str, order_id: Optional[str]) -> None:
        """Attach (or clear with ``None``) the protective stop order; no-op without a position."""
        key = normalize_symbol(instrument)
        with self._lock:
            state = self._states.get(key)
            if state is not None:
                self._states[key] = replace(state, stop_loss_order_id=order_id)

    def has_valid_stop_loss(self, instrument: str) -> bool:
        with self._lock:
            state = self._states.get(normalize_symbol(instrument))
            return state is not None and state.stop_loss_order_id is not None

    def on_position_closed(self, instrument: str) -> Optional[PositionLifecycleState]:
        """Stop tracking ``instrument`` and return its final state."""
        key = normalize_symbol(instrument)
        with self._lock:
            state = self._states.pop(key, None)
            monitoring.positions_open.set(len(self._states))
        if state is not None:
            logger.info(
                "Closed %s %s mfe=%.4f mae=%.4f", state.position_id, key, state.mfe, state.mae
            )
        return state

    # ------------------------------------------------------------------
    def snapshot(self, instrument: str) -> Optional[PositionLifecycleState]:
        with self._lock:
            return self._states.get(normalize_symbol(instrument))

    def open_instruments(self) -> List[str]:
        with self._lock:
            return sorted(self._states)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


_REASON_CODES: Mapping[ExitTrigger, str] = {
    trigger: f"exit.{trigger.value}" for trigger in ExitTrigger
}


class ExitOrchestrator:
    """Перевод триггера выхода в стабильный код причины."""

    @staticmethod
    def decide(trigger: ExitTrigger) -> str:
        """Return ``"exit.<trigger>"``; the mapping never changes at runtime."""
        return _REASON_CODES[ExitTrigger(trigger)]

    @staticmethod
    def record(trigger: ExitTrigger) -> str:
        """Like :meth:`decide` and also count the trigger in metrics."""
        reason = ExitOrchestrator.decide(trigger)
        monitoring.exit_triggers.labels(reason).inc()
        logger.debug("Exit trigger %s", reason)
        return reason


__all__ = ["PositionLifecycleEngine", "ExitOrchestrator"]
