# -*- coding: utf-8 -*-
"""
core_models.py
Единая доменная модель ядра принятия решений торгового бота.

Содержимое:
- Перечисления: ConfidenceLevel, PositionSide, ExitTrigger, EndpointGroup.
- Рыночные данные: Tick.
- Статистика сделок и оценки ожидания: TradeStatsSample, ProbabilitySnapshot,
  EntryExpectancySnapshot.
- Бюджеты запросов: RateBudgetSnapshot.
- Жизненный цикл позиции: PositionLifecycleState.
- Утилиты сериализации: as_dict(), to_json(), normalize_symbol().

Договорённости:
- Время: int миллисекунды, поле "ts" или суффикс "_ms".
- Денежные величины: float в валюте котировки (USDT и т.п.).
- Строковые enum в JSON — значения .value соответствующих Enum.
- Все dataclass "frozen=True"; изменения состояния делаются через replace().
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any, Mapping
import json

JSONDict = Dict[str, Any]


def normalize_symbol(symbol: str) -> str:
    """Case-insensitive instrument key: ``" btcusdt "`` -> ``"BTCUSDT"``."""
    return str(symbol).strip().upper()


# =========================
# Перечисления
# =========================

class ConfidenceLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> float:
        return 1.0 if self is PositionSide.LONG else -1.0


class ExitTrigger(str, Enum):
    """Закрытый набор причин выхода из позиции."""
    STOP_LOSS_PROTECTION = "stop_loss_protection"
    MAX_HOLDING_TIME = "max_holding_time"
    RISK_DEGRADE = "risk_degrade"
    SIGNAL_REVERSAL = "signal_reversal"
    EMERGENCY_CLOSE = "emergency_close"


class EndpointGroup(str, Enum):
    """Группы биржевых эндпоинтов с независимыми бюджетами."""
    ORDERS = "orders"
    ACCOUNT = "account"
    MARKET_DATA = "market-data"

    @classmethod
    def parse(cls, value: "EndpointGroup | str") -> "EndpointGroup":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "-")
        return cls(key)


# =========================
# Рыночные данные
# =========================

@dataclass(frozen=True)
class Tick:
    """
    Сделка из потока рыночных данных. Неизменяема, поэтому один экземпляр
    можно безопасно раздавать нескольким воркерам.
    """
    symbol: str
    price: float
    qty: float
    ts: int                       # unix ms
    trade_id: int = 0
    is_buyer_maker: bool = False

    def to_dict(self) -> JSONDict:
        return as_dict(self)

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "Tick":
        return Tick(
            symbol=str(d["symbol"]),
            price=float(d["price"]),
            qty=float(d.get("qty", 0.0)),
            ts=int(d["ts"]),
            trade_id=int(d.get("trade_id", 0)),
            is_buyer_maker=bool(d.get("is_buyer_maker", False)),
        )


# =========================
# Статистика и ожидание
# =========================

@dataclass(frozen=True)
class TradeStatsSample:
    """Исход одной закрытой сделки."""
    age_days: float
    pnl: float                    # реализованный PnL в валюте котировки
    holding_ms: int

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "TradeStatsSample":
        return TradeStatsSample(
            age_days=float(d["age_days"]),
            pnl=float(d["pnl"]),
            holding_ms=int(d.get("holding_ms", 0)),
        )


@dataclass(frozen=True)
class ProbabilitySnapshot:
    p_win: float
    p_tail_loss: float
    p_timeout_exit: float
    n_eff: float
    confidence: ConfidenceLevel
    prob_model_version: str

    def to_dict(self) -> JSONDict:
        return as_dict(self)


@dataclass(frozen=True)
class EntryExpectancySnapshot:
    """
    Оценка денежного результата входа «сейчас». Один снимок на вычисление.
    """
    expected_return: float
    expected_holding_ms: int
    worst_case_loss: float
    fee_slippage_penalty: float
    probability: ProbabilitySnapshot
    ev_model_version: str
    computed_at_ms: int

    def to_dict(self) -> JSONDict:
        return as_dict(self)


# =========================
# Бюджеты запросов
# =========================

@dataclass(frozen=True)
class RateBudgetSnapshot:
    """Read-only view of a fixed-window budget."""
    used: int
    limit: int
    reset_in_ms: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


# =========================
# Жизненный цикл позиции
# =========================

@dataclass(frozen=True)
class PositionLifecycleState:
    position_id: str
    source_tag: str
    instrument: str
    opened_at_ms: int
    entry_price: float
    qty: float
    mfe: float = 0.0              # max favorable excursion, quote ccy
    mae: float = 0.0              # max adverse excursion, quote ccy
    expected_holding_ms: int = 1
    stop_loss_order_id: Optional[str] = None

    def held_ms(self, now_ms: int) -> int:
        return max(0, int(now_ms) - self.opened_at_ms)

    def to_dict(self) -> JSONDict:
        return as_dict(self)


# =========================
# Сериализация
# =========================

def as_dict(obj: Any) -> JSONDict:
    """
    Рекурсивная сериализация:
    - Enum -> value
    - dataclass -> dict
    - list/dict -> обход по элементам
    """
    def _convert(v: Any) -> Any:
        if isinstance(v, Enum):
            return v.value
        if isinstance(v, list):
            return [_convert(x) for x in v]
        if isinstance(v, dict):
            return {k: _convert(val) for k, val in v.items()}
        return v

    d = asdict(obj)
    return {k: _convert(v) for k, v in d.items()}


def to_json(obj: Any) -> str:
    """
    JSON строка с Enum как value.
    """
    return json.dumps(as_dict(obj), ensure_ascii=False, separators=(",", ":"))


__all__ = [
    "ConfidenceLevel",
    "PositionSide",
    "ExitTrigger",
    "EndpointGroup",
    "Tick",
    "TradeStatsSample",
    "ProbabilitySnapshot",
    "EntryExpectancySnapshot",
    "RateBudgetSnapshot",
    "PositionLifecycleState",
    "normalize_symbol",
    "as_dict",
    "to_json",
]
