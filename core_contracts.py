# -*- coding: utf-8 -*-
"""
core_contracts.py
Единые интерфейсы (контракты) между ядром и внешними компонентами.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from trade_stats import TradeStatsWindow


@runtime_checkable
class TickSink(Protocol):
    """
    Входящий канал воркера стратегии.
    ``put_nowait`` не блокирует; при переполнении бросает ``queue.Full``
    или ``asyncio.QueueFull``. Подходят ``queue.Queue`` и
    :class:`services.tick_channel.TickChannel`. ``asyncio.Queue`` годится
    только если рассылка идёт из потока её event loop; из других потоков
    её нужно обернуть в :class:`services.tick_channel.LoopQueueSink`.
    """

    def put_nowait(self, item: Any) -> None:
        ...


@runtime_checkable
class TradeStatsReader(Protocol):
    """
    Источник истории закрытых сделок (только чтение).
    При отсутствии истории возвращает пустое окно, а не частичные данные.
    Ошибки хранилища пробрасываются вызывающему без подмены.
    Реализации: InMemoryTradeStatsReader, DataFrameTradeStatsReader.
    """

    def load_local_stats(self, source_tag: str, instrument: str, lookback: int) -> TradeStatsWindow:
        ...

    def load_global_stats(self, source_tag: str, lookback: int) -> TradeStatsWindow:
        ...


__all__ = ["TickSink", "TradeStatsReader"]
