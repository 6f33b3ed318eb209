import math

import pandas as pd
import pytest

from core_contracts import TradeStatsReader
from core_errors import DataError
from core_models import TradeStatsSample
from trade_stats import (
    DataFrameTradeStatsReader,
    InMemoryTradeStatsReader,
    TradeStatsWindow,
    recency_weight,
)


def _window(*rows):
    return TradeStatsWindow.of(TradeStatsSample(age, pnl, hold) for age, pnl, hold in rows)


def test_recency_weight_decays_with_age():
    assert recency_weight(0.0, 0.08) == pytest.approx(1.0)
    assert recency_weight(10.0, 0.08) == pytest.approx(math.exp(-0.8))
    assert recency_weight(-3.0, 0.08) == pytest.approx(1.0)
    assert recency_weight(10.0, 0.0) == pytest.approx(1.0)


def test_empty_window_helpers():
    w = TradeStatsWindow()
    assert w.is_empty()
    assert len(w) == 0
    assert w.n_eff(0.1) == 0.0
    assert w.weighted_win_loss(0.1) == (0.0, 0.0)
    assert w.weighted_tail_events(0.1, 15.0) == (0.0, 0.0)
    assert w.weighted_avg_win_loss(0.1) == (0.0, 0.0)
    assert w.median_holding_ms() == 0
    assert w.q05_loss_abs() == 0.0
    assert w.timeout_fraction(1_000) is None


def test_weighted_counts_without_decay():
    w = _window((0, 10.0, 100), (0, -5.0, 200), (0, -20.0, 300), (0, 0.0, 400))
    assert w.n_eff(0.0) == pytest.approx(4.0)
    assert w.weighted_win_loss(0.0) == pytest.approx((1.0, 2.0))
    assert w.weighted_tail_events(0.0, 15.0) == pytest.approx((1.0, 2.0))
    assert w.weighted_avg_win_loss(0.0) == pytest.approx((10.0, 12.5))


def test_weighted_counts_with_decay():
    lam = 0.5
    w = _window((0, 10.0, 100), (2, -10.0, 100))
    wins, losses = w.weighted_win_loss(lam)
    assert wins == pytest.approx(1.0)
    assert losses == pytest.approx(math.exp(-1.0))
    assert w.n_eff(lam) == pytest.approx(1.0 + math.exp(-1.0))


def test_median_and_q05():
    w = _window((0, -1.0, 300), (0, -50.0, 100), (0, -3.0, 200), (0, 4.0, 400))
    assert w.median_holding_ms() == 300
    assert w.q05_loss_abs() == pytest.approx(1.0)


def test_timeout_fraction():
    w = _window((0, 1.0, 500), (0, 1.0, 1_500), (0, 1.0, 1_000))
    assert w.timeout_fraction(1_000) == pytest.approx(1 / 3)


def test_in_memory_reader_local_and_global(stats_reader):
    stats_reader.add_trade("Momentum", "btcusdt", 5.0, holding_ms=100, age_days=1.0)
    stats_reader.add_trade("momentum", "BTCUSDT", -2.0, holding_ms=100, age_days=0.5)
    stats_reader.add_trade("momentum", "ETHUSDT", 1.0, holding_ms=100, age_days=0.1)
    stats_reader.add_trade("meanrev", "BTCUSDT", 3.0, holding_ms=100, age_days=0.2)

    assert isinstance(stats_reader, TradeStatsReader)
    local = stats_reader.load_local_stats("MOMENTUM", " btcusdt", 10)
    assert sorted(s.pnl for s in local.samples) == [-2.0, 5.0]
    assert len(stats_reader.load_global_stats("momentum", 10)) == 4

    recent = stats_reader.load_global_stats("momentum", 2)
    assert [s.age_days for s in recent.samples] == [0.1, 0.2]


def test_in_memory_reader_no_history(stats_reader):
    assert stats_reader.load_local_stats("x", "BTCUSDT", 5).is_empty()
    assert stats_reader.load_global_stats("x", 5).is_empty()


def test_dataframe_reader_ages_and_lookback(clock):
    now = clock.time_ms()
    day = 86_400_000
    df = pd.DataFrame(
        {
            "source_tag": ["Trend", "trend", "trend", "other"],
            "instrument": ["btcusdt", "BTCUSDT", "ETHUSDT", "BTCUSDT"],
            "closed_at_ms": [now - 2 * day, now - day, now, now - 3 * day],
            "pnl": [1.0, -1.0, 2.0, "bad"],
            "holding_ms": [10, 20, 30, 40],
        }
    )
    reader = DataFrameTradeStatsReader(df, time_provider=clock)

    local = reader.load_local_stats("TREND", "btcusdt", 10)
    assert [s.age_days for s in local.samples] == pytest.approx([1.0, 2.0])
    assert [s.holding_ms for s in local.samples] == [20, 10]

    assert len(reader.load_global_stats("trend", 10)) == 3
    newest = reader.load_local_stats("trend", "BTCUSDT", 1)
    assert [s.pnl for s in newest.samples] == [-1.0]
    assert reader.load_local_stats("trend", "SOLUSDT", 5).is_empty()


def test_dataframe_reader_requires_columns():
    with pytest.raises(DataError):
        DataFrameTradeStatsReader(pd.DataFrame({"pnl": [1.0]}))
