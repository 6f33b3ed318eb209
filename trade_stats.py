"""Recency-weighted statistics over windows of closed trades.

Every sample contributes with weight ``exp(-lambda * age_days)``, so a handful
of fresh trades can outweigh a long stale history.  The sum of weights is the
effective sample size ``n_eff`` used for confidence tiers and shrinkage.

Two readers implementing :class:`core_contracts.TradeStatsReader` live here as
well: an in-memory store for tests and embedding, and a reader over a
:class:`pandas.DataFrame` of closed trades.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
import threading
from typing import Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd

from core_errors import DataError
from core_models import TradeStatsSample, normalize_symbol
from utils.time_provider import RealTimeProvider, TimeProvider

_EPS = np.finfo(float).eps
_MS_PER_DAY = 86_400_000.0

TRADE_COLUMNS = ("source_tag", "instrument", "closed_at_ms", "pnl", "holding_ms")


def recency_weight(age_days: float, lam: float) -> float:
    """Exponential decay weight of a sample ``age_days`` old."""
    return math.exp(-max(lam, 0.0) * max(age_days, 0.0))


@dataclass(frozen=True)
class TradeStatsWindow:
    """Immutable window of historical trade outcomes."""

    samples: Tuple[TradeStatsSample, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.samples, tuple):
            object.__setattr__(self, "samples", tuple(self.samples))

    @classmethod
    def of(cls, samples: Iterable[TradeStatsSample]) -> "TradeStatsWindow":
        return cls(tuple(samples))

    def __len__(self) -> int:
        return len(self.samples)

    def is_empty(self) -> bool:
        return not self.samples

    # ------------------------------------------------------------------
    def _arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        ages = np.fromiter((s.age_days for s in self.samples), dtype=float, count=len(self.samples))
        pnl = np.fromiter((s.pnl for s in self.samples), dtype=float, count=len(self.samples))
        holding = np.fromiter(
            (s.holding_ms for s in self.samples), dtype=np.int64, count=len(self.samples)
        )
        ages = np.nan_to_num(ages, nan=0.0, posinf=0.0, neginf=0.0)
        pnl = np.nan_to_num(pnl, nan=0.0, posinf=0.0, neginf=0.0)
        return ages, pnl, holding

    def _weights(self, lam: float) -> Tuple[np.ndarray, np.ndarray]:
        ages, pnl, _ = self._arrays()
        weights = np.exp(-max(float(lam), 0.0) * np.maximum(ages, 0.0))
        return weights, pnl

    # ------------------------------------------------------------------
    def n_eff(self, lam: float) -> float:
        """Decay-weighted sample count."""
        if not self.samples:
            return 0.0
        weights, _ = self._weights(lam)
        return float(weights.sum())

    def weighted_win_loss(self, lam: float) -> Tuple[float, float]:
        """Weighted counts of winning and losing trades; flat trades count as neither."""
        if not self.samples:
            return 0.0, 0.0
        weights, pnl = self._weights(lam)
        return float(weights[pnl > 0.0].sum()), float(weights[pnl < 0.0].sum())

    def weighted_tail_events(self, lam: float, loss_threshold: float) -> Tuple[float, float]:
        """Weighted counts of tail losses (``pnl <= -threshold``) and of all losses."""
        if not self.samples:
            return 0.0, 0.0
        weights, pnl = self._weights(lam)
        losses = pnl < 0.0
        tail = losses & (pnl <= -abs(loss_threshold))
        return float(weights[tail].sum()), float(weights[losses].sum())

    def weighted_avg_win_loss(self, lam: float) -> Tuple[float, float]:
        """Weighted mean win and mean absolute loss; ``0.0`` when absent."""
        if not self.samples:
            return 0.0, 0.0
        weights, pnl = self._weights(lam)
        wins = pnl > 0.0
        losses = pnl < 0.0
        win_w = float(weights[wins].sum())
        loss_w = float(weights[losses].sum())
        avg_win = float((pnl[wins] * weights[wins]).sum() / win_w) if win_w > _EPS else 0.0
        avg_loss = (
            float((np.abs(pnl[losses]) * weights[losses]).sum() / loss_w) if loss_w > _EPS else 0.0
        )
        return avg_win, avg_loss

    def median_holding_ms(self) -> int:
        """Upper median of holding durations; ``0`` for an empty window."""
        if not self.samples:
            return 0
        _, _, holding = self._arrays()
        ordered = np.sort(holding)
        return int(ordered[len(ordered) // 2])

    def q05_loss_abs(self) -> float:
        """5th-percentile-rank absolute loss (small losses first); ``0.0`` if no losses."""
        _, pnl, _ = self._arrays()
        losses = np.sort(np.abs(pnl[pnl < 0.0]))
        if losses.size == 0:
            return 0.0
        idx = min(int(math.floor(losses.size * 0.05)), losses.size - 1)
        return float(losses[idx])

    def timeout_fraction(self, threshold_ms: int) -> float | None:
        """Share of trades held longer than ``threshold_ms``; ``None`` when empty."""
        if not self.samples:
            return None
        _, _, holding = self._arrays()
        return float(np.count_nonzero(holding > int(threshold_ms)) / holding.size)


# ---------------------------------------------------------------------------
# Readers


def _take_recent(samples: Sequence[TradeStatsSample], lookback: int) -> TradeStatsWindow:
    ordered = sorted(samples, key=lambda s: s.age_days)
    return TradeStatsWindow(tuple(ordered[: max(1, int(lookback))]))


class InMemoryTradeStatsReader:
    """Thread-safe in-memory trade history.

    The global window spans every strategy and instrument.
    """

    def __init__(self) -> None:
        self._records: List[Tuple[str, str, TradeStatsSample]] = []
        self._lock = threading.Lock()

    def add(self, source_tag: str, instrument: str, sample: TradeStatsSample) -> None:
        with self._lock:
            self._records.append((str(source_tag).lower(), normalize_symbol(instrument), sample))

    def add_trade(
        self,
        source_tag: str,
        instrument: str,
        pnl: float,
        *,
        holding_ms: int = 0,
        age_days: float = 0.0,
    ) -> None:
        self.add(source_tag, instrument, TradeStatsSample(age_days, pnl, holding_ms))

    def load_local_stats(self, source_tag: str, instrument: str, lookback: int) -> TradeStatsWindow:
        tag = str(source_tag).lower()
        key = normalize_symbol(instrument)
        with self._lock:
            samples = [s for t, i, s in self._records if t == tag and i == key]
        return _take_recent(samples, lookback)

    def load_global_stats(self, source_tag: str, lookback: int) -> TradeStatsWindow:
        with self._lock:
            samples = [s for _, _, s in self._records]
        return _take_recent(samples, lookback)


class DataFrameTradeStatsReader:
    """Reader over a frame of closed trades.

    Expected columns: ``source_tag``, ``instrument``, ``closed_at_ms``,
    ``pnl`` and ``holding_ms``.  Sample ages are measured against
    ``time_provider`` at read time.  The global window spans every strategy.
    """

    def __init__(self, trades: pd.DataFrame, *, time_provider: TimeProvider | None = None) -> None:
        missing = [c for c in TRADE_COLUMNS if c not in trades.columns]
        if missing:
            raise DataError(f"trades frame is missing columns: {missing}")
        df = trades.loc[:, list(TRADE_COLUMNS)].copy()
        df["source_tag"] = df["source_tag"].astype(str).str.lower()
        df["instrument"] = df["instrument"].astype(str).str.strip().str.upper()
        df["closed_at_ms"] = pd.to_numeric(df["closed_at_ms"], errors="coerce")
        df["pnl"] = pd.to_numeric(df["pnl"], errors="coerce")
        df["holding_ms"] = pd.to_numeric(df["holding_ms"], errors="coerce").fillna(0)
        df = df.dropna(subset=["closed_at_ms", "pnl"])
        self._df = df.sort_values("closed_at_ms", ascending=False, kind="mergesort").reset_index(
            drop=True
        )
        self._time = time_provider or RealTimeProvider()

    def _window(self, frame: pd.DataFrame, lookback: int) -> TradeStatsWindow:
        recent = frame.head(max(1, int(lookback)))
        if recent.empty:
            return TradeStatsWindow()
        now_ms = float(self._time.time_ms())
        ages = ((now_ms - recent["closed_at_ms"].to_numpy(dtype=float)) / _MS_PER_DAY).clip(min=0.0)
        return TradeStatsWindow(
            tuple(
                TradeStatsSample(age_days=float(age), pnl=float(pnl), holding_ms=int(hold))
                for age, pnl, hold in zip(
                    ages,
                    recent["pnl"].to_numpy(dtype=float),
                    recent["holding_ms"].to_numpy(dtype=np.int64),
                )
            )
        )

    def load_local_stats(self, source_tag: str, instrument: str, lookback: int) -> TradeStatsWindow:
        df = self._df
        mask = (df["source_tag"] == str(source_tag).lower()) & (
            df["instrument"] == str(instrument).strip().upper()
        )
        return self._window(df[mask], lookback)

    def load_global_stats(self, source_tag: str, lookback: int) -> TradeStatsWindow:
        return self._window(self._df, lookback)


__all__ = [
    "TRADE_COLUMNS",
    "recency_weight",
    "TradeStatsWindow",
    "InMemoryTradeStatsReader",
    "DataFrameTradeStatsReader",
]
