# -*- coding: utf-8 -*-
"""Entry expectancy estimation.

Two modes produce an :class:`core_models.EntryExpectancySnapshot`:

* historical – recency-weighted Beta-binomial posterior over the strategy's
  closed trades on the instrument, shrunk toward the global window when the
  local history is thin (:class:`EvEstimator`);
* forward-static – fixed stop-loss / reward-to-risk bracket and a caller
  supplied win probability (:func:`estimate_forward_expectancy`).

Both modes always return a snapshot whose probabilities lie in ``[0, 1]`` and
whose expected holding is at least one millisecond.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from core_config import EvEstimatorConfig, ForwardEvConfig
from core_constants import (
    EV_MODEL_FORWARD_RR,
    MIN_HOLDING_MS,
    NO_HISTORY_TIMEOUT_PROB,
    PROB_MODEL_FORWARD_STATIC,
)
from core_contracts import TradeStatsReader
from core_models import ConfidenceLevel, EntryExpectancySnapshot, ProbabilitySnapshot
from services import monitoring
from trade_stats import TradeStatsWindow

logger = logging.getLogger(__name__)

_DENOM_FLOOR = 1e-9


def _finite(value: float | None, default: float = 0.0) -> float:
    try:
        v = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return v if math.isfinite(v) else default


def _clamp01(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def posterior_win_prob(
    window: TradeStatsWindow, recency_lambda: float, prior_a: float, prior_b: float
) -> float:
    """Posterior mean ``(a + wins) / (a + b + wins + losses)`` with weighted counts."""
    wins, losses = window.weighted_win_loss(recency_lambda)
    return _clamp01((prior_a + wins) / max(prior_a + prior_b + wins + losses, _DENOM_FLOOR))


def posterior_tail_prob(
    window: TradeStatsWindow,
    recency_lambda: float,
    loss_threshold: float,
    prior_a: float,
    prior_b: float,
) -> float:
    """Posterior probability that a loss exceeds ``loss_threshold``."""
    tail, losses = window.weighted_tail_events(recency_lambda, loss_threshold)
    return _clamp01((prior_a + tail) / max(prior_a + prior_b + losses, _DENOM_FLOOR))


def timeout_prob(window: TradeStatsWindow, threshold_ms: int) -> float:
    """Share of trades held past ``threshold_ms``; 0.5 without history."""
    fraction = window.timeout_fraction(threshold_ms)
    return NO_HISTORY_TIMEOUT_PROB if fraction is None else fraction


def confidence_from_n_eff(n_eff: float, low: float = 20.0, high: float = 80.0) -> ConfidenceLevel:
    """Map an effective sample size onto a confidence tier."""
    if low > high:
        low, high = high, low
    if n_eff >= high:
        return ConfidenceLevel.HIGH
    if n_eff >= low:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class EvEstimator:
    """Historical-stats expectancy estimator.

    Parameters
    ----------
    cfg:
        Priors, decay, shrinkage and penalty settings.
    reader:
        Source of local (strategy × instrument) and global trade windows.
    lookback:
        Number of most recent trades per window; defaults to ``cfg.lookback``.
        Values below ``1`` become ``1``.
    """

    def __init__(
        self,
        cfg: EvEstimatorConfig,
        reader: TradeStatsReader,
        lookback: Optional[int] = None,
    ) -> None:
        self.cfg = cfg
        self.reader = reader
        self.lookback = max(1, int(cfg.lookback if lookback is None else lookback))

    def _load(self, source_tag: str, instrument: str) -> tuple[TradeStatsWindow, TradeStatsWindow]:
        try:
            local = self.reader.load_local_stats(source_tag, instrument, self.lookback)
            global_ = self.reader.load_global_stats(source_tag, self.lookback)
        except Exception:
            monitoring.ev_estimate_failures.inc()
            logger.warning(
                "Trade stats unavailable for %s/%s", source_tag, instrument, exc_info=True
            )
            raise
        return local, global_

    def estimate_entry_expectancy(
        self, source_tag: str, instrument: str, now_ms: int
    ) -> EntryExpectancySnapshot:
        """Return the conservative expectancy of entering ``instrument`` now.

        Reader failures propagate unchanged; no snapshot is produced for them.
        """
        cfg = self.cfg
        local, global_ = self._load(source_tag, instrument)
        lam = cfg.recency_lambda

        p_local = posterior_win_prob(local, lam, cfg.prior_a, cfg.prior_b)
        p_global = posterior_win_prob(global_, lam, cfg.prior_a, cfg.prior_b)
        n_eff = local.n_eff(lam)
        alpha = n_eff / (n_eff + max(cfg.shrink_k, _DENOM_FLOOR))
        p_win = _clamp01(alpha * p_local + (1.0 - alpha) * p_global)

        p_tail = posterior_tail_prob(
            local, lam, cfg.loss_threshold, cfg.tail_prior_a, cfg.tail_prior_b
        )
        p_timeout = timeout_prob(local, cfg.timeout_ms_default)
        avg_win, avg_loss = local.weighted_avg_win_loss(lam)
        q05_loss = local.q05_loss_abs()

        ev = p_win * avg_win - (1.0 - p_win) * avg_loss - cfg.fee_slippage_penalty
        ev_conservative = ev - cfg.gamma_tail_penalty * p_tail * q05_loss

        median = local.median_holding_ms()
        expected_holding = median if median > 0 else cfg.timeout_ms_default
        expected_holding = max(MIN_HOLDING_MS, int(expected_holding))

        confidence = confidence_from_n_eff(n_eff, cfg.confidence_low, cfg.confidence_high)
        logger.debug(
            "EV %s/%s: p_win=%.4f n_eff=%.2f alpha=%.3f ev=%.4f conf=%s",
            source_tag,
            instrument,
            p_win,
            n_eff,
            alpha,
            ev_conservative,
            confidence.value,
        )
        monitoring.ev_estimates.labels(cfg.ev_model_version).inc()
        return EntryExpectancySnapshot(
            expected_return=float(ev_conservative),
            expected_holding_ms=expected_holding,
            worst_case_loss=float(q05_loss),
            fee_slippage_penalty=float(cfg.fee_slippage_penalty),
            probability=ProbabilitySnapshot(
                p_win=p_win,
                p_tail_loss=p_tail,
                p_timeout_exit=_clamp01(p_timeout),
                n_eff=float(n_eff),
                confidence=confidence,
                prob_model_version=cfg.prob_model_version,
            ),
            ev_model_version=cfg.ev_model_version,
            computed_at_ms=int(now_ms),
        )


def estimate_forward_expectancy(
    entry_price: float,
    qty: float,
    p_win: float,
    now_ms: int,
    *,
    stop_loss_pct: Optional[float] = None,
    target_rr: Optional[float] = None,
    fee_slippage_penalty: float = 0.0,
    max_holding_ms: Optional[int] = None,
    cfg: Optional[ForwardEvConfig] = None,
) -> EntryExpectancySnapshot:
    """Expectancy of a fixed stop-loss / take-profit bracket.

    ``risk = entry_price * stop_loss_pct * |qty|`` and ``reward = risk *
    target_rr``.  Omitted bracket parameters come from ``cfg``.  Non-finite
    inputs are read as ``0`` and every input is clamped to its valid range.

    Entry 100, qty 1, 1% stop, RR 2 and p_win 0.6 give risk 1, reward 2 and
    an expected return of 0.8.
    """
    cfg = cfg or ForwardEvConfig()
    entry = max(_finite(entry_price), 0.0)
    size = abs(_finite(qty))
    sl = max(_finite(cfg.stop_loss_pct if stop_loss_pct is None else stop_loss_pct), 0.0)
    rr = max(_finite(cfg.target_rr if target_rr is None else target_rr), 0.0)
    p = _clamp01(_finite(p_win))
    penalty = _finite(fee_slippage_penalty)
    holding = _finite(cfg.max_holding_ms if max_holding_ms is None else max_holding_ms)
    holding_ms = max(MIN_HOLDING_MS, int(holding))

    risk = entry * sl * size
    reward = risk * rr
    raw_ev = p * reward - (1.0 - p) * risk
    monitoring.ev_estimates.labels(EV_MODEL_FORWARD_RR).inc()
    return EntryExpectancySnapshot(
        expected_return=raw_ev - penalty,
        expected_holding_ms=holding_ms,
        worst_case_loss=risk,
        fee_slippage_penalty=penalty,
        probability=ProbabilitySnapshot(
            p_win=p,
            p_tail_loss=1.0 - p,
            p_timeout_exit=NO_HISTORY_TIMEOUT_PROB,
            n_eff=0.0,
            confidence=ConfidenceLevel.LOW,
            prob_model_version=PROB_MODEL_FORWARD_STATIC,
        ),
        ev_model_version=EV_MODEL_FORWARD_RR,
        computed_at_ms=int(now_ms),
    )


__all__ = [
    "EvEstimator",
    "estimate_forward_expectancy",
    "posterior_win_prob",
    "posterior_tail_prob",
    "timeout_prob",
    "confidence_from_n_eff",
]
