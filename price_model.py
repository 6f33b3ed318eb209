"""Closed-form expectancy from a normal log-return model.

``YNormal(mu, sigma)`` describes the log return ``y = ln(P_T / P_0)`` over the
expected holding horizon.  For small horizons the PnL of a position of size
``qty`` opened at ``p0`` is approximately ``side * qty * p0 * y``, which gives

* spot:     ``ev = qty * p0 * side * mu - (fee + slippage + borrow)``
* futures:  the same scaled by the contract multiplier, with funding and a
  liquidation-risk penalty added to costs

and ``ev_std = qty * p0 * sigma`` (times the multiplier for futures).  The win
probability is ``P(side * y > 0) = Phi(side * mu / sigma)``.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from statistics import NormalDist

from core_constants import (
    EV_MODEL_Y_NORMAL,
    MIN_HOLDING_MS,
    NO_HISTORY_TIMEOUT_PROB,
    PROB_MODEL_Y_NORMAL,
)
from core_models import (
    ConfidenceLevel,
    EntryExpectancySnapshot,
    PositionSide,
    ProbabilitySnapshot,
)

_EPS = 1e-12
_STD_NORMAL = NormalDist()


@dataclass(frozen=True)
class YNormal:
    mu: float
    sigma: float


@dataclass(frozen=True)
class SpotEvInputs:
    p0: float
    qty: float
    side: PositionSide = PositionSide.LONG
    fee: float = 0.0
    slippage: float = 0.0
    borrow: float = 0.0


@dataclass(frozen=True)
class FuturesEvInputs:
    p0: float
    qty: float
    multiplier: float = 1.0
    side: PositionSide = PositionSide.LONG
    fee: float = 0.0
    slippage: float = 0.0
    funding: float = 0.0
    liq_risk: float = 0.0


@dataclass(frozen=True)
class EvStats:
    """Mean, standard deviation and win probability of the position PnL."""

    ev: float = 0.0
    ev_std: float = 0.0
    p_win: float = 0.0


def _finite(value: float) -> float:
    v = float(value)
    return v if math.isfinite(v) else 0.0


def normal_cdf(x: float) -> float:
    """Standard normal CDF."""
    return _STD_NORMAL.cdf(x)


def _p_win(signed_mu: float, sigma: float) -> float:
    if sigma <= _EPS:
        if signed_mu > 0.0:
            return 1.0
        if signed_mu < 0.0:
            return 0.0
        return 0.5
    return min(max(normal_cdf(signed_mu / sigma), 0.0), 1.0)


def _ev_stats(y: YNormal, notional: float, sign: float, cost: float) -> EvStats:
    mu = _finite(y.mu)
    sigma = max(_finite(y.sigma), 0.0)
    signed_mu = sign * mu
    return EvStats(
        ev=notional * signed_mu - cost,
        ev_std=notional * sigma,
        p_win=_p_win(signed_mu, sigma),
    )


def spot_ev_from_y_normal(y: YNormal, inputs: SpotEvInputs) -> EvStats:
    """Expectancy of a spot position; zero stats for a degenerate position."""
    p0 = max(_finite(inputs.p0), 0.0)
    qty = abs(_finite(inputs.qty))
    if p0 <= _EPS or qty <= _EPS:
        return EvStats()
    cost = _finite(inputs.fee) + _finite(inputs.slippage) + _finite(inputs.borrow)
    return _ev_stats(y, qty * p0, PositionSide(inputs.side).sign, cost)


def futures_ev_from_y_normal(y: YNormal, inputs: FuturesEvInputs) -> EvStats:
    """Expectancy of a futures position of ``qty`` contracts."""
    p0 = max(_finite(inputs.p0), 0.0)
    qty = abs(_finite(inputs.qty))
    multiplier = abs(_finite(inputs.multiplier))
    if p0 <= _EPS or qty <= _EPS or multiplier <= _EPS:
        return EvStats()
    cost = (
        _finite(inputs.fee)
        + _finite(inputs.slippage)
        + _finite(inputs.funding)
        + _finite(inputs.liq_risk)
    )
    return _ev_stats(y, qty * p0 * multiplier, PositionSide(inputs.side).sign, cost)


def snapshot_from_y_normal(
    stats: EvStats,
    expected_holding_ms: int,
    now_ms: int,
    *,
    fee_slippage_penalty: float = 0.0,
) -> EntryExpectancySnapshot:
    """Wrap analytic stats into an entry snapshot.

    There is no trade history behind the estimate, so confidence is LOW,
    ``n_eff`` is 0 and the worst case is one standard deviation of PnL.
    """
    p_win = min(max(_finite(stats.p_win), 0.0), 1.0)
    return EntryExpectancySnapshot(
        expected_return=_finite(stats.ev),
        expected_holding_ms=max(MIN_HOLDING_MS, int(_finite(expected_holding_ms))),
        worst_case_loss=abs(_finite(stats.ev_std)),
        fee_slippage_penalty=_finite(fee_slippage_penalty),
        probability=ProbabilitySnapshot(
            p_win=p_win,
            p_tail_loss=1.0 - p_win,
            p_timeout_exit=NO_HISTORY_TIMEOUT_PROB,
            n_eff=0.0,
            confidence=ConfidenceLevel.LOW,
            prob_model_version=PROB_MODEL_Y_NORMAL,
        ),
        ev_model_version=EV_MODEL_Y_NORMAL,
        computed_at_ms=int(now_ms),
    )


__all__ = [
    "YNormal",
    "SpotEvInputs",
    "FuturesEvInputs",
    "EvStats",
    "normal_cdf",
    "spot_ev_from_y_normal",
    "futures_ev_from_y_normal",
    "snapshot_from_y_normal",
]
