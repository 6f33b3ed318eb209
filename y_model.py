"""Per-instrument EWMA model of tick-to-tick log returns.

The estimate feeds :mod:`price_model` when no better distribution of the
holding-horizon return is available.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import threading
from typing import Dict, Optional

from core_config import EwmaYModelConfig
from core_models import normalize_symbol
from price_model import YNormal


@dataclass
class _EwmaState:
    last_price: Optional[float] = None
    mu: float = 0.0
    var: float = 0.0
    samples: int = 0


class EwmaYModel:
    """Exponentially weighted mean and variance of log returns.

    The first return seeds both moments; later returns blend in with weights
    ``alpha_mean`` and ``alpha_var``.  Non-positive or non-finite prices are
    ignored.
    """

    def __init__(self, cfg: Optional[EwmaYModelConfig] = None) -> None:
        self.cfg = cfg or EwmaYModelConfig()
        self._states: Dict[str, _EwmaState] = {}
        self._lock = threading.Lock()

    def observe_price(self, instrument: str, price: float) -> None:
        price = float(price)
        if not math.isfinite(price) or price <= 0.0:
            return
        key = normalize_symbol(instrument)
        a_mu = self.cfg.alpha_mean
        a_var = self.cfg.alpha_var
        with self._lock:
            st = self._states.setdefault(key, _EwmaState())
            prev = st.last_price
            st.last_price = price
            if prev is None:
                return
            r = math.log(price / prev)
            st.mu = r if st.samples == 0 else (1.0 - a_mu) * st.mu + a_mu * r
            centered = r - st.mu
            sample_var = centered * centered
            st.var = sample_var if st.samples == 0 else (1.0 - a_var) * st.var + a_var * sample_var
            st.samples += 1

    def estimate(self, instrument: str, fallback_mu: float = 0.0, fallback_sigma: float = 0.0) -> YNormal:
        """Current return distribution.

        ``fallback_sigma`` applies only to an instrument never priced.  Once a
        price is seen, sigma comes from the stored variance floored at
        ``min_sigma``; ``fallback_mu`` stands in until the first return.
        """
        min_sigma = self.cfg.min_sigma
        with self._lock:
            st = self._states.get(normalize_symbol(instrument))
            if st is None:
                return YNormal(mu=float(fallback_mu), sigma=max(float(fallback_sigma), min_sigma))
            sigma = max(math.sqrt(max(st.var, 0.0)), min_sigma)
            mu = float(fallback_mu) if st.samples == 0 else st.mu
            return YNormal(mu=mu, sigma=sigma)

    def samples(self, instrument: str) -> int:
        with self._lock:
            st = self._states.get(normalize_symbol(instrument))
            return st.samples if st is not None else 0

    def reset(self, instrument: Optional[str] = None) -> None:
        with self._lock:
            if instrument is None:
                self._states.clear()
            else:
                self._states.pop(normalize_symbol(instrument), None)


__all__ = ["EwmaYModel"]
