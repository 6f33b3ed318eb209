# -*- coding: utf-8 -*-
"""
core_config.py
Pydantic-модели конфигурации ядра: бюджеты запросов, оценщик ожидания,
диспетчер тиков. Загрузка из YAML.

Некорректные значения (нулевое окно, перевёрнутые пороги и т.п.)
нормализуются при построении модели, а не откладываются до рантайма.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from core_constants import (
    DEFAULT_ACCOUNT_RATE_PER_MINUTE,
    DEFAULT_GLOBAL_RATE_PER_MINUTE,
    DEFAULT_MARKET_DATA_RATE_PER_MINUTE,
    DEFAULT_ORDERS_RATE_PER_MINUTE,
    DROP_NEWEST,
    DROP_OLDEST,
    EV_MODEL_CONSERVATIVE,
    PROB_MODEL_BETA_BINOMIAL,
    RATE_WINDOW_MS,
)
from core_errors import ConfigError
from core_models import EndpointGroup

logger = logging.getLogger(__name__)

# Loggers that follow ``CoreConfig.log_level``
_CORE_LOGGERS = (
    "core_config",
    "ev_estimator",
    "trade_stats",
    "price_model",
    "y_model",
    "position_lifecycle",
    "services",
    "utils",
)


class EndpointRateLimitsConfig(BaseModel):
    """Per-minute capacities of the endpoint-group budgets."""

    orders_per_minute: int = Field(default=DEFAULT_ORDERS_RATE_PER_MINUTE)
    account_per_minute: int = Field(default=DEFAULT_ACCOUNT_RATE_PER_MINUTE)
    market_data_per_minute: int = Field(default=DEFAULT_MARKET_DATA_RATE_PER_MINUTE)

    @model_validator(mode="after")
    def _sanitize(self) -> "EndpointRateLimitsConfig":
        for name in ("orders_per_minute", "account_per_minute", "market_data_per_minute"):
            object.__setattr__(self, name, max(1, int(getattr(self, name))))
        return self

    def limit_for(self, group: EndpointGroup | str) -> int:
        group = EndpointGroup.parse(group)
        if group is EndpointGroup.ORDERS:
            return self.orders_per_minute
        if group is EndpointGroup.ACCOUNT:
            return self.account_per_minute
        return self.market_data_per_minute


class RateBudgetConfig(BaseModel):
    """Global and per-endpoint-group fixed-window budgets."""

    global_per_minute: int = Field(
        default=DEFAULT_GLOBAL_RATE_PER_MINUTE,
        description="Capacity of the global budget per window",
    )
    window_ms: int = Field(default=RATE_WINDOW_MS, description="Window length in ms")
    endpoints: EndpointRateLimitsConfig = Field(default_factory=EndpointRateLimitsConfig)

    @model_validator(mode="after")
    def _sanitize(self) -> "RateBudgetConfig":
        object.__setattr__(self, "global_per_minute", max(1, int(self.global_per_minute)))
        window = int(self.window_ms)
        if window <= 0:
            logger.warning("Non-positive rate window %s ms, using %s ms", window, RATE_WINDOW_MS)
            window = RATE_WINDOW_MS
        object.__setattr__(self, "window_ms", window)
        return self


class EvEstimatorConfig(BaseModel):
    """Настройки оценщика ожидания по истории сделок."""

    prior_a: float = Field(default=6.0, description="Beta prior successes for p_win")
    prior_b: float = Field(default=6.0, description="Beta prior failures for p_win")
    tail_prior_a: float = Field(default=3.0)
    tail_prior_b: float = Field(default=7.0)
    recency_lambda: float = Field(
        default=0.08, description="Exponential age decay per day; 0 disables decay"
    )
    shrink_k: float = Field(
        default=40.0, description="n_eff at which local and global windows weigh equally"
    )
    loss_threshold: float = Field(
        default=15.0, description="Loss magnitude (quote ccy) counted as a tail event"
    )
    timeout_ms_default: int = Field(default=1_800_000)
    gamma_tail_penalty: float = Field(default=0.8)
    fee_slippage_penalty: float = Field(default=0.0)
    confidence_low: float = Field(default=20.0, description="n_eff below this is LOW")
    confidence_high: float = Field(default=80.0, description="n_eff at or above this is HIGH")
    lookback: int = Field(default=200)
    prob_model_version: str = Field(default=PROB_MODEL_BETA_BINOMIAL)
    ev_model_version: str = Field(default=EV_MODEL_CONSERVATIVE)

    @model_validator(mode="after")
    def _sanitize(self) -> "EvEstimatorConfig":
        for name in ("prior_a", "prior_b", "tail_prior_a", "tail_prior_b"):
            object.__setattr__(self, name, max(0.0, float(getattr(self, name))))
        object.__setattr__(self, "recency_lambda", max(0.0, float(self.recency_lambda)))
        object.__setattr__(self, "shrink_k", max(1e-9, float(self.shrink_k)))
        object.__setattr__(self, "loss_threshold", abs(float(self.loss_threshold)))
        object.__setattr__(self, "timeout_ms_default", max(1, int(self.timeout_ms_default)))
        object.__setattr__(self, "gamma_tail_penalty", max(0.0, float(self.gamma_tail_penalty)))
        object.__setattr__(self, "lookback", max(1, int(self.lookback)))
        low = max(0.0, float(self.confidence_low))
        high = max(0.0, float(self.confidence_high))
        if low > high:
            low, high = high, low
        object.__setattr__(self, "confidence_low", low)
        object.__setattr__(self, "confidence_high", high)
        return self


class ForwardEvConfig(BaseModel):
    """Defaults for forward-static expectancy when history is absent."""

    stop_loss_pct: float = Field(default=0.01)
    target_rr: float = Field(default=2.0)
    max_holding_ms: int = Field(default=1_800_000)

    @model_validator(mode="after")
    def _sanitize(self) -> "ForwardEvConfig":
        object.__setattr__(self, "stop_loss_pct", max(0.0, float(self.stop_loss_pct)))
        object.__setattr__(self, "target_rr", max(0.0, float(self.target_rr)))
        object.__setattr__(self, "max_holding_ms", max(1, int(self.max_holding_ms)))
        return self


class EwmaYModelConfig(BaseModel):
    """EWMA log-return model settings."""

    alpha_mean: float = Field(default=0.08)
    alpha_var: float = Field(default=0.08)
    min_sigma: float = Field(default=0.001)

    @model_validator(mode="after")
    def _sanitize(self) -> "EwmaYModelConfig":
        object.__setattr__(self, "alpha_mean", min(max(float(self.alpha_mean), 0.0), 1.0))
        object.__setattr__(self, "alpha_var", min(max(float(self.alpha_var), 0.0), 1.0))
        object.__setattr__(self, "min_sigma", max(0.0, float(self.min_sigma)))
        return self


class DispatchConfig(BaseModel):
    """Worker inbox settings."""

    queue_size: int = Field(default=1024, description="Inbox capacity per worker")
    drop_policy: str = Field(default=DROP_NEWEST)

    @model_validator(mode="after")
    def _sanitize(self) -> "DispatchConfig":
        object.__setattr__(self, "queue_size", max(1, int(self.queue_size)))
        policy = str(self.drop_policy).strip().lower()
        if policy.startswith("drop_"):
            policy = policy[len("drop_"):]
        if policy not in {DROP_NEWEST, DROP_OLDEST}:
            raise ValueError("drop_policy must be 'oldest' or 'newest'")
        object.__setattr__(self, "drop_policy", policy)
        return self


class CoreConfig(BaseModel):
    """Конфигурация ядра целиком."""

    log_level: str = Field(default="INFO")
    rate_budget: RateBudgetConfig = Field(default_factory=RateBudgetConfig)
    ev: EvEstimatorConfig = Field(default_factory=EvEstimatorConfig)
    forward: ForwardEvConfig = Field(default_factory=ForwardEvConfig)
    y_model: EwmaYModelConfig = Field(default_factory=EwmaYModelConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)


def _build_config(data: Any) -> CoreConfig:
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")
    try:
        cfg = CoreConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
    _set_log_level(cfg)
    return cfg


def load_config(path: str) -> CoreConfig:
    """Загрузить конфигурацию ядра из YAML-файла."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return _build_config(data)


def load_config_from_str(content: str) -> CoreConfig:
    """Parse configuration from YAML string."""
    return _build_config(yaml.safe_load(content))


def _set_log_level(cfg: CoreConfig) -> None:
    """Configure log level for the core namespaces."""
    level = getattr(cfg, "log_level", "INFO")
    if isinstance(level, str):
        level_num = getattr(logging, level.upper(), logging.INFO)
    else:
        try:
            level_num = int(level)
        except (TypeError, ValueError):
            level_num = logging.INFO
    for name in _CORE_LOGGERS:
        logging.getLogger(name).setLevel(level_num)


def _deep_merge(base: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def config_overrides(cfg: CoreConfig, overrides: Optional[Dict[str, Any]] = None) -> CoreConfig:
    """Return a copy of ``cfg`` with ``overrides`` merged in at any nesting depth."""
    if not overrides:
        return cfg
    return _build_config(_deep_merge(cfg.model_dump(), overrides))


__all__ = [
    "EndpointRateLimitsConfig",
    "RateBudgetConfig",
    "EvEstimatorConfig",
    "ForwardEvConfig",
    "EwmaYModelConfig",
    "DispatchConfig",
    "CoreConfig",
    "load_config",
    "load_config_from_str",
    "config_overrides",
]
