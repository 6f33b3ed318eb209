# -*- coding: utf-8 -*-
"""
core_constants.py
Единый источник правды для констант ядра принятия решений.

Договорённости:
- Время: int миллисекунды (UNIX UTC или монотонные — решает вызывающий).
- Денежные величины: float в валюте котировки.
- Строковые коды причин стабильны и используются только для телеметрии.
"""

from __future__ import annotations

# Fixed-window rate budgets
RATE_WINDOW_MS: int = 60_000
DEFAULT_GLOBAL_RATE_PER_MINUTE: int = 1200
DEFAULT_ORDERS_RATE_PER_MINUTE: int = 300
DEFAULT_ACCOUNT_RATE_PER_MINUTE: int = 120
DEFAULT_MARKET_DATA_RATE_PER_MINUTE: int = 600

GLOBAL_BUDGET_NAME: str = "global"

# Rejection reason codes (telemetry only)
RATE_GLOBAL_BUDGET_EXCEEDED: str = "rate.global_budget_exceeded"
RATE_ENDPOINT_BUDGET_EXCEEDED: str = "rate.endpoint_budget_exceeded"

# Model version tags
PROB_MODEL_BETA_BINOMIAL: str = "beta-binomial-v1"
EV_MODEL_CONSERVATIVE: str = "ev-conservative-v1"
PROB_MODEL_FORWARD_STATIC: str = "forward-static-v1"
EV_MODEL_FORWARD_RR: str = "forward-rr-v1"
PROB_MODEL_Y_NORMAL: str = "y-normal-v1"
EV_MODEL_Y_NORMAL: str = "y-normal-spot-fut-v1"

# Probability used when there is no historical basis for a timeout estimate
NO_HISTORY_TIMEOUT_PROB: float = 0.5

MIN_HOLDING_MS: int = 1

# Worker inbox drop policies
DROP_NEWEST: str = "newest"
DROP_OLDEST: str = "oldest"
