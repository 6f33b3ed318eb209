"""Prometheus metrics for the decision core.

All metrics are module-level singletons registered in the default
``prometheus_client`` registry.  Callers increment them directly; exporting
is left to the host process (``prometheus_client.start_http_server`` or a
custom collector).

Tick dispatch:

``tick_dispatch_delivered_total`` -- ticks handed to worker inboxes

``tick_dispatch_dropped_total`` -- deliveries dropped because an inbox was full or raised

``tick_channel_dropped_total`` -- items dropped inside worker inboxes

``tick_dispatch_workers`` -- registered workers

Rate budgets:

``rate_budget_granted_total`` / ``rate_budget_denied_total`` -- reservation outcomes

``rate_budget_used`` -- units consumed in the current window

Expectancy and lifecycle:

``ev_estimates_total`` -- snapshots produced, by model

``ev_estimate_failures_total`` -- stats reader failures

``lifecycle_positions_open`` -- tracked positions

``lifecycle_exit_triggers_total`` -- exit triggers by reason code
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge

# Tick dispatch
ticks_delivered = Counter(
    "tick_dispatch_delivered_total",
    "Ticks delivered to worker inboxes",
    ["symbol"],
)
ticks_dropped = Counter(
    "tick_dispatch_dropped_total",
    "Tick deliveries dropped because the worker inbox was full",
    ["symbol"],
)
dispatch_workers = Gauge(
    "tick_dispatch_workers",
    "Number of registered strategy workers",
)
channel_dropped = Counter(
    "tick_channel_dropped_total",
    "Items dropped by worker inboxes due to backpressure",
)

# Rate budgets
rate_budget_granted = Counter(
    "rate_budget_granted_total",
    "Granted rate budget reservations",
    ["budget"],
)
rate_budget_denied = Counter(
    "rate_budget_denied_total",
    "Denied rate budget reservations",
    ["budget", "reason"],
)
rate_budget_used = Gauge(
    "rate_budget_used",
    "Units consumed in the current budget window",
    ["budget"],
)

# Expectancy
ev_estimates = Counter(
    "ev_estimates_total",
    "Entry expectancy snapshots produced",
    ["model"],
)
ev_estimate_failures = Counter(
    "ev_estimate_failures_total",
    "Entry expectancy evaluations aborted by a stats reader failure",
)

# Lifecycle
positions_open = Gauge(
    "lifecycle_positions_open",
    "Positions tracked by the lifecycle engine",
)
exit_triggers = Counter(
    "lifecycle_exit_triggers_total",
    "Exit triggers observed by the exit orchestrator",
    ["reason"],
)


__all__ = [
    "ticks_delivered",
    "ticks_dropped",
    "dispatch_workers",
    "channel_dropped",
    "rate_budget_granted",
    "rate_budget_denied",
    "rate_budget_used",
    "ev_estimates",
    "ev_estimate_failures",
    "positions_open",
    "exit_triggers",
]
