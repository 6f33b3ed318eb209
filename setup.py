# setup.py
from __future__ import annotations

from setuptools import setup

setup(
    name="trading-decision-core",
    version="0.1.0",
    description="Tick fan-out, rate budgets, entry expectancy and position lifecycle for a trading bot",
    python_requires=">=3.10",
    py_modules=[
        "core_config",
        "core_constants",
        "core_contracts",
        "core_errors",
        "core_models",
        "trade_stats",
        "ev_estimator",
        "price_model",
        "y_model",
        "position_lifecycle",
    ],
    packages=["services", "utils"],
    install_requires=[
        "numpy",
        "pandas",
        "pydantic>=2",
        "PyYAML",
        "prometheus-client",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
