from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root contains this file; flat modules are imported from here
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core_config import EvEstimatorConfig  # noqa: E402
from trade_stats import InMemoryTradeStatsReader  # noqa: E402
from utils.time_provider import ManualTimeProvider  # noqa: E402


@pytest.fixture
def clock() -> ManualTimeProvider:
    return ManualTimeProvider(start_ms=1_700_000_000_000)


@pytest.fixture
def stats_reader() -> InMemoryTradeStatsReader:
    return InMemoryTradeStatsReader()


@pytest.fixture
def ev_cfg() -> EvEstimatorConfig:
    return EvEstimatorConfig()
