from .rate_limiter import FixedWindowCounter
from .time_provider import ManualTimeProvider, RealTimeProvider, TimeProvider

__all__ = [
    "FixedWindowCounter",
    "ManualTimeProvider",
    "RealTimeProvider",
    "TimeProvider",
]
