"""Thread-safe result aggregation and immutable run reports."""

from .aggregator import ResultAggregator
from .reports import (
    IntegrityReport,
    MethodIntegrityStats,
    MethodPerformanceStats,
    PerformanceReport,
)

__all__ = [
    "ResultAggregator",
    "IntegrityReport",
    "MethodIntegrityStats",
    "MethodPerformanceStats",
    "PerformanceReport",
]
