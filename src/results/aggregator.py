"""
Result Aggregator

The only mutable structure shared between workers. Every update takes the
same lock, and every update is a commutative fold, so the final counts do not
depend on the order in which workers finish.
"""

import math
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Optional, Tuple

from src.domain.methods import Method
from src.domain.outcomes import (
    ComparisonResult,
    ComparisonStatus,
    DivergenceReason,
    PerformanceSample,
)
from src.results.reports import (
    IntegrityReport,
    MethodIntegrityStats,
    MethodPerformanceStats,
    PerformanceReport,
)


@dataclass
class _IntegrityCounters:
    total: int = 0
    passed: int = 0
    divergent: int = 0
    malformed: int = 0
    reference_failed: int = 0
    testing_failed: int = 0
    errored: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class _LatencyCounters:
    """Welford running statistics; individual samples are never kept."""

    count: int = 0
    success_count: int = 0
    min_latency: Optional[float] = None
    max_latency: Optional[float] = None
    mean: float = 0.0
    m2: float = 0.0

    def add(self, latency: float, succeeded: bool) -> None:
        self.count += 1
        if succeeded:
            self.success_count += 1
        if self.min_latency is None or latency < self.min_latency:
            self.min_latency = latency
        if self.max_latency is None or latency > self.max_latency:
            self.max_latency = latency
        delta = latency - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (latency - self.mean)

    @property
    def stddev(self) -> Optional[float]:
        if self.count < 2:
            return None
        return math.sqrt(self.m2 / (self.count - 1))


class ResultAggregator:
    """Thread-safe accumulator for both integrity and performance modes."""

    def __init__(self, log_differences: bool = False):
        self.log_differences = log_differences
        self._lock = threading.Lock()
        self._integrity: Dict[Method, _IntegrityCounters] = {}
        self._performance: Dict[Method, _LatencyCounters] = {}

    def record_comparison(self, method: Method, key: str, result: ComparisonResult) -> None:
        """Fold one (method, key) verdict into the per-method counters."""
        with self._lock:
            counters = self._integrity.setdefault(method, _IntegrityCounters())
            counters.total += 1

            if result.status is ComparisonStatus.EQUIVALENT:
                counters.passed += 1
                return

            if result.status is ComparisonStatus.DIVERGENT:
                counters.divergent += 1
                if result.reason is DivergenceReason.MALFORMED_PAYLOAD:
                    counters.malformed += 1
            elif result.status is ComparisonStatus.REFERENCE_FAILED:
                counters.reference_failed += 1
            elif result.status is ComparisonStatus.TESTING_FAILED:
                counters.testing_failed += 1
            elif result.status is ComparisonStatus.ERRORED:
                counters.errored += 1

            if self.log_differences:
                counters.failures.append((key, result.describe()))

    def record_sample(self, sample: PerformanceSample) -> None:
        """Fold one performance sample into the running latency statistics."""
        with self._lock:
            counters = self._performance.setdefault(sample.method, _LatencyCounters())
            counters.add(sample.latency, sample.succeeded)

    def integrity_report(self) -> IntegrityReport:
        """Snapshot integrity results. Failure lists are sorted for reproducibility."""
        with self._lock:
            methods = {
                method: MethodIntegrityStats(
                    total=counters.total,
                    passed=counters.passed,
                    divergent=counters.divergent,
                    malformed=counters.malformed,
                    reference_failed=counters.reference_failed,
                    testing_failed=counters.testing_failed,
                    errored=counters.errored,
                    failures=tuple(sorted(counters.failures)),
                )
                for method, counters in self._sorted_items(self._integrity)
            }
        return IntegrityReport(
            methods=MappingProxyType(methods), log_differences=self.log_differences
        )

    def performance_report(self, elapsed_seconds: float, virtual_users: int = 0) -> PerformanceReport:
        """Snapshot performance results over the measured wall time."""
        with self._lock:
            methods = {
                method: MethodPerformanceStats(
                    count=counters.count,
                    success_count=counters.success_count,
                    min_latency=counters.min_latency,
                    max_latency=counters.max_latency,
                    mean_latency=counters.mean if counters.count else None,
                    stddev_latency=counters.stddev,
                    requests_per_second=(
                        counters.count / elapsed_seconds if elapsed_seconds > 0 else 0.0
                    ),
                )
                for method, counters in self._sorted_items(self._performance)
            }
        return PerformanceReport(
            methods=MappingProxyType(methods),
            elapsed_seconds=elapsed_seconds,
            virtual_users=virtual_users,
        )

    @staticmethod
    def _sorted_items(counters: Dict[Method, object]):
        order = {method: index for index, method in enumerate(Method)}
        return sorted(counters.items(), key=lambda item: order[item[0]])
