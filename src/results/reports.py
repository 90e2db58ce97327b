"""Immutable report snapshots produced once all workers have joined."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from src.domain.methods import Method


@dataclass(frozen=True)
class MethodIntegrityStats:
    """Integrity results for one method."""

    total: int = 0
    passed: int = 0
    divergent: int = 0
    malformed: int = 0
    reference_failed: int = 0
    testing_failed: int = 0
    errored: int = 0
    failures: Tuple[Tuple[str, str], ...] = ()

    @property
    def failed(self) -> int:
        return self.total - self.passed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "divergent": self.divergent,
            "malformed": self.malformed,
            "reference_failed": self.reference_failed,
            "testing_failed": self.testing_failed,
            "errored": self.errored,
            "failures": [{"key": key, "diff": diff} for key, diff in self.failures],
        }


@dataclass(frozen=True)
class IntegrityReport:
    """Final integrity snapshot."""

    methods: Mapping[Method, MethodIntegrityStats] = field(default_factory=dict)
    log_differences: bool = False

    @property
    def total_pairs(self) -> int:
        return sum(stats.total for stats in self.methods.values())

    @property
    def total_failed(self) -> int:
        return sum(stats.failed for stats in self.methods.values())

    @property
    def overall_success(self) -> bool:
        """True iff no pair diverged or failed."""
        return self.total_failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": "integrity",
            "overall_success": self.overall_success,
            "total_pairs": self.total_pairs,
            "total_failed": self.total_failed,
            "methods": {method.value: stats.to_dict() for method, stats in self.methods.items()},
        }


@dataclass(frozen=True)
class MethodPerformanceStats:
    """Latency and throughput for one method. Latencies are in seconds."""

    count: int = 0
    success_count: int = 0
    min_latency: Optional[float] = None
    max_latency: Optional[float] = None
    mean_latency: Optional[float] = None
    stddev_latency: Optional[float] = None
    requests_per_second: float = 0.0

    @property
    def error_count(self) -> int:
        return self.count - self.success_count

    def to_dict(self) -> Dict[str, Any]:
        def _ms(value: Optional[float]) -> Optional[float]:
            return round(value * 1000, 2) if value is not None else None

        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "min_latency_ms": _ms(self.min_latency),
            "max_latency_ms": _ms(self.max_latency),
            "mean_latency_ms": _ms(self.mean_latency),
            "stddev_latency_ms": _ms(self.stddev_latency),
            "requests_per_second": round(self.requests_per_second, 2),
        }


@dataclass(frozen=True)
class PerformanceReport:
    """Final performance snapshot."""

    methods: Mapping[Method, MethodPerformanceStats] = field(default_factory=dict)
    elapsed_seconds: float = 0.0
    virtual_users: int = 0

    @property
    def total_requests(self) -> int:
        return sum(stats.count for stats in self.methods.values())

    @property
    def total_errors(self) -> int:
        return sum(stats.error_count for stats in self.methods.values())

    @property
    def requests_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total_requests / self.elapsed_seconds

    @property
    def overall_success(self) -> bool:
        """True iff at least one request was made and none failed."""
        return self.total_requests > 0 and self.total_errors == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": "performance",
            "overall_success": self.overall_success,
            "virtual_users": self.virtual_users,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "total_requests": self.total_requests,
            "total_errors": self.total_errors,
            "requests_per_second": round(self.requests_per_second, 2),
            "methods": {method.value: stats.to_dict() for method, stats in self.methods.items()},
        }
