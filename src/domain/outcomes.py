"""
Outcome value types shared by the client, retry executor, differ and aggregator.

Failures travel as values rather than exceptions so that one bad key or one
flaky request never aborts a run.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

from src.domain.methods import Method


class OutcomeKind(Enum):
    """Result of a single HTTP attempt."""

    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass(frozen=True)
class RequestOutcome:
    """
    Outcome of one request attempt.

    Attributes:
        kind: SUCCESS, TRANSIENT_FAILURE or TERMINAL_FAILURE
        payload: Raw response body (SUCCESS only)
        reason: Human-readable failure reason (failures only)
        latency: Seconds spent on the attempt
        status_code: HTTP status code when a response was received
    """

    kind: OutcomeKind
    payload: Optional[str] = None
    reason: str = ""
    latency: float = 0.0
    status_code: Optional[int] = None

    @classmethod
    def success(
        cls, payload: str, latency: float, status_code: Optional[int] = None
    ) -> "RequestOutcome":
        return cls(OutcomeKind.SUCCESS, payload=payload, latency=latency, status_code=status_code)

    @classmethod
    def transient(
        cls, reason: str, latency: float = 0.0, status_code: Optional[int] = None
    ) -> "RequestOutcome":
        return cls(
            OutcomeKind.TRANSIENT_FAILURE, reason=reason, latency=latency, status_code=status_code
        )

    @classmethod
    def terminal(
        cls, reason: str, latency: float = 0.0, status_code: Optional[int] = None
    ) -> "RequestOutcome":
        return cls(
            OutcomeKind.TERMINAL_FAILURE, reason=reason, latency=latency, status_code=status_code
        )

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT_FAILURE

    @property
    def is_terminal(self) -> bool:
        return self.kind is OutcomeKind.TERMINAL_FAILURE


class ComparisonStatus(Enum):
    """Comparison status codes for a (method, key) pair."""

    EQUIVALENT = "equivalent"
    DIVERGENT = "divergent"
    REFERENCE_FAILED = "reference_failed"
    TESTING_FAILED = "testing_failed"
    ERRORED = "errored"


class DivergenceReason(Enum):
    """Why a pair was reported as divergent."""

    DIFFERENCES = "differences"
    MALFORMED_PAYLOAD = "malformed_payload"


@dataclass(frozen=True)
class ComparisonResult:
    """Integrity verdict for one (method, key) pair."""

    status: ComparisonStatus
    diff_text: str = ""
    reason: Optional[DivergenceReason] = None
    failure_reason: str = ""

    @classmethod
    def equivalent(cls) -> "ComparisonResult":
        return cls(ComparisonStatus.EQUIVALENT)

    @classmethod
    def divergent(
        cls, diff_text: str, reason: DivergenceReason = DivergenceReason.DIFFERENCES
    ) -> "ComparisonResult":
        return cls(ComparisonStatus.DIVERGENT, diff_text=diff_text, reason=reason)

    @classmethod
    def reference_failed(cls, failure_reason: str) -> "ComparisonResult":
        return cls(ComparisonStatus.REFERENCE_FAILED, failure_reason=failure_reason)

    @classmethod
    def testing_failed(cls, failure_reason: str) -> "ComparisonResult":
        return cls(ComparisonStatus.TESTING_FAILED, failure_reason=failure_reason)

    @classmethod
    def errored(cls, failure_reason: str) -> "ComparisonResult":
        """The check itself broke; neither host is to blame."""
        return cls(ComparisonStatus.ERRORED, failure_reason=failure_reason)

    @property
    def passed(self) -> bool:
        return self.status is ComparisonStatus.EQUIVALENT

    def describe(self) -> str:
        """Text recorded in the report for a failed pair."""
        if self.status is ComparisonStatus.DIVERGENT:
            return self.diff_text
        if self.status is ComparisonStatus.REFERENCE_FAILED:
            return f"reference host failed: {self.failure_reason}"
        if self.status is ComparisonStatus.TESTING_FAILED:
            return f"testing host failed: {self.failure_reason}"
        if self.status is ComparisonStatus.ERRORED:
            return f"check failed: {self.failure_reason}"
        return ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["reason"] = self.reason.value if self.reason else None
        return data


@dataclass(frozen=True)
class PerformanceSample:
    """One completed request in performance mode. Never retained individually."""

    method: Method
    latency: float
    succeeded: bool
