"""Domain models - DAS API methods and outcome values."""

from .methods import Method, build_params, build_request_body
from .outcomes import (
    ComparisonResult,
    ComparisonStatus,
    DivergenceReason,
    OutcomeKind,
    PerformanceSample,
    RequestOutcome,
)

__all__ = [
    "Method",
    "build_params",
    "build_request_body",
    "ComparisonResult",
    "ComparisonStatus",
    "DivergenceReason",
    "OutcomeKind",
    "PerformanceSample",
    "RequestOutcome",
]
