"""
Retry executor for single requests.

Transient failures are retried with exponential backoff up to the configured
number of attempts. Terminal failures return immediately. The loop state is
kept in an explicit RetryState so the policy is testable without a network.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from src.domain.outcomes import RequestOutcome
from src.exceptions import ConfigurationError
from src.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 5.0


@dataclass
class RetryState:
    """Progress of one retried request."""

    max_attempts: int
    attempts: int = 0
    last_failure: Optional[RequestOutcome] = None
    delays: List[float] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def record(self, outcome: RequestOutcome) -> None:
        self.attempts += 1
        if not outcome.is_success:
            self.last_failure = outcome


class RetryExecutor:
    """
    Wraps an attempt function with the retry policy.

    The sleep function is injectable; tests pass a recorder instead of
    time.sleep.
    """

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if base_delay <= 0 or max_delay < base_delay:
            raise ConfigurationError(
                "retry delays must satisfy 0 < base_delay <= max_delay"
            )
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given 1-based attempt number."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def with_retry(
        self,
        attempt_fn: Callable[[], RequestOutcome],
        max_attempts: int,
        description: str = "request",
    ) -> RequestOutcome:
        """
        Run attempt_fn until it succeeds, fails terminally, or attempts run out.

        Args:
            attempt_fn: Performs one attempt and returns its outcome
            max_attempts: test_retries; 1 means exactly one attempt
            description: Label used in log lines

        Returns:
            The successful or terminal outcome. Exhausted transient failures are
            escalated to a terminal failure naming the last reason.

        Raises:
            ConfigurationError: If max_attempts < 1
        """
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")

        state = RetryState(max_attempts=max_attempts)
        while True:
            outcome = attempt_fn()
            state.record(outcome)

            if outcome.is_success or outcome.is_terminal:
                return outcome

            if state.exhausted:
                logger.warning(
                    f"Giving up on {description} after {state.attempts} attempts",
                    operation="retry",
                    context={"attempts": state.attempts},
                    error=outcome.reason,
                )
                return RequestOutcome.terminal(
                    f"retries exhausted after {state.attempts} attempts: {outcome.reason}",
                    latency=outcome.latency,
                    status_code=outcome.status_code,
                )

            delay = self.backoff_delay(state.attempts)
            state.delays.append(delay)
            logger.debug(
                f"Transient failure on {description}, retrying in {delay}s "
                f"(attempt {state.attempts}/{max_attempts})",
                operation="retry",
                context={"reason": outcome.reason},
            )
            self.sleep(delay)
