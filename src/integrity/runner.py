"""
Integrity Test Runner

For every (method, key) pair, fetches the reference and testing responses
concurrently (each through the retry executor), diffs them, and records the
verdict in the shared aggregator.

Pair lifecycle: PENDING -> FETCHING_BOTH -> COMPARING -> DONE. A terminal
fetch failure on either side jumps straight to DONE without diffing.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from src.api.das_client import DasApiClient
from src.api.retry import RetryExecutor
from src.comparison.response_differ import ResponseDiffer
from src.config.settings import IntegrityVerificationConfig
from src.domain.methods import Method
from src.domain.outcomes import ComparisonResult, RequestOutcome
from src.keys.key_set import KeySetResolver
from src.results.aggregator import ResultAggregator
from src.results.reports import IntegrityReport
from src.utils.logger import get_logger, log_operation, mask_url

logger = get_logger(__name__)

PROGRESS_LOG_INTERVAL = 100


class PairState(Enum):
    PENDING = "pending"
    FETCHING_BOTH = "fetching_both"
    COMPARING = "comparing"
    DONE = "done"


_ALLOWED_TRANSITIONS = {
    PairState.PENDING: {PairState.FETCHING_BOTH, PairState.DONE},
    PairState.FETCHING_BOTH: {PairState.COMPARING, PairState.DONE},
    PairState.COMPARING: {PairState.DONE},
    PairState.DONE: set(),
}


@dataclass
class PairCheck:
    """State of one (method, key) comparison. Owned by a single worker."""

    method: Method
    key: str
    state: PairState = PairState.PENDING
    result: Optional[ComparisonResult] = None

    def advance(self, new_state: PairState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid pair transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def finish(self, result: ComparisonResult) -> None:
        self.result = result
        self.advance(PairState.DONE)


class IntegrityTestRunner:
    """
    Runs the integrity comparison across every configured pair.

    Pairs run on a pool of max_parallel_pairs workers. Fetches run on a
    separate pool twice that size, so a pair worker waiting on its two fetches
    can never starve the fetches themselves.
    """

    def __init__(
        self,
        config: IntegrityVerificationConfig,
        key_set: KeySetResolver,
        aggregator: ResultAggregator,
        client: Optional[DasApiClient] = None,
        retry_executor: Optional[RetryExecutor] = None,
        differ: Optional[ResponseDiffer] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.key_set = key_set
        self.aggregator = aggregator
        self.client = client or DasApiClient(timeout=config.request_timeout)
        self.retry_executor = retry_executor or RetryExecutor(
            base_delay=config.retry_base_delay, max_delay=config.retry_max_delay
        )
        self.differ = differ or ResponseDiffer(
            filters=config.difference_filter_regexes,
            list_order_policy=config.list_order_policy,
        )
        self.stop_event = stop_event or threading.Event()

    @log_operation("integrity_run")
    def run(self) -> IntegrityReport:
        """
        Check every pair and return the integrity report.

        Pairs not yet started when the stop event is set are skipped; pairs
        already in flight finish and are recorded.
        """
        total = self.key_set.total_pairs()
        logger.info(
            "Integrity tests start",
            operation="integrity_run",
            context={
                "reference_host": mask_url(self.config.reference_host),
                "testing_host": mask_url(self.config.testing_host),
                "pairs": total,
                "keys_per_method": self.key_set.counts(),
            },
        )
        if total == 0:
            logger.warning("No test keys configured; nothing to compare", operation="integrity_run")
            return self.aggregator.integrity_report()

        pair_workers = min(self.config.max_parallel_pairs, total)
        completed = 0
        skipped = 0

        with ThreadPoolExecutor(
            max_workers=pair_workers * 2, thread_name_prefix="fetch"
        ) as fetch_pool, ThreadPoolExecutor(
            max_workers=pair_workers, thread_name_prefix="pair"
        ) as pair_pool:
            futures: Dict[Future, Tuple[Method, str]] = {
                pair_pool.submit(self.check_pair, method, key, fetch_pool): (method, key)
                for method, key in self.key_set.pairs()
            }

            for future in as_completed(futures):
                pair = future.result()
                if pair is None:
                    skipped += 1
                    continue
                completed += 1
                if completed % PROGRESS_LOG_INTERVAL == 0:
                    logger.info(
                        f"Compared {completed}/{total} pairs",
                        operation="integrity_run",
                    )

        if skipped:
            logger.warning(
                f"Integrity run stopped early; {skipped} pairs were not checked",
                operation="integrity_run",
            )

        return self.aggregator.integrity_report()

    def check_pair(
        self, method: Method, key: str, fetch_pool: ThreadPoolExecutor
    ) -> Optional[PairCheck]:
        """
        Drive one pair through its lifecycle and record the verdict.

        Returns:
            The finished PairCheck, or None if the run was stopped before it began
        """
        if self.stop_event.is_set():
            return None

        pair = PairCheck(method=method, key=key)
        try:
            pair.finish(self._evaluate(pair, fetch_pool))
        except Exception as e:
            logger.error(
                "Unexpected error while checking pair",
                operation="check_pair",
                context={"method": method.value, "key": key},
                error=str(e),
            )
            result = ComparisonResult.errored(f"unexpected error: {e}")
            if pair.state is PairState.DONE:
                pair.result = result
            else:
                pair.finish(result)

        self.aggregator.record_comparison(method, key, pair.result)
        self._log_result(pair)
        return pair

    def _evaluate(self, pair: PairCheck, fetch_pool: ThreadPoolExecutor) -> ComparisonResult:
        pair.advance(PairState.FETCHING_BOTH)
        reference_future = fetch_pool.submit(
            self._fetch, self.config.reference_host, pair.method, pair.key, "reference"
        )
        testing_future = fetch_pool.submit(
            self._fetch, self.config.testing_host, pair.method, pair.key, "testing"
        )
        reference = reference_future.result()
        testing = testing_future.result()

        if not reference.is_success:
            return ComparisonResult.reference_failed(reference.reason)
        if not testing.is_success:
            return ComparisonResult.testing_failed(testing.reason)

        pair.advance(PairState.COMPARING)
        return self.differ.compare(reference.payload, testing.payload)

    def _fetch(self, host: str, method: Method, key: str, role: str) -> RequestOutcome:
        return self.retry_executor.with_retry(
            lambda: self.client.fetch(host, method, key),
            self.config.test_retries,
            description=f"{role} {method.value} {key}",
        )

    def _log_result(self, pair: PairCheck) -> None:
        result = pair.result
        context = {"method": pair.method.value, "key": pair.key, "status": result.status.value}
        if result.passed:
            logger.debug("Responses match", operation="check_pair", context=context)
        elif self.config.log_differences:
            logger.error(
                f"{pair.method.value}: mismatch responses",
                operation="check_pair",
                context=context,
                error=result.describe(),
            )
        else:
            logger.debug("Pair failed", operation="check_pair", context=context)
