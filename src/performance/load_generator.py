"""
Load Generator

Runs num_of_virtual_users worker threads against the testing host for
test_duration_time seconds. Each worker issues one request at a time, with no
retries, and folds every completed request into the aggregator. Workers stop
starting new requests once the deadline passes or the stop event is set; a
request in flight at that moment still completes and is recorded.
"""

import threading
import time
from typing import Callable, List, Optional

from src.api.das_client import DasApiClient
from src.config.settings import IntegrityVerificationConfig
from src.domain.outcomes import PerformanceSample
from src.keys.key_set import KeySetResolver, PairScheduler
from src.results.aggregator import ResultAggregator
from src.results.reports import PerformanceReport
from src.utils.logger import get_logger, log_operation, mask_url

logger = get_logger(__name__)


class LoadGenerator:
    """Virtual-user load against the testing host only."""

    def __init__(
        self,
        config: IntegrityVerificationConfig,
        key_set: KeySetResolver,
        aggregator: ResultAggregator,
        client: Optional[DasApiClient] = None,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.key_set = key_set
        self.aggregator = aggregator
        self.client = client or DasApiClient(timeout=config.request_timeout)
        self.clock = clock
        self.stop_event = stop_event or threading.Event()

    @log_operation("performance_run")
    def run(self) -> PerformanceReport:
        """Run all virtual users until the deadline or a stop request and return the report."""
        virtual_users = self.config.num_of_virtual_users
        duration = self.config.test_duration_time

        logger.info(
            "Performance tests start",
            operation="performance_run",
            context={
                "testing_host": mask_url(self.config.testing_host),
                "virtual_users": virtual_users,
                "duration_seconds": duration,
                "keys_per_method": self.key_set.counts(),
            },
        )

        if self.key_set.is_empty():
            logger.warning("No test keys configured; no load generated", operation="performance_run")
            return self.aggregator.performance_report(0.0, virtual_users)

        start = self.clock()
        deadline = start + duration

        workers: List[threading.Thread] = [
            threading.Thread(
                target=self._worker_loop,
                args=(worker_id, self.key_set.scheduler(offset=worker_id), deadline),
                name=f"virtual-user-{worker_id}",
                daemon=True,
            )
            for worker_id in range(virtual_users)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        elapsed = self.clock() - start
        if self.stop_event.is_set():
            logger.warning(
                f"Performance run stopped early after {elapsed:.1f}s of {duration}s",
                operation="performance_run",
            )

        report = self.aggregator.performance_report(elapsed, virtual_users)
        logger.info(
            "Performance tests finished",
            operation="performance_run",
            context={
                "total_requests": report.total_requests,
                "total_errors": report.total_errors,
                "requests_per_second": round(report.requests_per_second, 2),
            },
            duration_ms=elapsed * 1000,
        )
        return report

    def _worker_loop(self, worker_id: int, scheduler: PairScheduler, deadline: float) -> None:
        requests_sent = 0
        try:
            while self.clock() < deadline and not self.stop_event.is_set():
                method, key = scheduler.next_pair()
                started = time.perf_counter()
                try:
                    outcome = self.client.fetch(self.config.testing_host, method, key)
                    succeeded = outcome.is_success
                    latency = outcome.latency or (time.perf_counter() - started)
                except Exception as e:
                    logger.error(
                        "Unexpected error in virtual user request",
                        operation="virtual_user",
                        context={"worker_id": worker_id, "method": method.value, "key": key},
                        error=str(e),
                    )
                    succeeded = False
                    latency = time.perf_counter() - started

                self.aggregator.record_sample(PerformanceSample(method, latency, succeeded))
                requests_sent += 1
        finally:
            logger.debug(
                f"Virtual user {worker_id} stopped after {requests_sent} requests",
                operation="virtual_user",
            )
