"""
DAS API tests - Main entry point

Loads configuration and test keys, runs either the integrity comparison or the
performance load test, renders the report and turns overall_success into the
process exit status.
"""

import argparse
import logging
import signal
import sys
import threading
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Union

from src.api.das_client import DasApiClient
from src.comparison.diff_reporter import DiffReporter
from src.config.settings import (
    IntegrityVerificationConfig,
    Settings,
    setup_logging_redaction,
)
from src.domain.methods import Method
from src.exceptions import ConfigurationError, IntegrityVerificationError
from src.integrity.runner import IntegrityTestRunner
from src.keys.file_keys_parser import parse_keys_file
from src.keys.key_set import KeySetResolver
from src.performance.load_generator import LoadGenerator
from src.results.aggregator import ResultAggregator
from src.results.reports import IntegrityReport, PerformanceReport
from src.utils.logger import get_logger, set_log_level

logger = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_TESTS_FAILED = 1
EXIT_SETUP_ERROR = 2


class TestType(Enum):
    INTEGRITY = "integrity"
    PERFORMANCE = "performance"


class TestEngine:
    """
    Wires the collaborators for one run.

    The aggregator is created per run, so no counters outlive a single run.
    """

    def __init__(
        self,
        config: IntegrityVerificationConfig,
        keys_map: Mapping[Method, Sequence[str]],
        client: Optional[DasApiClient] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.key_set = KeySetResolver(keys_map)
        self.client = client or DasApiClient(timeout=config.request_timeout)
        self.stop_event = stop_event or threading.Event()

    def run(self, test_type: TestType) -> Union[IntegrityReport, PerformanceReport]:
        aggregator = ResultAggregator(log_differences=self.config.log_differences)

        if test_type is TestType.INTEGRITY:
            runner = IntegrityTestRunner(
                self.config,
                self.key_set,
                aggregator,
                client=self.client,
                stop_event=self.stop_event,
            )
            return runner.run()

        generator = LoadGenerator(
            self.config,
            self.key_set,
            aggregator,
            client=self.client,
            stop_event=self.stop_event,
        )
        return generator.run()


def install_signal_handlers(stop_event: threading.Event) -> None:
    """
    Request a graceful stop on SIGINT/SIGTERM; in-flight work still finishes.

    The first signal restores the default handlers, so a second one aborts.
    """

    def _handle(signum, frame):
        logger.warning(
            "Shutdown signal received; finishing in-flight work (signal again to abort)",
            operation="shutdown",
            context={"signal": signum},
        )
        stop_event.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="das-api-tests",
        description="Compare DAS API providers or load-test a DAS API host.",
    )
    parser.add_argument(
        "-c", "--config-path", required=True, help="Path to the JSON or YAML configuration file"
    )
    parser.add_argument(
        "-t",
        "--test-type",
        required=True,
        choices=[test_type.value for test_type in TestType],
        help="integrity compares both hosts, performance load-tests the testing host",
    )
    parser.add_argument(
        "-k", "--keys-file", default=None, help="Override testing_file_path from the config"
    )
    parser.add_argument("--report-json", default=None, help="Write the report as JSON here")
    parser.add_argument(
        "--report-markdown", default=None, help="Write a Markdown summary of the report here"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (defaults to LOG_LEVEL env or INFO)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if args.log_level:
        set_log_level(args.log_level)

    logger.info("DAS-API tests start", operation="startup", context={"test_type": args.test_type})

    try:
        config = Settings().load_config(args.config_path)
        setup_logging_redaction(config)

        keys_path = args.keys_file or config.testing_file_path
        if not keys_path:
            raise ConfigurationError(
                "No test keys file: set testing_file_path in the config or pass --keys-file"
            )
        keys_map: Dict[Method, List[str]] = parse_keys_file(keys_path)
    except IntegrityVerificationError as e:
        logger.error("Setup failed", operation="startup", error=str(e))
        return EXIT_SETUP_ERROR

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    engine = TestEngine(config, keys_map, stop_event=stop_event)
    report = engine.run(TestType(args.test_type))

    reporter = DiffReporter()
    reporter.log_results(report)
    if args.report_json:
        reporter.write_json_report(report, args.report_json)
    if args.report_markdown:
        reporter.write_markdown_summary(report, args.report_markdown)

    return EXIT_SUCCESS if report.overall_success else EXIT_TESTS_FAILED


if __name__ == "__main__":
    sys.exit(main())
