"""
Integration tests for the integrity run (src/integrity/runner.py)

Runs the real retry executor, differ and aggregator against a scripted fake
client, covering:
- Equivalent and divergent providers
- Known-difference suppression
- Transient failures recovered by retries
- Hosts that stay unreachable
- Graceful stop
"""

import json
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Tuple
from unittest.mock import Mock

import pytest
import requests

from src.api.das_client import DasApiClient
from src.api.retry import RetryExecutor
from src.config.settings import IntegrityVerificationConfig
from src.domain.methods import Method
from src.domain.outcomes import ComparisonStatus, RequestOutcome
from src.integrity.runner import IntegrityTestRunner, PairCheck, PairState
from src.keys.key_set import KeySetResolver
from src.results.aggregator import ResultAggregator

REFERENCE = "https://reference.example.com/"
TESTING = "http://127.0.0.1:9090/"


def asset_body(key: str, **extra) -> str:
    result = {
        "id": key,
        "mutable": True,
        "content": {"metadata": {"name": f"Asset {key}", "token_standard": "NonFungible"}},
    }
    result.update(extra)
    return json.dumps({"jsonrpc": "2.0", "result": result, "id": 0})


class FakeDasClient:
    """Scripted client: one responder per host, every call recorded."""

    def __init__(self, responders: Dict[str, Callable[[Method, str], RequestOutcome]]):
        self.responders = responders
        self.calls: List[Tuple[str, Method, str]] = []
        self._lock = threading.Lock()

    def fetch(self, host: str, method: Method, key: str) -> RequestOutcome:
        with self._lock:
            self.calls.append((host, method, key))
        return self.responders[host](method, key)

    def calls_for(self, host: str) -> int:
        return sum(1 for call in self.calls if call[0] == host)


def ok(body_fn: Callable[[Method, str], str]) -> Callable[[Method, str], RequestOutcome]:
    return lambda method, key: RequestOutcome.success(body_fn(method, key), latency=0.001)


def make_config(**overrides) -> IntegrityVerificationConfig:
    values = {
        "reference_host": REFERENCE,
        "testing_host": TESTING,
        "test_retries": 3,
        "max_parallel_pairs": 4,
    }
    values.update(overrides)
    return IntegrityVerificationConfig(**values)


def make_runner(config, keys, client, stop_event=None):
    aggregator = ResultAggregator(log_differences=config.log_differences)
    runner = IntegrityTestRunner(
        config,
        KeySetResolver(keys),
        aggregator,
        client=client,
        retry_executor=RetryExecutor(
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            sleep=lambda delay: None,
        ),
        stop_event=stop_event,
    )
    return runner


class TestEquivalentProviders:
    """Both hosts return the same documents."""

    def test_all_pairs_pass(self):
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: ok(lambda method, key: asset_body(key)),
            }
        )
        keys = {Method.GET_ASSET: ["k1", "k2", "k3"], Method.GET_ASSETS_BY_OWNER: ["o1"]}

        report = make_runner(make_config(), keys, client).run()

        assert report.overall_success
        assert report.total_pairs == 4
        assert report.methods[Method.GET_ASSET].passed == 3
        assert client.calls_for(REFERENCE) == 4
        assert client.calls_for(TESTING) == 4

    def test_duplicate_keys_checked_twice(self):
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: ok(lambda method, key: asset_body(key)),
            }
        )

        report = make_runner(make_config(), {Method.GET_ASSET: ["k1", "k1"]}, client).run()

        assert report.methods[Method.GET_ASSET].total == 2

    def test_empty_key_set(self):
        client = FakeDasClient({})

        report = make_runner(make_config(), {}, client).run()

        assert report.total_pairs == 0
        assert report.overall_success
        assert client.calls == []

    def test_same_rpc_error_from_both_hosts_passes(self):
        body = '{"jsonrpc":"2.0","error":{"code":-32000,"message":"Asset Not Found"},"id":0}'
        session = Mock(spec=requests.Session)
        session.post.return_value = Mock(status_code=200, text=body)
        client = DasApiClient(session_factory=lambda: session)

        report = make_runner(make_config(test_retries=5), {Method.GET_ASSET: ["gone"]}, client).run()

        assert report.overall_success
        assert report.methods[Method.GET_ASSET].passed == 1
        hosts = sorted(call.args[0] for call in session.post.call_args_list)
        assert hosts == sorted([REFERENCE, TESTING])


class TestDivergentProviders:
    """Hosts disagree on some documents."""

    def test_missing_field_reported(self):
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: ok(
                    lambda method, key: asset_body(key, burnt=False) if key == "k2" else asset_body(key)
                ),
            }
        )
        config = make_config(log_differences=True)

        report = make_runner(config, {Method.GET_ASSET: ["k1", "k2"]}, client).run()

        stats = report.methods[Method.GET_ASSET]
        assert not report.overall_success
        assert stats.failed == 1
        assert stats.divergent == 1
        assert stats.failures == (
            ("k2", 'json atom at path ".result.burnt" is missing from lhs'),
        )

    def test_known_difference_suppressed(self):
        def testing_body(method, key):
            document = json.loads(asset_body(key))
            del document["result"]["content"]["metadata"]["token_standard"]
            return json.dumps(document)

        client = FakeDasClient(
            {REFERENCE: ok(lambda method, key: asset_body(key)), TESTING: ok(testing_body)}
        )
        config = make_config(
            difference_filter_regexes=(
                re.compile('json atom at path ".*?\\.token_standard" is missing from rhs'),
            )
        )

        report = make_runner(config, {Method.GET_ASSET: ["k1"]}, client).run()

        assert report.overall_success

    def test_failures_not_kept_without_log_differences(self):
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: ok(lambda method, key: asset_body(key, mutable=False)),
            }
        )

        report = make_runner(make_config(), {Method.GET_ASSET: ["k1"]}, client).run()

        assert report.methods[Method.GET_ASSET].failed == 1
        assert report.methods[Method.GET_ASSET].failures == ()

    def test_malformed_testing_body(self):
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: ok(lambda method, key: "<html>502 Bad Gateway</html>"),
            }
        )

        report = make_runner(make_config(), {Method.GET_ASSET: ["k1"]}, client).run()

        stats = report.methods[Method.GET_ASSET]
        assert stats.divergent == 1
        assert stats.malformed == 1


class TestFailingHosts:
    """Transient and terminal fetch failures."""

    def test_transient_failures_recovered(self):
        attempts = {"count": 0}
        lock = threading.Lock()

        def flaky(method, key):
            with lock:
                attempts["count"] += 1
                current = attempts["count"]
            if current < 3:
                return RequestOutcome.transient("HTTP 503", status_code=503)
            return RequestOutcome.success(asset_body(key), latency=0.001)

        client = FakeDasClient({REFERENCE: ok(lambda method, key: asset_body(key)), TESTING: flaky})

        report = make_runner(make_config(test_retries=5), {Method.GET_ASSET: ["k1"]}, client).run()

        assert report.overall_success
        assert client.calls_for(TESTING) == 3

    def test_reference_unreachable(self):
        client = FakeDasClient(
            {
                REFERENCE: lambda method, key: RequestOutcome.transient("ConnectionError: refused"),
                TESTING: ok(lambda method, key: asset_body(key)),
            }
        )
        config = make_config(test_retries=4, log_differences=True)

        report = make_runner(config, {Method.GET_ASSET: ["k1", "k2"]}, client).run()

        stats = report.methods[Method.GET_ASSET]
        assert stats.reference_failed == 2
        assert stats.testing_failed == 0
        assert client.calls_for(REFERENCE) == 8
        key, detail = stats.failures[0]
        assert key == "k1"
        assert detail == (
            "reference host failed: retries exhausted after 4 attempts: ConnectionError: refused"
        )

    def test_terminal_failure_not_retried(self):
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: lambda method, key: RequestOutcome.terminal("HTTP 404", status_code=404),
            }
        )

        report = make_runner(make_config(test_retries=10), {Method.GET_ASSET: ["k1"]}, client).run()

        assert report.methods[Method.GET_ASSET].testing_failed == 1
        assert client.calls_for(TESTING) == 1

    def test_reference_failure_takes_precedence(self):
        client = FakeDasClient(
            {
                REFERENCE: lambda method, key: RequestOutcome.terminal("HTTP 400"),
                TESTING: lambda method, key: RequestOutcome.terminal("HTTP 400"),
            }
        )

        report = make_runner(make_config(), {Method.GET_ASSET: ["k1"]}, client).run()

        stats = report.methods[Method.GET_ASSET]
        assert stats.reference_failed == 1
        assert stats.testing_failed == 0

    def test_unexpected_client_error_recorded_not_raised(self):
        def explode(method, key):
            raise RuntimeError("boom")

        client = FakeDasClient({REFERENCE: ok(lambda method, key: asset_body(key)), TESTING: explode})
        config = make_config(log_differences=True)

        report = make_runner(config, {Method.GET_ASSET: ["k1", "k2"]}, client).run()

        stats = report.methods[Method.GET_ASSET]
        assert stats.errored == 2
        assert stats.testing_failed == 0
        assert stats.reference_failed == 0
        assert stats.failures[0] == ("k1", "check failed: unexpected error: boom")


class TestGracefulStop:
    """Stop event handling."""

    def test_stop_before_start_skips_all_pairs(self):
        stop_event = threading.Event()
        stop_event.set()
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: ok(lambda method, key: asset_body(key)),
            }
        )

        report = make_runner(
            make_config(), {Method.GET_ASSET: ["k1", "k2"]}, client, stop_event=stop_event
        ).run()

        assert report.total_pairs == 0
        assert client.calls == []

    def test_stop_mid_run_finishes_in_flight_pairs(self):
        stop_event = threading.Event()

        def stopping(method, key):
            stop_event.set()
            return RequestOutcome.success(asset_body(key), latency=0.001)

        client = FakeDasClient({REFERENCE: stopping, TESTING: ok(lambda method, key: asset_body(key))})
        keys = {Method.GET_ASSET: [f"k{i}" for i in range(20)]}

        report = make_runner(
            make_config(max_parallel_pairs=1), keys, client, stop_event=stop_event
        ).run()

        assert report.total_pairs == 1
        assert report.overall_success


class TestPairCheck:
    """Pair lifecycle transitions."""

    def test_valid_lifecycle(self):
        pair = PairCheck(Method.GET_ASSET, "k1")

        pair.advance(PairState.FETCHING_BOTH)
        pair.advance(PairState.COMPARING)
        pair.advance(PairState.DONE)

        assert pair.state is PairState.DONE

    def test_done_is_final(self):
        pair = PairCheck(Method.GET_ASSET, "k1", state=PairState.DONE)

        with pytest.raises(RuntimeError):
            pair.advance(PairState.COMPARING)

    def test_cannot_compare_before_fetching(self):
        pair = PairCheck(Method.GET_ASSET, "k1")

        with pytest.raises(RuntimeError):
            pair.advance(PairState.COMPARING)

    def test_runner_leaves_pairs_done(self):
        client = FakeDasClient(
            {
                REFERENCE: ok(lambda method, key: asset_body(key)),
                TESTING: ok(lambda method, key: asset_body(key)),
            }
        )
        runner = make_runner(make_config(), {Method.GET_ASSET: ["k1"]}, client)

        with ThreadPoolExecutor(max_workers=2) as fetch_pool:
            pair = runner.check_pair(Method.GET_ASSET, "k1", fetch_pool)

        assert pair.state is PairState.DONE
        assert pair.result.status is ComparisonStatus.EQUIVALENT

    def test_unexpected_error_leaves_pair_done(self):
        def explode(method, key):
            raise RuntimeError("boom")

        client = FakeDasClient({REFERENCE: explode, TESTING: ok(lambda method, key: asset_body(key))})
        runner = make_runner(make_config(), {Method.GET_ASSET: ["k1"]}, client)

        with ThreadPoolExecutor(max_workers=2) as fetch_pool:
            pair = runner.check_pair(Method.GET_ASSET, "k1", fetch_pool)

        assert pair.state is PairState.DONE
        assert pair.result.status is ComparisonStatus.ERRORED
        assert pair.result.describe() == "check failed: unexpected error: boom"
