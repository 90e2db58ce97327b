"""
DAS API Client

Issues single JSON-RPC requests against a DAS API host and classifies the
result as success, transient failure (worth retrying) or terminal failure.
"""

import json
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from src.domain.methods import Method, build_request_body
from src.domain.outcomes import RequestOutcome
from src.utils.logger import get_logger, mask_url

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0

# HTTP 4xx codes that indicate overload or timing rather than a bad request
RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})

# JSON-RPC codes meaning the request itself (i.e. the key) is rejected
INVALID_REQUEST_RPC_CODES = frozenset({-32600, -32602})

SNIPPET_LENGTH = 200


def _snippet(text: Optional[str]) -> str:
    if not text:
        return ""
    return text.strip()[:SNIPPET_LENGTH]


def _http_reason(status_code: int, text: Optional[str]) -> str:
    snippet = _snippet(text)
    return f"HTTP {status_code}: {snippet}" if snippet else f"HTTP {status_code}"


def _rpc_error(body: str) -> Optional[Dict[str, Any]]:
    """Return the JSON-RPC error object if the body carries one."""
    try:
        data = json.loads(body)
    except (ValueError, RecursionError):
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"]
    return None


class DasApiClient:
    """
    Client for DAS API hosts.

    Holds no per-request state. Each thread gets its own requests.Session so
    connections are reused without sharing a session across threads.
    """

    HEADERS = {
        "Content-Type": "application/json",
        "Accept": "application/json",
    }

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        """
        Initialize DAS API client.

        Args:
            timeout: Per-request timeout in seconds
            session_factory: Builds the per-thread session (injectable for tests)
        """
        self.timeout = timeout
        self.session_factory = session_factory
        self._local = threading.local()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self.session_factory()
            self._local.session = session
        return session

    def fetch(self, host: str, method: Method, key: str) -> RequestOutcome:
        """
        Issue one request for a method+key against a host.

        Args:
            host: Host URL
            method: DAS API method
            key: Public key used as the request parameter

        Returns:
            RequestOutcome classified as success, transient or terminal failure
        """
        body = json.dumps(build_request_body(method, key))
        context = {"host": mask_url(host), "method": method.value, "key": key}

        start = time.perf_counter()
        try:
            response = self._session().post(
                host, data=body, headers=self.HEADERS, timeout=self.timeout
            )
            text = response.text
        except requests.Timeout as e:
            latency = time.perf_counter() - start
            logger.debug("Request timed out", operation="fetch", context=context)
            return RequestOutcome.transient(f"timeout: {e}", latency=latency)
        except requests.RequestException as e:
            # ConnectionError, ChunkedEncodingError, ContentDecodingError, ...
            latency = time.perf_counter() - start
            logger.debug(
                "Request failed at transport level", operation="fetch", context=context
            )
            return RequestOutcome.transient(
                f"{type(e).__name__}: {e}", latency=latency
            )
        latency = time.perf_counter() - start

        return self._classify(response.status_code, text, latency, context)

    def _classify(
        self,
        status_code: int,
        text: str,
        latency: float,
        context: Dict[str, Any],
    ) -> RequestOutcome:
        if status_code >= 500 or status_code in RETRYABLE_CLIENT_STATUSES:
            return RequestOutcome.transient(
                _http_reason(status_code, text),
                latency=latency,
                status_code=status_code,
            )

        if 400 <= status_code < 500:
            logger.warning(
                "Host rejected request",
                operation="fetch",
                context={**context, "status": status_code},
                error=_snippet(text),
            )
            return RequestOutcome.terminal(
                _http_reason(status_code, text),
                latency=latency,
                status_code=status_code,
            )

        if not 200 <= status_code < 300:
            return RequestOutcome.transient(
                f"unexpected HTTP {status_code}", latency=latency, status_code=status_code
            )

        rpc_error = _rpc_error(text)
        if rpc_error is not None and rpc_error.get("code") in INVALID_REQUEST_RPC_CODES:
            reason = f"JSON-RPC error {rpc_error.get('code')}: {rpc_error.get('message', '')}"
            return RequestOutcome.terminal(reason, latency=latency, status_code=status_code)

        # Other JSON-RPC errors (e.g. -32000 asset not found) are answers too and get
        # diffed like any result. An unparseable 2xx body is handed to the differ as well.
        return RequestOutcome.success(text, latency=latency, status_code=status_code)
