"""
Upstream client for the Open-Meteo API.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

import requests
from urllib3.exceptions import ReadTimeoutError

from meteo_cache.keys import QueryValue
from utils.metrics import upstream_duration, upstream_request_counter

logger = logging.getLogger(__name__)

OPENMETEO_BASE_URL = "https://api.open-meteo.com"
UPSTREAM_TIMEOUT_SECONDS = 10


class UpstreamOutcome:
    """Result of a single upstream call."""


@dataclass(frozen=True)
class Success(UpstreamOutcome):
    status_code: int
    body: Any


@dataclass(frozen=True)
class ClientError(UpstreamOutcome):
    status_code: int
    body: Any


@dataclass(frozen=True)
class Timeout(UpstreamOutcome):
    pass


@dataclass(frozen=True)
class TransportFailure(UpstreamOutcome):
    message: str


class UpstreamClient:
    def __init__(
        self,
        base_url: str = OPENMETEO_BASE_URL,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def build_url(self, path: str) -> str:
        """Map a proxied path onto the upstream base URL."""
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def fetch(self, path: str, params: Mapping[str, QueryValue]) -> UpstreamOutcome:
        """
        GET the upstream path with the same query parameters.

        Never raises for HTTP or transport failures. 2xx responses are a
        Success, 3xx/4xx a ClientError to forward verbatim, timeouts a
        Timeout, and everything else (including 5xx) a TransportFailure.
        """
        url = self.build_url(path)
        start_time = time.time()

        try:
            response = requests.get(url, params=dict(params), timeout=self.timeout)
        except requests.Timeout:
            logger.error(f"Upstream timeout after {self.timeout}s: {url}")
            return self._record(Timeout(), start_time)
        except requests.ConnectionError as e:
            # A stall while reading the body surfaces as ConnectionError
            if _is_read_timeout(e):
                logger.error(f"Upstream timeout after {self.timeout}s reading body: {url}")
                return self._record(Timeout(), start_time)
            logger.error(f"Upstream request failed: {e}")
            return self._record(TransportFailure(str(e)), start_time)
        except requests.RequestException as e:
            logger.error(f"Upstream request failed: {e}")
            return self._record(TransportFailure(str(e)), start_time)

        status_code = response.status_code
        if status_code >= 500:
            logger.error(f"Upstream server error {status_code} for {url}")
            return self._record(
                TransportFailure(f"Request failed with status code {status_code}"),
                start_time,
            )

        body = self._decode_body(response)
        if 200 <= status_code < 300:
            return self._record(Success(status_code, body), start_time)

        return self._record(ClientError(status_code, body), start_time)

    def _decode_body(self, response: requests.Response) -> Any:
        """Decode a JSON body, falling back to the raw text."""
        try:
            return response.json()
        except ValueError:
            return response.text

    def _record(self, outcome: UpstreamOutcome, start_time: float) -> UpstreamOutcome:
        upstream_request_counter.labels(outcome=outcome_label(outcome)).inc()
        upstream_duration.observe(time.time() - start_time)
        return outcome


def outcome_label(outcome: UpstreamOutcome) -> str:
    if isinstance(outcome, Success):
        return "success"
    if isinstance(outcome, ClientError):
        return "client_error"
    if isinstance(outcome, Timeout):
        return "timeout"
    return "transport_failure"


def _is_read_timeout(error: BaseException) -> bool:
    """Check whether a requests error wraps urllib3's ReadTimeoutError."""
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, ReadTimeoutError):
            return True
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))
        pending.extend([current.__cause__, current.__context__])
    return False
