"""
Cache-aside orchestration for proxied Open-Meteo requests.

Every proxied GET goes through CacheAsideHandler.handle():

1. derive the cache key from the path and query parameters
2. read the cache; a hit is returned immediately, a cache failure is a miss
3. on a miss, fetch from upstream and classify the outcome
4. cache successful responses only, then return them

Cache failures never fail a request. Upstream failures are mapped to
504 (timeout) or 500 (anything else); upstream client errors are passed
through untouched.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from meteo_cache.cache import CacheUnavailableError
from meteo_cache.keys import QueryValue, derive_cache_key
from meteo_cache.provider import (
    ClientError,
    Success,
    Timeout,
    TransportFailure,
    UpstreamOutcome,
)
from utils.metrics import cache_lookup_counter, cache_write_counter

logger = logging.getLogger(__name__)

GATEWAY_TIMEOUT_BODY = {"error": "Gateway timeout"}
INTERNAL_ERROR = "Internal server error"

_MISS = object()


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


@dataclass(frozen=True)
class ProxyResponse:
    status_code: int
    body: Any


def internal_error(message: str) -> ProxyResponse:
    return ProxyResponse(500, {"error": INTERNAL_ERROR, "message": message})


class CacheAsideHandler:
    def __init__(self, cache, upstream, ttl_seconds: int):
        self.cache = cache
        self.upstream = upstream
        self.ttl_seconds = ttl_seconds

    def handle(
        self,
        path: str,
        params: Mapping[str, QueryValue],
        request_id: Optional[str] = None,
    ) -> ProxyResponse:
        """Answer a proxied request from cache or upstream."""
        cache_key = derive_cache_key(path, params)
        log_extra = {"request_id": request_id, "path": path, "cache_key": cache_key}

        cached = self._read_cache(cache_key, log_extra)
        if cached is not _MISS:
            logger.info(f"Cache HIT for {path}", extra={**log_extra, "status": "hit"})
            return ProxyResponse(200, cached)

        logger.info(f"Cache MISS for {path}", extra={**log_extra, "status": "miss"})

        outcome = self.upstream.fetch(path, params)
        return self._respond(outcome, cache_key, log_extra)

    def _read_cache(self, cache_key: str, log_extra: dict) -> Any:
        """Return the decoded cached payload, or _MISS on miss or cache failure."""
        try:
            payload = self.cache.get(cache_key)
        except CacheUnavailableError as e:
            cache_lookup_counter.labels(result="error").inc()
            logger.warning(
                f"Cache read failed, falling back to upstream: {e}", extra=log_extra
            )
            return _MISS

        if payload is None:
            cache_lookup_counter.labels(result="miss").inc()
            return _MISS

        try:
            data = json.loads(payload, parse_constant=_reject_constant)
        except ValueError:
            cache_lookup_counter.labels(result="error").inc()
            logger.warning("Discarding undecodable cache entry", extra=log_extra)
            return _MISS

        cache_lookup_counter.labels(result="hit").inc()
        return data

    def _respond(
        self, outcome: UpstreamOutcome, cache_key: str, log_extra: dict
    ) -> ProxyResponse:
        if isinstance(outcome, Success):
            try:
                payload = json.dumps(outcome.body, ensure_ascii=False, allow_nan=False)
            except (TypeError, ValueError) as e:
                logger.error(f"Upstream body is not valid JSON: {e}", extra=log_extra)
                return internal_error(f"Upstream body is not valid JSON: {e}")
            self._write_cache(cache_key, payload, log_extra)
            return ProxyResponse(200, outcome.body)

        if isinstance(outcome, ClientError):
            logger.error(
                f"Open-Meteo API error {outcome.status_code}: {outcome.body}",
                extra={**log_extra, "upstream_status": outcome.status_code},
            )
            return ProxyResponse(outcome.status_code, outcome.body)

        if isinstance(outcome, Timeout):
            return ProxyResponse(504, dict(GATEWAY_TIMEOUT_BODY))

        if isinstance(outcome, TransportFailure):
            return internal_error(outcome.message)

        raise TypeError(f"Unknown upstream outcome: {outcome!r}")

    def _write_cache(self, cache_key: str, payload: str, log_extra: dict) -> None:
        try:
            self.cache.set_with_expiry(cache_key, payload, self.ttl_seconds)
        except CacheUnavailableError as e:
            cache_write_counter.labels(status="error").inc()
            logger.error(f"Cache write failed: {e}", extra=log_extra)
            return

        cache_write_counter.labels(status="ok").inc()
