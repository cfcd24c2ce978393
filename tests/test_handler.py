"""
Unit tests for the cache-aside request handler.
"""
import json
from unittest.mock import MagicMock, Mock, patch

from meteo_cache.cache import CacheUnavailableError, InMemoryCache
from meteo_cache.handler import CacheAsideHandler, ProxyResponse
from meteo_cache.keys import derive_cache_key
from meteo_cache.provider import ClientError, Success, Timeout, TransportFailure

FORECAST = {
    "latitude": 52.1,
    "longitude": 5.1,
    "generationtime_ms": 0.0421,
    "utc_offset_seconds": 0,
    "hourly_units": {"time": "iso8601", "temperature_2m": "°C"},
    "hourly": {
        "time": ["2026-10-19T00:00", "2026-10-19T01:00"],
        "temperature_2m": [9.4, 8.9],
    },
}


class UnreachableCache:
    """Cache store whose every operation fails."""

    def __init__(self):
        self.writes = 0

    def get(self, key):
        raise CacheUnavailableError("Connection refused")

    def set_with_expiry(self, key, value, ttl_seconds):
        self.writes += 1
        raise CacheUnavailableError("Connection refused")

    def ping(self):
        raise CacheUnavailableError("Connection refused")

    def close(self):
        pass


class TestCacheAsideHandler:
    def setup_method(self):
        """Setup test fixtures."""
        self.cache = InMemoryCache()
        self.upstream = Mock()
        self.upstream.fetch.return_value = Success(200, FORECAST)
        self.handler = CacheAsideHandler(self.cache, self.upstream, ttl_seconds=3600)
        self.path = "/v1/forecast"
        self.params = {"latitude": "52.1", "longitude": "5.1"}

    def test_cold_then_warm_cache(self):
        """Test a cold request is fetched and cached, the repeat is served from cache."""
        first = self.handler.handle(self.path, self.params)
        second = self.handler.handle(self.path, self.params)

        assert first == ProxyResponse(200, FORECAST)
        assert second == ProxyResponse(200, FORECAST)
        assert json.dumps(first.body) == json.dumps(second.body)
        self.upstream.fetch.assert_called_once_with(self.path, self.params)

    def test_success_stored_under_derived_key(self):
        """Test success responses are stored as JSON under the derived key."""
        self.handler.handle(self.path, self.params)

        stored = self.cache.get(derive_cache_key(self.path, self.params))
        assert json.loads(stored) == FORECAST

    def test_reordered_params_hit_cache(self):
        """Test the same parameters in another order are a cache hit."""
        self.handler.handle(self.path, {"latitude": "52.1", "longitude": "5.1"})
        response = self.handler.handle(self.path, {"longitude": "5.1", "latitude": "52.1"})

        assert response.body == FORECAST
        assert self.upstream.fetch.call_count == 1

    def test_different_params_miss_cache(self):
        """Test different parameters are fetched separately."""
        self.handler.handle(self.path, self.params)
        self.handler.handle(self.path, {"latitude": "52.2", "longitude": "5.1"})

        assert self.upstream.fetch.call_count == 2

    @patch("meteo_cache.cache.time.time")
    def test_ttl_expiry_refetches(self, mock_time):
        """Test a request after the TTL elapsed goes back upstream."""
        mock_time.return_value = 1000
        self.handler.handle(self.path, self.params)

        mock_time.return_value = 1000 + 3599
        self.handler.handle(self.path, self.params)
        assert self.upstream.fetch.call_count == 1

        mock_time.return_value = 1000 + 3600
        self.handler.handle(self.path, self.params)
        assert self.upstream.fetch.call_count == 2

    def test_client_error_forwarded_not_cached(self):
        """Test upstream 4xx is forwarded verbatim and never cached."""
        body = {"error": True, "reason": "Cannot initialize WeatherVariable from invalid String value tempeature_2m."}
        self.upstream.fetch.return_value = ClientError(400, body)

        first = self.handler.handle(self.path, self.params)
        second = self.handler.handle(self.path, self.params)

        assert first == ProxyResponse(400, body)
        assert second == ProxyResponse(400, body)
        assert self.upstream.fetch.call_count == 2
        assert self.cache.get(derive_cache_key(self.path, self.params)) is None

    def test_not_found_forwarded(self):
        """Test upstream 404 keeps its status and body."""
        self.upstream.fetch.return_value = ClientError(404, "Not Found")

        assert self.handler.handle("/v2/nothing", {}) == ProxyResponse(404, "Not Found")

    def test_timeout_maps_to_gateway_timeout(self):
        """Test an upstream timeout becomes a 504 with a generic body."""
        self.upstream.fetch.return_value = Timeout()

        response = self.handler.handle(self.path, self.params)

        assert response == ProxyResponse(504, {"error": "Gateway timeout"})
        assert self.cache.get(derive_cache_key(self.path, self.params)) is None

    def test_transport_failure_maps_to_internal_error(self):
        """Test a transport failure becomes a 500 with the diagnostic message."""
        self.upstream.fetch.return_value = TransportFailure("Connection reset by peer")

        response = self.handler.handle(self.path, self.params)

        assert response == ProxyResponse(
            500, {"error": "Internal server error", "message": "Connection reset by peer"}
        )
        assert self.cache.get(derive_cache_key(self.path, self.params)) is None

    def test_cached_hit_skips_upstream(self):
        """Test a pre-populated entry is returned without an upstream call."""
        key = derive_cache_key(self.path, self.params)
        self.cache.set_with_expiry(key, json.dumps(FORECAST), 60)

        response = self.handler.handle(self.path, self.params)

        assert response == ProxyResponse(200, FORECAST)
        self.upstream.fetch.assert_not_called()

    def test_cached_json_null_is_a_hit(self):
        """Test a cached JSON null body is still a hit."""
        key = derive_cache_key(self.path, self.params)
        self.cache.set_with_expiry(key, "null", 60)

        assert self.handler.handle(self.path, self.params) == ProxyResponse(200, None)
        self.upstream.fetch.assert_not_called()

    def test_undecodable_cache_entry_is_a_miss(self):
        """Test a corrupt cache entry is ignored and replaced."""
        key = derive_cache_key(self.path, self.params)
        self.cache.set_with_expiry(key, "{not json", 60)

        response = self.handler.handle(self.path, self.params)

        assert response == ProxyResponse(200, FORECAST)
        assert json.loads(self.cache.get(key)) == FORECAST

    def test_non_finite_body_is_internal_error_not_cached(self):
        """Test a success body with NaN or Infinity is rejected and never cached."""
        self.upstream.fetch.return_value = Success(
            200, {"hourly": {"temperature_2m": [float("nan"), float("inf")]}}
        )

        response = self.handler.handle(self.path, self.params)

        assert response.status_code == 500
        assert response.body["error"] == "Internal server error"
        assert self.cache.get(derive_cache_key(self.path, self.params)) is None

    def test_cached_non_finite_entry_is_a_miss(self):
        """Test a stored entry holding NaN is discarded and refetched."""
        key = derive_cache_key(self.path, self.params)
        self.cache.set_with_expiry(key, '{"temperature_2m": NaN}', 60)

        response = self.handler.handle(self.path, self.params)

        assert response == ProxyResponse(200, FORECAST)
        self.upstream.fetch.assert_called_once()
        assert json.loads(self.cache.get(key)) == FORECAST


class TestCacheDegradation:
    def setup_method(self):
        """Setup test fixtures."""
        self.cache = UnreachableCache()
        self.upstream = Mock()
        self.upstream.fetch.return_value = Success(200, FORECAST)
        self.handler = CacheAsideHandler(self.cache, self.upstream, ttl_seconds=3600)

    def test_unreachable_cache_falls_through(self):
        """Test every request reaches upstream and succeeds when the cache is down."""
        for _ in range(3):
            response = self.handler.handle("/v1/forecast", {"latitude": "52.1"})
            assert response == ProxyResponse(200, FORECAST)

        assert self.upstream.fetch.call_count == 3
        assert self.cache.writes == 3

    def test_unreachable_cache_client_error(self):
        """Test upstream errors are still mapped when the cache is down."""
        self.upstream.fetch.return_value = Timeout()

        response = self.handler.handle("/v1/forecast", {})

        assert response.status_code == 504
        assert self.cache.writes == 0

    def test_write_failure_only(self):
        """Test a failing write does not affect the response."""
        cache = MagicMock()
        cache.get.return_value = None
        cache.set_with_expiry.side_effect = CacheUnavailableError("READONLY")
        handler = CacheAsideHandler(cache, self.upstream, ttl_seconds=60)

        response = handler.handle("/v1/forecast", {"latitude": "52.1"})

        assert response == ProxyResponse(200, FORECAST)
        cache.set_with_expiry.assert_called_once()
        assert cache.set_with_expiry.call_args.args[2] == 60

    def test_cache_read_before_upstream_before_write(self):
        """Test per-request ordering of cache read, upstream call, cache write."""
        calls = []
        cache = MagicMock()
        cache.get.side_effect = lambda key: calls.append("get")
        cache.set_with_expiry.side_effect = lambda *args: calls.append("set")

        def fetch(path, params):
            calls.append("fetch")
            return Success(200, FORECAST)

        self.upstream.fetch.side_effect = fetch
        CacheAsideHandler(cache, self.upstream, ttl_seconds=60).handle("/v1/forecast", {})

        assert calls == ["get", "fetch", "set"]
