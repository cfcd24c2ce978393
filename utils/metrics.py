"""
Prometheus metrics for the Open-Meteo caching proxy.
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    Info,
    generate_latest,
)

# Application info metric
app_info = Info(
    "meteocache_app",
    "Application information for the Open-Meteo caching proxy",
)

# Request metrics
request_counter = Counter(
    "meteocache_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"],
)

# Latency metrics
request_duration = Histogram(
    "meteocache_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Cache metrics
cache_lookup_counter = Counter(
    "meteocache_cache_lookups_total",
    "Total number of cache lookups",
    ["result"],
)

cache_write_counter = Counter(
    "meteocache_cache_writes_total",
    "Total number of cache writes",
    ["status"],
)

# Upstream metrics
upstream_request_counter = Counter(
    "meteocache_upstream_requests_total",
    "Total number of requests sent to Open-Meteo",
    ["outcome"],
)

upstream_duration = Histogram(
    "meteocache_upstream_duration_seconds",
    "Open-Meteo request duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

# Health metrics
health_check_counter = Counter(
    "meteocache_health_checks_total",
    "Total number of health check requests",
    ["status"],
)


def set_app_info(version: str, environment: str = "production"):
    """Set application information."""
    app_info.info(
        {"version": version, "environment": environment, "application": "meteo-cache"}
    )


def get_metrics() -> bytes:
    """Get all metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
