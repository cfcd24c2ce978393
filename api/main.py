"""
FastAPI application for the Open-Meteo caching proxy.
"""
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from meteo_cache.cache import CacheUnavailableError, InMemoryCache, RedisCacheStore
from meteo_cache.config import Settings
from meteo_cache.handler import CacheAsideHandler, internal_error
from meteo_cache.keys import query_mapping
from meteo_cache.provider import UpstreamClient
from utils.metrics import (
    get_content_type,
    get_metrics,
    health_check_counter,
    request_counter,
    request_duration,
    set_app_info,
)

from .logging_config import log_request, setup_logging

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def build_cache_store(settings: Settings):
    """Create the cache store selected by CACHE_BACKEND."""
    if settings.cache_backend == "memory":
        return InMemoryCache()
    return RedisCacheStore(
        settings.redis_url,
        max_retries=settings.redis_max_retries,
        socket_timeout=settings.redis_socket_timeout,
    )


def create_app(
    settings: Optional[Settings] = None,
    cache_store=None,
    upstream: Optional[UpstreamClient] = None,
) -> FastAPI:
    """Build the proxy application around explicitly constructed collaborators."""
    settings = settings or Settings.from_env()
    cache_store = cache_store if cache_store is not None else build_cache_store(settings)
    upstream = upstream or UpstreamClient(
        settings.upstream_base_url, settings.upstream_timeout
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Connect the cache before serving and release it on shutdown."""
        logger.info("Open-Meteo caching proxy starting up")
        logger.info(
            f"Configuration: CACHE_BACKEND={settings.cache_backend}, "
            f"REDIS_URL={settings.redis_url}, CACHE_TTL={settings.cache_ttl}s, "
            f"UPSTREAM={settings.upstream_base_url}"
        )

        try:
            cache_store.ping()
        except CacheUnavailableError as e:
            logger.error(f"Cannot connect to cache store: {e}")
            raise RuntimeError(f"Cannot connect to cache store: {e}") from e
        logger.info(f"Cache store connected ({settings.cache_backend})")

        set_app_info(version=VERSION, environment=settings.environment)
        logger.info("Open-Meteo caching proxy startup complete")

        try:
            yield
        finally:
            logger.info("Open-Meteo caching proxy shutting down")
            cache_store.close()
            logger.info("Open-Meteo caching proxy shutdown complete")

    app = FastAPI(
        title="Open-Meteo Caching Proxy",
        description="Transparent Redis-backed cache in front of the Open-Meteo API",
        version=VERSION,
        lifespan=lifespan,
        # /docs, /redoc and /openapi.json belong to the proxied API
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.cache_store = cache_store
    app.state.handler = CacheAsideHandler(cache_store, upstream, settings.cache_ttl)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """
        Collect Prometheus metrics for HTTP requests.
        """
        # Skip metrics collection for the metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Proxied paths share one label to keep cardinality bounded
        endpoint = "/health" if request.url.path == "/health" else "/proxy"

        request_counter.labels(
            method=request.method, endpoint=endpoint, status_code=response.status_code
        ).inc()
        request_duration.labels(method=request.method, endpoint=endpoint).observe(
            duration
        )

        return response

    @app.get("/health")
    def health_check():
        """Report whether the cache store is reachable."""
        try:
            connected = app.state.cache_store.ping()
        except CacheUnavailableError as e:
            logger.warning(f"Health check failed: {e}")
            connected = False

        if connected:
            health_check_counter.labels(status="ok").inc()
            return {"status": "ok", "redis": "connected"}

        health_check_counter.labels(status="error").inc()
        return JSONResponse(
            status_code=500, content={"status": "error", "redis": "disconnected"}
        )

    @app.get("/metrics")
    def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return Response(content=get_metrics(), media_type=get_content_type())

    @app.get("/{full_path:path}")
    def proxy(request: Request):
        """Forward any other GET to Open-Meteo through the cache."""
        request_id = str(uuid.uuid4())
        start_time = time.time()
        path = request.url.path
        params = query_mapping(request.query_params.multi_items())

        try:
            result = app.state.handler.handle(path, params, request_id=request_id)
            response = JSONResponse(status_code=result.status_code, content=result.body)
        except Exception as e:
            logger.exception(
                f"Unexpected error proxying {path}: {e}",
                extra={"request_id": request_id, "path": path},
            )
            result = internal_error(str(e))
            response = JSONResponse(status_code=result.status_code, content=result.body)

        log_request(
            logger,
            request_id,
            "proxy",
            int((time.time() - start_time) * 1000),
            str(result.status_code),
            f"Proxied {path}",
            path=path,
        )
        return response

    return app


settings = Settings.from_env()
setup_logging(settings.log_level)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=settings.port, log_level="info")
