"""
Environment configuration for the caching proxy.
"""
import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field

from meteo_cache.provider import OPENMETEO_BASE_URL, UPSTREAM_TIMEOUT_SECONDS


class Settings(BaseModel):
    port: int = Field(default=3000, ge=1, le=65535)
    cache_ttl: int = Field(default=3600, ge=1)
    redis_host: str = "localhost"
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_max_retries: int = Field(default=1, ge=0)
    redis_socket_timeout: float = Field(default=1.0, gt=0)
    cache_backend: Literal["redis", "memory"] = "redis"
    log_level: str = "INFO"
    environment: str = "local"
    upstream_base_url: str = OPENMETEO_BASE_URL
    upstream_timeout: float = UPSTREAM_TIMEOUT_SECONDS

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Load settings from environment variables, keeping defaults for unset ones."""
        environ = os.environ if environ is None else environ
        env_vars = {
            "port": "PORT",
            "cache_ttl": "CACHE_TTL",
            "redis_host": "REDIS_HOST",
            "redis_port": "REDIS_PORT",
            "redis_max_retries": "REDIS_MAX_RETRIES",
            "redis_socket_timeout": "REDIS_SOCKET_TIMEOUT",
            "cache_backend": "CACHE_BACKEND",
            "log_level": "LOG_LEVEL",
            "environment": "DEPLOYMENT_ENV",
        }
        values = {
            field: environ[var] for field, var in env_vars.items() if environ.get(var)
        }
        return cls(**values)
