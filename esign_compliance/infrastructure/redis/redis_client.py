"""
Redis Client Configuration

Shared connection used by the rate limiter and anomaly detector when several
service instances must see the same counters.
"""

import logging
import os
import time
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import redis
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class RedisConfig(BaseModel):
    """Redis connection configuration."""

    # Connection settings
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[str] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    ssl: bool = Field(default=False, description="Enable SSL/TLS")

    # Connection pool
    max_connections: int = Field(default=50, description="Max pool connections")
    socket_timeout: float = Field(default=5.0, description="Socket timeout in seconds")
    socket_connect_timeout: float = Field(default=5.0, description="Connect timeout")
    retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    health_check_interval: int = Field(default=30, description="Health check interval")

    key_prefix: str = Field(default="esign", description="Namespace for all keys")

    @classmethod
    def from_env(cls) -> "RedisConfig":
        """Load Redis configuration from environment variables."""
        key_prefix = os.environ.get("REDIS_KEY_PREFIX", "esign")
        redis_url = os.environ.get("REDIS_URL")

        if redis_url:
            parsed = urlparse(redis_url)
            return cls(
                host=parsed.hostname or "localhost",
                port=parsed.port or 6379,
                password=parsed.password,
                db=int(parsed.path.lstrip("/") or 0),
                ssl=parsed.scheme == "rediss",
                key_prefix=key_prefix,
            )

        return cls(
            host=os.environ.get("REDIS_HOST", "localhost"),
            port=int(os.environ.get("REDIS_PORT", "6379")),
            password=os.environ.get("REDIS_PASSWORD"),
            db=int(os.environ.get("REDIS_DB", "0")),
            ssl=os.environ.get("REDIS_SSL", "").lower() == "true",
            key_prefix=key_prefix,
        )


# =============================================================================
# Redis Client Manager
# =============================================================================

class RedisClientManager:
    """Lazily connected, process-wide Redis connection pool."""

    _instance: Optional["RedisClientManager"] = None

    def __init__(self, config: Optional[RedisConfig] = None):
        self.config = config or RedisConfig.from_env()
        self._client: Optional[redis.Redis] = None
        self._pool: Optional[redis.ConnectionPool] = None

    @classmethod
    def get_instance(cls, config: Optional[RedisConfig] = None) -> "RedisClientManager":
        """Get singleton instance of RedisClientManager."""
        if cls._instance is None:
            cls._instance = cls(config)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def connect(self) -> None:
        """Establish connection to Redis."""
        pool_class = redis.ConnectionPool
        pool_kwargs: Dict[str, Any] = {}
        if self.config.ssl:
            pool_kwargs["connection_class"] = redis.SSLConnection

        self._pool = pool_class(
            host=self.config.host,
            port=self.config.port,
            password=self.config.password,
            db=self.config.db,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.socket_timeout,
            socket_connect_timeout=self.config.socket_connect_timeout,
            retry_on_timeout=self.config.retry_on_timeout,
            decode_responses=True,
            health_check_interval=self.config.health_check_interval,
            **pool_kwargs,
        )
        self._client = redis.Redis(connection_pool=self._pool)

        try:
            self._client.ping()
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            raise
        logger.info(f"Connected to Redis at {self.config.host}:{self.config.port}")

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, connecting if necessary."""
        if self._client is None:
            self.connect()
        return self._client

    def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis client: {str(e)}")
            finally:
                self._client = None

        if self._pool is not None:
            self._pool.disconnect()
            self._pool = None

    def health_check(self) -> Dict[str, Any]:
        """Ping Redis and report latency."""
        result: Dict[str, Any] = {"status": "unknown", "latency_ms": None, "error": None}
        try:
            start = time.time()
            self.client.ping()
            result["latency_ms"] = round((time.time() - start) * 1000, 2)
            result["status"] = "healthy"
        except redis.RedisError as e:
            result["status"] = "unhealthy"
            result["error"] = str(e)
        return result
