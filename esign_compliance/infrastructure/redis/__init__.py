"""Redis connectivity."""

from esign_compliance.infrastructure.redis.redis_client import (
    RedisClientManager,
    RedisConfig,
)

__all__ = ["RedisClientManager", "RedisConfig"]
