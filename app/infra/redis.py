"""
Redis Connection Management

Single shared connection for conversation sessions. When Redis is down the
accessor returns None and callers keep sessions in process memory; a new
connection is attempted only after a cool-down, so a dead Redis does not add
a connect timeout to every inbound message.
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

# Namespace for every key this app writes
APP_PREFIX = "appointments:v1:"


class RedisClient:
    """Process-wide Redis connection with degraded-mode support."""

    _client: Optional[Redis] = None
    _connected: bool = False
    _retry_after: float = 0.0

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Connected client, or None while Redis is unavailable.

        After a failure no reconnect is attempted for
        settings.redis_retry_seconds.
        """
        if cls._client is not None and cls._connected:
            return cls._client

        if time.monotonic() < cls._retry_after:
            return None

        try:
            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=Retry(ExponentialBackoff(), retries=2),
            )
            await cls._client.ping()
        except RedisError as e:
            logger.error(f"Redis unavailable, sessions kept in memory: {e}")
            cls._client = None
            cls._connected = False
            cls._retry_after = time.monotonic() + settings.redis_retry_seconds
            return None

        cls._connected = True
        cls._retry_after = 0.0
        logger.info("Redis connection established")
        return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the connection."""
        if cls._client is None:
            return
        try:
            await cls._client.aclose()
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
        finally:
            cls._client = None
            cls._connected = False

    @classmethod
    def mark_disconnected(cls) -> None:
        """Called after a failed command; the next access reconnects."""
        cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """Shared client, or None in degraded mode."""
    return await RedisClient.get_client()


async def check_redis_health() -> bool:
    """True if Redis answers PING."""
    client = await get_redis()
    if client is None:
        return False

    try:
        await client.ping()
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        RedisClient.mark_disconnected()
        return False
    return True
