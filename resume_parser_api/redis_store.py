"""Redis client lifecycle and health reporting for the daily quota store."""

import re
import time
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from resume_parser_api.config import Settings

logger = structlog.get_logger()


@dataclass
class RedisHealth:
    """Result of a Redis health probe."""

    connected: bool
    latency_ms: float | None = None
    error: str | None = None


def create_redis_client(settings: Settings) -> redis.Redis:
    """Create the async Redis client.

    The connection is established lazily on the first command, so an
    unreachable server does not prevent the application from starting.
    """
    client = redis.from_url(
        settings.redis_connection_url,
        password=settings.redis_password or None,
        socket_connect_timeout=settings.redis_timeout_seconds,
        socket_timeout=settings.redis_timeout_seconds,
        decode_responses=True,
    )
    logger.info("Redis client created", url=mask_redis_url(settings.redis_connection_url))
    return client


async def close_redis_client(client: redis.Redis | None) -> None:
    """Close the Redis client, logging instead of failing on shutdown errors."""
    if client is None:
        return
    try:
        await client.aclose()
        logger.info("Redis client closed")
    except (RedisError, OSError) as e:
        logger.warning("Error closing Redis client", error=str(e))


async def check_redis_health(client: redis.Redis | None) -> RedisHealth:
    """Ping Redis and report reachability and round-trip latency."""
    if client is None:
        return RedisHealth(connected=False, error="Redis client not initialized")

    start = time.perf_counter()
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis ping failed", error=str(e))
        return RedisHealth(connected=False, error=str(e))

    latency_ms = round((time.perf_counter() - start) * 1000, 2)
    logger.debug("Redis ping", latency_ms=latency_ms)
    return RedisHealth(connected=True, latency_ms=latency_ms)


def mask_redis_url(url: str) -> str:
    """Replace the password in a Redis URL with ``***``."""
    try:
        parts = urlsplit(url)
        if not parts.password:
            return url
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
        return urlunsplit(parts._replace(netloc=netloc))
    except ValueError:
        return re.sub(r":([^@/]+)@", ":***@", url)
