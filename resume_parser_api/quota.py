"""Daily per-identity request quota backed by Redis.

Counters live under ``daily_limit:{identity}:{YYYY-MM-DD}`` (service local
time) and expire at the next local midnight. The decision is made on the
value returned by the atomic ``INCR``, so concurrent requests for the same
identity can never be admitted beyond the limit. When Redis is unavailable
the counter fails open.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError
from starlette.requests import Request

from resume_parser_api.observability import record_quota_decision

logger = structlog.get_logger()

KEY_PREFIX = "daily_limit"

QuotaKeyStrategy = Literal["ip", "api_key", "combined"]


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of one quota check."""

    allowed: bool
    remaining: int
    reset_time: datetime
    degraded: bool = False

    def seconds_until_reset(self, now: datetime | None = None) -> int:
        now = now or datetime.now().astimezone()
        return max(0, int((self.reset_time - now).total_seconds()))


@dataclass(frozen=True)
class QuotaStoreError:
    """A backing-store failure, returned rather than raised."""

    operation: str
    key: str
    message: str


def local_now() -> datetime:
    """Current time in the service's local time zone."""
    return datetime.now().astimezone()


def next_midnight(now: datetime) -> datetime:
    """Start of the day following ``now``, in the same time zone."""
    return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


class DailyQuotaCounter:
    """Atomic daily counter per identity."""

    def __init__(
        self,
        client: redis.Redis | None,
        clock: Callable[[], datetime] = local_now,
    ):
        self._redis = client
        self._clock = clock

    def key_for(self, identity: str, now: datetime | None = None) -> str:
        """Redis key for ``identity`` on the day containing ``now``."""
        now = now or self._clock()
        return f"{KEY_PREFIX}:{identity}:{now.strftime('%Y-%m-%d')}"

    async def try_check_and_increment(
        self, identity: str, max_requests: int
    ) -> QuotaDecision | QuotaStoreError:
        """Check and consume one request, reporting store failures as values."""
        now = self._clock()
        key = self.key_for(identity, now)
        reset_time = next_midnight(now)

        if self._redis is None:
            return QuotaStoreError("check_and_increment", key, "Redis client not initialized")

        try:
            current = int(await self._redis.get(key) or 0)
            if current >= max_requests:
                return QuotaDecision(allowed=False, remaining=0, reset_time=reset_time)

            ttl = max(1, int((reset_time - now).total_seconds()))
            async with self._redis.pipeline(transaction=True) as pipe:
                count, _ = await pipe.incr(key).expire(key, ttl).execute()
            count = int(count)

            if count > max_requests:
                # Lost the race after the pre-check; settle the counter back at the limit
                await self._redis.decr(key)
                return QuotaDecision(allowed=False, remaining=0, reset_time=reset_time)
        except (RedisError, OSError, ValueError) as e:
            return QuotaStoreError("check_and_increment", key, str(e))

        return QuotaDecision(
            allowed=True,
            remaining=max(0, max_requests - count),
            reset_time=reset_time,
        )

    async def check_and_increment(self, identity: str, max_requests: int) -> QuotaDecision:
        """Check and consume one request, failing open on store errors."""
        result = await self.try_check_and_increment(identity, max_requests)

        if isinstance(result, QuotaStoreError):
            logger.warning(
                "Daily quota store unavailable, allowing request",
                identity=identity,
                operation=result.operation,
                error=result.message,
            )
            result = QuotaDecision(
                allowed=True,
                remaining=max(0, max_requests - 1),
                reset_time=next_midnight(self._clock()),
                degraded=True,
            )
        elif not result.allowed:
            logger.warning("Daily quota exceeded", identity=identity, limit=max_requests)

        record_quota_decision(result.allowed, result.degraded)
        return result

    async def get_current_count(self, identity: str) -> int:
        """Requests consumed today by ``identity`` (0 when the store is down)."""
        if self._redis is None:
            return 0
        try:
            return int(await self._redis.get(self.key_for(identity)) or 0)
        except (RedisError, OSError, ValueError) as e:
            logger.error("Error reading daily quota count", identity=identity, error=str(e))
            return 0

    async def reset_limit(self, identity: str) -> bool:
        """Delete today's counter for ``identity``."""
        if self._redis is None:
            logger.warning("Redis not available for reset operation")
            return False
        try:
            await self._redis.delete(self.key_for(identity))
        except (RedisError, OSError) as e:
            logger.error("Error resetting daily quota", identity=identity, error=str(e))
            return False

        logger.info("Daily quota reset", identity=identity)
        return True

    async def get_stats(self) -> dict[str, Any]:
        """Identities with a counter for today."""
        date = self._clock().strftime("%Y-%m-%d")
        stats: dict[str, Any] = {"total_keys": 0, "active_users": [], "date": date}
        if self._redis is None:
            return stats

        pattern = f"{KEY_PREFIX}:*:{date}"
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
        except (RedisError, OSError) as e:
            logger.error("Error getting daily quota stats", error=str(e))
            return stats

        # Identities may contain ':' themselves (api:..., IPv6)
        stats["active_users"] = sorted(key.split(":", 1)[1].rsplit(":", 1)[0] for key in keys)
        stats["total_keys"] = len(keys)
        return stats


def get_client_identifier(request: Request) -> str:
    """Best-effort client address, honouring common proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def resolve_quota_identity(request: Request, strategy: QuotaKeyStrategy = "ip") -> str:
    """Identity a request is counted against under the given key strategy."""
    if strategy == "ip":
        return get_client_identifier(request)

    api_key = request.headers.get("x-api-key")
    if strategy == "api_key":
        return f"api:{api_key}" if api_key else get_client_identifier(request)

    if api_key:
        return f"api:{api_key}"
    return f"ip:{get_client_identifier(request)}"
