import calendar
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol, Tuple

import structlog
from redis.asyncio import Redis

from app.models.domain import PlanUsage

logger = structlog.get_logger(__name__)

QUICK_QUERIES = "quick_queries"
STUDIES = "studies"
COUNTERS = (QUICK_QUERIES, STUDIES)

# Counters outlive their month a little so late reads still see the final value
PERIOD_GRACE = timedelta(days=7)


def month_period(now: datetime) -> Tuple[datetime, datetime]:
    """Calendar month (UTC) containing ``now``: first instant and last second."""
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    last_day = calendar.monthrange(now.year, now.month)[1]
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    end = datetime(now.year, now.month, last_day, 23, 59, 59, tzinfo=timezone.utc)
    return start, end


def usage_key(tenant_id: int, counter: str, now: datetime) -> str:
    start, _ = month_period(now)
    return f"usage:{tenant_id}:{start:%Y%m}:{counter}"


def seconds_until_reset(now: datetime) -> int:
    _, end = month_period(now)
    now = now if now.tzinfo else now.replace(tzinfo=timezone.utc)
    return max(1, int((end - now).total_seconds()) + 1)


def _key_ttl(now: datetime) -> int:
    return seconds_until_reset(now) + int(PERIOD_GRACE.total_seconds())


class QuotaInterface(Protocol):
    """Per-tenant monthly usage counters."""
    async def get_usage(self, tenant_id: int, now: datetime) -> PlanUsage: ...
    async def check_and_consume(self, tenant_id: int, counter: str, limit: int, now: datetime) -> Tuple[bool, int]: ...
    async def increment(self, tenant_id: int, counter: str, now: datetime) -> int: ...
    async def release(self, tenant_id: int, counter: str, now: datetime) -> None: ...


class QuotaRepository:
    """
    Redis-backed usage counters with fail-closed behavior (no in-memory fallback).
    """
    CHECK_AND_CONSUME = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local ttl = tonumber(ARGV[2])
    local current = tonumber(redis.call('GET', key) or '0')
    if current >= limit then
      return {0, current}
    end
    local count = redis.call('INCR', key)
    if count == 1 then
      redis.call('EXPIRE', key, ttl)
    end
    return {1, count}
    """

    RELEASE = """
    local key = KEYS[1]
    local current = tonumber(redis.call('GET', key) or '0')
    if current > 0 then
      return redis.call('DECR', key)
    end
    return 0
    """

    def __init__(self, redis_client: Optional[Redis] = None):
        self.redis_client: Optional[Redis] = redis_client

    def _require_client(self) -> Redis:
        if not self.redis_client:
            raise RuntimeError("redis_unavailable")
        return self.redis_client

    async def _read_counter(self, key: str) -> int:
        client = self._require_client()
        try:
            val = await client.get(key)
        except Exception as e:
            logger.error("quota_get_usage_error", error=str(e), key=key)
            raise RuntimeError("redis_unavailable") from e
        if val is None:
            return 0
        try:
            return int(val)
        except (TypeError, ValueError):
            logger.error("quota_parse_error", key=key, raw_value=str(val))
            return 0

    async def get_usage(self, tenant_id: int, now: datetime) -> PlanUsage:
        start, end = month_period(now)
        return PlanUsage(
            tenant_id=tenant_id,
            period_start=start,
            period_end=end,
            quick_queries_used=await self._read_counter(usage_key(tenant_id, QUICK_QUERIES, now)),
            studies_opened=await self._read_counter(usage_key(tenant_id, STUDIES, now)),
        )

    async def increment(self, tenant_id: int, counter: str, now: datetime) -> int:
        client = self._require_client()
        key = usage_key(tenant_id, counter, now)
        try:
            val = await client.incr(key)
            if val == 1:
                await client.expire(key, _key_ttl(now))
            return int(val)
        except Exception as e:
            logger.error("quota_increment_error", error=str(e), key=key)
            raise RuntimeError("redis_unavailable") from e

    async def check_and_consume(self, tenant_id: int, counter: str, limit: int, now: datetime) -> Tuple[bool, int]:
        """
        Atomically check and consume one unit, returning (allowed, used).
        Uses a Lua script so racing requests cannot exceed the limit.
        """
        client = self._require_client()
        key = usage_key(tenant_id, counter, now)
        try:
            result = await client.eval(self.CHECK_AND_CONSUME, 1, key, limit, _key_ttl(now))
        except Exception as e:
            logger.error("quota_lua_error", error=str(e), key=key)
            raise RuntimeError("redis_unavailable") from e
        return bool(int(result[0]) == 1), int(result[1])

    async def release(self, tenant_id: int, counter: str, now: datetime) -> None:
        client = self._require_client()
        key = usage_key(tenant_id, counter, now)
        try:
            await client.eval(self.RELEASE, 1, key)
        except Exception as e:
            logger.error("quota_release_error", error=str(e), key=key)
            raise RuntimeError("redis_unavailable") from e


class InMemoryQuotaRepository:
    """
    Process-local counters for development and tests.

    Check and consume run without an await in between, so on a single event
    loop they are atomic.
    """

    def __init__(self):
        self.counters: Dict[str, int] = {}

    async def get_usage(self, tenant_id: int, now: datetime) -> PlanUsage:
        start, end = month_period(now)
        return PlanUsage(
            tenant_id=tenant_id,
            period_start=start,
            period_end=end,
            quick_queries_used=self.counters.get(usage_key(tenant_id, QUICK_QUERIES, now), 0),
            studies_opened=self.counters.get(usage_key(tenant_id, STUDIES, now), 0),
        )

    async def increment(self, tenant_id: int, counter: str, now: datetime) -> int:
        key = usage_key(tenant_id, counter, now)
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def check_and_consume(self, tenant_id: int, counter: str, limit: int, now: datetime) -> Tuple[bool, int]:
        key = usage_key(tenant_id, counter, now)
        current = self.counters.get(key, 0)
        if current >= limit:
            return False, current
        self.counters[key] = current + 1
        return True, current + 1

    async def release(self, tenant_id: int, counter: str, now: datetime) -> None:
        key = usage_key(tenant_id, counter, now)
        if self.counters.get(key, 0) > 0:
            self.counters[key] -= 1
