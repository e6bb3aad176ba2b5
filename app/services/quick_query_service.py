"""
Quick query orchestration.

A quick query is one point+radius demographic lookup billed against the
tenant's monthly quota:

1. radius/coordinates are validated (no I/O yet);
2. tenant access is checked;
3. one unit of quota is consumed atomically, or ``QuotaExceeded`` is raised;
4. the snapshot comes from the cache, or from the demographic client and
   normalizer on a miss;
5. a ``QuickQueryRecord`` and an audit entry are written.

If anything fails between 3 and the record write (including cancellation
of the request), the consumed unit is released again.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import structlog

from app.core.errors import InvalidArgument, QuotaExceeded
from app.models.domain import (
    AuditEntry,
    DemographicSnapshot,
    EnabledLayers,
    QueryPoint,
    QuickQueryRecord,
    User,
)
from app.services.quick_query_cache import QuickQueryCache
from app.services.quota_repository import QUICK_QUERIES, QuotaInterface, seconds_until_reset
from app.services.space_client import Degraded, SpaceClient
from app.services.space_normalizer import normalize
from app.services.tenant_access import validate_tenant_access
from app.services.tenant_store import TenantStore

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QuickQueryResult:
    snapshot: DemographicSnapshot
    cached: bool
    record: QuickQueryRecord
    quota_remaining: int


class QuickQueryService:
    def __init__(
        self,
        store: TenantStore,
        quota: QuotaInterface,
        client: SpaceClient,
        cache: QuickQueryCache[DemographicSnapshot],
        cost_units: int = 1,
        history_max_limit: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.quota = quota
        self.client = client
        self.cache = cache
        self.cost_units = cost_units
        self.history_max_limit = history_max_limit
        self._clock = clock

    async def _fetch_snapshot(self, point: QueryPoint) -> DemographicSnapshot:
        result = await self.client.fetch_demographics(point)
        if isinstance(result, Degraded):
            return normalize(result.raw, point, synthetic=True, fallback_reason=result.reason)
        return normalize(result.raw, point)

    async def lookup(self, point: QueryPoint) -> Tuple[DemographicSnapshot, bool]:
        """Cache -> client -> normalizer. Synthetic snapshots are never cached."""
        return await self.cache.get_or_fetch(
            point,
            lambda: self._fetch_snapshot(point),
            cacheable=lambda snapshot: not snapshot.synthetic,
        )

    async def run_quick_query(
        self,
        user: User,
        tenant_id: int,
        point: QueryPoint,
        enabled_layers: Optional[EnabledLayers] = None,
    ) -> QuickQueryResult:
        self.client.validate(point)
        ctx = await validate_tenant_access(self.store, user, tenant_id)

        limit = ctx.tenant.limits.quick_queries_per_month
        now = self._clock()
        allowed, used = await self.quota.check_and_consume(tenant_id, QUICK_QUERIES, limit, now)
        if not allowed:
            logger.warning("quota_exceeded", tenant_id=tenant_id, user_id=user.id, used=used, limit=limit)
            raise QuotaExceeded(limit, retry_after_seconds=seconds_until_reset(now))

        try:
            snapshot, cached = await self.lookup(point)
            record = await self.store.add_quick_query(
                QuickQueryRecord(
                    tenant_id=tenant_id,
                    user_id=user.id,
                    point=point,
                    enabled_layers=enabled_layers or EnabledLayers(),
                    result_summary=snapshot,
                    cost_units=self.cost_units,
                    created_at=self._clock(),
                )
            )
        except (Exception, asyncio.CancelledError):
            await self.quota.release(tenant_id, QUICK_QUERIES, now)
            raise

        await self.store.add_audit_entry(
            AuditEntry(
                tenant_id=tenant_id,
                actor_id=user.id,
                action="quick_query_executed",
                target_type="quick_query",
                target_id=record.id,
                meta={
                    "lat": point.lat,
                    "lng": point.lng,
                    "radius": point.radius_m,
                    "cached": cached,
                    "synthetic": snapshot.synthetic,
                },
                created_at=self._clock(),
            )
        )
        logger.info(
            "quick_query_executed",
            tenant_id=tenant_id,
            user_id=user.id,
            record_id=record.id,
            cached=cached,
            synthetic=snapshot.synthetic,
        )
        return QuickQueryResult(
            snapshot=snapshot,
            cached=cached,
            record=record,
            quota_remaining=max(0, limit - used),
        )

    async def history(self, user: User, tenant_id: int, limit: int = 20, offset: int = 0) -> List[QuickQueryRecord]:
        if not 1 <= limit <= self.history_max_limit:
            raise InvalidArgument(f"limit must be between 1 and {self.history_max_limit}.")
        if offset < 0:
            raise InvalidArgument("offset must not be negative.")
        await validate_tenant_access(self.store, user, tenant_id)
        return await self.store.list_quick_queries(tenant_id, limit, offset)
