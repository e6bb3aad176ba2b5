import secrets
from typing import List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel
from redis.asyncio import Redis

from app.models.domain import (
    AuditEntry,
    Membership,
    QuickQueryRecord,
    Study,
    Tenant,
    User,
)
from app.services.tenant_store import SlugTaken

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

AUDIT_GLOBAL = "global"
AUDIT_MAX_ENTRIES = 5000


class RedisTenantStore:
    """
    ``TenantStore`` on Redis. Documents are pydantic JSON strings; history
    indexes are sorted sets scored by id so newest-first is a ZREVRANGE.
    """

    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    async def _next_id(self, kind: str) -> int:
        return int(await self.redis.incr(f"seq:{kind}"))

    async def _load(self, key: str, model: Type[M]) -> Optional[M]:
        raw = await self.redis.get(key)
        if raw is None:
            return None
        return model.model_validate_json(raw)

    async def _load_many(self, keys: List[str], model: Type[M]) -> List[M]:
        if not keys:
            return []
        raws = await self.redis.mget(keys)
        return [model.model_validate_json(raw) for raw in raws if raw is not None]

    # --- users / sessions ---

    async def get_user(self, user_id: int) -> Optional[User]:
        return await self._load(f"user:{user_id}", User)

    async def save_user(self, user: User) -> User:
        await self.redis.set(f"user:{user.id}", user.model_dump_json())
        return user

    async def create_session(self, user_id: int, ttl_seconds: int) -> str:
        session_id = secrets.token_urlsafe(32)
        await self.redis.setex(f"session:{session_id}", ttl_seconds, str(user_id))
        return session_id

    async def get_session_user_id(self, session_id: str) -> Optional[int]:
        raw = await self.redis.get(f"session:{session_id}")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.error("session_parse_error", raw_value=str(raw))
            return None

    async def delete_session(self, session_id: str) -> None:
        await self.redis.delete(f"session:{session_id}")

    # --- tenants / memberships ---

    async def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        return await self._load(f"tenant:{tenant_id}", Tenant)

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        tenant_id = await self._next_id("tenant")
        # SET NX on the slug index keeps slugs unique across racing requests
        if not await self.redis.set(f"tenant_slug:{tenant.slug}", tenant_id, nx=True):
            raise SlugTaken(tenant.slug)
        tenant = tenant.model_copy(update={"id": tenant_id})
        await self.redis.set(f"tenant:{tenant_id}", tenant.model_dump_json())
        return tenant

    async def update_tenant(self, tenant: Tenant) -> Tenant:
        await self.redis.set(f"tenant:{tenant.id}", tenant.model_dump_json())
        return tenant

    async def list_tenants(self) -> List[Tenant]:
        # ids come from seq:tenant; ids lost to slug conflicts have no document
        last_id = int(await self.redis.get("seq:tenant") or 0)
        return await self._load_many([f"tenant:{i}" for i in range(1, last_id + 1)], Tenant)

    async def get_membership(self, user_id: int, tenant_id: int) -> Optional[Membership]:
        raw = await self.redis.hget(f"members:{tenant_id}", str(user_id))
        return Membership.model_validate_json(raw) if raw else None

    async def add_membership(self, membership: Membership) -> Membership:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(f"members:{membership.tenant_id}", str(membership.user_id), membership.model_dump_json())
            pipe.sadd(f"user_tenants:{membership.user_id}", membership.tenant_id)
            await pipe.execute()
        return membership

    async def list_user_memberships(self, user_id: int) -> List[Membership]:
        tenant_ids = await self.redis.smembers(f"user_tenants:{user_id}")
        memberships = []
        for tenant_id in sorted(int(t) for t in tenant_ids):
            membership = await self.get_membership(user_id, tenant_id)
            if membership:
                memberships.append(membership)
        return memberships

    async def list_tenant_members(self, tenant_id: int) -> List[Membership]:
        raws = await self.redis.hvals(f"members:{tenant_id}")
        return [Membership.model_validate_json(raw) for raw in raws]

    # --- quick query history ---

    async def add_quick_query(self, record: QuickQueryRecord) -> QuickQueryRecord:
        record = record.model_copy(update={"id": await self._next_id("quick_query")})
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(f"quick_query:{record.id}", record.model_dump_json())
            pipe.zadd(f"quick_queries:{record.tenant_id}", {str(record.id): record.id})
            await pipe.execute()
        return record

    async def list_quick_queries(self, tenant_id: int, limit: int, offset: int) -> List[QuickQueryRecord]:
        ids = await self.redis.zrevrange(f"quick_queries:{tenant_id}", offset, offset + limit - 1)
        return await self._load_many([f"quick_query:{i}" for i in ids], QuickQueryRecord)

    # --- audit ---

    async def add_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        entry = entry.model_copy(update={"id": await self._next_id("audit")})
        key = f"audit:{entry.tenant_id if entry.tenant_id is not None else AUDIT_GLOBAL}"
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lpush(key, entry.model_dump_json())
            pipe.ltrim(key, 0, AUDIT_MAX_ENTRIES - 1)
            await pipe.execute()
        return entry

    async def list_audit_entries(self, tenant_id: Optional[int], limit: int = 50) -> List[AuditEntry]:
        key = f"audit:{tenant_id if tenant_id is not None else AUDIT_GLOBAL}"
        raws = await self.redis.lrange(key, 0, limit - 1)
        return [AuditEntry.model_validate_json(raw) for raw in raws]

    # --- studies ---

    async def create_study(self, study: Study) -> Study:
        study = study.model_copy(update={"id": await self._next_id("study")})
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(f"study:{study.id}", study.model_dump_json())
            pipe.zadd(f"studies:{study.tenant_id}", {str(study.id): study.id})
            await pipe.execute()
        return study

    async def get_study(self, study_id: int) -> Optional[Study]:
        return await self._load(f"study:{study_id}", Study)

    async def list_studies(self, tenant_id: int) -> List[Study]:
        ids = await self.redis.zrevrange(f"studies:{tenant_id}", 0, -1)
        return await self._load_many([f"study:{i}" for i in ids], Study)

    async def update_study(self, study: Study) -> Study:
        await self.redis.set(f"study:{study.id}", study.model_dump_json())
        return study
