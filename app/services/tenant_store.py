# Storage for tenants, memberships, sessions, quick query history, audit
# entries and studies. The Redis implementation lives in redis_store.py.

import itertools
import secrets
from typing import Dict, List, Optional, Protocol, Tuple

from app.models.domain import (
    AuditEntry,
    Membership,
    QuickQueryRecord,
    Study,
    Tenant,
    User,
)


class TenantStore(Protocol):
    async def get_user(self, user_id: int) -> Optional[User]: ...
    async def save_user(self, user: User) -> User: ...

    async def create_session(self, user_id: int, ttl_seconds: int) -> str: ...
    async def get_session_user_id(self, session_id: str) -> Optional[int]: ...
    async def delete_session(self, session_id: str) -> None: ...

    async def get_tenant(self, tenant_id: int) -> Optional[Tenant]: ...
    async def create_tenant(self, tenant: Tenant) -> Tenant: ...
    async def update_tenant(self, tenant: Tenant) -> Tenant: ...
    async def list_tenants(self) -> List[Tenant]: ...

    async def get_membership(self, user_id: int, tenant_id: int) -> Optional[Membership]: ...
    async def add_membership(self, membership: Membership) -> Membership: ...
    async def list_user_memberships(self, user_id: int) -> List[Membership]: ...
    async def list_tenant_members(self, tenant_id: int) -> List[Membership]: ...

    async def add_quick_query(self, record: QuickQueryRecord) -> QuickQueryRecord: ...
    async def list_quick_queries(self, tenant_id: int, limit: int, offset: int) -> List[QuickQueryRecord]: ...

    async def add_audit_entry(self, entry: AuditEntry) -> AuditEntry: ...
    async def list_audit_entries(self, tenant_id: Optional[int], limit: int = 50) -> List[AuditEntry]: ...

    async def create_study(self, study: Study) -> Study: ...
    async def get_study(self, study_id: int) -> Optional[Study]: ...
    async def list_studies(self, tenant_id: int) -> List[Study]: ...
    async def update_study(self, study: Study) -> Study: ...


class SlugTaken(ValueError):
    """Raised by ``create_tenant`` when the slug already belongs to a tenant."""


class InMemoryTenantStore:
    """Dict-backed ``TenantStore`` for development and tests."""

    def __init__(self):
        self.users: Dict[int, User] = {}
        self.sessions: Dict[str, int] = {}
        self.tenants: Dict[int, Tenant] = {}
        self.memberships: Dict[Tuple[int, int], Membership] = {}
        self.quick_queries: List[QuickQueryRecord] = []
        self.audit_entries: List[AuditEntry] = []
        self.studies: Dict[int, Study] = {}
        self._ids = {kind: itertools.count(1) for kind in ("tenant", "quick_query", "audit", "study")}

    def _next_id(self, kind: str) -> int:
        return next(self._ids[kind])

    async def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    async def save_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def create_session(self, user_id: int, ttl_seconds: int) -> str:
        # ttl is not enforced in memory; sessions live as long as the process
        session_id = secrets.token_urlsafe(32)
        self.sessions[session_id] = user_id
        return session_id

    async def get_session_user_id(self, session_id: str) -> Optional[int]:
        return self.sessions.get(session_id)

    async def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    async def get_tenant(self, tenant_id: int) -> Optional[Tenant]:
        return self.tenants.get(tenant_id)

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        if any(t.slug == tenant.slug for t in self.tenants.values()):
            raise SlugTaken(tenant.slug)
        tenant = tenant.model_copy(update={"id": self._next_id("tenant")})
        self.tenants[tenant.id] = tenant
        return tenant

    async def update_tenant(self, tenant: Tenant) -> Tenant:
        self.tenants[tenant.id] = tenant
        return tenant

    async def list_tenants(self) -> List[Tenant]:
        return [self.tenants[tenant_id] for tenant_id in sorted(self.tenants)]

    async def get_membership(self, user_id: int, tenant_id: int) -> Optional[Membership]:
        return self.memberships.get((user_id, tenant_id))

    async def add_membership(self, membership: Membership) -> Membership:
        self.memberships[(membership.user_id, membership.tenant_id)] = membership
        return membership

    async def list_user_memberships(self, user_id: int) -> List[Membership]:
        return [m for (uid, _), m in self.memberships.items() if uid == user_id]

    async def list_tenant_members(self, tenant_id: int) -> List[Membership]:
        return [m for (_, tid), m in self.memberships.items() if tid == tenant_id]

    async def add_quick_query(self, record: QuickQueryRecord) -> QuickQueryRecord:
        record = record.model_copy(update={"id": self._next_id("quick_query")})
        self.quick_queries.append(record)
        return record

    async def list_quick_queries(self, tenant_id: int, limit: int, offset: int) -> List[QuickQueryRecord]:
        rows = [r for r in reversed(self.quick_queries) if r.tenant_id == tenant_id]
        return rows[offset:offset + limit]

    async def add_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        entry = entry.model_copy(update={"id": self._next_id("audit")})
        self.audit_entries.append(entry)
        return entry

    async def list_audit_entries(self, tenant_id: Optional[int], limit: int = 50) -> List[AuditEntry]:
        rows = [e for e in reversed(self.audit_entries) if e.tenant_id == tenant_id]
        return rows[:limit]

    async def create_study(self, study: Study) -> Study:
        study = study.model_copy(update={"id": self._next_id("study")})
        self.studies[study.id] = study
        return study

    async def get_study(self, study_id: int) -> Optional[Study]:
        return self.studies.get(study_id)

    async def list_studies(self, tenant_id: int) -> List[Study]:
        rows = [s for s in self.studies.values() if s.tenant_id == tenant_id]
        return sorted(rows, key=lambda s: (s.created_at, s.id or 0), reverse=True)

    async def update_study(self, study: Study) -> Study:
        self.studies[study.id] = study
        return study
