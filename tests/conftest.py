"""
Pytest Configuration and Shared Fixtures.

- config: Settings with no upstream credentials (synthetic mode)
- store / quota: in-memory backends seeded with one tenant
- clock: controllable UTC clock
- point: a query point in São Paulo
- api_client: TestClient over a freshly built app with demo data and known test sessions
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app
from app.models.domain import (
    Membership,
    MembershipRole,
    PlanTier,
    QueryPoint,
    Tenant,
    TenantLimits,
    User,
    UserRole,
)
from app.services.quick_query_cache import QuickQueryCache
from app.services.quota_repository import InMemoryQuotaRepository
from app.services.tenant_store import InMemoryTenantStore

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
TENANT_ID = 100

TENANT_ADMIN = User(id=1, name="Admin Rede", email="admin@rede.com", role=UserRole.TENANT_ADMIN)
MEMBER = User(id=2, name="Ana", email="ana@rede.com", role=UserRole.MEMBER)
OUTSIDER = User(id=3, name="Outsider", email="x@outra.com", role=UserRole.MEMBER)
BP_ADMIN = User(id=4, name="Admin BP", email="admin@bp.com", role=UserRole.ADMIN_BP)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


@pytest.fixture
def config() -> Settings:
    """Settings without any upstream credentials."""
    return Settings(
        ENV="test",
        SPACE_API_BASE_URL=None,
        SPACE_API_KEY=None,
        GOOGLE_PLACES_API_KEY=None,
        ENABLE_REDIS=False,
        SEED_DEMO_DATA=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def point() -> QueryPoint:
    return QueryPoint(lat=-23.5505, lng=-46.6333, radius_m=1000)


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(
        id=TENANT_ID,
        name="Rede Teste",
        slug="rede-teste",
        plan=PlanTier.START,
        limits=TenantLimits(quick_queries_per_month=3, simultaneous_studies=3, max_attachment_size_mb=5),
        created_at=NOW,
    )


@pytest.fixture
def store(tenant) -> InMemoryTenantStore:
    """In-memory store with one tenant, its admin and a plain member."""
    store = InMemoryTenantStore()
    for user in (TENANT_ADMIN, MEMBER, OUTSIDER, BP_ADMIN):
        store.users[user.id] = user
    store.tenants[tenant.id] = tenant
    store.memberships[(TENANT_ADMIN.id, tenant.id)] = Membership(
        user_id=TENANT_ADMIN.id, tenant_id=tenant.id, role=MembershipRole.TENANT_ADMIN, created_at=NOW
    )
    store.memberships[(MEMBER.id, tenant.id)] = Membership(
        user_id=MEMBER.id, tenant_id=tenant.id, role=MembershipRole.MEMBER, created_at=NOW
    )
    return store


@pytest.fixture
def quota() -> InMemoryQuotaRepository:
    return InMemoryQuotaRepository()


@pytest.fixture
def cache(monotonic) -> QuickQueryCache:
    return QuickQueryCache(ttl_seconds=1200, max_entries=100, clock=monotonic)


@pytest.fixture
def app(config):
    return create_app(config)


@pytest.fixture
def api_client(app):
    """TestClient with lifespan run; each demo user gets the session ``test-session-<user id>``."""
    with TestClient(app) as client:
        for user_id in app.state.store.users:
            app.state.store.sessions[session_for(user_id)] = user_id
        yield client


def session_for(user_id: int) -> str:
    return f"test-session-{user_id}"


def auth(user_id: int) -> dict:
    return {"Authorization": f"Bearer {session_for(user_id)}"}
