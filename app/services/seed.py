# Demo tenant, users and sessions for local development.

from datetime import datetime, timezone
from typing import Dict

import structlog

from app.core.config import Settings
from app.models.domain import Membership, MembershipRole, PlanTier, Tenant, TenantLimits, User, UserRole
from app.services.tenant_store import TenantStore

logger = structlog.get_logger(__name__)

DEMO_USERS = (
    User(id=1, name="Admin Demo", email="admin@franqueadorademo.com", role=UserRole.TENANT_ADMIN),
    User(id=2, name="Ana Silva", email="ana.silva@franqueadorademo.com", role=UserRole.MEMBER),
    User(id=3, name="Consultor BP", email="consultor@buscaponto.com", role=UserRole.ANALYST_BP),
    User(id=4, name="Admin BP", email="admin@buscaponto.com", role=UserRole.ADMIN_BP),
)


async def seed_demo_data(store: TenantStore, config: Settings) -> Dict[str, str]:
    """
    Create the demo tenant and one session per demo user.

    Session ids are random; they are logged and returned as a mapping of
    user email -> session id.
    """
    now = datetime.now(timezone.utc)
    for user in DEMO_USERS:
        await store.save_user(user)

    tenant = await store.create_tenant(
        Tenant(
            id=0,
            name="Franqueadora Demo",
            slug="franqueadora-demo",
            plan=PlanTier.ESSENCIAL,
            limits=TenantLimits(**config.PLAN_LIMITS[PlanTier.ESSENCIAL.value]),
            created_at=now,
        )
    )
    await store.add_membership(
        Membership(user_id=1, tenant_id=tenant.id, role=MembershipRole.TENANT_ADMIN, created_at=now)
    )
    await store.add_membership(
        Membership(user_id=2, tenant_id=tenant.id, role=MembershipRole.MEMBER, created_at=now)
    )

    sessions = {}
    for user in DEMO_USERS:
        sid = await store.create_session(user.id, config.SESSION_TTL_SECONDS)
        sessions[user.email] = sid
        logger.info("demo_session_created", user_id=user.id, email=user.email, session_id=sid)
    logger.info("demo_data_seeded", tenant_id=tenant.id, users=len(DEMO_USERS))
    return sessions
