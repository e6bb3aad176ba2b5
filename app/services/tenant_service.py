from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from app.core.errors import InvalidArgument, NotFound
from app.models.domain import (
    AuditEntry,
    Membership,
    MembershipRole,
    PlanTier,
    PlanUsage,
    Tenant,
    TenantLimits,
    User,
)
from app.services.quota_repository import QuotaInterface
from app.services.tenant_access import require_super_admin, require_tenant_admin, validate_tenant_access
from app.services.tenant_store import SlugTaken, TenantStore

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantService:
    """Onboarding, plan limits and usage reporting for tenants."""

    def __init__(
        self,
        store: TenantStore,
        quota: QuotaInterface,
        plan_limits: Dict[str, Dict[str, int]],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.quota = quota
        self.plan_limits = plan_limits
        self._clock = clock

    def limits_for(self, plan: PlanTier) -> TenantLimits:
        return TenantLimits(**self.plan_limits[plan.value])

    async def memberships_of(self, user: User) -> List[Tuple[Tenant, MembershipRole]]:
        result = []
        for membership in await self.store.list_user_memberships(user.id):
            tenant = await self.store.get_tenant(membership.tenant_id)
            if tenant is not None:
                result.append((tenant, membership.role))
        return result

    async def create_tenant(
        self,
        user: User,
        name: str,
        slug: str,
        logo_url: Optional[str] = None,
        color_primary: Optional[str] = None,
    ) -> Tenant:
        now = self._clock()
        draft = Tenant(
            id=0,
            name=name,
            slug=slug,
            logo_url=logo_url,
            color_primary=color_primary or "#0F172A",
            plan=PlanTier.START,
            limits=self.limits_for(PlanTier.START),
            created_at=now,
        )
        try:
            tenant = await self.store.create_tenant(draft)
        except SlugTaken:
            raise InvalidArgument(f"Slug '{slug}' is already in use.", code="SLUG_TAKEN")

        await self.store.add_membership(
            Membership(user_id=user.id, tenant_id=tenant.id, role=MembershipRole.TENANT_ADMIN, created_at=now)
        )
        await self.store.add_audit_entry(
            AuditEntry(
                tenant_id=tenant.id,
                actor_id=user.id,
                action="tenant_created",
                target_type="tenant",
                target_id=tenant.id,
                created_at=now,
            )
        )
        logger.info("tenant_created", tenant_id=tenant.id, slug=slug, user_id=user.id)
        return tenant

    async def get_tenant(self, user: User, tenant_id: int) -> Tenant:
        ctx = await validate_tenant_access(self.store, user, tenant_id)
        return ctx.tenant

    async def members(self, user: User, tenant_id: int) -> List[Membership]:
        ctx = await validate_tenant_access(self.store, user, tenant_id)
        require_tenant_admin(ctx)
        return await self.store.list_tenant_members(tenant_id)

    async def list_tenants(self, user: User) -> List[Tenant]:
        require_super_admin(user)
        return await self.store.list_tenants()

    async def update_tenant(
        self,
        user: User,
        tenant_id: int,
        name: Optional[str] = None,
        logo_url: Optional[str] = None,
        color_primary: Optional[str] = None,
        color_dark: Optional[str] = None,
    ) -> Tenant:
        """Rename or rebrand a tenant. Only the fields given are changed."""
        ctx = await validate_tenant_access(self.store, user, tenant_id)
        require_tenant_admin(ctx)

        changes = {
            field: value
            for field, value in (
                ("name", name),
                ("logo_url", logo_url),
                ("color_primary", color_primary),
                ("color_dark", color_dark),
            )
            if value is not None
        }
        if not changes:
            return ctx.tenant

        tenant = await self.store.update_tenant(ctx.tenant.model_copy(update=changes))
        await self.store.add_audit_entry(
            AuditEntry(
                tenant_id=tenant_id,
                actor_id=user.id,
                action="tenant_updated",
                target_type="tenant",
                target_id=tenant_id,
                meta=changes,
                created_at=self._clock(),
            )
        )
        logger.info("tenant_updated", tenant_id=tenant_id, fields=sorted(changes), user_id=user.id)
        return tenant

    async def usage(self, user: User, tenant_id: int) -> Tuple[Tenant, PlanUsage, int]:
        """Tenant, current period usage and quick queries left this month."""
        ctx = await validate_tenant_access(self.store, user, tenant_id)
        usage = await self.quota.get_usage(tenant_id, self._clock())
        remaining = max(0, ctx.tenant.limits.quick_queries_per_month - usage.quick_queries_used)
        return ctx.tenant, usage, remaining

    async def update_limits(
        self,
        user: User,
        tenant_id: int,
        plan: Optional[PlanTier] = None,
        limits: Optional[TenantLimits] = None,
    ) -> Tenant:
        require_super_admin(user)
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found.", code="TENANT_NOT_FOUND")

        changes = {}
        if plan is not None:
            changes["plan"] = plan
        if limits is not None:
            changes["limits"] = limits
        if not changes:
            return tenant

        tenant = await self.store.update_tenant(tenant.model_copy(update=changes))
        await self.store.add_audit_entry(
            AuditEntry(
                tenant_id=tenant_id,
                actor_id=user.id,
                action="tenant_limits_updated",
                target_type="tenant",
                target_id=tenant_id,
                meta={
                    "plan": tenant.plan.value,
                    "limits": tenant.limits.model_dump(),
                },
                created_at=self._clock(),
            )
        )
        return tenant
