from dataclasses import dataclass

from app.core.errors import Forbidden, NotFound
from app.models.domain import MembershipRole, Tenant, User, UserRole
from app.services.tenant_store import TenantStore


@dataclass(frozen=True)
class TenantContext:
    user: User
    tenant: Tenant
    membership_role: MembershipRole

    @property
    def tenant_id(self) -> int:
        return self.tenant.id


def is_super_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN_BP


async def validate_tenant_access(store: TenantStore, user: User, tenant_id: int) -> TenantContext:
    """
    Resolve the caller's access to ``tenant_id``.

    BP admins reach every tenant with tenant-admin rights; everyone else
    needs a membership row.

    Raises:
        Forbidden: the user is not a member of the tenant.
        NotFound: the tenant does not exist.
    """
    if is_super_admin(user):
        tenant = await store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found.", code="TENANT_NOT_FOUND")
        return TenantContext(user=user, tenant=tenant, membership_role=MembershipRole.TENANT_ADMIN)

    membership = await store.get_membership(user.id, tenant_id)
    if membership is None:
        raise Forbidden("You do not have access to this tenant.", code="TENANT_ACCESS_DENIED")

    tenant = await store.get_tenant(tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found.", code="TENANT_NOT_FOUND")
    return TenantContext(user=user, tenant=tenant, membership_role=membership.role)


def require_tenant_admin(ctx: TenantContext) -> None:
    if ctx.membership_role != MembershipRole.TENANT_ADMIN:
        raise Forbidden("Only tenant administrators can perform this action.", code="TENANT_ADMIN_REQUIRED")


def require_super_admin(user: User) -> None:
    if not is_super_admin(user):
        raise Forbidden("Only BP administrators can perform this action.", code="ADMIN_REQUIRED")
