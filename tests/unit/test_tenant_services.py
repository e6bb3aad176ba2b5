"""Unit tests for tenant access, onboarding, usage and studies."""

import pytest

from app.core.config import Settings
from app.core.errors import Forbidden, InvalidArgument, NotFound
from app.models.domain import MembershipRole, PlanTier, StudyPriority, StudyStatus, TenantLimits
from app.services.quota_repository import QUICK_QUERIES
from app.services.study_service import StudyService
from app.services.tenant_access import validate_tenant_access
from app.services.tenant_service import TenantService
from tests.conftest import BP_ADMIN, MEMBER, OUTSIDER, TENANT_ADMIN, TENANT_ID


@pytest.fixture
def tenants(store, quota, clock):
    return TenantService(store, quota, Settings(ENV="test").PLAN_LIMITS, clock=clock)


@pytest.fixture
def studies(store, quota, clock):
    return StudyService(store, quota, clock=clock)


async def _new_study(studies, user=MEMBER, tenant_id=TENANT_ID):
    return await studies.create_study(
        user,
        tenant_id,
        title="Nova unidade Pinheiros",
        segment="academia",
        address="Rua dos Pinheiros, 100",
        lat=-23.56,
        lng=-46.68,
        radius_m=1500,
    )


class TestValidateTenantAccess:
    """Test tenant access resolution."""

    @pytest.mark.asyncio
    async def test_member_gets_membership_role(self, store):
        """Members act with their membership role."""
        ctx = await validate_tenant_access(store, MEMBER, TENANT_ID)

        assert ctx.tenant_id == TENANT_ID
        assert ctx.membership_role == MembershipRole.MEMBER

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, store):
        """Users without membership are refused."""
        with pytest.raises(Forbidden) as exc_info:
            await validate_tenant_access(store, OUTSIDER, TENANT_ID)

        assert exc_info.value.code == "TENANT_ACCESS_DENIED"

    @pytest.mark.asyncio
    async def test_bp_admin_acts_as_tenant_admin(self, store):
        """BP admins reach any tenant as tenant admin."""
        ctx = await validate_tenant_access(store, BP_ADMIN, TENANT_ID)

        assert ctx.membership_role == MembershipRole.TENANT_ADMIN

    @pytest.mark.asyncio
    async def test_missing_tenant_not_found(self, store):
        """Unknown tenants are NotFound."""
        with pytest.raises(NotFound):
            await validate_tenant_access(store, BP_ADMIN, 12345)


class TestTenantService:
    """Test onboarding, membership and usage."""

    @pytest.mark.asyncio
    async def test_create_tenant_makes_caller_admin(self, tenants, store):
        """A new tenant starts on the start plan with the caller as admin."""
        tenant = await tenants.create_tenant(OUTSIDER, "Rede Nova", "rede-nova")

        assert tenant.plan == PlanTier.START
        assert tenant.limits.quick_queries_per_month == 300
        membership = await store.get_membership(OUTSIDER.id, tenant.id)
        assert membership.role == MembershipRole.TENANT_ADMIN
        assert store.audit_entries[-1].action == "tenant_created"

    @pytest.mark.asyncio
    async def test_duplicate_slug_rejected(self, tenants):
        """Slugs are unique."""
        with pytest.raises(InvalidArgument) as exc_info:
            await tenants.create_tenant(OUTSIDER, "Outra", "rede-teste")

        assert exc_info.value.code == "SLUG_TAKEN"

    @pytest.mark.asyncio
    async def test_members_requires_tenant_admin(self, tenants):
        """Only tenant admins list members."""
        members = await tenants.members(TENANT_ADMIN, TENANT_ID)
        assert {m.user_id for m in members} == {TENANT_ADMIN.id, MEMBER.id}

        with pytest.raises(Forbidden):
            await tenants.members(MEMBER, TENANT_ID)

    @pytest.mark.asyncio
    async def test_usage_reports_remaining(self, tenants, quota, clock):
        """Usage shows this month's counters and remaining quick queries."""
        await quota.check_and_consume(TENANT_ID, QUICK_QUERIES, 3, clock())

        tenant, usage, remaining = await tenants.usage(MEMBER, TENANT_ID)

        assert usage.quick_queries_used == 1
        assert remaining == tenant.limits.quick_queries_per_month - 1

    @pytest.mark.asyncio
    async def test_memberships_of(self, tenants):
        """A user's tenants are listed with their role."""
        result = await tenants.memberships_of(MEMBER)

        assert [(t.id, role) for t, role in result] == [(TENANT_ID, MembershipRole.MEMBER)]

    @pytest.mark.asyncio
    async def test_update_limits_is_bp_admin_only(self, tenants, store):
        """Only BP admins change plans and limits."""
        with pytest.raises(Forbidden):
            await tenants.update_limits(TENANT_ADMIN, TENANT_ID, plan=PlanTier.PRO)

        limits = TenantLimits(quick_queries_per_month=50, simultaneous_studies=2, max_attachment_size_mb=5)
        tenant = await tenants.update_limits(BP_ADMIN, TENANT_ID, plan=PlanTier.PRO, limits=limits)

        assert tenant.plan == PlanTier.PRO
        assert store.tenants[TENANT_ID].limits.quick_queries_per_month == 50
        assert store.audit_entries[-1].action == "tenant_limits_updated"


class TestStudyService:
    """Test market study lifecycle."""

    @pytest.mark.asyncio
    async def test_create_counts_and_audits(self, studies, store, quota, clock):
        """Creating a study bumps studies_opened and writes an audit entry."""
        study = await _new_study(studies)

        assert study.id is not None
        assert study.status == StudyStatus.OPEN
        assert (await quota.get_usage(TENANT_ID, clock())).studies_opened == 1
        assert store.audit_entries[-1].action == "study_created"

    @pytest.mark.asyncio
    async def test_update_changes_only_given_fields(self, studies, store, clock):
        """None fields are left untouched and the change is audited."""
        study = await _new_study(studies)
        clock.advance(hours=1)

        updated = await studies.update_study(MEMBER, TENANT_ID, study.id, status=StudyStatus.IN_ANALYSIS)

        assert updated.status == StudyStatus.IN_ANALYSIS
        assert updated.priority == StudyPriority.MEDIUM
        assert updated.updated_at > study.updated_at
        assert store.audit_entries[-1].meta == {"status": "em_analise"}

    @pytest.mark.asyncio
    async def test_other_tenants_study_is_not_found(self, studies, store):
        """A study id from another tenant is reported as missing."""
        other = await TenantService(store, studies.quota, Settings(ENV="test").PLAN_LIMITS).create_tenant(
            OUTSIDER, "Outra Rede", "outra-rede"
        )
        foreign = await _new_study(studies, user=OUTSIDER, tenant_id=other.id)

        with pytest.raises(NotFound):
            await studies.get_study(MEMBER, TENANT_ID, foreign.id)

    @pytest.mark.asyncio
    async def test_list_requires_membership(self, studies):
        """Outsiders cannot list a tenant's studies."""
        with pytest.raises(Forbidden):
            await studies.list_studies(OUTSIDER, TENANT_ID)


class TestTenantAdministration:
    """Test tenant listing and branding updates."""

    @pytest.mark.asyncio
    async def test_list_tenants_is_bp_admin_only(self, tenants):
        """Only BP admins see every tenant."""
        assert [t.id for t in await tenants.list_tenants(BP_ADMIN)] == [TENANT_ID]

        with pytest.raises(Forbidden):
            await tenants.list_tenants(TENANT_ADMIN)

    @pytest.mark.asyncio
    async def test_update_changes_given_fields_and_audits(self, tenants, store):
        """Name and colors change; untouched fields keep their values."""
        tenant = await tenants.update_tenant(TENANT_ADMIN, TENANT_ID, name="Rede Renovada", color_dark="#111111")

        assert tenant.name == "Rede Renovada"
        assert tenant.color_dark == "#111111"
        assert tenant.color_primary == "#0F172A"
        assert store.tenants[TENANT_ID].name == "Rede Renovada"
        assert store.audit_entries[-1].action == "tenant_updated"
        assert store.audit_entries[-1].meta == {"name": "Rede Renovada", "color_dark": "#111111"}

    @pytest.mark.asyncio
    async def test_update_requires_tenant_admin(self, tenants):
        """Plain members cannot rebrand their tenant."""
        with pytest.raises(Forbidden):
            await tenants.update_tenant(MEMBER, TENANT_ID, name="Outro Nome")

    @pytest.mark.asyncio
    async def test_update_without_changes_writes_nothing(self, tenants, store):
        """An empty update returns the tenant without an audit entry."""
        tenant = await tenants.update_tenant(TENANT_ADMIN, TENANT_ID)

        assert tenant.name == "Rede Teste"
        assert store.audit_entries == []
