from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

import structlog

from app.core.errors import NotFound
from app.models.domain import AuditEntry, Study, StudyPriority, StudyStatus, User
from app.services.quota_repository import STUDIES, QuotaInterface
from app.services.tenant_access import validate_tenant_access
from app.services.tenant_store import TenantStore

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class StudyService:
    """Manually curated market studies requested by tenants."""

    def __init__(self, store: TenantStore, quota: QuotaInterface, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.quota = quota
        self._clock = clock

    async def list_studies(self, user: User, tenant_id: int) -> List[Study]:
        await validate_tenant_access(self.store, user, tenant_id)
        return await self.store.list_studies(tenant_id)

    async def get_study(self, user: User, tenant_id: int, study_id: int) -> Study:
        await validate_tenant_access(self.store, user, tenant_id)
        study = await self.store.get_study(study_id)
        # Another tenant's study is reported as missing, not forbidden
        if study is None or study.tenant_id != tenant_id:
            raise NotFound("Study not found.", code="STUDY_NOT_FOUND")
        return study

    async def create_study(
        self,
        user: User,
        tenant_id: int,
        title: str,
        segment: str,
        address: str,
        lat: float,
        lng: float,
        radius_m: int,
        objectives: Optional[str] = None,
    ) -> Study:
        ctx = await validate_tenant_access(self.store, user, tenant_id)
        now = self._clock()
        study = await self.store.create_study(
            Study(
                tenant_id=ctx.tenant_id,
                title=title,
                segment=segment,
                address=address,
                lat=lat,
                lng=lng,
                radius_m=radius_m,
                objectives=objectives,
                created_by=user.id,
                created_at=now,
                updated_at=now,
            )
        )
        await self.quota.increment(tenant_id, STUDIES, now)
        await self.store.add_audit_entry(
            AuditEntry(
                tenant_id=tenant_id,
                actor_id=user.id,
                action="study_created",
                target_type="study",
                target_id=study.id,
                created_at=now,
            )
        )
        logger.info("study_created", tenant_id=tenant_id, study_id=study.id, user_id=user.id)
        return study

    async def update_study(
        self,
        user: User,
        tenant_id: int,
        study_id: int,
        status: Optional[StudyStatus] = None,
        priority: Optional[StudyPriority] = None,
        assigned_bp_user_id: Optional[int] = None,
        due_at: Optional[datetime] = None,
    ) -> Study:
        study = await self.get_study(user, tenant_id, study_id)
        changes = {
            name: value
            for name, value in (
                ("status", status),
                ("priority", priority),
                ("assigned_bp_user_id", assigned_bp_user_id),
                ("due_at", due_at),
            )
            if value is not None
        }
        if not changes:
            return study

        now = self._clock()
        study = await self.store.update_study(study.model_copy(update={**changes, "updated_at": now}))
        await self.store.add_audit_entry(
            AuditEntry(
                tenant_id=tenant_id,
                actor_id=user.id,
                action="study_updated",
                target_type="study",
                target_id=study_id,
                meta={name: _jsonable(value) for name, value in changes.items()},
                created_at=now,
            )
        )
        return study
