# Request-scoped providers. Long-lived components live on app.state (built in
# the lifespan); services are cheap wrappers assembled per request so tests can
# override any single collaborator.

from fastapi import Depends, Request

from app.core.config import Settings
from app.core.errors import Unauthorized
from app.models.domain import DemographicSnapshot, User
from app.services.places_client import PlacesClient
from app.services.quick_query_cache import QuickQueryCache
from app.services.quick_query_service import QuickQueryService
from app.services.quota_repository import QuotaInterface
from app.services.space_client import SpaceClient
from app.services.study_service import StudyService
from app.services.tenant_service import TenantService
from app.services.tenant_store import TenantStore


def get_settings(request: Request) -> Settings:
    return request.app.state.config


def get_store(request: Request) -> TenantStore:
    return request.app.state.store


def get_quota(request: Request) -> QuotaInterface:
    return request.app.state.quota


def get_cache(request: Request) -> QuickQueryCache[DemographicSnapshot]:
    return request.app.state.cache


def get_space_client(request: Request) -> SpaceClient:
    return request.app.state.space_client


def get_places_client(request: Request) -> PlacesClient:
    return request.app.state.places_client


def get_current_user(request: Request) -> User:
    user = getattr(request.state, "user", None)
    if user is None:
        raise Unauthorized("A valid session is required.", code="SESSION_REQUIRED")
    return user


def get_quick_query_service(
    store: TenantStore = Depends(get_store),
    quota: QuotaInterface = Depends(get_quota),
    client: SpaceClient = Depends(get_space_client),
    cache: QuickQueryCache[DemographicSnapshot] = Depends(get_cache),
    config: Settings = Depends(get_settings),
) -> QuickQueryService:
    return QuickQueryService(
        store,
        quota,
        client,
        cache,
        cost_units=config.QUICK_QUERY_COST_UNITS,
        history_max_limit=config.HISTORY_MAX_LIMIT,
    )


def get_tenant_service(
    store: TenantStore = Depends(get_store),
    quota: QuotaInterface = Depends(get_quota),
    config: Settings = Depends(get_settings),
) -> TenantService:
    return TenantService(store, quota, config.PLAN_LIMITS)


def get_study_service(
    store: TenantStore = Depends(get_store),
    quota: QuotaInterface = Depends(get_quota),
) -> StudyService:
    return StudyService(store, quota)
