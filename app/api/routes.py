# app/api/routes.py
# JSON API mounted under /api. Every route except logout needs a session; the handlers
# stay thin and leave access checks and quota to the service layer.

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.api.dependencies import (
    get_current_user,
    get_places_client,
    get_quick_query_service,
    get_settings,
    get_store,
    get_study_service,
    get_tenant_service,
)
from app.core.config import Settings
from app.models.domain import (
    Coordinates,
    GeocodedPoint,
    Membership,
    QueryPoint,
    QuickQueryRecord,
    Study,
    Tenant,
    User,
)
from app.models.dto import (
    CompetitorExportRequest,
    CompetitorSearchResponse,
    CreateStudyRequest,
    CreateTenantRequest,
    ErrorResponse,
    LogoutResponse,
    MembershipSummary,
    MeResponse,
    QuickQueryResponse,
    SortOption,
    SpaceQueryRequest,
    UpdateStudyRequest,
    UpdateTenantLimitsRequest,
    UpdateTenantRequest,
    UsageResponse,
)
from app.services.competitor_search import CompetitorSearch, dedupe_listings, map_segment_to_types, sort_listings
from app.services.export_service import csv_filename, export_listings_csv
from app.services.places_client import MAX_SEARCH_RADIUS, PlacesClient
from app.services.quick_query_service import QuickQueryService
from app.services.study_service import StudyService
from app.services.tenant_service import TenantService
from app.services.tenant_store import TenantStore
from app.utils.security import get_session_id

router = APIRouter()
logger = structlog.get_logger(__name__)

TENANT_ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}

# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------
@router.get("/auth/me", response_model=MeResponse, responses={401: {"model": ErrorResponse}})
async def me(
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    """Current user and the tenants they belong to."""
    memberships = await service.memberships_of(user)
    return MeResponse(
        user=user,
        memberships=[MembershipSummary(tenant=tenant, role=role) for tenant, role in memberships],
    )


@router.post("/auth/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    store: TenantStore = Depends(get_store),
    config: Settings = Depends(get_settings),
):
    """End the current session, if any, and clear the session cookie."""
    session_id = get_session_id(request, config.SESSION_COOKIE_NAME)
    if session_id:
        await store.delete_session(session_id)
        logger.info("session_ended", user_id=getattr(request.state, "user_id", None))
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return LogoutResponse()

# ----------------------------------------------------------------------
# Tenants
# ----------------------------------------------------------------------
@router.post(
    "/tenants",
    response_model=Tenant,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def create_tenant(
    data: CreateTenantRequest,
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    """Onboard a new tenant on the start plan; the caller becomes its admin."""
    return await service.create_tenant(user, data.name, data.slug, data.logo_url, data.color_primary)


@router.get("/tenants/{tenant_id}", response_model=Tenant, responses=TENANT_ERRORS)
async def get_tenant(
    tenant_id: int,
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    return await service.get_tenant(user, tenant_id)


@router.patch(
    "/tenants/{tenant_id}",
    response_model=Tenant,
    responses={**TENANT_ERRORS, 400: {"model": ErrorResponse}},
)
async def update_tenant(
    tenant_id: int,
    data: UpdateTenantRequest,
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    """Rename or rebrand a tenant (tenant admins only)."""
    return await service.update_tenant(
        user, tenant_id, data.name, data.logo_url, data.color_primary, data.color_dark
    )


@router.get("/tenants/{tenant_id}/members", response_model=List[Membership], responses=TENANT_ERRORS)
async def list_members(
    tenant_id: int,
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    return await service.members(user, tenant_id)


@router.get("/tenants/{tenant_id}/usage", response_model=UsageResponse, responses=TENANT_ERRORS)
async def get_usage(
    tenant_id: int,
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    """Usage counters of the current calendar month."""
    tenant, usage, remaining = await service.usage(user, tenant_id)
    return UsageResponse(tenant=tenant, usage=usage, quick_queries_remaining=remaining)


@router.get("/admin/tenants", response_model=List[Tenant], responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}})
async def list_tenants(
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    """Every tenant, for BP administrators."""
    return await service.list_tenants(user)


@router.patch("/admin/tenants/{tenant_id}/limits", response_model=Tenant, responses=TENANT_ERRORS)
async def update_tenant_limits(
    tenant_id: int,
    data: UpdateTenantLimitsRequest,
    user: User = Depends(get_current_user),
    service: TenantService = Depends(get_tenant_service),
):
    return await service.update_limits(user, tenant_id, data.plan, data.limits)

# ----------------------------------------------------------------------
# Quick queries
# ----------------------------------------------------------------------
@router.post(
    "/tenants/{tenant_id}/quick-queries",
    response_model=QuickQueryResponse,
    responses={**TENANT_ERRORS, 400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def run_quick_query(
    tenant_id: int,
    data: SpaceQueryRequest,
    user: User = Depends(get_current_user),
    service: QuickQueryService = Depends(get_quick_query_service),
):
    """Demographic snapshot for a point and radius, billed against the monthly quota."""
    point = QueryPoint(lat=data.lat, lng=data.lng, radius_m=data.radius, segment=data.segment)
    result = await service.run_quick_query(user, tenant_id, point, data.enabled_layers)
    return QuickQueryResponse(
        snapshot=result.snapshot,
        cached=result.cached,
        quota_remaining=result.quota_remaining,
        record_id=result.record.id,
    )


@router.get(
    "/tenants/{tenant_id}/quick-queries",
    response_model=List[QuickQueryRecord],
    responses={**TENANT_ERRORS, 400: {"model": ErrorResponse}},
)
async def quick_query_history(
    tenant_id: int,
    limit: int = Query(20, description="Page size, 1 to HISTORY_MAX_LIMIT."),
    offset: int = Query(0),
    user: User = Depends(get_current_user),
    service: QuickQueryService = Depends(get_quick_query_service),
):
    """Quick queries of the tenant, newest first."""
    return await service.history(user, tenant_id, limit=limit, offset=offset)

# ----------------------------------------------------------------------
# Studies
# ----------------------------------------------------------------------
@router.get("/tenants/{tenant_id}/studies", response_model=List[Study], responses=TENANT_ERRORS)
async def list_studies(
    tenant_id: int,
    user: User = Depends(get_current_user),
    service: StudyService = Depends(get_study_service),
):
    return await service.list_studies(user, tenant_id)


@router.post(
    "/tenants/{tenant_id}/studies",
    response_model=Study,
    status_code=status.HTTP_201_CREATED,
    responses={**TENANT_ERRORS, 400: {"model": ErrorResponse}},
)
async def create_study(
    tenant_id: int,
    data: CreateStudyRequest,
    user: User = Depends(get_current_user),
    service: StudyService = Depends(get_study_service),
):
    return await service.create_study(
        user,
        tenant_id,
        title=data.title,
        segment=data.segment,
        address=data.address,
        lat=data.lat,
        lng=data.lng,
        radius_m=data.radius_m,
        objectives=data.objectives,
    )


@router.get("/tenants/{tenant_id}/studies/{study_id}", response_model=Study, responses=TENANT_ERRORS)
async def get_study(
    tenant_id: int,
    study_id: int,
    user: User = Depends(get_current_user),
    service: StudyService = Depends(get_study_service),
):
    return await service.get_study(user, tenant_id, study_id)


@router.patch("/tenants/{tenant_id}/studies/{study_id}", response_model=Study, responses=TENANT_ERRORS)
async def update_study(
    tenant_id: int,
    study_id: int,
    data: UpdateStudyRequest,
    user: User = Depends(get_current_user),
    service: StudyService = Depends(get_study_service),
):
    return await service.update_study(
        user,
        tenant_id,
        study_id,
        status=data.status,
        priority=data.priority,
        assigned_bp_user_id=data.assigned_bp_user_id,
        due_at=data.due_at,
    )

# ----------------------------------------------------------------------
# Places: geocoding and competitors
# ----------------------------------------------------------------------
@router.get("/places/geocode", response_model=Optional[GeocodedPoint], responses={502: {"model": ErrorResponse}})
async def geocode(
    query: str = Query(..., min_length=3),
    user: User = Depends(get_current_user),
    client: PlacesClient = Depends(get_places_client),
):
    """Address (or typed coordinates) to a point; null when nothing matches."""
    return await client.geocode(query)


@router.get("/places/reverse", response_model=Optional[GeocodedPoint], responses={502: {"model": ErrorResponse}})
async def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    user: User = Depends(get_current_user),
    client: PlacesClient = Depends(get_places_client),
):
    return await client.reverse_geocode(lat, lng)


@router.get(
    "/places/competitors",
    response_model=CompetitorSearchResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def search_competitors(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: int = Query(1000, gt=0, le=MAX_SEARCH_RADIUS),
    segment: Optional[str] = None,
    types: Optional[List[str]] = Query(None, description="Explicit place types; overrides segment."),
    page_token: Optional[str] = None,
    sort: SortOption = "distance",
    user: User = Depends(get_current_user),
    client: PlacesClient = Depends(get_places_client),
):
    """One page of competitors around a point. Pass next_page_token back to continue."""
    place_types = [t.strip() for t in types or [] if t.strip()] or map_segment_to_types(segment)
    search = CompetitorSearch(client, Coordinates(lat=lat, lng=lng), radius, place_types, page_token=page_token)
    await search.load_more()
    return CompetitorSearchResponse(
        types=search.types,
        listings=search.sorted(sort),
        next_page_token=search.next_page_token,
        synthetic=search.synthetic,
    )


@router.post(
    "/places/competitors/export",
    response_class=Response,
    responses={400: {"model": ErrorResponse}},
)
async def export_competitors(
    data: CompetitorExportRequest,
    user: User = Depends(get_current_user),
):
    """Download the given listings as CSV, deduplicated and in the chosen order."""
    listings = sort_listings(dedupe_listings(data.listings), data.sort)
    content = export_listings_csv(listings)
    filename = csv_filename(data.center)
    logger.info("competitors_exported", user_id=user.id, rows=len(listings))
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
