from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.models.domain import (
    CompetitorListing,
    Coordinates,
    DemographicSnapshot,
    EnabledLayers,
    MembershipRole,
    PlanTier,
    PlanUsage,
    StudyPriority,
    StudyStatus,
    Tenant,
    TenantLimits,
    User,
)

SortOption = Literal["distance", "rating"]


# --- API Request Models ---

class SpaceQueryRequest(BaseModel):
    """Request body for a quick query."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    radius: int = Field(..., gt=0, description="Radius in meters.")
    segment: Optional[str] = None
    enabled_layers: EnabledLayers = Field(default_factory=EnabledLayers)


class CreateTenantRequest(BaseModel):
    name: str = Field(..., min_length=3)
    slug: str = Field(..., min_length=3, pattern=r"^[a-z0-9-]+$")
    logo_url: Optional[str] = None
    color_primary: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class UpdateTenantRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=3)
    logo_url: Optional[str] = None
    color_primary: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    color_dark: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class UpdateTenantLimitsRequest(BaseModel):
    plan: Optional[PlanTier] = None
    limits: Optional[TenantLimits] = None


class CreateStudyRequest(BaseModel):
    title: str = Field(..., min_length=3)
    segment: str = Field(..., min_length=2)
    address: str = Field(..., min_length=5)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    radius_m: int = Field(..., gt=0)
    objectives: Optional[str] = None


class UpdateStudyRequest(BaseModel):
    status: Optional[StudyStatus] = None
    priority: Optional[StudyPriority] = None
    assigned_bp_user_id: Optional[int] = None
    due_at: Optional[datetime] = None


class CompetitorExportRequest(BaseModel):
    center: Coordinates
    listings: List[CompetitorListing]
    sort: SortOption = "distance"


# --- Public Response DTOs ---

class QuickQueryResponse(BaseModel):
    snapshot: DemographicSnapshot
    cached: bool = Field(..., description="Served from the quick query cache.")
    quota_remaining: int
    record_id: Optional[int] = Field(None, description="Id of the stored quick query record.")


class UsageResponse(BaseModel):
    tenant: Tenant
    usage: PlanUsage
    quick_queries_remaining: int


class MembershipSummary(BaseModel):
    tenant: Tenant
    role: MembershipRole


class MeResponse(BaseModel):
    user: User
    memberships: List[MembershipSummary]


class LogoutResponse(BaseModel):
    success: bool = True


class CompetitorSearchResponse(BaseModel):
    types: List[str]
    listings: List[CompetitorListing]
    next_page_token: Optional[str] = None
    synthetic: bool = False


# --- Error Response Model ---

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is allowed.")
    limit: Optional[int] = Field(None, description="Quota limit, for QUOTA_EXCEEDED.")
