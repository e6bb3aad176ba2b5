from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Geography ---

class QueryPoint(BaseModel):
    """A clicked map point plus the drawn radius. Built per request, never stored on its own."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90, description="Latitude.")
    lng: float = Field(..., ge=-180, le=180, description="Longitude.")
    radius_m: int = Field(..., gt=0, description="Search radius in meters.")
    segment: Optional[str] = Field(None, description="Optional business segment.")

    @field_validator("segment")
    @classmethod
    def _blank_segment_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


# --- Demographic snapshot ---

class SnapshotHead(BaseModel):
    model_config = ConfigDict(frozen=True)

    muni: str = Field(..., description="Locality name reported upstream.")
    people: float
    income: float
    consumer: float
    density: Optional[float] = Field(None, description="People per km2 inside the radius.")


class SnapshotTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    consumption_total: float
    consumption_current: float
    expenditure: float


class CategoryValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    order: int
    value: float


class SocialClassShare(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    households: float
    pct: float


class AgeBandValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    value: float


class SnapshotMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    radius_m: int
    received_at: datetime


class DemographicSnapshot(BaseModel):
    """Normalized demographic/consumption data for one point and radius."""
    model_config = ConfigDict(frozen=True)

    head: SnapshotHead
    totals: SnapshotTotals
    categories: List[CategoryValue] = Field(default_factory=list)
    classes: List[SocialClassShare] = Field(default_factory=list)
    age_bands: Optional[List[AgeBandValue]] = None
    meta: SnapshotMeta
    synthetic: bool = Field(False, description="True when the values are locally generated placeholders.")
    fallback_reason: Optional[str] = None


# --- Tenancy ---

class UserRole(str, Enum):
    ADMIN_BP = "admin_bp"
    ANALYST_BP = "analyst_bp"
    TENANT_ADMIN = "tenant_admin"
    MEMBER = "member"


class MembershipRole(str, Enum):
    TENANT_ADMIN = "tenant_admin"
    MEMBER = "member"


class PlanTier(str, Enum):
    START = "start"
    ESSENCIAL = "essencial"
    PRO = "pro"


class User(BaseModel):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.MEMBER


class TenantLimits(BaseModel):
    quick_queries_per_month: int = Field(..., ge=0)
    simultaneous_studies: int = Field(..., ge=0)
    max_attachment_size_mb: int = Field(..., ge=0)


class Tenant(BaseModel):
    id: int
    name: str
    slug: str
    logo_url: Optional[str] = None
    color_primary: str = "#0F172A"
    color_dark: str = "#020617"
    plan: PlanTier = PlanTier.START
    limits: TenantLimits
    created_at: datetime


class Membership(BaseModel):
    user_id: int
    tenant_id: int
    role: MembershipRole = MembershipRole.MEMBER
    created_at: datetime


class PlanUsage(BaseModel):
    """Usage counters of one tenant for one calendar month."""
    tenant_id: int
    period_start: datetime
    period_end: datetime
    quick_queries_used: int = 0
    studies_opened: int = 0


# --- Quick query history / audit ---

class EnabledLayers(BaseModel):
    demographics: bool = True
    income: bool = True
    flow: bool = True
    competition: bool = True


class QuickQueryRecord(BaseModel):
    id: Optional[int] = None
    tenant_id: int
    user_id: int
    point: QueryPoint
    enabled_layers: EnabledLayers = Field(default_factory=EnabledLayers)
    result_summary: DemographicSnapshot
    cost_units: int = 1
    created_at: datetime


class AuditEntry(BaseModel):
    id: Optional[int] = None
    tenant_id: Optional[int] = None
    actor_id: Optional[int] = None
    action: str
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# --- Market studies ---

class StudyStatus(str, Enum):
    OPEN = "aberto"
    IN_ANALYSIS = "em_analise"
    RETURNED = "devolvido"
    DONE = "concluido"


class StudyPriority(str, Enum):
    LOW = "baixa"
    MEDIUM = "media"
    HIGH = "alta"


class Study(BaseModel):
    id: Optional[int] = None
    tenant_id: int
    title: str
    segment: str
    address: str
    lat: float
    lng: float
    radius_m: int
    objectives: Optional[str] = None
    status: StudyStatus = StudyStatus.OPEN
    priority: StudyPriority = StudyPriority.MEDIUM
    due_at: Optional[datetime] = None
    created_by: int
    assigned_bp_user_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# --- Competitors ---

class CompetitorListing(BaseModel):
    id: str
    name: str
    lat: float
    lng: float
    distance_m: int = 0
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    open_now: Optional[bool] = None
    address: Optional[str] = None
    external_url: Optional[str] = None


class CompetitorPage(BaseModel):
    listings: List[CompetitorListing] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    synthetic: bool = False


class GeocodedPoint(BaseModel):
    name: str
    address: str
    lat: float
    lng: float
    place_id: Optional[str] = None
