from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Dict, Optional

# Demo data includes a BP admin; seeding is refused outside these environments
DEMO_ENVIRONMENTS = ("development", "test")


class Settings(BaseSettings):
    PROJECT_NAME: str = "Geomarket Dashboard"
    VERSION: str = "0.3.0"
    BRIEF_DESCRIPTION: str = "Multi-tenant geospatial market analysis for franchise networks: demographic quick queries, competitor search and market studies."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")

    # --- Demographic (Space) API ---
    SPACE_API_BASE_URL: Optional[str] = Field(None, description="Demographic API endpoint. Unset means synthetic data.")
    SPACE_API_KEY: Optional[str] = Field(None, description="Demographic API key. Unset means synthetic data.")
    SPACE_MAX_RADIUS: int = Field(5000, description="Largest radius in meters accepted for a quick query")
    SPACE_TIMEOUT: float = 10.0 # seconds

    # --- Quick query cache ---
    QUICK_QUERY_CACHE_ENABLED: bool = Field(True, description="Disable to re-fetch on every quick query")
    QUICK_QUERY_CACHE_TTL_SECONDS: int = 20 * 60
    QUICK_QUERY_CACHE_MAX_ENTRIES: int = 100
    QUICK_QUERY_COST_UNITS: int = 1

    # --- Google Places ---
    GOOGLE_PLACES_API_KEY: Optional[str] = Field(None, description="Google Places / Geocoding API key")
    PLACES_TIMEOUT: float = 10.0 # seconds
    PLACES_LANGUAGE: str = "pt-BR"
    # Page tokens need a short delay upstream before they become valid
    PLACES_PAGE_TOKEN_RETRIES: int = 3
    PLACES_PAGE_TOKEN_DELAY: float = 1.5 # seconds

    # --- Storage ---
    ENABLE_REDIS: bool = Field(False, description="Use Redis for tenants, history and quotas instead of process memory")
    REDIS_URL: Optional[str] = Field(None, description="Redis URL, required when ENABLE_REDIS is set")
    SEED_DEMO_DATA: bool = Field(False, description="Seed a demo tenant and sessions on startup (development and test only)")

    # --- Sessions ---
    SESSION_COOKIE_NAME: str = "gm_session"
    SESSION_TTL_SECONDS: int = 60 * 60 * 24 * 7

    HISTORY_MAX_LIMIT: int = 100

    # Default limits applied when a tenant is created on a plan
    PLAN_LIMITS: Dict[str, Dict[str, int]] = Field(
        {
            "start": {"quick_queries_per_month": 300, "simultaneous_studies": 3, "max_attachment_size_mb": 5},
            "essencial": {"quick_queries_per_month": 600, "simultaneous_studies": 5, "max_attachment_size_mb": 10},
            "pro": {"quick_queries_per_month": 2000, "simultaneous_studies": 15, "max_attachment_size_mb": 25},
        },
        description="Plan tier -> default tenant limits",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    @property
    def space_api_configured(self) -> bool:
        return bool(self.SPACE_API_BASE_URL and self.SPACE_API_KEY)

    @property
    def demo_data_allowed(self) -> bool:
        return self.SEED_DEMO_DATA and self.ENV in DEMO_ENVIRONMENTS


settings = Settings()
