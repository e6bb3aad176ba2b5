from contextlib import asynccontextmanager
import uuid

import httpx
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import Settings, settings
from app.core.errors import AppError, QuotaExceeded
from app.core.middleware import SessionMiddleware
from app.logging import configure_logging
from app.middleware.logging import LoggingMiddleware
from app.models.dto import ErrorResponse
from app.services.places_client import PlacesClient
from app.services.quick_query_cache import QuickQueryCache
from app.services.quota_repository import InMemoryQuotaRepository, QuotaRepository
from app.services.redis_client import connect_redis
from app.services.redis_store import RedisTenantStore
from app.services.seed import seed_demo_data
from app.services.space_client import SpaceClient
from app.services.tenant_store import InMemoryTenantStore

logger = structlog.get_logger(__name__)


# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    config: Settings = app.state.config
    logger.info("application_startup", version=config.VERSION, env=config.ENV)

    redis = None
    if config.ENABLE_REDIS:
        redis = await connect_redis(config)
        app.state.store = RedisTenantStore(redis)
        app.state.quota = QuotaRepository(redis)
        app.state.storage_backend = "redis"
    else:
        app.state.store = InMemoryTenantStore()
        app.state.quota = InMemoryQuotaRepository()
        app.state.storage_backend = "memory"
        if config.demo_data_allowed:
            await seed_demo_data(app.state.store, config)
        elif config.SEED_DEMO_DATA:
            logger.warning("demo_seed_refused", env=config.ENV)

    http_client = httpx.AsyncClient()
    app.state.space_client = SpaceClient(config, http_client=http_client)
    app.state.places_client = PlacesClient(config, http_client=http_client)
    app.state.cache = QuickQueryCache(
        ttl_seconds=config.QUICK_QUERY_CACHE_TTL_SECONDS,
        max_entries=config.QUICK_QUERY_CACHE_MAX_ENTRIES,
        enabled=config.QUICK_QUERY_CACHE_ENABLED,
    )
    if not config.space_api_configured:
        logger.warning("space_api_not_configured", fallback="synthetic")

    yield

    logger.info("application_shutdown")
    await http_client.aclose()
    if redis is not None:
        await redis.aclose()


# --- Exception Handlers ---
async def app_error_handler(request: Request, exc: AppError):
    body = ErrorResponse(error=exc.code, detail=exc.message)
    headers = None
    if isinstance(exc, QuotaExceeded):
        body.limit = exc.limit
        body.retry_after_seconds = exc.retry_after_seconds
        if exc.retry_after_seconds is not None:
            headers = {"Retry-After": str(exc.retry_after_seconds)}
    if exc.status_code >= 500:
        logger.error("app_error", error=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": body.model_dump()}, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": ErrorResponse(
                error="INVALID_ARGUMENT",
                detail="; ".join(problems) or "Invalid request.",
            ).model_dump()
        },
    )


async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.exception("unhandled_exception", error_id=error_id)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": {
                "error": "INTERNAL_SERVER_ERROR",
                "detail": "An unexpected error occurred. Please report this error ID.",
                "error_id": error_id
            }
        }
    )


# --- FastAPI Application Initialization ---
def create_app(config: Settings = settings) -> FastAPI:
    configure_logging(config)

    app = FastAPI(
        title=config.PROJECT_NAME,
        version=config.VERSION,
        description=config.BRIEF_DESCRIPTION,
        lifespan=lifespan,
        docs_url="/docs" if config.ENV == "development" else None,
        redoc_url=None,
    )
    app.state.config = config

    # Added last runs first: request logging wraps session resolution
    app.add_middleware(SessionMiddleware, cookie_name=config.SESSION_COOKIE_NAME)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(api_router, prefix="/api")

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check(request: Request):
        cache = getattr(request.app.state, "cache", None)
        return {
            "status": "ok",
            "version": config.VERSION,
            "storage": getattr(request.app.state, "storage_backend", None),
            "cache_entries": len(cache) if cache is not None else 0,
            "space_api_configured": config.space_api_configured,
        }

    return app


app = create_app()
