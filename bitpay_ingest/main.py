"""
BitPay Ingest - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from bitpay_ingest.api.realtime import router as realtime_router
from bitpay_ingest.api.routes import router as api_router
from bitpay_ingest.core.config import settings
from bitpay_ingest.core.logging import get_logger, setup_logging
from bitpay_ingest.core.middleware import setup_exception_handlers, setup_middleware
from bitpay_ingest.db.database import Base, engine
from bitpay_ingest.domain.services.health_service import check_readiness

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "chainhook", "description": "Chainhook deliveries, one endpoint per contract domain."},
    {"name": "webhooks", "description": "StacksPay payment gateway callbacks."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Chainhook ingestion for the BitPay contracts: projects on-chain events "
        "into relational state and fans them out as notifications and realtime pushes."
    ),
    openapi_tags=_OPENAPI_TAGS,
    openapi_url="/openapi.json",
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Local frontend default, never in production
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")
app.include_router(realtime_router)


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    from bitpay_ingest.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="The process is up. Dependencies are not checked here.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description="Checks the database and Redis; 503 with status=degraded if either fails.",
    responses={
        200: {"content": {"application/json": {"example": {"status": "healthy", "db": "ok", "redis": "ok"}}}},
        503: {"content": {"application/json": {"example": {"status": "degraded", "db": "ok", "redis": "error: redis_unavailable"}}}},
    },
    tags=["Health"],
)
async def readiness_check():
    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
