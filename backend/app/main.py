import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import auth, referrals
from backend.app.api.deps import get_session
from backend.app.core.limiter import limiter
from backend.app.core.logging import RequestContextMiddleware, setup_logging, get_logger
from backend.app.core.metrics import PrometheusMiddleware, get_metrics_response
from backend.app.core.settings import get_settings

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# JSON logs in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    database="sqlite" if settings.is_sqlite else "server",
    public_base_url=settings.PUBLIC_BASE_URL,
)


async def _daily_scheduler():
    """Background task: reconcile referral counters once a day at 03:00 UTC."""
    from backend.app.core.database import async_session
    from backend.app.services.referrals import ReferralService

    while True:
        try:
            now = datetime.now(tz=timezone.utc)
            target = now.replace(hour=3, minute=0, second=0, microsecond=0)
            if now >= target:
                target += timedelta(days=1)
            wait_secs = (target - now).total_seconds()
            logger.info("Daily scheduler: sleeping", next_run=target.isoformat(), wait_seconds=int(wait_secs))
            await asyncio.sleep(wait_secs)

            async with async_session() as session:
                try:
                    fixed = await ReferralService(session).reconcile_total_referrals()
                    if fixed > 0:
                        logger.info("Daily scheduler: reconciled referral counters", fixed=fixed)
                except Exception as e:
                    await session.rollback()
                    logger.error("Daily scheduler: reconcile_total_referrals failed", error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Daily scheduler: unexpected error", error=str(e))
            await asyncio.sleep(60)  # Wait before retrying


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: create tables for local SQLite, start background scheduler
    - Shutdown: stop scheduler, dispose the engine
    """
    from backend.app.core.base import Base
    from backend.app.core.database import engine

    logger.info("Application starting up", version="1.0.0")
    if settings.is_sqlite:
        # Local development only; server databases are migrated with Alembic
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    scheduler_task = asyncio.create_task(_daily_scheduler())
    yield
    scheduler_task.cancel()
    logger.info("Application shutting down")
    await engine.dispose()


app = FastAPI(title="SmartVision Referral Backend", lifespan=lifespan)

# Shared limiter (routers use the same instance for @limiter.limit)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = settings.allowed_origins_list
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    # Development fallback; credentials (the referral cookie) cannot be combined with "*"
    ALLOWED_ORIGINS = ["http://localhost:3000"]
    logger.warning("CORS: allowing localhost only (development mode). Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
)

app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(referrals.link_router, tags=["referrals"])
app.include_router(referrals.router, prefix="/api/referral", tags=["referrals"])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """
    Health check endpoint for monitoring and orchestration.
    Checks database connectivity.
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "checks": {
            "database": "ok",
        }
    }

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    return health_status


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """
    Prometheus metrics endpoint.

    Args:
        openmetrics: If True, return OpenMetrics format
    """
    return get_metrics_response(openmetrics=openmetrics)
