# portal/backend/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from fastapi.middleware.cors import CORSMiddleware

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import auth, admin, attendance, certificates, academic, portal

from .db.redis_client import RedisClient
from .db.db_client import AsyncPostgresClient
from .services.events import EventBus, ALL_TOPICS, redis_forwarder
from .tasks.cron import reconcile_orphaned_identities

from .api.utilities.limiter import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Creates the shared pools, the event bus and the scheduler; closes them on shutdown."""
    setup_logging()
    logger.info("Starting the portal backend...")

    app.state.event_bus = EventBus()
    app.state.http_client = httpx.AsyncClient(timeout=settings.IDENTITY_TIMEOUT_SECONDS)
    postgres_pool = None
    redis_pool = None
    scheduler = None

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=5, max_size=20
        )
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )

        app.state.postgres_pool = postgres_pool
        app.state.redis_pool = redis_pool
        logger.info("PostgreSQL and Redis connection pools created.")

        db_client = AsyncPostgresClient(pool=postgres_pool)
        redis_client = RedisClient(pool=redis_pool)

        app.state.event_bus.subscribe(ALL_TOPICS, redis_forwarder(redis_client))

        scheduler = Scheduler()
        scheduler.add_job(
            reconcile_orphaned_identities, "interval", minutes=settings.RECONCILE_INTERVAL_MINUTES,
            args=[redis_client, db_client, app.state.http_client], id="reconcile_orphaned_identities"
        )
        scheduler.start()

        app.state.scheduler = scheduler
        logger.info("Scheduled jobs started.")

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        app.state.postgres_pool = None
        app.state.redis_pool = None
        app.state.scheduler = None

    yield

    logger.info("Shutting down the portal backend...")
    if getattr(app.state, "scheduler", None):
        app.state.scheduler.shutdown()
        logger.info("Scheduler stopped.")
    if getattr(app.state, "postgres_pool", None):
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL connection pool closed.")
    if getattr(app.state, "redis_pool", None):
        await app.state.redis_pool.disconnect()
        logger.info("Redis connection pool closed.")
    await app.state.http_client.aclose()


app = FastAPI(
    title="Campus Portal API",
    description="Role-based institution portal: provisioning, attendance, certificates and academic records.",
    version="1.0.0",
    lifespan=lifespan
)
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
app.include_router(attendance.router, prefix="/api/v1")
app.include_router(certificates.router, prefix="/api/v1")
app.include_router(academic.router, prefix="/api/v1")
app.include_router(portal.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check():
    """Liveness probe."""
    return {"status": "ok", "message": "Campus Portal API is running."}
