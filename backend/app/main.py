"""
AssetDesk IPAM - Main Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.extensions import limiter
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from app.config import settings
from app.database import init_db
from app.exceptions import IpamError
from app.routers import auth, devices, segments, ips, ping, scan, system_events as system_events_router
from app.services.notifier import notifier

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


async def _acquire_scheduler_lock(job_id: str, ttl_seconds: int) -> bool:
    """Try to acquire a Redis SET NX lock so only one uvicorn worker runs each
    scheduled job. Returns True if the lock was acquired or if Redis is
    unavailable (the job runs rather than being skipped). Returns False if
    another worker already holds the lock.
    """
    import redis.asyncio as aioredis
    try:
        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        acquired = await r.set(f"sched:{job_id}", "1", nx=True, ex=ttl_seconds)
        await r.aclose()
        return bool(acquired)
    except Exception:
        return True


async def scheduled_history_cleanup():
    """Prune ping history older than the retention window."""
    if not await _acquire_scheduler_lock("ping_history_cleanup", ttl_seconds=3600):
        return
    from app.database import AsyncSessionLocal
    from app.services.conflict_detector import cleanup_history
    async with AsyncSessionLocal() as db:
        deleted = await cleanup_history(db)
    if deleted:
        logger.info("Ping history cleanup removed %d rows", deleted)


async def scheduled_reservation_sweep():
    """Return expired reservations to the free pool."""
    if not await _acquire_scheduler_lock("reservation_sweep", ttl_seconds=settings.RESERVATION_SWEEP_MINUTES * 60 - 5):
        return
    from app.database import AsyncSessionLocal
    from app.services.address_pool import reclaim_expired_reservations
    async with AsyncSessionLocal() as db:
        reclaimed = await reclaim_expired_reservations(db)
    if reclaimed:
        logger.info("Reclaimed %d expired reservations", reclaimed)


async def scheduled_ping_sweep():
    """Probe every in-use address and record the results.

    Runs segment by segment so a conflict check always sees the history
    written by the previous segment's commit.
    """
    if not await _acquire_scheduler_lock("ping_sweep", ttl_seconds=max(settings.PING_SWEEP_INTERVAL_SECONDS - 5, 1)):
        return
    from app.database import AsyncSessionLocal
    from app.models.ip_address import IpAddress, IpStatus
    from app.models.network_segment import NetworkSegment
    from sqlalchemy import select
    from app.services.conflict_detector import record_probe_results
    from app.services.ping_monitor import smart_ping_batch

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(NetworkSegment.id))
        segment_ids = list(result.scalars().all())

    for segment_id in segment_ids:
        try:
            async with AsyncSessionLocal() as db:
                result = await db.execute(
                    select(IpAddress).where(
                        IpAddress.segment_id == segment_id,
                        IpAddress.status == IpStatus.in_use.value,
                    )
                )
                ips = result.scalars().all()
                if not ips:
                    continue
                results = await smart_ping_batch([ip.ip_address for ip in ips], concurrency=settings.PING_CONCURRENCY)
                await record_probe_results(db, ips, results, notifier=notifier)
        except Exception as e:
            logger.warning("Ping sweep failed for segment %s: %s", segment_id, e)


async def run_migrations():
    """
    Idempotent schema migrations for columns added after initial deployment.
    create_all only creates missing tables, so new columns are added here.
    """
    from sqlalchemy import text
    from app.database import engine

    if engine.dialect.name != "postgresql":
        return

    ip_columns = [
        ("reserved_by",    "INTEGER REFERENCES users(id)"),
        ("reserved_until", "TIMESTAMPTZ"),
    ]
    ping_columns = [
        ("previous_mac", "VARCHAR(17)"),
        ("has_conflict", "BOOLEAN DEFAULT FALSE"),
    ]

    async with engine.begin() as conn:
        for col, col_type in ip_columns:
            try:
                await conn.execute(
                    text(f"ALTER TABLE ip_addresses ADD COLUMN IF NOT EXISTS {col} {col_type}")
                )
            except Exception as e:
                logger.warning("Migration ALTER ip_addresses.%s skipped: %s", col, e)

        for col, col_type in ping_columns:
            try:
                await conn.execute(
                    text(f"ALTER TABLE ping_history ADD COLUMN IF NOT EXISTS {col} {col_type}")
                )
            except Exception as e:
                logger.warning("Migration ALTER ping_history.%s skipped: %s", col, e)

    logger.info("Database migrations applied")


async def create_default_data():
    """Initialize default roles and admin user."""
    from app.database import AsyncSessionLocal
    from app.models.user import ROLE_DESCRIPTIONS, Role, User
    from app.services.auth import hash_password
    from sqlalchemy import select

    async with AsyncSessionLocal() as db:
        existing_roles = set((await db.execute(select(Role.name))).scalars().all())
        for role, description in ROLE_DESCRIPTIONS.items():
            if role.value not in existing_roles:
                db.add(Role(name=role.value, description=description))

        await db.commit()

        existing_admin = await db.execute(select(User).where(User.username == "admin"))
        if not existing_admin.scalar_one_or_none():
            admin_role = await db.execute(select(Role).where(Role.name == "admin"))
            admin_role = admin_role.scalar_one_or_none()
            if admin_role:
                import secrets
                temp_password = secrets.token_urlsafe(16)
                db.add(User(
                    username="admin",
                    display_name="Administrator",
                    password_hash=hash_password(temp_password),
                    role_id=admin_role.id,
                    is_active=True,
                ))
                await db.commit()
                logger.warning("=" * 60)
                logger.warning("  DEFAULT ADMIN CREDENTIALS (first run only)")
                logger.warning("  Username: admin")
                logger.warning("  Password: %s", temp_password)
                logger.warning("=" * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    await run_migrations()
    await create_default_data()

    # max_instances=1 stops overlap within a worker; the Redis lock stops it across workers.
    scheduler.add_job(
        scheduled_history_cleanup,
        "interval",
        hours=6,
        id="ping_history_cleanup",
        max_instances=1,
    )
    if settings.RESERVATION_SWEEP_MINUTES > 0:
        scheduler.add_job(
            scheduled_reservation_sweep,
            "interval",
            minutes=settings.RESERVATION_SWEEP_MINUTES,
            id="reservation_sweep",
            max_instances=1,
        )
    if settings.PING_SWEEP_INTERVAL_SECONDS > 0:
        scheduler.add_job(
            scheduled_ping_sweep,
            "interval",
            seconds=settings.PING_SWEEP_INTERVAL_SECONDS,
            id="ping_sweep",
            max_instances=1,
        )
    scheduler.start()
    logger.info("Scheduled tasks started")

    notifier.start()
    if notifier.enabled:
        logger.info("Telegram notifications enabled")

    yield

    await notifier.stop()
    scheduler.shutdown()
    logger.info("%s shutting down", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(IpamError)
async def ipam_error_handler(request: Request, exc: IpamError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# CORS
origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware for log correlation
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    import uuid
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# CSRF Origin validation middleware
@app.middleware("http")
async def csrf_origin_check(request: Request, call_next):
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        origin = request.headers.get("origin")
        if origin:
            allowed = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else []
            if allowed and origin not in allowed:
                return JSONResponse(
                    status_code=status.HTTP_403_FORBIDDEN,
                    content={"detail": "Origin not allowed"},
                )
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.HTTPS_ONLY:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Routers
app.include_router(auth.router)
app.include_router(devices.router)
app.include_router(segments.router)
app.include_router(ips.router)
app.include_router(ping.router)
app.include_router(scan.router)
app.include_router(system_events_router.router)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "scan": scan.scan_coordinator.state.value,
        "notifications": {"enabled": notifier.enabled, "sent": notifier.sent, "dropped": notifier.dropped},
    }
