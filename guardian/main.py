import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.config import settings
from guardian.core.exceptions import GuardianError, Unauthorized
from guardian.core.rate_limit import limiter
from guardian.database import get_db, session_scope
from guardian.routers import auth, authorizations, children, game_sessions, users
from guardian.services.cleanup import run_cleanup
from guardian.services.event_bus import DomainEvent, event_bus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data cleanup background task
# ---------------------------------------------------------------------------
async def _cleanup_loop() -> None:
    """Run the credential and session sweeps daily at 03:00 UTC.

    - refresh credentials past their expiry
    - refresh credentials not rotated for REFRESH_STALE_DAYS
    - game sessions expired more than GAME_SESSION_RETENTION_DAYS ago
    """
    while True:
        # Sleep until 03:00 UTC today (or tomorrow if already past)
        now = datetime.now(timezone.utc)
        target = now.replace(hour=3, minute=0, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        await asyncio.sleep((target - now).total_seconds())

        try:
            async with session_scope() as db:
                await run_cleanup(db)
        except SQLAlchemyError:
            logger.exception("Cleanup error")


async def _log_event(event: DomainEvent) -> None:
    logger.info("Event %s child=%s actor=%s", event.type, event.child_id, event.actor_id)


# ---------------------------------------------------------------------------
# Lifespan context manager
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: runs on startup and shutdown."""
    logger.info("%s started", settings.APP_NAME)
    event_bus.subscribe(_log_event)
    cleanup_task = asyncio.create_task(_cleanup_loop())
    yield
    cleanup_task.cancel()
    await event_bus.drain()
    event_bus.unsubscribe(_log_event)
    logger.info("%s shutting down", settings.APP_NAME)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)


# -- Middleware ---------------------------------------------------------------
@app.middleware("http")
async def fix_redirect_scheme(request: Request, call_next):
    """Ensure redirects use https when behind a TLS-terminating reverse proxy."""
    if request.headers.get("x-forwarded-proto") == "https":
        request.scope["scheme"] = "https"
    return await call_next(request)


app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# -- Rate limiting ------------------------------------------------------------
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# -- Domain errors ------------------------------------------------------------
@app.exception_handler(GuardianError)
async def guardian_error_handler(request: Request, exc: GuardianError) -> JSONResponse:
    """Render every domain error as ``{"detail", "code"}``."""
    headers = None
    if isinstance(exc, Unauthorized):
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        logger.error("Unhandled domain error %r context=%s", exc, exc.context)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/health", tags=["health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check with DB connectivity verification."""
    checks: dict[str, str] = {"db": "ok"}
    try:
        await db.execute(select(1))
    except SQLAlchemyError:
        checks["db"] = "error"

    degraded = any(v == "error" for v in checks.values())
    return {"status": "degraded" if degraded else "ok", "app": settings.APP_NAME, **checks}


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(auth.router, prefix=settings.API_V1_PREFIX)
app.include_router(users.router, prefix=settings.API_V1_PREFIX)
app.include_router(children.router, prefix=settings.API_V1_PREFIX)
app.include_router(authorizations.router, prefix=settings.API_V1_PREFIX)
app.include_router(game_sessions.router, prefix=settings.API_V1_PREFIX)
