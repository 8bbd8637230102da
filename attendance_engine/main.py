"""Attendance Engine — FastAPI Application Factory."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from attendance_engine.approvals.router import router as requests_router
from attendance_engine.attendance.router import router as attendance_router
from attendance_engine.common.exceptions import register_exception_handlers
from attendance_engine.common.rate_limit import limiter
from attendance_engine.config import settings
from attendance_engine.notifications.router import router as notifications_router
from attendance_engine.punches.router import machines_router
from attendance_engine.punches.router import router as punches_router
from attendance_engine.reconciliation.router import router as reconciliation_router
from attendance_engine.reconciliation.service import scheduler_loop
from attendance_engine.shifts.router import router as shifts_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    stop = asyncio.Event()
    scheduler = None
    if settings.RECONCILIATION_SCHEDULER_ENABLED:
        scheduler = asyncio.create_task(scheduler_loop(stop))
        logger.info(
            "Reconciliation scheduler started (daily at %02d:00 %s)",
            settings.RECONCILIATION_HOUR, settings.DEFAULT_TIMEZONE,
        )
    yield
    if scheduler is not None:
        stop.set()
        await scheduler


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Attendance Engine",
        description="Multi-tenant punch ingestion, daily attendance and regularization workflow",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(punches_router, prefix="/api/v1/punches", tags=["punches"])
    app.include_router(machines_router, prefix="/api/v1/machines", tags=["machines"])
    app.include_router(shifts_router, prefix="/api/v1/shifts", tags=["shifts"])
    app.include_router(attendance_router, prefix="/api/v1/attendance", tags=["attendance"])
    app.include_router(requests_router, prefix="/api/v1/requests", tags=["requests"])
    app.include_router(
        reconciliation_router, prefix="/api/v1/reconciliation", tags=["reconciliation"],
    )
    app.include_router(
        notifications_router, prefix="/api/v1/notifications", tags=["notifications"],
    )

    return app


app = create_app()
