"""FastAPI application for the rehab progress engine."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rehab_progress import __version__
from rehab_progress.api.errors import register_exception_handlers
from rehab_progress.api.middleware import APIKeyMiddleware, RequestLoggingMiddleware
from rehab_progress.api.routes import alerts, analytics, compliance, health, plans
from rehab_progress.config import Settings, get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting rehab progress API")

    from rehab_progress.core.database import dispose_engine, get_session_factory, init_db
    from rehab_progress.plans.service import PlanService

    settings = get_settings()
    await init_db()
    service = PlanService(get_session_factory(), settings=settings)
    app.state.plan_service = service

    logger.info("Rehab progress API started (case store: %s)", type(service.case_store).__name__)

    yield

    logger.info("Shutting down rehab progress API")
    await service.close()
    await dispose_engine()


def create_app(settings: Optional[Settings] = None, with_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Rehab Progress API",
        description="Rehabilitation plan progress and compliance engine",
        version=__version__,
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    if settings.api_key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.api_key)

    app.include_router(health.router, tags=["health"])
    app.include_router(plans.router, prefix="/api/v1", tags=["plans"])
    app.include_router(alerts.router, prefix="/api/v1", tags=["alerts"])
    app.include_router(analytics.router, prefix="/api/v1", tags=["analytics"])
    app.include_router(compliance.router, prefix="/api/v1", tags=["compliance"])

    register_exception_handlers(app, debug=settings.debug_mode)

    return app
