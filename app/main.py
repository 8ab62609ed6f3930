from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import get_analytics_backend_settings, get_log_level
from app.schemas.dashboard import HealthResponse
from app.services.dashboard_service import DashboardService, build_dashboard_service


def _validate_settings() -> None:
    """
    Validate analytics settings at startup.

    Raises RuntimeError listing every invalid value so the operator can
    fix all problems in one restart cycle.
    """

    settings = get_analytics_backend_settings()
    errors: list[str] = []

    if not settings.base_url.startswith(("http://", "https://")):
        errors.append(
            f"ANALYTICS_BACKEND_URL='{settings.base_url}' is not an http(s) URL."
        )
    if not settings.function_name:
        errors.append("ANALYTICS_FUNCTION_NAME must not be empty.")
    if settings.backoff_max_seconds < settings.backoff_initial_seconds:
        errors.append(
            "ANALYTICS_HTTP_BACKOFF_MAX_SECONDS must be >= ANALYTICS_HTTP_BACKOFF_INITIAL_SECONDS."
        )

    if errors:
        raise RuntimeError(
            "Startup validation failed, invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    logging.basicConfig(
        level=getattr(logging, get_log_level(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Start the intelligence dispatcher on boot; shut it down on exit."""
    service: DashboardService = application.state.dashboard_service
    service.dispatcher.start()
    logging.getLogger(__name__).info("Intelligence dispatcher running")
    try:
        yield
    finally:
        service.dispatcher.shutdown(wait=True)
        service.close()
        logging.getLogger(__name__).info("Intelligence dispatcher shut down")


def create_app(service: DashboardService | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    service:
        Pre-built dashboard service; built from environment settings when
        omitted.
    """

    _configure_logging()
    if service is None:
        _validate_settings()
        service = build_dashboard_service()

    application = FastAPI(
        title="ASO Analytics API",
        version="1.0.0",
        lifespan=_lifespan,
    )
    application.state.dashboard_service = service

    from app.api.routers import dashboard_router

    application.include_router(dashboard_router)

    @application.get("/health", response_model=HealthResponse)
    def healthcheck() -> HealthResponse:
        return HealthResponse(
            status="ok",
            hydrated=service.store.is_hydrated,
            dispatcher_running=service.dispatcher.running,
        )

    return application


app = create_app()
