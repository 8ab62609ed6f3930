"""
app/api/dependencies.py

Shared FastAPI dependencies.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from app.services.dashboard_service import DashboardService


def get_dashboard_service(request: Request) -> DashboardService:
    """
    Return the dashboard service created by the application factory.
    """

    service = getattr(request.app.state, "dashboard_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dashboard service is not initialised.",
        )
    return service
