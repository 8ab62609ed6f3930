"""
app/schemas package marker.
"""

from app.schemas.analytics_backend import AnalyticsBackendMeta, AnalyticsBackendRequest, AnalyticsRequestDateRange
from app.schemas.dashboard import (
    DashboardLoadRequest,
    DashboardLoadResponse,
    DashboardViewResponse,
    HealthResponse,
    IntelligenceResponse,
)

__all__ = [
    "AnalyticsBackendMeta",
    "AnalyticsBackendRequest",
    "AnalyticsRequestDateRange",
    "DashboardLoadRequest",
    "DashboardLoadResponse",
    "DashboardViewResponse",
    "HealthResponse",
    "IntelligenceResponse",
]
