"""
app/services package marker.
"""

from app.services.dashboard_service import (
    DashboardService,
    DashboardView,
    IntelligenceStatus,
    LoadOutcome,
    build_dashboard_service,
    build_view,
    previous_period,
)
from app.services.data_store import DashboardDataStore
from app.services.traffic_filter import FilteredView, available_traffic_sources, filter_rows

__all__ = [
    "DashboardDataStore",
    "DashboardService",
    "DashboardView",
    "FilteredView",
    "IntelligenceStatus",
    "LoadOutcome",
    "available_traffic_sources",
    "build_dashboard_service",
    "build_view",
    "filter_rows",
    "previous_period",
]
