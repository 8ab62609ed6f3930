"""
app/connectors package marker.
"""

from app.connectors.analytics_backend import (
    AnalyticsBackendConnector,
    build_request_body,
    validate_fetch_request,
)
from app.connectors.base import BaseConnector

__all__ = [
    "AnalyticsBackendConnector",
    "BaseConnector",
    "build_request_body",
    "validate_fetch_request",
]
