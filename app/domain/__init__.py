"""
app/domain package marker.
"""

from app.domain.metrics import (
    BROWSE_TRAFFIC_SOURCE,
    SEARCH_TRAFFIC_SOURCE,
    DateRange,
    FetchMetadata,
    FetchResult,
    PeriodTotals,
    RawMetricRow,
)

__all__ = [
    "BROWSE_TRAFFIC_SOURCE",
    "SEARCH_TRAFFIC_SOURCE",
    "DateRange",
    "FetchMetadata",
    "FetchResult",
    "PeriodTotals",
    "RawMetricRow",
]
