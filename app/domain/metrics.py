"""
app/domain/metrics.py

Immutable domain types for fetched App Store metrics.

Rows and fetch results are frozen dataclasses holding tuples, so a hydrated
payload can be shared between the data store, the aggregators and the
background dispatcher without any consumer mutating it in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Mapping

SEARCH_TRAFFIC_SOURCE = "App_Store_Search"
BROWSE_TRAFFIC_SOURCE = "App_Store_Browse"


def coerce_count(value: Any) -> int:
    """
    Coerce a loosely-typed numeric field into a non-negative int.

    Missing, null, non-numeric and negative values become ``0``.
    """

    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number or number < 0:  # NaN or negative
        return 0
    return int(number)


def coerce_rate(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive calendar range encoded as ISO ``YYYY-MM-DD`` strings.
    """

    start: str
    end: str

    @property
    def days(self) -> int:
        """Number of calendar days in the range, both ends included."""
        return (date.fromisoformat(self.end) - date.fromisoformat(self.start)).days + 1

    def shifted_back(self) -> "DateRange":
        """
        Return the window of equal length ending the day before ``start``.
        """

        length = self.days
        previous_end = date.fromisoformat(self.start) - timedelta(days=1)
        previous_start = previous_end - timedelta(days=length - 1)
        return DateRange(start=previous_start.isoformat(), end=previous_end.isoformat())

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class RawMetricRow:
    """
    One observation for a (date, app, traffic source) triple.

    ``conversion_rate`` is carried as reported by the backend but is never
    used for computation; every aggregate recomputes it from counts.
    """

    date: str
    app_id: str
    traffic_source: str
    impressions: int = 0
    downloads: int = 0
    product_page_views: int = 0
    conversion_rate: float = 0.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RawMetricRow":
        """
        Build a row from a backend dict, tolerating missing numeric fields.

        ``installs`` is accepted as an alias for ``downloads``.
        """

        downloads = raw.get("downloads")
        if downloads is None:
            downloads = raw.get("installs")
        return cls(
            date=str(raw.get("date") or ""),
            app_id=str(raw.get("app_id") or raw.get("organization_id") or ""),
            traffic_source=str(raw.get("traffic_source") or "Unknown"),
            impressions=coerce_count(raw.get("impressions")),
            downloads=coerce_count(downloads),
            product_page_views=coerce_count(raw.get("product_page_views")),
            conversion_rate=coerce_rate(raw.get("conversion_rate")),
        )


@dataclass(frozen=True)
class PeriodTotals:
    """
    Raw totals for a comparison period.
    """

    impressions: int = 0
    downloads: int = 0
    product_page_views: int = 0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "PeriodTotals":
        downloads = raw.get("downloads")
        if downloads is None:
            downloads = raw.get("installs")
        return cls(
            impressions=coerce_count(raw.get("impressions")),
            downloads=coerce_count(downloads),
            product_page_views=coerce_count(raw.get("product_page_views")),
        )


@dataclass(frozen=True)
class FetchMetadata:
    """
    Metadata delivered alongside a fetched row set.

    ``available_traffic_sources`` describes the whole fetched range and is
    never narrowed by a client-side filter.
    """

    request_id: str
    timestamp: str
    organization_id: str
    date_range: DateRange
    available_traffic_sources: tuple[str, ...] = ()
    app_ids: tuple[str, ...] = ()
    app_count: int = 0
    row_count: int = 0
    query_duration_ms: float = 0.0
    data_source: str = ""
    previous_totals: PeriodTotals | None = None


@dataclass(frozen=True)
class FetchResult:
    """
    Atomic unit of hydration: the unfiltered rows plus their metadata.
    """

    rows: tuple[RawMetricRow, ...]
    metadata: FetchMetadata

    @property
    def identity(self) -> tuple[str, str]:
        """(request id, timestamp) pair used for single-hydration checks."""
        return (self.metadata.request_id, self.metadata.timestamp)

    @property
    def available_traffic_sources(self) -> tuple[str, ...]:
        return self.metadata.available_traffic_sources
