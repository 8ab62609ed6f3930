"""
kpi/timeseries.py

Daily time-series aggregation.

Rows are grouped by their ISO date string, summed per day, and sorted
ascending lexicographically (chronological for ``YYYY-MM-DD``). Days with
no rows are not synthesised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from app.domain.metrics import RawMetricRow
from kpi.base import conversion_rate


@dataclass(frozen=True)
class TimeSeriesPoint:
    date: str
    impressions: int
    downloads: int
    product_page_views: int
    conversion_rate: float

    def as_dict(self) -> dict[str, float | str]:
        return {
            "date": self.date,
            "impressions": self.impressions,
            "downloads": self.downloads,
            "product_page_views": self.product_page_views,
            "conversion_rate": self.conversion_rate,
        }


def to_time_series(rows: Iterable[RawMetricRow]) -> list[TimeSeriesPoint]:
    """
    Group *rows* by date and return one point per distinct date.
    """

    # date -> [impressions, downloads, product_page_views]
    buckets: dict[str, list[int]] = {}
    for row in rows:
        bucket = buckets.setdefault(row.date, [0, 0, 0])
        bucket[0] += row.impressions or 0
        bucket[1] += row.downloads or 0
        bucket[2] += row.product_page_views or 0

    return [
        TimeSeriesPoint(
            date=day,
            impressions=impressions,
            downloads=downloads,
            product_page_views=ppv,
            conversion_rate=conversion_rate(downloads, impressions),
        )
        for day, (impressions, downloads, ppv) in sorted(buckets.items())
    ]
