"""
kpi/traffic_sources.py

Per-traffic-source totals for the breakdown view.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from app.domain.metrics import RawMetricRow
from kpi.base import conversion_rate, safe_percentage


@dataclass(frozen=True)
class TrafficSourceBreakdown:
    traffic_source: str
    impressions: int
    downloads: int
    product_page_views: int
    conversion_rate: float
    share_of_downloads: float

    def as_dict(self) -> dict[str, float | str]:
        return {
            "traffic_source": self.traffic_source,
            "impressions": self.impressions,
            "downloads": self.downloads,
            "product_page_views": self.product_page_views,
            "conversion_rate": self.conversion_rate,
            "share_of_downloads": self.share_of_downloads,
        }


def traffic_source_breakdown(
    rows: Iterable[RawMetricRow],
    sources: Sequence[str] | None = None,
) -> list[TrafficSourceBreakdown]:
    """
    Sum metrics per traffic source.

    When *sources* is given the result follows that order and includes a
    zero entry for every listed source without rows; otherwise only
    observed sources are returned, by descending downloads then name.
    """

    totals: dict[str, list[int]] = {}
    for row in rows:
        bucket = totals.setdefault(row.traffic_source, [0, 0, 0])
        bucket[0] += row.impressions or 0
        bucket[1] += row.downloads or 0
        bucket[2] += row.product_page_views or 0

    all_downloads = sum(bucket[1] for bucket in totals.values())

    if sources is not None:
        ordered = list(dict.fromkeys(sources))
    else:
        ordered = sorted(totals, key=lambda name: (-totals[name][1], name))

    breakdown: list[TrafficSourceBreakdown] = []
    for source in ordered:
        impressions, downloads, ppv = totals.get(source, (0, 0, 0))
        breakdown.append(
            TrafficSourceBreakdown(
                traffic_source=source,
                impressions=impressions,
                downloads=downloads,
                product_page_views=ppv,
                conversion_rate=conversion_rate(downloads, impressions),
                share_of_downloads=safe_percentage(downloads, all_downloads),
            )
        )
    return breakdown
