"""
kpi/summary.py

Period summary aggregation.

Formulas
--------
impressions        = Σ row.impressions
downloads          = Σ row.downloads
product_page_views = Σ row.product_page_views
conversion_rate    = downloads / impressions × 100   (0 when impressions = 0)

delta              = (current - previous) / previous × 100
                     (0 when no comparison period or previous = 0)

Summation is order-independent, so any permutation of the same rows yields
an identical Summary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from app.domain.metrics import PeriodTotals, RawMetricRow
from kpi.base import conversion_rate, percent_change


@dataclass(frozen=True)
class MetricValue:
    """A headline metric and its change against the comparison period."""

    value: float
    delta: float = 0.0


@dataclass(frozen=True)
class Summary:
    """Headline totals for a (possibly filtered) row set."""

    impressions: MetricValue
    downloads: MetricValue
    product_page_views: MetricValue
    conversion_rate: MetricValue

    def as_dict(self) -> dict[str, dict[str, float]]:
        return {
            "impressions": {"value": self.impressions.value, "delta": self.impressions.delta},
            "downloads": {"value": self.downloads.value, "delta": self.downloads.delta},
            "product_page_views": {
                "value": self.product_page_views.value,
                "delta": self.product_page_views.delta,
            },
            "conversion_rate": {
                "value": self.conversion_rate.value,
                "delta": self.conversion_rate.delta,
            },
        }


Comparison = Union[Summary, PeriodTotals]


def sum_rows(rows: Iterable[RawMetricRow]) -> PeriodTotals:
    """
    Sum impressions, downloads and product page views across *rows*.
    """

    impressions = 0
    downloads = 0
    product_page_views = 0
    for row in rows:
        impressions += row.impressions or 0
        downloads += row.downloads or 0
        product_page_views += row.product_page_views or 0
    return PeriodTotals(
        impressions=impressions,
        downloads=downloads,
        product_page_views=product_page_views,
    )


def _comparison_values(previous: Comparison | None) -> tuple[float, float, float, float] | None:
    if previous is None:
        return None
    if isinstance(previous, Summary):
        return (
            previous.impressions.value,
            previous.downloads.value,
            previous.product_page_views.value,
            previous.conversion_rate.value,
        )
    return (
        float(previous.impressions),
        float(previous.downloads),
        float(previous.product_page_views),
        conversion_rate(previous.downloads, previous.impressions),
    )


def summarize(rows: Iterable[RawMetricRow], previous: Comparison | None = None) -> Summary:
    """
    Aggregate *rows* into a Summary.

    Parameters
    ----------
    rows:
        Already filtered metric rows.
    previous:
        Optional comparison period, either a Summary of the previous
        window or its raw PeriodTotals. Deltas are percentage changes.
    """

    totals = sum_rows(rows)
    cvr = conversion_rate(totals.downloads, totals.impressions)
    baseline = _comparison_values(previous)

    if baseline is None:
        return Summary(
            impressions=MetricValue(float(totals.impressions)),
            downloads=MetricValue(float(totals.downloads)),
            product_page_views=MetricValue(float(totals.product_page_views)),
            conversion_rate=MetricValue(cvr),
        )

    prev_impressions, prev_downloads, prev_ppv, prev_cvr = baseline
    return Summary(
        impressions=MetricValue(
            float(totals.impressions), percent_change(totals.impressions, prev_impressions)
        ),
        downloads=MetricValue(
            float(totals.downloads), percent_change(totals.downloads, prev_downloads)
        ),
        product_page_views=MetricValue(
            float(totals.product_page_views),
            percent_change(totals.product_page_views, prev_ppv),
        ),
        conversion_rate=MetricValue(cvr, percent_change(cvr, prev_cvr)),
    )
