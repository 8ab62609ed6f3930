"""
kpi/two_path.py

Two-path conversion model for App Store traffic.

Apple lets a user install either straight from a search/browse result
(direct install) or after opening the product page (PDP-driven install).
Traffic is split into a Search path and a Browse path; each path's
downloads are then allocated between the two install routes.

Allocation
----------
pdp_driven_installs = downloads × min(1, product_page_views / impressions)
                      (0 when impressions = 0)
direct_installs     = downloads - pdp_driven_installs

so ``direct_installs + pdp_driven_installs == downloads`` always holds.

Rates (all percentages, zero-safe)
----------------------------------
total_cvr            = downloads / impressions
pdp_cvr              = pdp_driven_installs / product_page_views
direct_cvr           = direct_installs / max(0, impressions - product_page_views)
pdp_install_share    = pdp_driven_installs / downloads
direct_install_share = direct_installs / downloads
tap_through_rate     = product_page_views / impressions
funnel_leak_rate     = (1 - pdp_driven_installs / product_page_views)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Iterable, Literal, Optional

from app.domain.metrics import BROWSE_TRAFFIC_SOURCE, SEARCH_TRAFFIC_SOURCE, RawMetricRow
from kpi.base import safe_divide, safe_percentage
from kpi.summary import sum_rows

logger = logging.getLogger(__name__)

TrafficPath = Literal["search", "browse"]
SourceClassifier = Callable[[str], Optional[TrafficPath]]

_CONSERVATION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class TwoPathMetrics:
    impressions: float = 0.0
    product_page_views: float = 0.0
    downloads: float = 0.0
    pdp_driven_installs: float = 0.0
    direct_installs: float = 0.0
    total_cvr: float = 0.0
    pdp_cvr: float = 0.0
    direct_cvr: float = 0.0
    pdp_install_share: float = 0.0
    direct_install_share: float = 0.0
    tap_through_rate: float = 0.0
    funnel_leak_rate: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class TwoPathResult:
    search: TwoPathMetrics
    browse: TwoPathMetrics


def classify_traffic_source(label: str) -> TrafficPath | None:
    """
    Map a raw traffic-source label onto a modelled path.

    Only the exact ``App_Store_Search`` / ``App_Store_Browse`` labels are
    modelled; every other source belongs to neither path.
    """
    if label == SEARCH_TRAFFIC_SOURCE:
        return "search"
    if label == BROWSE_TRAFFIC_SOURCE:
        return "browse"
    return None


def calculate_two_path_metrics(
    impressions: float,
    product_page_views: float,
    downloads: float,
) -> TwoPathMetrics:
    """
    Build TwoPathMetrics from path totals.

    Negative inputs are treated as corrupt and yield zero metrics.
    """

    if impressions < 0 or product_page_views < 0 or downloads < 0:
        logger.warning(
            "Negative two-path inputs ignored impressions=%s ppv=%s downloads=%s",
            impressions,
            product_page_views,
            downloads,
        )
        return TwoPathMetrics()

    if impressions == 0 and product_page_views == 0 and downloads == 0:
        return TwoPathMetrics()

    pdp_fraction = min(1.0, safe_divide(product_page_views, impressions))
    pdp_driven = downloads * pdp_fraction if impressions > 0 else 0.0
    direct = downloads - pdp_driven

    if abs((pdp_driven + direct) - downloads) > _CONSERVATION_TOLERANCE:
        logger.warning(
            "Install accounting mismatch pdp=%.6f direct=%.6f downloads=%.6f",
            pdp_driven,
            direct,
            downloads,
        )

    impressions_without_ppv = max(0.0, impressions - product_page_views)
    funnel_leak = (1.0 - pdp_driven / product_page_views) * 100.0 if product_page_views > 0 else 0.0

    return TwoPathMetrics(
        impressions=float(impressions),
        product_page_views=float(product_page_views),
        downloads=float(downloads),
        pdp_driven_installs=pdp_driven,
        direct_installs=direct,
        total_cvr=safe_percentage(downloads, impressions),
        pdp_cvr=safe_percentage(pdp_driven, product_page_views),
        direct_cvr=safe_percentage(direct, impressions_without_ppv),
        pdp_install_share=safe_percentage(pdp_driven, downloads),
        direct_install_share=safe_percentage(direct, downloads),
        tap_through_rate=safe_percentage(product_page_views, impressions),
        funnel_leak_rate=funnel_leak,
    )


def two_path(
    rows: Iterable[RawMetricRow],
    classifier: SourceClassifier = classify_traffic_source,
) -> TwoPathResult:
    """
    Partition *rows* into Search and Browse paths and model each one.

    Rows whose source the classifier does not recognise are dropped.
    """

    search_rows: list[RawMetricRow] = []
    browse_rows: list[RawMetricRow] = []
    for row in rows:
        path = classifier(row.traffic_source)
        if path == "search":
            search_rows.append(row)
        elif path == "browse":
            browse_rows.append(row)

    search_totals = sum_rows(search_rows)
    browse_totals = sum_rows(browse_rows)
    return TwoPathResult(
        search=calculate_two_path_metrics(
            search_totals.impressions,
            search_totals.product_page_views,
            search_totals.downloads,
        ),
        browse=calculate_two_path_metrics(
            browse_totals.impressions,
            browse_totals.product_page_views,
            browse_totals.downloads,
        ),
    )


def validate_two_path_metrics(metrics: TwoPathMetrics, path: TrafficPath) -> list[str]:
    """
    Return data-quality warnings for one path; empty when the data looks sane.
    """

    warnings: list[str] = []
    if path == "browse" and metrics.direct_install_share > 10:
        warnings.append(
            f"Browse direct install share ({metrics.direct_install_share:.0f}%) "
            "is unusually high. Expected < 10%."
        )
    if metrics.total_cvr > 30:
        warnings.append(
            f"Total CVR ({metrics.total_cvr:.1f}%) exceeds typical range (0-30%). "
            "Verify data accuracy."
        )
    if metrics.tap_through_rate > 100:
        warnings.append("Tap-through rate > 100% indicates data quality issue.")
    if metrics.pdp_cvr > 100:
        warnings.append("PDP CVR > 100% indicates data quality issue.")
    if metrics.direct_cvr > 100:
        warnings.append("Direct CVR > 100% indicates data quality issue.")

    total_share = metrics.pdp_install_share + metrics.direct_install_share
    if metrics.downloads > 0 and abs(total_share - 100) > 1:
        warnings.append(f"Install shares don't sum to 100% ({total_share:.1f}%).")
    return warnings
