"""
kpi/derived.py

Business ratios derived from the Search and Browse two-path metrics.

Formulas
--------
search_browse_ratio            = search.impressions / browse.impressions
                                 (999 when only Search has impressions, 0 when neither)
first_impression_effectiveness = Σ ppv / Σ impressions × 100
metadata_strength              = search.total_cvr × search share of downloads
creative_strength              = browse.total_cvr × browse share of downloads
funnel_leak_rate               = (1 - Σ pdp_driven_installs / Σ ppv) × 100
direct_install_propensity      = search.direct_installs / search.downloads × 100

Depends only on its two inputs; all-zero paths produce all-zero ratios.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from kpi.base import safe_divide, safe_percentage
from kpi.two_path import TwoPathMetrics

# Stand-in for an unbounded Search/Browse ratio when Browse has no traffic.
SEARCH_ONLY_RATIO: float = 999.0


@dataclass(frozen=True)
class DerivedKPIs:
    search_browse_ratio: float = 0.0
    first_impression_effectiveness: float = 0.0
    metadata_strength: float = 0.0
    creative_strength: float = 0.0
    funnel_leak_rate: float = 0.0
    direct_install_propensity: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def _search_browse_ratio(search: TwoPathMetrics, browse: TwoPathMetrics) -> float:
    if browse.impressions > 0:
        return search.impressions / browse.impressions
    return SEARCH_ONLY_RATIO if search.impressions > 0 else 0.0


def derive_kpis(search: TwoPathMetrics, browse: TwoPathMetrics) -> DerivedKPIs:
    """
    Combine Search and Browse metrics into DerivedKPIs.
    """

    total_impressions = search.impressions + browse.impressions
    total_ppv = search.product_page_views + browse.product_page_views
    total_downloads = search.downloads + browse.downloads
    total_pdp_installs = search.pdp_driven_installs + browse.pdp_driven_installs

    search_install_share = safe_divide(search.downloads, total_downloads)
    browse_install_share = safe_divide(browse.downloads, total_downloads)

    funnel_leak = (1.0 - total_pdp_installs / total_ppv) * 100.0 if total_ppv > 0 else 0.0

    return DerivedKPIs(
        search_browse_ratio=_search_browse_ratio(search, browse),
        first_impression_effectiveness=safe_percentage(total_ppv, total_impressions),
        metadata_strength=search.total_cvr * search_install_share,
        creative_strength=browse.total_cvr * browse_install_share,
        funnel_leak_rate=funnel_leak,
        direct_install_propensity=safe_percentage(search.direct_installs, search.downloads),
    )
