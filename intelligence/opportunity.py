"""
intelligence/opportunity.py

Opportunity map: ranks improvement levers by the gap between the current
value of a KPI and its benchmark.

score    = min(max_score, |gap| × multiplier)
priority = high (>= 70) | medium (>= 40) | low

Candidates are evaluated in a fixed lever order and sorted by descending
score with a stable sort, so equal scores keep that order.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal

from intelligence.config import DEFAULT_INTELLIGENCE_CONFIG, OpportunityConfig, Priority
from kpi.derived import DerivedKPIs
from kpi.two_path import TwoPathMetrics

Impact = Literal["high", "medium", "low"]

LEVER_ORDER: tuple[str, ...] = (
    "icon_title",
    "search_pdp_cvr",
    "browse_pdp_cvr",
    "funnel_leak",
    "search_discovery",
    "browse_discovery",
    "brand_recognition",
    "channel_balance",
)


@dataclass(frozen=True)
class Opportunity:
    id: str
    category: str
    priority: Priority
    score: float
    current_value: float
    benchmark: float
    gap: float
    message: str
    actionable_insight: str
    potential_impact: Impact

    def as_dict(self) -> dict:
        return asdict(self)


def _candidate(
    config: OpportunityConfig,
    *,
    lever: str,
    category: str,
    current_value: float,
    benchmark: float,
    gap: float,
    multiplier: float,
    message: str,
    actionable_insight: str,
    potential_impact: Impact,
) -> Opportunity:
    score = min(config.max_score, abs(gap) * multiplier)
    return Opportunity(
        id=lever,
        category=category,
        priority=config.priority(score),
        score=score,
        current_value=current_value,
        benchmark=benchmark,
        gap=gap,
        message=message,
        actionable_insight=actionable_insight,
        potential_impact=potential_impact,
    )


def calculate_opportunity_map(
    derived: DerivedKPIs,
    search: TwoPathMetrics,
    browse: TwoPathMetrics,
    config: OpportunityConfig = DEFAULT_INTELLIGENCE_CONFIG.opportunities,
) -> list[Opportunity]:
    """
    Return at most ``config.max_opportunities`` levers, highest score first.
    """

    candidates: list[Opportunity] = []

    first_impression = derived.first_impression_effectiveness
    if first_impression < config.first_impression_good:
        candidates.append(
            _candidate(
                config,
                lever="icon_title",
                category="Icon & Title",
                current_value=first_impression,
                benchmark=config.first_impression_good,
                gap=config.first_impression_good - first_impression,
                multiplier=config.icon_title_multiplier,
                message=(
                    f"Tap-through rate is {first_impression:.1f}% "
                    f"(benchmark: {config.first_impression_good:g}%)"
                ),
                actionable_insight=(
                    "Test new icon variants with A/B testing. "
                    "Refine title to include primary value proposition."
                ),
                potential_impact="high",
            )
        )

    if search.pdp_cvr < config.pdp_cvr_search_good and search.product_page_views >= config.min_product_page_views:
        candidates.append(
            _candidate(
                config,
                lever="search_pdp_cvr",
                category="Search Creative Assets",
                current_value=search.pdp_cvr,
                benchmark=config.pdp_cvr_search_good,
                gap=config.pdp_cvr_search_good - search.pdp_cvr,
                multiplier=config.pdp_cvr_multiplier,
                message=(
                    f"Search PDP CVR is {search.pdp_cvr:.1f}% "
                    f"(benchmark: {config.pdp_cvr_search_good:g}%)"
                ),
                actionable_insight="Optimize first 3 screenshots for search intent. Show core features immediately.",
                potential_impact="high",
            )
        )

    if browse.pdp_cvr < config.pdp_cvr_browse_good and browse.product_page_views >= config.min_product_page_views:
        candidates.append(
            _candidate(
                config,
                lever="browse_pdp_cvr",
                category="Browse Creative Assets",
                current_value=browse.pdp_cvr,
                benchmark=config.pdp_cvr_browse_good,
                gap=config.pdp_cvr_browse_good - browse.pdp_cvr,
                multiplier=config.pdp_cvr_multiplier,
                message=(
                    f"Browse PDP CVR is {browse.pdp_cvr:.1f}% "
                    f"(benchmark: {config.pdp_cvr_browse_good:g}%)"
                ),
                actionable_insight="Refresh screenshots with premium visuals. Add preview video if missing.",
                potential_impact="high",
            )
        )

    funnel_leak = derived.funnel_leak_rate
    if funnel_leak > config.funnel_leak_good:
        candidates.append(
            _candidate(
                config,
                lever="funnel_leak",
                category="Funnel Optimization",
                current_value=funnel_leak,
                benchmark=config.funnel_leak_good,
                gap=funnel_leak - config.funnel_leak_good,
                multiplier=config.funnel_leak_multiplier,
                message=(
                    f"{funnel_leak:.0f}% of PDP visitors don't install "
                    f"(benchmark: <{config.funnel_leak_good:g}%)"
                ),
                actionable_insight='Audit value proposition clarity. Ensure screenshots answer "Why should I install?"',
                potential_impact="high",
            )
        )

    ratio = derived.search_browse_ratio
    if ratio < config.search_browse_ratio_balanced_low:
        candidates.append(
            _candidate(
                config,
                lever="search_discovery",
                category="Metadata Discovery",
                current_value=ratio,
                benchmark=config.search_browse_ratio_balanced_low,
                gap=config.search_browse_ratio_balanced_low - ratio,
                multiplier=config.search_browse_ratio_multiplier,
                message=f"Search/Browse ratio is {ratio:.2f}:1 (too Browse-heavy)",
                actionable_insight=(
                    "Expand keyword coverage. Run search ads to test new keywords. "
                    "Improve category relevance."
                ),
                potential_impact="medium",
            )
        )

    if ratio > config.search_browse_ratio_balanced_high:
        candidates.append(
            _candidate(
                config,
                lever="browse_discovery",
                category="Creative Discovery",
                current_value=ratio,
                benchmark=config.search_browse_ratio_balanced_high,
                gap=ratio - config.search_browse_ratio_balanced_high,
                multiplier=config.search_browse_ratio_multiplier * config.search_heavy_multiplier_factor,
                message=f"Search/Browse ratio is {ratio:.2f}:1 (too Search-heavy)",
                actionable_insight=(
                    "Invest in featuring opportunities. Optimize category positioning. "
                    "Improve visual appeal."
                ),
                potential_impact="medium",
            )
        )

    propensity = derived.direct_install_propensity
    if propensity < config.direct_propensity_good:
        candidates.append(
            _candidate(
                config,
                lever="brand_recognition",
                category="Brand Recognition",
                current_value=propensity,
                benchmark=config.direct_propensity_good,
                gap=config.direct_propensity_good - propensity,
                multiplier=config.direct_propensity_multiplier,
                message=(
                    f"Direct install propensity is {propensity:.1f}% "
                    f"(benchmark: {config.direct_propensity_good:g}%)"
                ),
                actionable_insight=(
                    "Users don't recognize your brand in search. "
                    "Consider off-platform marketing to build awareness."
                ),
                potential_impact="low",
            )
        )

    metadata_strength = derived.metadata_strength
    creative_strength = derived.creative_strength
    imbalance = abs(metadata_strength - creative_strength)
    if imbalance > config.channel_imbalance_trigger:
        metadata_weaker = metadata_strength < creative_strength
        weaker, stronger = ("Metadata", "Creative") if metadata_weaker else ("Creative", "Metadata")
        candidates.append(
            _candidate(
                config,
                lever="channel_balance",
                category="Channel Balance",
                current_value=imbalance,
                benchmark=config.channel_imbalance_benchmark,
                gap=imbalance - config.channel_imbalance_benchmark,
                multiplier=config.channel_imbalance_multiplier,
                message=(
                    f"{weaker} strength ({min(metadata_strength, creative_strength):.2f}) lags behind "
                    f"{stronger} ({max(metadata_strength, creative_strength):.2f})"
                ),
                actionable_insight=(
                    "Invest in keyword optimization to match creative performance"
                    if metadata_weaker
                    else "Upgrade creative assets to match metadata performance"
                ),
                potential_impact="medium",
            )
        )

    # sorted() is stable: equal scores keep LEVER_ORDER.
    ranked = sorted(candidates, key=lambda opportunity: -opportunity.score)
    return ranked[: config.max_opportunities]
