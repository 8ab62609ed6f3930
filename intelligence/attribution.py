"""
intelligence/attribution.py

Rule-based root-cause suggestions for a period-over-period shift.

Each rule inspects percentage changes between the previous and current
two-path metrics (and derived KPIs) and, when its pattern matches, emits
an :class:`Attribution`. Results are ordered by confidence weight
(high > medium > low; stable within a weight) and capped at
``max_attributions``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal

from intelligence.config import AttributionConfig, Confidence, DEFAULT_INTELLIGENCE_CONFIG
from kpi.derived import DerivedKPIs
from kpi.two_path import TwoPathResult

Category = Literal["metadata", "creative", "brand", "algorithm", "technical", "featuring"]

CATEGORY_LABELS: dict[str, str] = {
    "metadata": "Metadata & Keywords",
    "creative": "Creative Assets",
    "brand": "Brand & Marketing",
    "algorithm": "Algorithm & Platform",
    "technical": "Technical Issue",
    "featuring": "App Store Featuring",
}


@dataclass(frozen=True)
class AttributionContext:
    current: TwoPathResult
    previous: TwoPathResult
    current_derived: DerivedKPIs
    previous_derived: DerivedKPIs


@dataclass(frozen=True)
class MetricChanges:
    search_impressions: float
    search_cvr: float
    search_pdp_cvr: float
    browse_impressions: float
    browse_cvr: float
    browse_pdp_cvr: float
    total_impressions: float
    total_cvr: float
    downloads: float
    direct_install_share: float
    search_browse_ratio: float


@dataclass(frozen=True)
class Attribution:
    message: str
    confidence: Confidence
    category: Category
    actionable_insight: str
    related_metrics: tuple[str, ...]

    @property
    def category_label(self) -> str:
        return CATEGORY_LABELS[self.category]

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["related_metrics"] = list(self.related_metrics)
        payload["category_label"] = self.category_label
        return payload


def _change(current: float, previous: float) -> float:
    # A metric appearing from nothing counts as a full +100 % move.
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100.0


def calculate_metric_changes(context: AttributionContext) -> MetricChanges:
    cur, prev = context.current, context.previous
    return MetricChanges(
        search_impressions=_change(cur.search.impressions, prev.search.impressions),
        search_cvr=_change(cur.search.total_cvr, prev.search.total_cvr),
        search_pdp_cvr=_change(cur.search.pdp_cvr, prev.search.pdp_cvr),
        browse_impressions=_change(cur.browse.impressions, prev.browse.impressions),
        browse_cvr=_change(cur.browse.total_cvr, prev.browse.total_cvr),
        browse_pdp_cvr=_change(cur.browse.pdp_cvr, prev.browse.pdp_cvr),
        total_impressions=_change(
            cur.search.impressions + cur.browse.impressions,
            prev.search.impressions + prev.browse.impressions,
        ),
        total_cvr=_change(
            (cur.search.total_cvr + cur.browse.total_cvr) / 2,
            (prev.search.total_cvr + prev.browse.total_cvr) / 2,
        ),
        downloads=_change(
            cur.search.downloads + cur.browse.downloads,
            prev.search.downloads + prev.browse.downloads,
        ),
        direct_install_share=_change(
            (cur.search.direct_install_share + cur.browse.direct_install_share) / 2,
            (prev.search.direct_install_share + prev.browse.direct_install_share) / 2,
        ),
        search_browse_ratio=_change(
            context.current_derived.search_browse_ratio,
            context.previous_derived.search_browse_ratio,
        ),
    )


def generate_anomaly_attributions(
    context: AttributionContext,
    config: AttributionConfig = DEFAULT_INTELLIGENCE_CONFIG.attributions,
) -> list[Attribution]:
    """
    Match the period-over-period changes against the known shift patterns.
    """

    changes = calculate_metric_changes(context)
    found: list[Attribution] = []

    # Keyword rank loss.
    if (
        changes.search_impressions < config.search_impression_drop_severe
        and changes.search_cvr < config.search_cvr_drop_significant
        and abs(changes.direct_install_share) < config.direct_share_stable_range
    ):
        found.append(
            Attribution(
                message=(
                    "Search impressions and CVR both declined while direct install share remained "
                    "stable. This pattern suggests keyword rank loss or increased competition in "
                    "your primary search terms."
                ),
                confidence="high",
                category="metadata",
                actionable_insight=(
                    "Audit keyword rankings for top 10 keywords. Check competitor activity. "
                    "Consider search ads to regain visibility."
                ),
                related_metrics=("search_impressions", "search_cvr", "direct_install_share"),
            )
        )

    # Shift toward branded, higher-intent search.
    if (
        changes.search_impressions < config.search_impression_drop_severe
        and changes.search_cvr > config.search_cvr_increase_significant
    ):
        found.append(
            Attribution(
                message=(
                    "Search impressions dropped but CVR improved, indicating a shift toward "
                    "higher-intent, branded searches."
                ),
                confidence="high",
                category="brand",
                actionable_insight=(
                    "Monitor brand search volume. This may follow a marketing campaign or PR event. "
                    "Consider expanding branded keyword coverage."
                ),
                related_metrics=("search_impressions", "search_cvr"),
            )
        )

    # Lost featuring.
    if (
        changes.browse_impressions < config.browse_impression_drop_severe
        and abs(changes.browse_pdp_cvr) < config.browse_pdp_cvr_stable_range
        and abs(changes.search_impressions) < config.impressions_stable_range
    ):
        found.append(
            Attribution(
                message=(
                    "Browse impressions dropped significantly while Search remained stable and Browse "
                    "PDP CVR held steady. This strongly indicates loss of App Store featuring."
                ),
                confidence="high",
                category="featuring",
                actionable_insight=(
                    "Check App Store Today tab and category pages for your app. Review recent "
                    "metadata changes that may have affected editorial eligibility."
                ),
                related_metrics=("browse_impressions", "browse_pdp_cvr", "search_impressions"),
            )
        )

    # Featuring traffic not converting.
    if (
        changes.browse_impressions > config.browse_impression_spike
        and changes.browse_pdp_cvr < config.browse_pdp_cvr_drop_severe
    ):
        found.append(
            Attribution(
                message=(
                    "Browse impressions spiked but PDP CVR declined, suggesting your creative assets "
                    "aren't optimized for the broader audience that featuring attracts."
                ),
                confidence="medium",
                category="creative",
                actionable_insight=(
                    "Ensure your first 3 screenshots clearly communicate the value proposition. "
                    "Add preview video if missing."
                ),
                related_metrics=("browse_impressions", "browse_pdp_cvr", "funnel_leak_rate"),
            )
        )

    # Listing change hurt conversion on both paths.
    if (
        changes.search_pdp_cvr < config.pdp_cvr_drop_both_channels
        and changes.browse_pdp_cvr < config.pdp_cvr_drop_both_channels
        and abs(changes.total_impressions) < config.impressions_stable_range
    ):
        found.append(
            Attribution(
                message=(
                    "PDP CVR declined across both Search and Browse while impressions remained stable. "
                    "A recent metadata or screenshot update likely degraded conversion."
                ),
                confidence="high",
                category="creative",
                actionable_insight=(
                    "Review recent App Store listing changes. Consider rolling back screenshot or "
                    "description updates from the past 7 days and validate with an A/B test."
                ),
                related_metrics=("search_pdp_cvr", "browse_pdp_cvr", "funnel_leak_rate"),
            )
        )

    # Brand awareness surge.
    if changes.direct_install_share > config.direct_share_spike:
        found.append(
            Attribution(
                message=(
                    f"Direct install share rose by {changes.direct_install_share:.0f}%, indicating a "
                    "brand awareness surge from off-platform marketing, press or viral moments."
                ),
                confidence="medium",
                category="brand",
                actionable_insight=(
                    "Identify the source of brand awareness. Capitalize on momentum with search ads "
                    "on brand terms."
                ),
                related_metrics=("direct_install_share", "search_impressions"),
            )
        )

    # Creative fatigue.
    if (
        changes.browse_pdp_cvr < config.browse_pdp_cvr_fatigue_drop
        and abs(changes.direct_install_share) < config.direct_share_stable_range
        and abs(changes.browse_impressions) < config.impressions_stable_range
    ):
        found.append(
            Attribution(
                message=(
                    "Browse PDP CVR declined while impressions and direct install share remained "
                    "stable. This suggests creative fatigue."
                ),
                confidence="medium",
                category="creative",
                actionable_insight=(
                    "Refresh screenshots with new visuals. Highlight different features. "
                    "Test seasonal or themed variations."
                ),
                related_metrics=("browse_pdp_cvr", "creative_strength", "funnel_leak_rate"),
            )
        )

    # Uniform decline.
    if (
        changes.search_impressions < config.all_metrics_drop_threshold
        and changes.browse_impressions < config.all_metrics_drop_threshold
        and changes.search_cvr < config.all_metrics_cvr_drop
        and changes.browse_cvr < config.all_metrics_cvr_drop
    ):
        found.append(
            Attribution(
                message=(
                    "All major metrics declined uniformly across Search and Browse, pointing to an "
                    "App Store algorithm update, technical issue or account-level change."
                ),
                confidence="low",
                category="algorithm",
                actionable_insight=(
                    "Verify your app is live in all markets. Review App Store Connect for account "
                    "warnings or policy violations."
                ),
                related_metrics=("search_impressions", "browse_impressions", "search_cvr", "browse_cvr"),
            )
        )

    # External traffic.
    if (
        changes.downloads > config.downloads_spike_threshold
        and abs(changes.total_impressions) < config.impressions_stable_range
        and changes.direct_install_share > config.external_traffic_direct_share_rise
    ):
        found.append(
            Attribution(
                message=(
                    "Downloads spiked while impressions remained flat and direct install share "
                    "increased. This indicates external traffic such as deep links or campaigns."
                ),
                confidence="high",
                category="brand",
                actionable_insight=(
                    "Check campaign analytics for external sources. Review deep link attribution."
                ),
                related_metrics=("downloads", "impressions", "direct_install_share"),
            )
        )

    # Channel mix shift.
    if abs(changes.search_browse_ratio) > config.sbr_shift_threshold:
        search_heavier = changes.search_browse_ratio > 0
        direction = "Search-heavy" if search_heavier else "Browse-heavy"
        cause = (
            "keyword expansion or improved rankings"
            if search_heavier
            else "featuring gained or category visibility improved"
        )
        found.append(
            Attribution(
                message=(
                    f"Search/Browse ratio shifted {abs(changes.search_browse_ratio):.0f}% toward "
                    f"{direction}, indicating recent {cause}."
                ),
                confidence="medium",
                category="metadata" if search_heavier else "featuring",
                actionable_insight=(
                    "Monitor keyword performance to sustain search growth. Consider search ads to scale winners."
                    if search_heavier
                    else "Capitalize on featuring momentum. Optimize screenshots for discovery traffic."
                ),
                related_metrics=("search_browse_ratio", "search_impressions", "browse_impressions"),
            )
        )

    weights = config.confidence_weights
    found.sort(key=lambda attribution: -weights.get(attribution.confidence, 0))
    return found[: config.max_attributions]
