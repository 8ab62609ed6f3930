"""
intelligence/config.py

Tunable thresholds, weights and presets for the intelligence layer.

Every calculator takes its config as an argument defaulting to the values
below, so tests and callers can override any knob without monkeypatching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Priority = Literal["high", "medium", "low"]
Confidence = Literal["high", "medium", "low"]


# ---------------------------------------------------------------------------
# Stability
# ---------------------------------------------------------------------------

MIN_STABILITY_POINTS: int = 7


@dataclass(frozen=True)
class StabilityBand:
    min_score: float
    label: str
    color: str


@dataclass(frozen=True)
class StabilityConfig:
    """
    Weights must sum to 1.0; ``volatility_weight + trend_weight`` likewise.
    """

    impressions_weight: float = 0.25
    downloads_weight: float = 0.35
    cvr_weight: float = 0.30
    direct_share_weight: float = 0.10
    cv_cap: float = 2.0
    volatility_weight: float = 0.8
    trend_weight: float = 0.2
    min_points: int = MIN_STABILITY_POINTS
    max_points: int = 90
    # Sorted from highest to lowest threshold.
    bands: tuple[StabilityBand, ...] = (
        StabilityBand(80, "Very Stable", "green"),
        StabilityBand(60, "Stable", "green"),
        StabilityBand(40, "Moderate Volatility", "yellow"),
        StabilityBand(20, "Unstable", "orange"),
        StabilityBand(0, "Highly Volatile", "red"),
    )

    def interpret(self, score: float) -> StabilityBand:
        for band in self.bands:
            if score >= band.min_score:
                return band
        return self.bands[-1]


# ---------------------------------------------------------------------------
# Opportunity map
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OpportunityConfig:
    first_impression_good: float = 20.0
    pdp_cvr_search_good: float = 35.0
    pdp_cvr_browse_good: float = 45.0
    funnel_leak_good: float = 60.0
    search_browse_ratio_balanced_low: float = 0.8
    search_browse_ratio_balanced_high: float = 3.0
    direct_propensity_good: float = 20.0
    channel_imbalance_trigger: float = 1.5
    channel_imbalance_benchmark: float = 0.5

    icon_title_multiplier: float = 5.0
    pdp_cvr_multiplier: float = 2.0
    funnel_leak_multiplier: float = 1.5
    search_browse_ratio_multiplier: float = 50.0
    search_heavy_multiplier_factor: float = 0.2
    direct_propensity_multiplier: float = 3.0
    channel_imbalance_multiplier: float = 30.0

    max_score: float = 100.0
    max_opportunities: int = 4
    min_product_page_views: float = 100.0
    high_priority_score: float = 70.0
    medium_priority_score: float = 40.0

    def priority(self, score: float) -> Priority:
        if score >= self.high_priority_score:
            return "high"
        if score >= self.medium_priority_score:
            return "medium"
        return "low"


# ---------------------------------------------------------------------------
# Outcome simulation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SimulationConfig:
    tap_through_improvement_pp: float = 1.0
    pdp_cvr_improvement_relative: float = 0.10
    funnel_leak_reduction_pp: float = 5.0
    search_impressions_increase_relative: float = 0.10

    max_pdp_cvr: float = 70.0
    min_funnel_leak: float = 10.0
    max_tap_through: float = 50.0

    max_scenarios: int = 3
    min_impact: float = 10.0
    high_confidence: tuple[str, ...] = ("improve_ttr", "improve_pdp_cvr")
    medium_confidence: tuple[str, ...] = ("reduce_funnel_leak", "increase_search_impressions")

    def confidence(self, scenario_id: str) -> Confidence:
        if scenario_id in self.high_confidence:
            return "high"
        if scenario_id in self.medium_confidence:
            return "medium"
        return "low"


# ---------------------------------------------------------------------------
# Anomaly attribution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AttributionConfig:
    """
    Thresholds are percentage changes between the previous and current
    period unless the name says ``range``.
    """

    search_impression_drop_severe: float = -10.0
    search_cvr_drop_significant: float = -5.0
    search_cvr_increase_significant: float = 5.0
    browse_impression_drop_severe: float = -15.0
    browse_impression_spike: float = 20.0
    browse_pdp_cvr_drop_severe: float = -10.0
    browse_pdp_cvr_stable_range: float = 5.0
    browse_pdp_cvr_fatigue_drop: float = -15.0
    pdp_cvr_drop_both_channels: float = -10.0
    all_metrics_drop_threshold: float = -20.0
    all_metrics_cvr_drop: float = -10.0
    direct_share_spike: float = 20.0
    direct_share_stable_range: float = 5.0
    external_traffic_direct_share_rise: float = 15.0
    downloads_spike_threshold: float = 30.0
    impressions_stable_range: float = 10.0
    sbr_shift_threshold: float = 30.0

    confidence_weights: dict[str, int] = field(
        default_factory=lambda: {"high": 3, "medium": 2, "low": 1}
    )
    max_attributions: int = 5


@dataclass(frozen=True)
class IntelligenceConfig:
    stability: StabilityConfig = field(default_factory=StabilityConfig)
    opportunities: OpportunityConfig = field(default_factory=OpportunityConfig)
    simulations: SimulationConfig = field(default_factory=SimulationConfig)
    attributions: AttributionConfig = field(default_factory=AttributionConfig)


DEFAULT_INTELLIGENCE_CONFIG = IntelligenceConfig()
