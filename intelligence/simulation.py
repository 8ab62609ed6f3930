"""
intelligence/simulation.py

What-if projections for a fixed set of improvement scenarios.

Combined Search + Browse totals are first run through
``calculate_two_path_metrics`` so the simulated PDP CVR uses exactly the
allocation and zero-division policy of the live two-path view.

Scenarios (in evaluation order)
-------------------------------
improve_ttr                  Δinstalls = impressions × 1pp × pdp_cvr
improve_pdp_cvr              Δinstalls = ppv × (min(pdp_cvr × 1.1, 70) - pdp_cvr)
reduce_funnel_leak           Δinstalls = ppv × (leak - max(leak - 5pp, 10))
increase_search_impressions  Δinstalls = search.impressions × 10% × search.total_cvr

Scenarios with Δinstalls below ``min_impact`` are dropped; the rest are
sorted by descending Δinstalls (stable, so ties keep evaluation order).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from app.domain.metrics import PeriodTotals
from intelligence.config import Confidence, DEFAULT_INTELLIGENCE_CONFIG, SimulationConfig
from kpi.derived import DerivedKPIs
from kpi.two_path import TwoPathMetrics, calculate_two_path_metrics

SCENARIO_ORDER: tuple[str, ...] = (
    "improve_ttr",
    "improve_pdp_cvr",
    "reduce_funnel_leak",
    "increase_search_impressions",
)


@dataclass(frozen=True)
class ScenarioChange:
    metric: str
    current_value: float
    improved_value: float
    change: str


@dataclass(frozen=True)
class ScenarioImpact:
    metric: str
    current_value: float
    projected_value: float
    delta: float
    delta_formatted: str


@dataclass(frozen=True)
class SimulationScenario:
    id: str
    name: str
    description: str
    improvement: ScenarioChange
    estimated_impact: ScenarioImpact
    projected_total_downloads: float
    calculation: str
    confidence: Confidence

    def as_dict(self) -> dict:
        return asdict(self)


def format_number(value: float) -> str:
    """Compact K/M formatting used in scenario copy."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{round(value):,}"


def _scenario(
    config: SimulationConfig,
    *,
    scenario_id: str,
    name: str,
    description: str,
    improvement: ScenarioChange,
    current_downloads: float,
    total_downloads: float,
    delta: float,
    calculation: str,
) -> SimulationScenario:
    return SimulationScenario(
        id=scenario_id,
        name=name,
        description=description,
        improvement=improvement,
        estimated_impact=ScenarioImpact(
            metric="Downloads",
            current_value=current_downloads,
            projected_value=current_downloads + delta,
            delta=delta,
            delta_formatted=f"~{format_number(delta)}",
        ),
        projected_total_downloads=total_downloads + delta,
        calculation=calculation,
        confidence=config.confidence(scenario_id),
    )


def simulate_outcomes(
    totals: PeriodTotals,
    search: TwoPathMetrics,
    browse: TwoPathMetrics,
    derived: DerivedKPIs,
    config: SimulationConfig = DEFAULT_INTELLIGENCE_CONFIG.simulations,
) -> list[SimulationScenario]:
    """
    Project each scenario and return the top ``config.max_scenarios``.

    Parameters
    ----------
    totals:
        Totals of the currently filtered rows; only used to report the
        projected overall downloads.
    search, browse:
        Two-path metrics of the current period.
    derived:
        Derived KPIs built from *search* and *browse*.
    """

    combined = calculate_two_path_metrics(
        search.impressions + browse.impressions,
        search.product_page_views + browse.product_page_views,
        search.downloads + browse.downloads,
    )
    combined_downloads = combined.downloads
    total_downloads = float(totals.downloads)
    scenarios: list[SimulationScenario] = []

    # Tap-through: more impressions reach the product page.
    current_ttr = derived.first_impression_effectiveness
    improved_ttr = min(current_ttr + config.tap_through_improvement_pp, config.max_tap_through)
    delta_ppv = combined.impressions * (config.tap_through_improvement_pp / 100.0)
    delta_ttr = delta_ppv * (combined.pdp_cvr / 100.0)
    if delta_ttr >= config.min_impact:
        scenarios.append(
            _scenario(
                config,
                scenario_id="improve_ttr",
                name="Improve Icon/Title Tap-Through",
                description=(
                    "Optimize icon and title to increase tap-through rate by "
                    f"{config.tap_through_improvement_pp:g} percentage point"
                ),
                improvement=ScenarioChange(
                    metric="Tap-Through Rate",
                    current_value=current_ttr,
                    improved_value=improved_ttr,
                    change=f"+{config.tap_through_improvement_pp:g}pp",
                ),
                current_downloads=combined_downloads,
                total_downloads=total_downloads,
                delta=delta_ttr,
                calculation=(
                    f"{format_number(delta_ppv)} new PPV × {combined.pdp_cvr:.1f}% PDP CVR "
                    f"= {format_number(delta_ttr)} installs"
                ),
            )
        )

    # Product page conversion, relative uplift capped.
    current_pdp_cvr = combined.pdp_cvr
    improved_pdp_cvr = min(
        current_pdp_cvr * (1.0 + config.pdp_cvr_improvement_relative),
        config.max_pdp_cvr,
    )
    pdp_cvr_gain = improved_pdp_cvr - current_pdp_cvr
    delta_pdp = combined.product_page_views * (pdp_cvr_gain / 100.0)
    if delta_pdp >= config.min_impact:
        relative = f"{config.pdp_cvr_improvement_relative * 100:.0f}%"
        scenarios.append(
            _scenario(
                config,
                scenario_id="improve_pdp_cvr",
                name="Improve Product Page Conversion",
                description=f"Optimize screenshots and preview video to improve PDP CVR by {relative}",
                improvement=ScenarioChange(
                    metric="PDP CVR",
                    current_value=current_pdp_cvr,
                    improved_value=improved_pdp_cvr,
                    change=f"+{relative}",
                ),
                current_downloads=combined_downloads,
                total_downloads=total_downloads,
                delta=delta_pdp,
                calculation=(
                    f"{format_number(combined.product_page_views)} PPV × +{pdp_cvr_gain:.1f}pp CVR "
                    f"= {format_number(delta_pdp)} installs"
                ),
            )
        )

    # Funnel leak, floored.
    current_leak = derived.funnel_leak_rate
    improved_leak = max(current_leak - config.funnel_leak_reduction_pp, config.min_funnel_leak)
    leak_reduction = current_leak - improved_leak
    delta_funnel = combined.product_page_views * (leak_reduction / 100.0)
    if delta_funnel >= config.min_impact:
        scenarios.append(
            _scenario(
                config,
                scenario_id="reduce_funnel_leak",
                name="Reduce Funnel Leak",
                description=(
                    "Improve value prop clarity to reduce PDP drop-off by "
                    f"{config.funnel_leak_reduction_pp:g} percentage points"
                ),
                improvement=ScenarioChange(
                    metric="Funnel Leak Rate",
                    current_value=current_leak,
                    improved_value=improved_leak,
                    change=f"-{config.funnel_leak_reduction_pp:g}pp",
                ),
                current_downloads=combined_downloads,
                total_downloads=total_downloads,
                delta=delta_funnel,
                calculation=(
                    f"{format_number(combined.product_page_views)} PPV × +{leak_reduction:.1f}pp CVR "
                    f"= {format_number(delta_funnel)} installs"
                ),
            )
        )

    # Search reach.
    delta_search_impressions = search.impressions * config.search_impressions_increase_relative
    delta_search = delta_search_impressions * (search.total_cvr / 100.0)
    if delta_search >= config.min_impact:
        relative = f"{config.search_impressions_increase_relative * 100:.0f}%"
        scenarios.append(
            _scenario(
                config,
                scenario_id="increase_search_impressions",
                name="Increase Search Impressions",
                description=(
                    "Expand keyword coverage and improve rankings to boost search impressions by "
                    f"{relative}"
                ),
                improvement=ScenarioChange(
                    metric="Search Impressions",
                    current_value=search.impressions,
                    improved_value=search.impressions + delta_search_impressions,
                    change=f"+{relative}",
                ),
                current_downloads=combined_downloads,
                total_downloads=total_downloads,
                delta=delta_search,
                calculation=(
                    f"{format_number(delta_search_impressions)} new impressions × "
                    f"{search.total_cvr:.2f}% CVR = {format_number(delta_search)} installs"
                ),
            )
        )

    ranked = sorted(scenarios, key=lambda scenario: -scenario.estimated_impact.delta)
    return ranked[: config.max_scenarios]
