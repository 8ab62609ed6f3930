"""
intelligence/orchestrator.py

Coordinates the intelligence pipeline:
stability → opportunity map → outcome simulation → attributions.

Contains no scoring math; every step delegates to its own module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from app.domain.metrics import PeriodTotals
from app.errors import InsufficientDataError
from intelligence.attribution import Attribution, AttributionContext, generate_anomaly_attributions
from intelligence.config import DEFAULT_INTELLIGENCE_CONFIG, MIN_STABILITY_POINTS, IntelligenceConfig
from intelligence.opportunity import Opportunity, calculate_opportunity_map
from intelligence.simulation import SimulationScenario, simulate_outcomes
from intelligence.stability import StabilityScore, calculate_stability_score
from kpi.derived import DerivedKPIs
from kpi.timeseries import TimeSeriesPoint
from kpi.two_path import TwoPathResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]

ComparisonMarker = Optional[tuple[float, float, float, float]]

Fingerprint = tuple[int, Optional[str], Optional[str], float, float, float, float, ComparisonMarker]


@dataclass(frozen=True)
class IntelligencePayload:
    """
    Everything the intelligence pipeline reads, built from one filtered view.
    """

    time_series: tuple[TimeSeriesPoint, ...]
    two_path: TwoPathResult
    derived: DerivedKPIs
    totals: PeriodTotals
    previous_two_path: TwoPathResult | None = None
    previous_derived: DerivedKPIs | None = None

    def fingerprint(self) -> Fingerprint:
        """
        Cheap identity of the payload's content used for dispatch dedup.

        The previous period is folded in as its Search/Browse impressions
        and downloads, or ``None`` when there is no comparison.
        """
        first = self.time_series[0].date if self.time_series else None
        last = self.time_series[-1].date if self.time_series else None
        return (
            len(self.time_series),
            first,
            last,
            self.two_path.search.impressions,
            self.two_path.browse.impressions,
            self.two_path.search.downloads,
            self.two_path.browse.downloads,
            self._comparison_marker(),
        )

    def _comparison_marker(self) -> ComparisonMarker:
        previous = self.previous_two_path
        if previous is None:
            return None
        return (
            previous.search.impressions,
            previous.browse.impressions,
            previous.search.downloads,
            previous.browse.downloads,
        )


@dataclass(frozen=True)
class IntelligenceResult:
    stability: StabilityScore | None
    opportunities: list[Opportunity] = field(default_factory=list)
    simulations: list[SimulationScenario] = field(default_factory=list)
    attributions: list[Attribution] = field(default_factory=list)
    stability_message: str | None = None
    computed_at: str = ""

    def as_dict(self) -> dict:
        return {
            "stability": self.stability.as_dict() if self.stability else None,
            "stability_message": self.stability_message,
            "opportunities": [item.as_dict() for item in self.opportunities],
            "simulations": [item.as_dict() for item in self.simulations],
            "attributions": [item.as_dict() for item in self.attributions],
            "computed_at": self.computed_at,
        }


def _noop_progress(step: str, fraction: float) -> None:
    return None


class IntelligenceOrchestrator:
    """
    Thin coordinator for the four intelligence calculators.

    Stability is skipped (``stability=None`` with a message) when the
    series is shorter than ``MIN_STABILITY_POINTS``; attributions only run
    when a previous period is part of the payload.
    """

    def __init__(self, config: IntelligenceConfig = DEFAULT_INTELLIGENCE_CONFIG) -> None:
        self._config = config

    def compute(
        self,
        payload: IntelligencePayload,
        progress_callback: ProgressCallback | None = None,
    ) -> IntelligenceResult:
        report = progress_callback or _noop_progress
        config = self._config

        report("stability", 0.0)
        stability: StabilityScore | None = None
        stability_message: str | None = None
        min_points = max(MIN_STABILITY_POINTS, config.stability.min_points)
        if len(payload.time_series) >= min_points:
            try:
                stability = calculate_stability_score(payload.time_series, config.stability)
            except InsufficientDataError as exc:
                stability_message = str(exc)
        else:
            stability_message = (
                f"Need at least {min_points} days of data for stability analysis"
            )

        report("opportunities", 0.25)
        opportunities = calculate_opportunity_map(
            payload.derived,
            payload.two_path.search,
            payload.two_path.browse,
            config.opportunities,
        )

        report("simulations", 0.5)
        simulations = simulate_outcomes(
            payload.totals,
            payload.two_path.search,
            payload.two_path.browse,
            payload.derived,
            config.simulations,
        )

        report("attributions", 0.75)
        attributions: list[Attribution] = []
        if payload.previous_two_path is not None and payload.previous_derived is not None:
            attributions = generate_anomaly_attributions(
                AttributionContext(
                    current=payload.two_path,
                    previous=payload.previous_two_path,
                    current_derived=payload.derived,
                    previous_derived=payload.previous_derived,
                ),
                config.attributions,
            )

        report("complete", 1.0)
        logger.debug(
            "Intelligence computed points=%s opportunities=%s simulations=%s attributions=%s",
            len(payload.time_series),
            len(opportunities),
            len(simulations),
            len(attributions),
        )
        return IntelligenceResult(
            stability=stability,
            opportunities=opportunities,
            simulations=simulations,
            attributions=attributions,
            stability_message=stability_message,
            computed_at=datetime.now(tz=timezone.utc).isoformat(),
        )


def compute_intelligence(
    payload: IntelligencePayload,
    progress_callback: ProgressCallback | None = None,
    config: IntelligenceConfig = DEFAULT_INTELLIGENCE_CONFIG,
) -> IntelligenceResult:
    return IntelligenceOrchestrator(config).compute(payload, progress_callback)
