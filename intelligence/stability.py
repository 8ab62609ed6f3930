"""
intelligence/stability.py

ASO stability score: how steady daily performance has been.

Formulas
--------
For each metric series x (last ``max_points`` days):

    CV           = std(x) / mean(x)               (population std; 0 when mean <= 0)
    metric_score = 100 × (1 - min(CV, cap) / cap)

volatility = Σ weight_m × metric_score_m
             over impressions (.25), downloads (.35), CVR (.30),
             direct install share (.10)

trend      = share of non-zero day-over-day downloads deltas whose sign
             matches the sign of the least-squares downloads slope × 100
             (100 for a flat series)

score      = 0.8 × volatility + 0.2 × trend

A smoother, more consistently trending series therefore scores higher.
Callers must check ``len(series) >= MIN_STABILITY_POINTS`` first; shorter
input raises :class:`InsufficientDataError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from app.errors import InsufficientDataError
from intelligence.config import DEFAULT_INTELLIGENCE_CONFIG, StabilityConfig
from kpi.timeseries import TimeSeriesPoint
from kpi.two_path import calculate_two_path_metrics

_FLAT_SLOPE_EPSILON = 1e-9


@dataclass(frozen=True)
class MetricStability:
    cv: float
    score: float
    mean: float
    std: float


@dataclass(frozen=True)
class StabilityScore:
    score: float
    interpretation: str
    color: str
    volatility_component: float
    trend_component: float
    breakdown: dict[str, MetricStability]
    data_points: int
    period: str

    def as_dict(self) -> dict:
        return {
            "score": self.score,
            "interpretation": self.interpretation,
            "color": self.color,
            "volatility_component": self.volatility_component,
            "trend_component": self.trend_component,
            "breakdown": {
                name: {
                    "cv": metric.cv,
                    "score": metric.score,
                    "mean": metric.mean,
                    "std": metric.std,
                }
                for name, metric in self.breakdown.items()
            },
            "data_points": self.data_points,
            "period": self.period,
        }


def _metric_stability(values: np.ndarray, cv_cap: float) -> MetricStability:
    mean_value = float(np.mean(values)) if values.size else 0.0
    std_value = float(np.std(values)) if values.size else 0.0
    cv = std_value / mean_value if mean_value > 0 else 0.0
    if not np.isfinite(cv):
        score = 0.0
    else:
        score = 100.0 * (1.0 - min(cv, cv_cap) / cv_cap)
    return MetricStability(cv=cv, score=score, mean=mean_value, std=std_value)


def _direct_install_share(point: TimeSeriesPoint) -> float:
    return calculate_two_path_metrics(
        point.impressions,
        point.product_page_views,
        point.downloads,
    ).direct_install_share


def trend_consistency(downloads: Sequence[float]) -> float:
    """
    Percentage of day-over-day moves that agree with the overall direction.
    """

    values = np.asarray(downloads, dtype=np.float64)
    if values.size < 2:
        return 100.0

    x = np.arange(values.size, dtype=np.float64)
    slope = float(np.polyfit(x, values, 1)[0])
    if abs(slope) < _FLAT_SLOPE_EPSILON:
        return 100.0

    deltas = np.diff(values)
    moving = deltas[deltas != 0]
    if moving.size == 0:
        return 100.0
    agreeing = int(np.count_nonzero(np.sign(moving) == np.sign(slope)))
    return agreeing / moving.size * 100.0


def calculate_stability_score(
    time_series: Sequence[TimeSeriesPoint],
    config: StabilityConfig = DEFAULT_INTELLIGENCE_CONFIG.stability,
) -> StabilityScore:
    """
    Score volatility and directional consistency of a daily series.

    Parameters
    ----------
    time_series:
        Daily points in chronological order (see ``kpi.timeseries``).
    config:
        Weights, CV cap and band thresholds.

    Raises
    ------
    InsufficientDataError
        When fewer than ``config.min_points`` points are supplied.
    """

    if len(time_series) < config.min_points:
        raise InsufficientDataError(
            f"Need at least {config.min_points} days of data for stability analysis, "
            f"got {len(time_series)}."
        )

    recent = list(time_series)[-config.max_points:]

    impressions = np.array([point.impressions for point in recent], dtype=np.float64)
    downloads = np.array([point.downloads for point in recent], dtype=np.float64)
    cvr = np.array([point.conversion_rate for point in recent], dtype=np.float64)
    direct_share = np.array([_direct_install_share(point) for point in recent], dtype=np.float64)

    breakdown = {
        "impressions": _metric_stability(impressions, config.cv_cap),
        "downloads": _metric_stability(downloads, config.cv_cap),
        "cvr": _metric_stability(cvr, config.cv_cap),
        "direct_share": _metric_stability(direct_share, config.cv_cap),
    }

    volatility = (
        breakdown["impressions"].score * config.impressions_weight
        + breakdown["downloads"].score * config.downloads_weight
        + breakdown["cvr"].score * config.cvr_weight
        + breakdown["direct_share"].score * config.direct_share_weight
    )
    trend = trend_consistency(downloads)
    score = round(config.volatility_weight * volatility + config.trend_weight * trend, 2)
    band = config.interpret(score)

    return StabilityScore(
        score=score,
        interpretation=band.label,
        color=band.color,
        volatility_component=round(volatility, 2),
        trend_component=round(trend, 2),
        breakdown=breakdown,
        data_points=len(recent),
        period=f"Last {len(recent)} days",
    )
