"""
kpi/base.py

Shared zero-safe arithmetic for every aggregation and derivation formula.

Any ratio whose denominator is zero (or whose result is not finite) is
reported as ``0.0``. No formula in this repository raises on division by
zero and none returns NaN or infinity.
"""

from __future__ import annotations

import math
from typing import Iterable


def safe_divide(numerator: float, denominator: float) -> float:
    """
    numerator / denominator, or ``0.0`` when the quotient is undefined.
    """
    if denominator == 0 or not math.isfinite(denominator):
        return 0.0
    result = numerator / denominator
    if not math.isfinite(result):
        return 0.0
    return result


def safe_percentage(numerator: float, denominator: float) -> float:
    """
    numerator / denominator × 100, zero-safe.
    """
    return safe_divide(numerator, denominator) * 100.0


def conversion_rate(downloads: float, impressions: float) -> float:
    """
    CVR = downloads / impressions × 100; ``0.0`` when impressions is zero.
    """
    return safe_percentage(downloads, impressions)


def percent_change(current: float, previous: float | None) -> float:
    """
    (current - previous) / previous × 100.

    ``0.0`` when *previous* is missing or zero.
    """
    if previous is None or previous == 0:
        return 0.0
    return safe_percentage(current - previous, previous)


def mean(values: Iterable[float]) -> float:
    items = list(values)
    if not items:
        return 0.0
    return sum(items) / len(items)
