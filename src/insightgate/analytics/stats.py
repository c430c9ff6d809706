"""
Statistics primitives shared by the summarizer and metric alerting.

Both consumers must agree on what "anomalous" means, so mean, population
standard deviation and z-score live here and nowhere else.
"""

import math
from enum import StrEnum
from typing import Sequence

DEFAULT_DEADBAND_PCT = 5.0
DEFAULT_Z_THRESHOLD = 2.0
DEFAULT_SMOOTHING_ALPHA = 0.3
DEFAULT_CHANGE_THRESHOLD = 0.1


class Severity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def std_dev(values: Sequence[float], mu: float = None) -> float:
    """Population standard deviation."""
    if not values:
        return 0.0
    if mu is None:
        mu = mean(values)
    return math.sqrt(sum((v - mu) ** 2 for v in values) / len(values))


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def z_score(value: float, mu: float, sigma: float) -> float:
    """
    Standard score of a value against a baseline.

    A flat baseline yields +/-inf for any value that differs from it, and 0
    for one that matches.
    """
    if sigma == 0:
        if value == mu:
            return 0.0
        return math.inf if value > mu else -math.inf
    return (value - mu) / sigma


def is_anomalous(z: float, threshold: float = DEFAULT_Z_THRESHOLD) -> bool:
    return abs(z) > threshold


def percentage_change(first: float, last: float) -> float:
    """Signed change from first to last, relative to |first|, in percent."""
    if first == 0:
        return 0.0
    return (last - first) / abs(first) * 100


def classify_change(
    pct: float,
    deadband_pct: float = DEFAULT_DEADBAND_PCT,
    labels: tuple[str, str, str] = ("up", "down", "stable"),
) -> str:
    """Map a percentage change onto (rising, falling, flat) labels."""
    rising, falling, flat = labels
    if abs(pct) < deadband_pct:
        return flat
    return rising if pct > 0 else falling


def exponential_smoothing(
    values: Sequence[float], alpha: float = DEFAULT_SMOOTHING_ALPHA
) -> list[float]:
    if not values:
        return []
    smoothed = [values[0]]
    for v in values[1:]:
        smoothed.append(alpha * v + (1 - alpha) * smoothed[-1])
    return smoothed


def detect_trend_change(
    current: float,
    smoothed: Sequence[float],
    threshold: float = DEFAULT_CHANGE_THRESHOLD,
) -> bool:
    """True when current departs from the last smoothed value by more than threshold."""
    if not smoothed:
        return False
    last = smoothed[-1]
    if last == 0:
        return current != 0
    return abs((current - last) / last) > threshold


def severity_for(z: float, threshold: float = DEFAULT_Z_THRESHOLD) -> Severity:
    magnitude = abs(z)
    if magnitude > threshold * 2:
        return Severity.CRITICAL
    elif magnitude > threshold * 1.5:
        return Severity.WARNING
    return Severity.INFO
