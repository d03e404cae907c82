"""
Least-squares trend fitting over short, ordered series
(completion rate per day, retention strength per week, ...).
"""

import logging
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from prep_analytics.models import TimeSeriesPoint, TrendResult
from prep_analytics.settings import TrendSettings

logger = logging.getLogger(__name__)

SeriesInput = Iterable[Union[float, int, TimeSeriesPoint]]


def series_values(series: SeriesInput) -> np.ndarray:
    """Order points by index, drop non-finite values, return y-values only."""
    items = list(series)
    if items and all(isinstance(p, TimeSeriesPoint) for p in items):
        items = [p.value for p in sorted(items, key=lambda p: p.index)]
    values = np.asarray(items, dtype=float)
    finite = np.isfinite(values)
    if not finite.all():
        logger.warning(f"Dropping {int((~finite).sum())} non-finite points before trend fit")
        values = values[finite]
    return values


def trend_direction(slope: float, settings: Optional[TrendSettings] = None) -> str:
    settings = settings or TrendSettings()
    if slope > settings.improving_slope:
        return "Improving"
    if slope > settings.declining_slope:
        return "Stable"
    return "Declining"


def correlation_strength(r: float, settings: Optional[TrendSettings] = None) -> str:
    settings = settings or TrendSettings()
    strength = abs(r)
    if strength >= settings.strong_correlation:
        return "Strong"
    if strength >= settings.moderate_correlation:
        return "Moderate"
    return "Weak"


def fit_trend(series: SeriesInput, settings: Optional[TrendSettings] = None) -> TrendResult:
    """
    Fit y = m*x + b with x = 0..n-1.

    Returns the slope, intercept and |Pearson r|. Fewer than two points give a
    neutral result (slope 0, intercept = the single value or 0, correlation 0).
    """
    y = series_values(series)
    n = len(y)
    if n == 0:
        return TrendResult(direction=trend_direction(0.0, settings))
    if n == 1:
        return TrendResult(intercept=float(y[0]), direction=trend_direction(0.0, settings))

    x = np.arange(n, dtype=float)
    sum_x = x.sum()
    sum_y = y.sum()
    sum_xy = (x * y).sum()
    sum_x2 = (x * x).sum()
    sum_y2 = (y * y).sum()

    numerator = n * sum_xy - sum_x * sum_y
    var_x = n * sum_x2 - sum_x * sum_x
    var_y = n * sum_y2 - sum_y * sum_y

    # var_x is never 0 here since x = 0..n-1 with n >= 2
    slope = float(numerator / var_x)
    intercept = float((sum_y - slope * sum_x) / n)

    denominator = var_x * var_y
    # all-equal y can leave a tiny nonzero var_y from rounding
    if denominator <= 0 or np.ptp(y) == 0:
        correlation = 0.0
    else:
        correlation = float(min(abs(numerator) / np.sqrt(denominator), 1.0))

    return TrendResult(
        slope=slope,
        intercept=intercept,
        correlation=correlation,
        direction=trend_direction(slope, settings),
    )


def projected_value(trend: TrendResult, index: float) -> float:
    return trend.slope * index + trend.intercept


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Signed Pearson correlation of paired samples; 0 when undefined."""
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    if len(x) != len(y):
        logger.warning(f"pearson(): length mismatch {len(x)} vs {len(y)}, truncating")
        n = min(len(x), len(y))
        x, y = x[:n], y[:n]
    keep = np.isfinite(x) & np.isfinite(y)
    x, y = x[keep], y[keep]
    n = len(x)
    if n < 2:
        return 0.0
    numerator = n * (x * y).sum() - x.sum() * y.sum()
    denominator = (n * (x * x).sum() - x.sum() ** 2) * (n * (y * y).sum() - y.sum() ** 2)
    if denominator <= 0 or np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    return float(np.clip(numerator / np.sqrt(denominator), -1.0, 1.0))


def fitted_line(trend: TrendResult, n: int) -> List[float]:
    """Points of the fitted line at x = 0..n-1, for overlaying on a chart."""
    return [projected_value(trend, i) for i in range(max(n, 0))]
