"""Descriptive statistics used by the edge engine and calibration.

All helpers accept plain sequences of floats and return plain floats (or
``None`` when the input is empty) so callers never have to handle numpy
scalar types.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np
from scipy.stats import variation


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return float(np.mean(values))


def median(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return float(np.median(values))


def population_std(values: Sequence[float]) -> float:
    """Population standard deviation (ddof=0); 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values))


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population CV (std / mean).

    Returns 0.0 for fewer than two values or a non-positive mean, which is
    what a stat that is always zero looks like (e.g. a centre's threes).
    """
    if len(values) < 2:
        return 0.0
    arr = np.asarray(values, dtype=float)
    if arr.mean() <= 0:
        return 0.0
    return float(variation(arr))


def weighted_median(values: Sequence[float], weights: Sequence[float]) -> Optional[float]:
    """Interpolated weighted median.

    Each value is placed at the midpoint of its cumulative-weight interval
    and the 50th percentile is linearly interpolated between neighbours.
    With equal weights this reduces to the ordinary median.

    ``weights`` is truncated to ``len(values)``; a short history simply
    uses the leading (most recent) weights.
    """
    n = min(len(values), len(weights))
    if n == 0:
        return None
    vals = np.asarray(values[:n], dtype=float)
    wts = np.asarray(weights[:n], dtype=float)
    if wts.sum() <= 0:
        return float(np.median(vals))

    order = np.argsort(vals, kind="stable")
    vals = vals[order]
    wts = wts[order]
    centers = (np.cumsum(wts) - 0.5 * wts) / wts.sum()
    return float(np.interp(0.5, centers, vals))


def hit_rate(values: Sequence[float], line: float, side: str) -> float:
    """Fraction of values strictly beyond ``line`` in the direction of ``side``."""
    if not values:
        return 0.0
    if side.upper() == "OVER":
        hits = sum(1 for v in values if v > line)
    else:
        hits = sum(1 for v in values if v < line)
    return hits / len(values)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def safe_log2_ratio(expected: float, actual: float) -> Optional[float]:
    """``log2(1 + expected / actual)``; None when ``actual`` is not positive."""
    if actual is None or actual <= 0:
        return None
    return math.log2(1.0 + expected / actual)
