"""Descriptive and inferential statistics for per-tool response times.

Everything is recomputed from the raw samples on each call; nothing here
holds state.
"""

import math
from collections.abc import Sequence

from src.analysis.models import ConfidenceInterval, Quartiles, Significance, ToolStatistics

# Two-sided 95% t critical values by degrees of freedom
_T_CRITICAL_95: dict[int, float] = {
    1: 12.706,
    2: 4.303,
    3: 3.182,
    4: 2.776,
    5: 2.571,
    6: 2.447,
    7: 2.365,
    8: 2.306,
    9: 2.262,
    10: 2.228,
    11: 2.201,
    12: 2.179,
    13: 2.160,
    14: 2.145,
    15: 2.131,
    16: 2.120,
    17: 2.110,
    18: 2.101,
    19: 2.093,
    20: 2.086,
    21: 2.080,
    22: 2.074,
    23: 2.069,
    24: 2.064,
    25: 2.060,
    26: 2.056,
    27: 2.052,
    28: 2.048,
    29: 2.045,
    30: 2.042,
}
Z_95 = 1.96

OUTLIER_IQR_FACTOR = 1.5

# (upper CV bound in percent, category, base confidence in percent)
_CV_BANDS: list[tuple[float, str, float]] = [
    (10.0, "very-low", 95.0),
    (25.0, "low", 85.0),
    (50.0, "moderate", 70.0),
    (100.0, "high", 55.0),
    (math.inf, "very-high", 45.0),
]
MIN_CONFIDENCE_PERCENT = 40.0
MAX_CONFIDENCE_PERCENT = 99.0


def t_critical(degrees_of_freedom: int) -> float:
    """Two-sided 95% critical value; the normal 1.96 beyond 30 degrees of freedom."""
    if degrees_of_freedom < 1:
        raise ValueError("degrees_of_freedom must be at least 1")
    return _T_CRITICAL_95.get(degrees_of_freedom, Z_95)


def mean(samples: Sequence[float]) -> float:
    if not samples:
        return 0.0
    return sum(samples) / len(samples)


def sample_std_dev(samples: Sequence[float]) -> float:
    """Sample standard deviation (``n - 1``); population formula for a single sample."""
    n = len(samples)
    if n == 0:
        return 0.0
    avg = mean(samples)
    squared = sum((x - avg) ** 2 for x in samples)
    return math.sqrt(squared / (n - 1 if n > 1 else n))


def percentile(sorted_samples: Sequence[float], p: float) -> float:
    """Linear-interpolation percentile of already sorted samples (``p`` in 0-100)."""
    if not sorted_samples:
        raise ValueError("percentile of an empty sequence")
    rank = (p / 100) * (len(sorted_samples) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return sorted_samples[lower]
    weight = rank - lower
    return sorted_samples[lower] + weight * (sorted_samples[upper] - sorted_samples[lower])


def _classify(n: int, cv: float) -> Significance:
    if n == 0:
        return Significance(category="no-data", confidence_percent=0.0)
    if n < 3:
        return Significance(category="insufficient", confidence_percent=0.0)

    category, confidence = next((c, conf) for bound, c, conf in _CV_BANDS if cv < bound)
    if n >= 30:
        confidence += 15.0
    elif n >= 20:
        confidence += 10.0
    elif n >= 10:
        confidence += 5.0
    elif n < 5:
        confidence -= 15.0
    confidence = min(MAX_CONFIDENCE_PERCENT, max(MIN_CONFIDENCE_PERCENT, confidence))
    return Significance(category=category, confidence_percent=confidence)


def summarize(tool_name: str, samples: Sequence[float]) -> ToolStatistics:
    """Compute statistics for one tool's response-time samples (seconds).

    Args:
        tool_name: Normalized tool name the samples belong to.
        samples: Response latencies; may be empty.

    Returns:
        A ``ToolStatistics`` with mean, sample standard deviation, CV, a 95%
        confidence interval (n > 1), quartiles and IQR outliers (n >= 4), and
        a variability classification.
    """
    n = len(samples)
    if n == 0:
        return ToolStatistics(
            tool_name=tool_name,
            count=0,
            mean=0.0,
            std_dev=0.0,
            coefficient_of_variation=0.0,
            significance=_classify(0, 0.0),
        )

    avg = mean(samples)
    std_dev = sample_std_dev(samples)
    cv = 100 * std_dev / avg if avg != 0 else 0.0

    interval: ConfidenceInterval | None = None
    if n > 1:
        margin = t_critical(n - 1) * std_dev / math.sqrt(n)
        interval = ConfidenceInterval(lower=avg - margin, upper=avg + margin, margin=margin)

    quartiles: Quartiles | None = None
    outliers: list[float] = []
    if n >= 4:
        ordered = sorted(samples)
        q1 = percentile(ordered, 25)
        median = percentile(ordered, 50)
        q3 = percentile(ordered, 75)
        iqr = q3 - q1
        quartiles = Quartiles(q1=q1, median=median, q3=q3, iqr=iqr)
        low_fence = q1 - OUTLIER_IQR_FACTOR * iqr
        high_fence = q3 + OUTLIER_IQR_FACTOR * iqr
        outliers = [x for x in samples if x < low_fence or x > high_fence]

    return ToolStatistics(
        tool_name=tool_name,
        count=n,
        mean=avg,
        std_dev=std_dev,
        coefficient_of_variation=abs(cv),
        confidence_interval=interval,
        outliers=outliers,
        quartiles=quartiles,
        significance=_classify(n, abs(cv)),
    )
