"""Statistics helpers shared by the accuracy monitor and the experiment framework.

The significance test is pluggable. Two implementations are provided:

- ``StudentTSignificance``: exact two-sided p-value from the Student's t
  distribution (SciPy).
- ``BandedSignificance``: a coarse statistic-to-p-value lookup reproducing the
  historical behaviour of the engine.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from scipy import stats

from .config import SignificanceMethod
from .logger import get_logger

logger = get_logger("core.statistics")


class SignificanceTest(ABC):
    """Converts a test statistic into a two-sided p-value."""

    name: str = "abstract"

    @abstractmethod
    def p_value(self, t_statistic: float, degrees_of_freedom: float) -> float:
        """Return the two-sided p-value for ``|t_statistic|``."""


class StudentTSignificance(SignificanceTest):
    """Exact p-value from the Student's t distribution."""

    name = "student_t"

    def p_value(self, t_statistic: float, degrees_of_freedom: float) -> float:
        if math.isnan(t_statistic):
            return 1.0
        df = max(1.0, degrees_of_freedom)
        p = 2.0 * float(stats.t.sf(abs(t_statistic), df))
        return clamp(p)


class BandedSignificance(SignificanceTest):
    """Coarse lookup: 1.96 / 2.58 / 3.29 cut points, degrees of freedom ignored."""

    name = "banded"

    BANDS: tuple[tuple[float, float], ...] = (
        (1.96, 0.05),
        (2.58, 0.01),
        (3.29, 0.001),
    )
    FLOOR = 0.0001

    def p_value(self, t_statistic: float, degrees_of_freedom: float) -> float:
        t = abs(t_statistic)
        if math.isnan(t):
            return 1.0
        for cut, p in self.BANDS:
            if t < cut:
                return p
        return self.FLOOR


_SIGNIFICANCE_TESTS: dict[str, type[SignificanceTest]] = {
    StudentTSignificance.name: StudentTSignificance,
    BandedSignificance.name: BandedSignificance,
}


def get_significance_test(method: SignificanceMethod | str = "student_t") -> SignificanceTest:
    """Create the significance test registered under ``method``.

    Raises:
        ValueError: If the method is unknown
    """
    try:
        return _SIGNIFICANCE_TESTS[method]()
    except KeyError:
        available = ", ".join(sorted(_SIGNIFICANCE_TESTS))
        raise ValueError(
            f"Unknown significance method: {method}. Available: {available}"
        ) from None


@dataclass(frozen=True)
class TTestResult:
    """Outcome of a Welch two-sample t-test."""

    t_statistic: float
    degrees_of_freedom: float
    p_value: float
    standard_error: float


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` to ``[low, high]``; NaN maps to ``low``."""
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return math.fsum(values) / len(values)


def sample_std(values: Sequence[float], values_mean: float | None = None) -> float:
    """Sample standard deviation (n - 1 denominator); 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    m = mean(values) if values_mean is None else values_mean
    variance = math.fsum((v - m) ** 2 for v in values) / (len(values) - 1)
    return math.sqrt(variance)


def welch_t_test(
    samples_a: Sequence[float],
    samples_b: Sequence[float],
    significance: SignificanceTest,
) -> TTestResult:
    """Welch's t-test of ``mean(B) - mean(A)``.

    With zero pooled standard error the statistic is 0 for equal means and
    infinite (signed) otherwise.
    """
    n_a, n_b = len(samples_a), len(samples_b)
    if n_a < 2 or n_b < 2:
        return TTestResult(0.0, 0.0, 1.0, 0.0)

    mean_a, mean_b = mean(samples_a), mean(samples_b)
    var_a = sample_std(samples_a, mean_a) ** 2 / n_a
    var_b = sample_std(samples_b, mean_b) ** 2 / n_b
    se = math.sqrt(var_a + var_b)
    diff = mean_b - mean_a

    denominator = var_a**2 / (n_a - 1) + var_b**2 / (n_b - 1)
    df = (se**4) / denominator if denominator > 0 else float(n_a + n_b - 2)

    if se == 0:
        if diff == 0:
            return TTestResult(0.0, df, 1.0, 0.0)
        t_stat = math.copysign(math.inf, diff)
    else:
        t_stat = diff / se

    return TTestResult(t_stat, df, significance.p_value(abs(t_stat), df), se)


def difference_interval(
    samples_a: Sequence[float],
    samples_b: Sequence[float],
    z: float = 1.96,
) -> tuple[float, float]:
    """Normal-approximation interval for ``mean(B) - mean(A)``."""
    if not samples_a or not samples_b:
        return (0.0, 0.0)
    mean_a, mean_b = mean(samples_a), mean(samples_b)
    std_a = sample_std(samples_a, mean_a)
    std_b = sample_std(samples_b, mean_b)
    se = math.sqrt(std_a**2 / len(samples_a) + std_b**2 / len(samples_b))
    diff = mean_b - mean_a
    margin = z * se
    return (diff - margin, diff + margin)


def z_for_confidence(level: float) -> float:
    """Two-sided normal critical value for a confidence level in (0, 1)."""
    return float(stats.norm.ppf(1 - (1 - level) / 2))


def proportion_interval(p: float, n: int, z: float = 1.96) -> tuple[float, float]:
    """Normal-approximation interval for a proportion, clamped to [0, 1].

    Fewer than two observations give the uninformative interval ``(0, 1)``.
    """
    if n < 2:
        return (0.0, 1.0)
    p = clamp(p)
    margin = z * math.sqrt(p * (1 - p) / n)
    return (max(0.0, p - margin), min(1.0, p + margin))


def percentile(values: Sequence[float], fraction: float) -> float:
    """Nearest-rank percentile; 0 for an empty sequence."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.ceil(fraction * len(ordered)) - 1
    return ordered[max(0, min(len(ordered) - 1, index))]


def relative_accuracy(predicted: float, actual: float, floor: float) -> float:
    """``max(0, 1 - |predicted - actual| / max(actual, floor))`` clamped to [0, 1].

    Both values being zero counts as a perfect prediction.
    """
    if predicted == 0 and actual == 0:
        return 1.0
    denominator = max(actual, floor)
    if denominator <= 0:
        return 0.0
    return clamp(1.0 - abs(predicted - actual) / denominator)


def proportion_difference_confidence(
    p_a: float,
    n_a: int,
    p_b: float,
    n_b: int,
    significance: SignificanceTest,
) -> float:
    """Confidence (``1 - p``) that two observed proportions differ.

    Uses an unpooled two-proportion statistic with ``n_a + n_b - 2`` degrees of
    freedom. Identical proportions give 0.
    """
    if n_a < 1 or n_b < 1:
        return 0.0
    p_a, p_b = clamp(p_a), clamp(p_b)
    diff = p_b - p_a
    se = math.sqrt(p_a * (1 - p_a) / n_a + p_b * (1 - p_b) / n_b)
    if se == 0:
        return 0.0 if diff == 0 else 1.0
    df = float(max(1, n_a + n_b - 2))
    return clamp(1.0 - significance.p_value(abs(diff) / se, df))
