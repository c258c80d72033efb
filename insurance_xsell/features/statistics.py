# ============================================================
# insurance_xsell/features/statistics.py
# Column statistics (median, mean, population std) used for
# imputation and standardization.
# ============================================================

import math                                        # isfinite checks on raw values
import numpy as np                                 # Vectorized reductions
from dataclasses import dataclass                  # Immutable statistic containers
from typing import Iterable, List, Sequence        # Type hints

# Divisor used in place of a zero standard deviation
STD_FLOOR = 1.0


@dataclass(frozen=True)
class ColumnStatistic:
    """Median, mean and population standard deviation of one numeric column."""

    median: float
    mean: float
    std: float

    @property
    def scale(self) -> float:
        """Standardization divisor with the zero-variance floor applied."""
        return floored_std(self.std)


def clean_numeric(values: Iterable) -> List[float]:
    """
    Keep only finite numbers from ``values``.

    Drops ``None``, strings, booleans, NaN and infinities, so the
    statistics below only ever see real numbers.
    """
    cleaned = []
    for value in values:
        # bool is an int subclass; a True/False cell is not a measurement
        if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
            continue
        if math.isfinite(value):
            cleaned.append(float(value))
    return cleaned


def median(values: Sequence[float]) -> float:
    """
    Median of ``values``; mean of the two central values for even counts.

    Returns 0.0 for empty input.
    """
    if len(values) == 0:
        return 0.0
    ordered = sorted(values)
    half = len(ordered) // 2
    if len(ordered) % 2:
        return float(ordered[half])
    return (ordered[half - 1] + ordered[half]) / 2.0


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for empty input."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=np.float64)))


def standard_deviation(values: Sequence[float]) -> float:
    """
    Population standard deviation (divides by N); 0.0 for empty input.

    Callers that divide by the result must go through ``floored_std``.
    """
    if len(values) == 0:
        return 0.0
    # ddof=0 -> population variance
    return float(np.std(np.asarray(values, dtype=np.float64), ddof=0))


def floored_std(std: float) -> float:
    """Clamp ``std`` to at least ``STD_FLOOR``; non-finite values map to the floor."""
    if not math.isfinite(std):
        return STD_FLOOR
    return max(std, STD_FLOOR)


def fit_column(values: Iterable) -> ColumnStatistic:
    """Fit a ColumnStatistic over the finite numbers in ``values``."""
    cleaned = clean_numeric(values)
    return ColumnStatistic(
        median=median(cleaned),
        mean=mean(cleaned),
        std=standard_deviation(cleaned),
    )
