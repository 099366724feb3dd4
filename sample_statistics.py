# sample_statistics.py
"""
Point statistics computed from one sample, and the domain each one is
binned over in the sampling distribution.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from population import PopulationSummary


class Statistic(Enum):
    MEAN = "mean"
    MEDIAN = "median"
    SD = "sd"
    PROPORTION = "proportion"

    @classmethod
    def parse(cls, name: str) -> "Statistic":
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown statistic '{name}'. Expected one of: {valid}.")


@dataclass(frozen=True)
class StatDomain:
    min: float
    max: float

    @property
    def width(self) -> float:
        return self.max - self.min


LABELS = {
    Statistic.MEAN: "x̄",
    Statistic.MEDIAN: "Median",
    Statistic.SD: "s",
    Statistic.PROPORTION: "p̂",
}


def label(statistic: Statistic) -> str:
    return LABELS[statistic]


def statistic_domain(statistic: Statistic) -> StatDomain:
    """Sample SDs of values in [0, 1] cannot exceed 0.5 in practice."""
    if statistic is Statistic.SD:
        return StatDomain(0.0, 0.5)
    return StatDomain(0.0, 1.0)


def compute_statistic(
    statistic: Statistic, values: Sequence[float], threshold: float = 0.5
) -> Optional[float]:
    """
    Computes one statistic of a sample.

    Returns None for an empty sample, and for the standard deviation of
    fewer than two values. The standard deviation is the sample estimate
    (denominator n - 1).
    """
    xs = np.asarray(values, dtype=np.float64)
    n = xs.shape[0]
    if n == 0:
        return None
    if statistic is Statistic.MEAN:
        return float(np.mean(xs))
    if statistic is Statistic.MEDIAN:
        return float(np.median(xs))
    if statistic is Statistic.SD:
        if n < 2:
            return None
        return float(np.std(xs, ddof=1))
    if statistic is Statistic.PROPORTION:
        return float(np.count_nonzero(xs > threshold) / n)
    raise ValueError(f"Unhandled statistic: {statistic!r}")


def population_parameter(statistic: Statistic, summary: PopulationSummary) -> float:
    """The population quantity a statistic estimates."""
    if statistic is Statistic.MEAN:
        return summary.mean
    if statistic is Statistic.MEDIAN:
        return summary.median
    if statistic is Statistic.SD:
        return summary.sd
    if statistic is Statistic.PROPORTION:
        return summary.proportion
    raise ValueError(f"Unhandled statistic: {statistic!r}")
