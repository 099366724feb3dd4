# accumulator.py
"""
The sampling-distribution histogram.

One observation per completed sample statistic is binned over the
statistic's domain. Summary figures are recomputed from the bins whenever
they are asked for rather than tracked incrementally.
"""
import logging
from typing import Optional, Tuple

import numpy as np

from geometry import value_to_bin
from sample_statistics import StatDomain


class SamplingDistribution:
    """
    Histogram of sample statistics over a fixed domain.
    """
    def __init__(self, bins: int, domain: StatDomain):
        if bins < 1:
            msg = f"Configuration error: sampling distribution needs at least 1 bin, got {bins}."
            logging.critical(msg)
            raise ValueError(msg)
        self.bins = bins
        self.domain = domain
        self.counts = np.zeros(bins, dtype=np.int64)

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def bin_for(self, value: float) -> int:
        return value_to_bin(value, self.domain.min, self.domain.max, self.bins)

    def bin_values(self) -> np.ndarray:
        """Bin centres mapped back into the domain."""
        x01 = (np.arange(self.bins) + 0.5) / self.bins
        return self.domain.min + x01 * self.domain.width

    def add_observation(self, value: Optional[float]) -> int:
        """Increments the bin holding `value` and returns its index."""
        if value is None:
            raise ValueError("Undefined statistic values cannot be added to the sampling distribution.")
        b = self.bin_for(value)
        self.increment(b)
        return b

    def increment(self, b: int) -> None:
        self.counts[b] += 1

    def mean_and_spread(self) -> Tuple[Optional[float], Optional[float]]:
        """
        Weighted mean and SD of the accumulated statistics, or (None, None)
        while the histogram is empty.
        """
        total = self.total
        if total == 0:
            return None, None
        v = self.bin_values()
        w = self.counts.astype(np.float64)
        mean = float(np.dot(w, v) / total)
        sd = float(np.sqrt(np.dot(w, (v - mean) ** 2) / total))
        return mean, sd

    def reset(self) -> None:
        self.counts = np.zeros(self.bins, dtype=np.int64)

    def set_domain(self, domain: StatDomain) -> None:
        """Switches domain and clears every count."""
        self.domain = domain
        self.reset()
        logging.debug(f"Sampling distribution domain set to [{domain.min}, {domain.max}].")
