# population.py
"""
Manages the population histogram that every sample is drawn from.

This module defines the Population class, which stores one integer weight
per equal-width bin over [0, 1) in a NumPy array, fills it from one of the
analytic generator shapes, and reports the population parameters the
sampling distribution should converge to.
"""
import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from constants import GENERATOR_SCALE, MAX_BIN_WEIGHT

# --- Data Contracts ---
#
# class Population:
#   - __init__(self, cols: int):
#     - Inputs:
#       - cols: int, number of bins covering [0, 1).
#     - Side Effects: Allocates an all-zero weight array.
#     - Invariants:
#       - self.weights is a NumPy array of shape (cols,) of dtype int64.
#       - Every weight is inside [0, MAX_BIN_WEIGHT].
#
#   - apply_generator(self, shape: Generator) -> None:
#     - Side Effects: Replaces every weight. Deterministic for a given shape.
#
#   - modify(self, col: int, delta: int) -> int:
#     - Outputs: The bin's new weight.
#
#   - summary(self, threshold: float) -> PopulationSummary:
#     - Outputs: Weighted mean, population SD (denominator = total weight),
#       weighted median and proportion above threshold. Single O(cols) pass
#       over the array per quantity.


class Generator(Enum):
    """Analytic shapes the population can be filled from."""
    NORMAL = "normal"
    UNIFORM = "uniform"
    BIMODAL = "bimodal"
    LOGNORMAL = "lognormal"

    @classmethod
    def parse(cls, name: str) -> "Generator":
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            valid = ", ".join(g.value for g in cls)
            raise ValueError(f"Unknown population generator '{name}'. Expected one of: {valid}.")


@dataclass(frozen=True)
class PopulationSummary:
    mean: float
    sd: float
    median: float
    proportion: float
    total: int


def generator_weights(shape: Generator, cols: int) -> np.ndarray:
    """
    Evaluates a generator shape at the bin centres and scales it to integer
    box counts (rounded half up).
    """
    x = (np.arange(cols) + 0.5) / cols
    if shape is Generator.NORMAL:
        z = (x - 0.5) / 0.16
        w = np.exp(-0.5 * z * z)
    elif shape is Generator.UNIFORM:
        w = np.ones(cols)
    elif shape is Generator.BIMODAL:
        z1 = (x - 0.32) / 0.07
        z2 = (x - 0.72) / 0.07
        w = 0.55 * np.exp(-0.5 * z1 * z1) + 0.45 * np.exp(-0.5 * z2 * z2)
    elif shape is Generator.LOGNORMAL:
        safe_x = np.maximum(x, 1e-4)
        z = (np.log(safe_x) - np.log(0.3)) / 0.6
        w = np.exp(-0.5 * z * z) / safe_x
    else:
        raise ValueError(f"Unhandled population generator: {shape!r}")
    counts = np.floor(w * GENERATOR_SCALE + 0.5)
    return np.clip(counts, 0, MAX_BIN_WEIGHT).astype(np.int64)


class Population:
    """
    The population value distribution as a histogram of bin weights.
    """
    def __init__(self, cols: int):
        if cols < 1:
            msg = f"Configuration error: population needs at least 1 bin, got {cols}."
            logging.critical(msg)
            raise ValueError(msg)
        self.cols = cols
        self.weights = np.zeros(cols, dtype=np.int64)
        self.generator = None

    @property
    def total(self) -> int:
        return int(self.weights.sum())

    def bin_centers(self) -> np.ndarray:
        return (np.arange(self.cols) + 0.5) / self.cols

    def apply_generator(self, shape: Generator) -> None:
        """Replaces the histogram with the given analytic shape."""
        self.weights = generator_weights(shape, self.cols)
        self.generator = shape
        logging.info(
            f"Population set to '{shape.value}' shape "
            f"({self.total} total weight over {self.cols} bins)."
        )

    def modify(self, col: int, delta: int) -> int:
        """
        Adds delta to one bin, clamping the bin index and the resulting weight.
        """
        col = int(np.clip(col, 0, self.cols - 1))
        new_weight = int(np.clip(int(self.weights[col]) + delta, 0, MAX_BIN_WEIGHT))
        self.weights[col] = new_weight
        # Hand edits no longer match any generator shape.
        self.generator = None
        logging.debug(f"Population bin {col} changed by {delta:+d} to {new_weight}.")
        return new_weight

    def clear(self) -> None:
        self.weights = np.zeros(self.cols, dtype=np.int64)
        self.generator = None

    def summary(self, threshold: float) -> PopulationSummary:
        """
        Computes the population parameters in O(cols).

        An empty population reports a mean and median of 0.5 and zero spread.
        """
        w = self.weights.astype(np.float64)
        total = self.total
        if total == 0:
            return PopulationSummary(mean=0.5, sd=0.0, median=0.5, proportion=0.0, total=0)

        x = self.bin_centers()
        mean = float(np.dot(w, x) / total)
        # Population SD: denominator is the total weight.
        sd = float(np.sqrt(np.dot(w, (x - mean) ** 2) / total))

        cumulative = np.cumsum(self.weights)
        median_col = int(np.argmax(cumulative >= total / 2))
        median = float(x[median_col])

        proportion = float(w[x > threshold].sum() / total)
        return PopulationSummary(
            mean=mean, sd=sd, median=median, proportion=proportion, total=total
        )
