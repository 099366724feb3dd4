# sampler.py
"""
Draws weighted samples from the population histogram.

Selection is inverse-CDF over the bin weights, one RNG value per sampled
element. The hot loop is compiled with Numba since turbo mode runs it
thousands of times per request.
"""
import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from numba import jit

from population import Population
from rng import Mulberry32, mulberry32_step

# --- Data Contracts ---
#
# class Sampler:
#   - __init__(self, population: Population, rng: Mulberry32)
#   - draw(self, n: int) -> Sample:
#     - Outputs: A Sample whose bins are in [0, cols) and whose values are
#       the matching bin midpoints.
#     - Side Effects: Advances the RNG by exactly n values.
#     - Invariants: An all-zero population selects bins uniformly.


@jit(nopython=True)
def _draw_bins_numba(weights, total, n, state):
    """
    Numba-jitted inverse-CDF selection.

    Returns the chosen bins and the advanced RNG state. When several bins
    could satisfy the target the first one whose running sum reaches it wins.
    """
    cols = weights.shape[0]
    bins = np.empty(n, dtype=np.int64)
    for i in range(n):
        state, u = mulberry32_step(state)
        if total == 0:
            col = int(u * cols)
            if col > cols - 1:
                col = cols - 1
        else:
            target = u * total
            acc = 0
            col = cols >> 1
            for c in range(cols):
                acc += weights[c]
                if target <= acc:
                    col = c
                    break
        bins[i] = col
    return bins, state


@dataclass(frozen=True)
class Sample:
    """One drawn sample: bin midpoints and the bins they came from, in draw order."""
    values: np.ndarray
    bins: np.ndarray

    def __len__(self) -> int:
        return len(self.bins)

    def pairs(self) -> List[Tuple[float, int]]:
        return [(float(v), int(b)) for v, b in zip(self.values, self.bins)]


class Sampler:
    """
    Weighted sampling against a Population, driven by a shared RNG stream.
    """
    def __init__(self, population: Population, rng: Mulberry32):
        self.population = population
        self.rng = rng

    def draw(self, n: int) -> Sample:
        """Draws n values from the current population."""
        n = max(0, int(n))
        weights = self.population.weights
        total = int(weights.sum())
        if total == 0:
            logging.debug("Population is empty; sampling bins uniformly.")
        bins, self.rng.state = _draw_bins_numba(weights, total, n, self.rng.state)
        values = (bins + 0.5) / self.population.cols
        return Sample(values=values, bins=bins)
