# rng.py
"""
Deterministic pseudo-random stream used by the sampler.

Implements the Mulberry32 generator with integer arithmetic only, so the
same seed produces the same sequence on every platform. The step function
is compiled with Numba so the sampling kernel can advance the stream
without leaving nopython mode.
"""
import logging
from numba import jit

# --- Data Contracts ---
#
# mulberry32_step(state: int) -> Tuple[int, float]:
#   - Inputs: state, an unsigned 32-bit integer held in an int64.
#   - Outputs: (next_state, value) with value in [0, 1).
#   - Invariants: Pure function. Every intermediate stays below 2**49.
#
# class Mulberry32:
#   - __init__(self, seed: int)
#   - seed(self, value: int) -> None: discards the previous stream state.
#   - random(self) -> float: the next value in [0, 1).
#   - state: the raw 32-bit state, shared with the compiled sampling kernel.

MASK32 = 0xFFFFFFFF
GOLDEN_GAMMA = 0x6D2B79F5


@jit(nopython=True)
def imul32(a, b):
    """
    Low 32 bits of a * b for unsigned 32-bit inputs.

    The high half of `a` is folded in separately so the products fit in a
    signed 64-bit integer.
    """
    a_hi = (a >> 16) & 0xFFFF
    a_lo = a & 0xFFFF
    return ((a_lo * b) + (((a_hi * b) & 0xFFFF) << 16)) & MASK32


@jit(nopython=True)
def mulberry32_step(state):
    """Advances the stream by one value."""
    state = (state + GOLDEN_GAMMA) & MASK32
    r = imul32(state ^ (state >> 15), 1 | state)
    r = (r ^ ((r + imul32(r ^ (r >> 7), 61 | r)) & MASK32)) & MASK32
    return state, (r ^ (r >> 14)) / 4294967296.0


class Mulberry32:
    """
    A seeded stream of floats in [0, 1).
    """
    def __init__(self, seed: int):
        self.state = 0
        self.seed(seed)

    def seed(self, value: int) -> None:
        """Restarts the stream from a new seed."""
        self.state = int(value) & MASK32
        logging.debug(f"RNG seeded with {self.state}.")

    def random(self) -> float:
        """Returns the next value of the stream."""
        self.state, value = mulberry32_step(self.state)
        return value
