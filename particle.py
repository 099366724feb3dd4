# particle.py
"""
Manages the state of the animated particles.

This module defines the ParticleSystem class, which stores falling
particles in NumPy arrays and integrates them under constant gravity, and
the GatherCloud class, which eases a snapshot of tray particles toward a
single convergence point.
"""
import logging
import numpy as np

from constants import LANDING_TOLERANCE

# --- Data Contracts ---
#
# class ParticleSystem:
#   - __init__(self, name: str)
#     - Invariants:
#       - self.positions is a NumPy array of shape (N, 2) of dtype float64.
#       - self.velocities is a NumPy array of shape (N,) of dtype float64
#         (vertical speed, px/s).
#       - self.targets is a NumPy array of shape (N,) of dtype float64.
#       - self.bins is a NumPy array of shape (N,) of dtype int64.
#
#   - spawn(self, x: float, y: float, target_y: float, b: int) -> None
#
#   - step(self, dt: float, gravity: float) -> np.ndarray:
#     - Outputs: The bins of the particles that reached their target during
#       this step, one entry per particle.
#     - Side Effects: Landed particles are removed. A particle's y never
#       passes its target.
#
# class GatherCloud:
#   - __init__(self, xs: np.ndarray, ys: np.ndarray, target: Tuple[float, float])
#   - update(self, t: float) -> None: t in [0, 1], eased position.


def ease_out_cubic(t: float) -> float:
    return 1.0 - (1.0 - t) ** 3


class ParticleSystem:
    """
    A container of falling particles, each bound to one destination bin.
    """
    def __init__(self, name: str):
        self.name = name
        self.clear()

    def clear(self) -> None:
        self.positions = np.zeros((0, 2), dtype=np.float64)
        self.velocities = np.zeros(0, dtype=np.float64)
        self.targets = np.zeros(0, dtype=np.float64)
        self.bins = np.zeros(0, dtype=np.int64)

    def __len__(self) -> int:
        return self.bins.shape[0]

    def in_flight_per_bin(self, bins: int) -> np.ndarray:
        return np.bincount(self.bins, minlength=bins)

    def spawn(self, x: float, y: float, target_y: float, b: int) -> None:
        self.positions = np.vstack([self.positions, [x, y]])
        self.velocities = np.append(self.velocities, 0.0)
        self.targets = np.append(self.targets, target_y)
        self.bins = np.append(self.bins, np.int64(b))

    def step(self, dt: float, gravity: float) -> np.ndarray:
        """
        Advances every particle by one time step and removes the landed ones.
        """
        if len(self) == 0:
            return self.bins[:0]

        # 1. Accelerate
        self.velocities += gravity * dt

        # 2. Move, clamped to the target so nothing overshoots
        ys = self.positions[:, 1]
        self.positions[:, 1] = np.minimum(ys + self.velocities * dt, self.targets)

        # 3. Convert particles that reached their target
        landed_mask = self.positions[:, 1] >= self.targets - LANDING_TOLERANCE
        landed = self.bins[landed_mask]
        if landed.shape[0]:
            keep = ~landed_mask
            self.positions = self.positions[keep]
            self.velocities = self.velocities[keep]
            self.targets = self.targets[keep]
            self.bins = self.bins[keep]
            logging.debug(f"{landed.shape[0]} {self.name} particle(s) landed; {len(self)} still in flight.")
        return landed


class GatherCloud:
    """
    Tray particles converging on one point with eased interpolation.
    """
    def __init__(self, xs: np.ndarray, ys: np.ndarray, target):
        self.starts = np.column_stack([xs, ys]) if len(xs) else np.zeros((0, 2), dtype=np.float64)
        self.positions = self.starts.copy()
        self.target = np.array(target, dtype=np.float64)

    def __len__(self) -> int:
        return self.starts.shape[0]

    def update(self, t: float) -> None:
        k = ease_out_cubic(min(1.0, max(0.0, t)))
        self.positions = self.starts + (self.target - self.starts) * k
