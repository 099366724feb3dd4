# simulation.py
"""
Handles the sampling engine and its animation state machine.

This module defines the SamplingEngine class, which owns the population,
the sample tray and the sampling distribution, and advances the animation
that carries sampled values from the population into the tray and each
sample statistic into the sampling distribution. All animation state moves
forward only inside tick(); turbo mode is a separate synchronous path that
creates no particles.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

import numpy as np

from accumulator import SamplingDistribution
from constants import (
    DEFAULT_COLS, DEFAULT_STAT_BINS, GRAVITY, FAST_GRAVITY_FACTOR,
    DROP_DURATION, REPEAT_DROP_DURATION, GATHER_DURATION, REPEAT_GATHER_DURATION,
    REDRAW_DELAY, FLASH_DURATION, TURBO_THRESHOLD, TURBO_REPEATS
)
from geometry import Geometry
from particle import ParticleSystem, GatherCloud
from population import Generator, Population, PopulationSummary
from rng import Mulberry32
from sample_statistics import (
    Statistic, StatDomain, compute_statistic, statistic_domain, population_parameter
)
from sampler import Sample, Sampler
from utils import clamp

# --- Data Contracts ---
#
# class SamplingEngine:
#   - __init__(self, params: Dict[str, Any], geometry: Optional[Geometry] = None):
#     - Inputs:
#       - params: Dictionary of simulation parameters from config.json.
#         - "cols": int, "stat_bins": int, "seed": int
#         - "generator": str, "statistic": str, "threshold": float
#         - "speed": "normal" | "fast"
#         - "drop_duration", "repeat_drop_duration", "gather_duration",
#           "repeat_gather_duration", "redraw_delay": float seconds
#         - "turbo_repeats": int
#     - Side Effects: Builds the population from the configured generator.
#     - Invariants:
#       - At most one EmissionPlan and one GatherOperation exist at a time.
#       - Histogram counts only decrease through clear_tray/reset/set_seed
#         and the tray clear at the end of a gather.
#       - Every particle converts into exactly one histogram increment, or
#         is discarded by an abort without touching any histogram.
#
#   - tick(self, dt: float, now: float) -> None:
#     - Inputs: dt, seconds since the previous tick; now, a monotonic
#       timestamp in seconds.
#     - Side Effects: Advances emission, physics and gather animation.
#
#   - snapshot(self) -> EngineSnapshot: read-only view for the renderer.


class EngineState(Enum):
    IDLE = "idle"
    EMITTING = "emitting"
    SETTLING = "settling"
    GATHERING = "gathering"
    GATHER_SETTLING = "gather_settling"


class SpeedMode(Enum):
    NORMAL = "normal"
    FAST = "fast"

    @classmethod
    def parse(cls, name: str) -> "SpeedMode":
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown speed mode '{name}'. Expected 'normal' or 'fast'.")


@dataclass
class DrawRequest:
    n: int
    drop_duration: float
    gather_duration: float
    fast: bool = False


@dataclass
class EmissionPlan:
    """Releases a sample's particles in proportion to elapsed time."""
    bins: np.ndarray
    duration: float
    fast: bool
    start: Optional[float] = None
    emitted: int = 0

    @property
    def total(self) -> int:
        return int(self.bins.shape[0])

    @property
    def end(self) -> Optional[float]:
        return None if self.start is None else self.start + self.duration

    def due(self, now: float) -> int:
        """Number of particles to release at `now`."""
        if self.start is None:
            self.start = now
        f = 1.0 if self.duration <= 0 else min(1.0, max(0.0, (now - self.start) / self.duration))
        to_emit = int(np.floor(f * self.total)) - self.emitted
        if f >= 1.0:
            to_emit = self.total - self.emitted
        return max(0, to_emit)

    @property
    def complete(self) -> bool:
        return self.emitted >= self.total


@dataclass
class GatherOperation:
    """Tray particles converging before one statistic drops into the distribution."""
    cloud: GatherCloud
    value: Optional[float]
    stat_bin: int
    target: Tuple[float, float]
    duration: float
    fast: bool
    start: Optional[float] = None
    progress: float = 0.0


@dataclass(frozen=True)
class Flash:
    col: int
    y: float
    until: float


@dataclass(frozen=True)
class MarkerLines:
    parameter: Optional[float]
    sample_stat: Optional[float]
    sampling_mean: Optional[float]
    sampling_sd: Optional[float]


@dataclass(frozen=True)
class EngineSnapshot:
    """Everything the renderer needs for one frame. Arrays are read-only copies."""
    state: EngineState
    statistic: Statistic
    domain: StatDomain
    threshold: float
    speed: SpeedMode
    generator: Optional[Generator]
    population: np.ndarray
    tray: np.ndarray
    distribution: np.ndarray
    sample_particles: np.ndarray
    stat_particles: np.ndarray
    gather_particles: np.ndarray
    flashes: Tuple[Flash, ...]
    summary: PopulationSummary
    lines: MarkerLines
    samples_collected: int
    pending_draws: int
    geometry: Geometry = field(repr=False)


def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


class SamplingEngine:
    """
    Owns all simulation state and advances the animation state machine.
    """
    def __init__(self, params: Dict[str, Any], geometry: Optional[Geometry] = None):
        self.cols = int(params.get('cols', DEFAULT_COLS))
        self.stat_bins = int(params.get('stat_bins', DEFAULT_STAT_BINS))
        self.seed = int(params.get('seed', 1234))
        self.threshold = float(params.get('threshold', 0.5))
        try:
            self.statistic = Statistic.parse(params.get('statistic', 'mean'))
            self.speed = SpeedMode.parse(params.get('speed', 'normal'))
            generator = Generator.parse(params.get('generator', 'normal'))
        except ValueError as e:
            logging.critical(f"Configuration error: {e}")
            raise
        self.drop_duration = float(params.get('drop_duration', DROP_DURATION))
        self.repeat_drop_duration = float(params.get('repeat_drop_duration', REPEAT_DROP_DURATION))
        self.gather_duration = float(params.get('gather_duration', GATHER_DURATION))
        self.repeat_gather_duration = float(params.get('repeat_gather_duration', REPEAT_GATHER_DURATION))
        self.redraw_delay = float(params.get('redraw_delay', REDRAW_DELAY))
        self.turbo_repeats = int(params.get('turbo_repeats', TURBO_REPEATS))

        # Validate config on initialization.
        durations = {
            'drop_duration': self.drop_duration,
            'repeat_drop_duration': self.repeat_drop_duration,
            'gather_duration': self.gather_duration,
            'repeat_gather_duration': self.repeat_gather_duration,
        }
        for key, value in durations.items():
            if value <= 0:
                msg = f"Configuration error: '{key}' must be positive, got {value}."
                logging.critical(msg)
                raise ValueError(msg)
        if self.redraw_delay < 0:
            msg = f"Configuration error: 'redraw_delay' must not be negative, got {self.redraw_delay}."
            logging.critical(msg)
            raise ValueError(msg)

        self.rng = Mulberry32(self.seed)
        self.population = Population(self.cols)
        self.sampler = Sampler(self.population, self.rng)
        self.distribution = SamplingDistribution(self.stat_bins, statistic_domain(self.statistic))
        self.geometry = geometry if geometry is not None else Geometry(self.cols, self.stat_bins)

        self.tray = np.zeros(self.cols, dtype=np.int64)
        self.sample: Optional[Sample] = None
        self.sample_particles = ParticleSystem("sample")
        self.stat_particles = ParticleSystem("statistic")
        self.emission: Optional[EmissionPlan] = None
        self.gather_op: Optional[GatherOperation] = None
        self.gather_requested = False
        self.pending: Deque[DrawRequest] = deque()
        self.resume_at: Optional[float] = None
        self.flashes: List[Flash] = []
        # Fast mode of the request that launched the particles now in flight.
        self.emission_fast = False
        self.gather_fast = False
        self.state = EngineState.IDLE
        self.now = 0.0
        self.dirty = True

        self.set_generator(generator)

        logging.info(
            f"SamplingEngine initialized: {self.cols} population bins, "
            f"{self.stat_bins} distribution bins, seed {self.seed}, "
            f"statistic '{self.statistic.value}'."
        )

    # --- Derived state ---

    @property
    def domain(self) -> StatDomain:
        return statistic_domain(self.statistic)

    def tray_has_sample(self) -> bool:
        """True while an uncommitted sample or any landed tray particle exists."""
        return (self.sample is not None and len(self.sample) > 0) or bool(self.tray.any())

    def is_animating(self) -> bool:
        return (
            self.state is not EngineState.IDLE
            or len(self.sample_particles) > 0
            or len(self.stat_particles) > 0
            or bool(self.flashes)
            or bool(self.pending)
            or self.gather_requested
        )

    @property
    def needs_redraw(self) -> bool:
        return self.dirty or self.is_animating()

    def request_redraw(self) -> None:
        self.dirty = True

    # --- Mutators called by the UI layer ---

    def set_generator(self, shape: Generator) -> None:
        self.population.apply_generator(shape)
        self.dirty = True

    def modify_population(self, col: int, delta: int) -> int:
        weight = self.population.modify(col, delta)
        self.dirty = True
        return weight

    def set_statistic(self, statistic: Statistic) -> None:
        """Switches statistic; the sampling distribution restarts in the new domain."""
        if statistic is self.statistic:
            return
        self._abort_gather()
        self.statistic = statistic
        self.distribution.set_domain(statistic_domain(statistic))
        self.dirty = True
        logging.info(f"Statistic set to '{statistic.value}'. Sampling distribution reset.")

    def set_threshold(self, value: float) -> None:
        self.threshold = clamp(float(value), 0.0, 1.0)
        if self.statistic is Statistic.PROPORTION:
            self._abort_gather()
            self.distribution.reset()
            logging.info(f"Threshold set to {self.threshold:.2f}. Sampling distribution reset.")
        self.dirty = True

    def set_speed(self, speed: SpeedMode) -> None:
        self.speed = speed
        logging.debug(f"Speed mode set to '{speed.value}'.")

    def set_seed(self, value: int) -> None:
        """Reseeds the RNG and clears every sample and observation."""
        self.seed = int(value)
        self.rng.seed(self.seed)
        self.reset()
        logging.info(f"Seed set to {self.seed}.")

    def draw_sample(self, n: int) -> None:
        """Queues one animated draw of n values."""
        self._enqueue(DrawRequest(n=int(n), drop_duration=self.drop_duration,
                                  gather_duration=self.gather_duration,
                                  fast=self.speed is SpeedMode.FAST))

    def repeat(self, n: int, count: int) -> None:
        """
        Repeats a draw `count` times. Large counts run in turbo mode; small
        counts are animated in fast mode, each gathering the one before it.
        """
        if count >= TURBO_THRESHOLD:
            self.run_turbo(n, count)
            return
        for _ in range(count):
            self._enqueue(DrawRequest(n=int(n), drop_duration=self.repeat_drop_duration,
                                      gather_duration=self.repeat_gather_duration, fast=True))
        logging.info(f"Queued {count} animated draws of n={n}.")

    def gather(self) -> bool:
        """
        Requests that the current sample be turned into one observation.

        Returns False when there is nothing to gather. A gather requested
        while the sample is still falling waits until the tray settles.
        """
        if self.gather_op is not None:
            return False
        if self.emission is not None or len(self.sample_particles) > 0:
            self.gather_requested = True
            return True
        if not self.tray_has_sample():
            return False
        self._start_gather(self.gather_duration, self.speed is SpeedMode.FAST)
        return True

    def run_turbo(self, n: int, count: Optional[int] = None) -> int:
        """
        Draws `count` samples synchronously and bins each statistic directly.

        Returns the number of observations added; undefined statistics are
        skipped.
        """
        count = self.turbo_repeats if count is None else int(count)
        added = 0
        for _ in range(count):
            sample = self.sampler.draw(n)
            value = compute_statistic(self.statistic, sample.values, self.threshold)
            if value is None:
                continue
            self.distribution.add_observation(value)
            added += 1
        self.dirty = True
        logging.info(f"Turbo run: {count} samples of n={n}, {added} observations added.")
        return added

    def clear_tray(self) -> None:
        """Aborts every animation and queued draw and empties the sample tray."""
        self.pending.clear()
        self.resume_at = None
        self.emission = None
        self.gather_requested = False
        self._abort_gather()
        self.sample_particles.clear()
        self.tray = np.zeros(self.cols, dtype=np.int64)
        self.sample = None
        self.flashes = []
        self.state = EngineState.IDLE
        self.dirty = True
        logging.debug("Sample tray cleared.")

    def reset(self) -> None:
        """clear_tray() plus an empty sampling distribution."""
        self.clear_tray()
        self.stat_particles.clear()
        self.distribution.reset()
        logging.info("Experiment reset.")

    # --- Tick ---

    def tick(self, dt: float, now: float) -> None:
        """
        Executes one animation step.
        """
        self.now = now
        was_animating = self.is_animating()
        g = self.geometry
        g.update_stack_scales(
            int(self.population.weights.max()), int(self.tray.max()), int(self.distribution.counts.max())
        )

        # 1. Start queued work once idle
        if self.state is EngineState.IDLE:
            self._start_pending(now)

        # 2. Release particles due from the emission plan
        if self.emission is not None:
            self._emit(now)

        # 3. Sample particle physics
        landed = self.sample_particles.step(dt, self._gravity_for(self.emission_fast))
        if landed.shape[0]:
            np.add.at(self.tray, landed, 1)
        if self.state is EngineState.SETTLING and len(self.sample_particles) == 0:
            self.state = EngineState.IDLE
            logging.debug(f"Sample of {len(self.sample) if self.sample else 0} settled in the tray.")
            if self.gather_requested:
                self.gather_requested = False
                self._start_gather(self.gather_duration, self.emission_fast)

        # 4. Gather interpolation
        if self.gather_op is not None and self.state is EngineState.GATHERING:
            self._advance_gather(now)

        # 5. Statistic particle physics
        landed = self.stat_particles.step(dt, self._gravity_for(self.gather_fast))
        for b in landed:
            self.distribution.increment(int(b))
        if self.state is EngineState.GATHER_SETTLING and len(self.stat_particles) == 0:
            self._finish_gather(now)

        # 6. Expire flashes
        if self.flashes:
            self.flashes = [f for f in self.flashes if f.until > now]

        if was_animating or self.is_animating():
            self.dirty = True

    # --- Internals ---

    def _gravity_for(self, fast: bool) -> float:
        return GRAVITY * FAST_GRAVITY_FACTOR if fast or self.speed is SpeedMode.FAST else GRAVITY

    def _enqueue(self, request: DrawRequest) -> None:
        self.pending.append(request)
        self.dirty = True
        logging.debug(f"Draw of n={request.n} queued ({len(self.pending)} pending).")

    def _start_pending(self, now: float) -> None:
        if not self.pending:
            return
        if self.resume_at is not None and now < self.resume_at:
            return
        self.resume_at = None
        request = self.pending[0]
        if self.tray_has_sample():
            # The previous sample becomes an observation before the next draw.
            self._start_gather(request.gather_duration, request.fast)
            return
        self.pending.popleft()
        self._start_emission(request)

    def _start_emission(self, request: DrawRequest) -> None:
        self.sample = self.sampler.draw(request.n)
        self.emission = EmissionPlan(bins=self.sample.bins.copy(),
                                     duration=request.drop_duration, fast=request.fast)
        self.emission_fast = request.fast
        self.state = EngineState.EMITTING
        logging.debug(f"Emission started: {request.n} particles over {request.drop_duration:.2f}s.")

    def _emit(self, now: float) -> None:
        plan = self.emission
        to_emit = plan.due(now)
        if to_emit > 0:
            g = self.geometry
            in_flight = self.sample_particles.in_flight_per_bin(self.cols)
            while to_emit > 0 and not plan.complete:
                col = int(plan.bins[plan.emitted])
                y_start = g.population_stack_top(int(self.population.weights[col]))
                level = int(self.tray[col]) + int(in_flight[col])
                in_flight[col] += 1
                self.sample_particles.spawn(g.col_center(col), y_start, g.tray_slot_y(level), col)
                self.flashes.append(Flash(col=col, y=y_start, until=now + FLASH_DURATION))
                plan.emitted += 1
                to_emit -= 1
        if plan.complete:
            self.emission = None
            self.state = EngineState.SETTLING

    def _start_gather(self, duration: float, fast: bool) -> None:
        """Snapshots the tray and aims it at the bin of the sample statistic."""
        g = self.geometry
        if self.sample is not None and len(self.sample) > 0:
            values = self.sample.values
        else:
            values = np.repeat(self.population.bin_centers(), self.tray)
        value = compute_statistic(self.statistic, values, self.threshold)
        stat_bin = self.distribution.bin_for(value) if value is not None else 0
        target = g.gather_point(stat_bin)
        xs, ys = g.tray_positions(self.tray)

        self.gather_op = GatherOperation(
            cloud=GatherCloud(xs, ys, target), value=value, stat_bin=stat_bin,
            target=target, duration=duration, fast=fast
        )
        self.gather_fast = fast
        self.state = EngineState.GATHERING
        self.dirty = True
        if value is None:
            logging.debug(f"Gathering {len(values)} values: '{self.statistic.value}' undefined, nothing will be added.")
        else:
            logging.debug(f"Gathering {len(values)} values: {self.statistic.value} = {value:.4f} -> bin {stat_bin}.")

    def _advance_gather(self, now: float) -> None:
        op = self.gather_op
        if op.start is None:
            op.start = now
        op.progress = min(1.0, max(0.0, (now - op.start) / op.duration))
        op.cloud.update(op.progress)
        if op.progress < 1.0:
            return

        self.tray = np.zeros(self.cols, dtype=np.int64)
        self.sample = None
        if op.value is not None:
            g = self.geometry
            in_flight = int(self.stat_particles.in_flight_per_bin(self.stat_bins)[op.stat_bin])
            level = int(self.distribution.counts[op.stat_bin]) + in_flight
            self.stat_particles.spawn(op.target[0], op.target[1], g.distribution_slot_y(level), op.stat_bin)
        self.state = EngineState.GATHER_SETTLING

    def _finish_gather(self, now: float) -> None:
        self.gather_op = None
        self.state = EngineState.IDLE
        if self.pending:
            self.resume_at = now + self.redraw_delay

    def _abort_gather(self) -> None:
        if self.gather_op is not None:
            self.gather_op = None
            self.stat_particles.clear()
            logging.debug("Gather aborted; no observation added.")
        if self.state in (EngineState.GATHERING, EngineState.GATHER_SETTLING):
            self.state = EngineState.IDLE

    # --- Read-only view ---

    def lines(self, summary: Optional[PopulationSummary] = None) -> MarkerLines:
        if summary is None:
            summary = self.population.summary(self.threshold)
        sample_stat = None
        if self.sample is not None and self.emission is None and len(self.sample_particles) == 0:
            sample_stat = compute_statistic(self.statistic, self.sample.values, self.threshold)
        mean, sd = self.distribution.mean_and_spread()
        return MarkerLines(
            parameter=population_parameter(self.statistic, summary),
            sample_stat=sample_stat,
            sampling_mean=mean,
            sampling_sd=sd,
        )

    def snapshot(self) -> EngineSnapshot:
        summary = self.population.summary(self.threshold)
        gather_positions = (
            self.gather_op.cloud.positions
            if self.gather_op is not None and self.state is EngineState.GATHERING
            else np.zeros((0, 2))
        )
        return EngineSnapshot(
            state=self.state,
            statistic=self.statistic,
            domain=self.domain,
            threshold=self.threshold,
            speed=self.speed,
            generator=self.population.generator,
            population=_frozen(self.population.weights),
            tray=_frozen(self.tray),
            distribution=_frozen(self.distribution.counts),
            sample_particles=_frozen(self.sample_particles.positions),
            stat_particles=_frozen(self.stat_particles.positions),
            gather_particles=_frozen(gather_positions),
            flashes=tuple(self.flashes),
            summary=summary,
            lines=self.lines(summary),
            samples_collected=self.distribution.total,
            pending_draws=len(self.pending),
            geometry=self.geometry,
        )

    def next_frame(self) -> Optional[EngineSnapshot]:
        """A snapshot when a repaint is due, clearing the dirty flag; otherwise None."""
        if not self.needs_redraw:
            return None
        self.dirty = False
        return self.snapshot()
