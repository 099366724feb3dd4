"""
tests/test_simulation.py - Sampling engine and animation state machine tests.

Covers determinism, conservation, reset completeness, the auto-gather rule,
turbo mode and the end-to-end CLT convergence run.
"""

import math

import numpy as np
import pytest

from conftest import DT, run_ticks, run_until_idle
from population import Generator
from sample_statistics import Statistic
from simulation import EngineState, SamplingEngine, SpeedMode

GOLDEN_UNIFORM_BINS = [4, 42, 54, 58, 2, 7, 9, 48, 23, 7]


class TestConfiguration:
    """Test engine construction from config parameters."""

    def test_defaults(self):
        engine = SamplingEngine({})
        assert engine.cols == 60 and engine.stat_bins == 60
        assert engine.statistic is Statistic.MEAN
        assert engine.population.generator is Generator.NORMAL
        assert engine.state is EngineState.IDLE

    def test_unknown_statistic_rejected(self):
        with pytest.raises(ValueError, match="Unknown statistic"):
            SamplingEngine({"statistic": "mode"})

    def test_unknown_generator_rejected(self):
        with pytest.raises(ValueError, match="Unknown population generator"):
            SamplingEngine({"generator": "triangle"})

    def test_non_positive_duration_rejected(self):
        with pytest.raises(ValueError, match="drop_duration"):
            SamplingEngine({"drop_duration": 0})

    def test_sd_statistic_uses_half_domain(self, make_engine):
        engine = make_engine(statistic="sd")
        assert engine.distribution.domain.max == 0.5


class TestDrawSample:
    """Test one animated draw from request to settled tray."""

    def test_conservation(self, make_engine):
        """A fully settled draw of n leaves exactly n values in the tray."""
        engine = make_engine()
        engine.draw_sample(30)
        run_until_idle(engine)
        assert int(engine.tray.sum()) == 30
        assert engine.distribution.total == 0, "A draw alone must not add an observation"

    def test_tray_matches_sample_bins(self, make_engine):
        engine = make_engine()
        engine.draw_sample(50)
        run_until_idle(engine)
        expected = np.bincount(engine.sample.bins, minlength=60)
        assert np.array_equal(engine.tray, expected)

    def test_state_sequence(self, make_engine):
        engine = make_engine()
        engine.draw_sample(20)
        seen = []
        now = 0.0
        for _ in range(2000):
            now += DT
            engine.tick(DT, now)
            if not seen or seen[-1] is not engine.state:
                seen.append(engine.state)
            if not engine.is_animating():
                break
        assert seen == [EngineState.EMITTING, EngineState.SETTLING, EngineState.IDLE]

    def test_emission_is_spread_over_duration(self, make_engine):
        """Roughly half the particles are released halfway through the drop."""
        engine = make_engine(drop_duration=1.0)
        engine.draw_sample(100)
        engine.tick(DT, 0.0)        # plan starts here
        engine.tick(DT, 0.5)
        plan = engine.emission
        assert plan is not None
        assert plan.emitted == 50

    def test_all_released_when_duration_elapses(self, make_engine):
        engine = make_engine(drop_duration=1.0)
        engine.draw_sample(37)
        engine.tick(DT, 0.0)
        engine.tick(DT, 1.0)
        assert engine.emission is None
        assert len(engine.sample_particles) + int(engine.tray.sum()) == 37

    def test_particles_never_pass_their_targets(self, make_engine):
        engine = make_engine()
        engine.draw_sample(200)
        now = 0.0
        for _ in range(400):
            now += DT
            engine.tick(DT, now)
            ps = engine.sample_particles
            if len(ps):
                assert (ps.positions[:, 1] <= ps.targets).all()

    def test_targets_account_for_particles_in_flight(self, make_engine):
        """Particles bound for one bin are aimed at distinct stack slots."""
        engine = make_engine(generator="uniform")
        engine.population.clear()
        engine.modify_population(10, 5)
        engine.draw_sample(8)
        engine.tick(DT, 0.0)
        engine.tick(DT, 2.0)   # release everything at once
        targets = engine.sample_particles.targets
        assert len(set(targets.tolist())) == len(targets)

    def test_source_flashes_expire(self, make_engine):
        engine = make_engine()
        engine.draw_sample(5)
        engine.tick(DT, 0.0)
        engine.tick(DT, 2.0)
        assert engine.flashes
        engine.tick(DT, 3.0)
        assert not engine.flashes


class TestGolden:
    """Concrete regression scenario."""

    def test_uniform_proportion_first_draw(self, make_engine):
        engine = make_engine(generator="uniform", statistic="proportion", threshold=0.5)
        engine.draw_sample(10)
        now = run_until_idle(engine)
        assert engine.sample.bins.tolist() == GOLDEN_UNIFORM_BINS

        assert engine.gather() is True
        run_until_idle(engine, now=now)
        # 4 of the 10 midpoints exceed 0.5 -> 0.4 -> bin 24.
        assert engine.distribution.counts[24] == 1
        assert engine.distribution.total == 1
        assert int(engine.tray.sum()) == 0


class TestGather:
    """Test the gather operation and auto-gather rule."""

    def test_gather_with_empty_tray(self, make_engine):
        assert make_engine().gather() is False

    def test_gather_adds_exactly_one_observation(self, make_engine):
        engine = make_engine()
        engine.draw_sample(30)
        now = run_until_idle(engine)
        value = engine.lines().sample_stat
        expected_bin = engine.distribution.bin_for(value)
        engine.gather()
        assert engine.state is EngineState.GATHERING
        run_until_idle(engine, now=now)
        assert engine.distribution.total == 1
        assert engine.distribution.counts[expected_bin] == 1
        assert engine.sample is None

    def test_gather_state_sequence(self, make_engine):
        engine = make_engine()
        engine.draw_sample(10)
        now = run_until_idle(engine)
        engine.gather()
        seen = [engine.state]
        for _ in range(2000):
            now += DT
            engine.tick(DT, now)
            if seen[-1] is not engine.state:
                seen.append(engine.state)
            if not engine.is_animating():
                break
        assert seen == [EngineState.GATHERING, EngineState.GATHER_SETTLING, EngineState.IDLE]

    def test_tray_cleared_when_gather_completes(self, make_engine):
        engine = make_engine(gather_duration=0.25)
        engine.draw_sample(10)
        now = run_until_idle(engine)
        engine.gather()
        engine.tick(DT, now + DT)
        assert int(engine.tray.sum()) == 10, "Tray must stay full while converging"
        assert len(engine.gather_op.cloud) == 10
        engine.tick(DT, now + 1.0)
        assert int(engine.tray.sum()) == 0
        assert engine.state is EngineState.GATHER_SETTLING
        assert len(engine.stat_particles) == 1

    def test_auto_gather_before_redraw(self, make_engine):
        """A second draw first turns the previous sample into an observation."""
        engine = make_engine()
        engine.draw_sample(30)
        now = run_until_idle(engine)
        first_bins = engine.sample.bins.copy()

        engine.draw_sample(30)
        now += DT
        engine.tick(DT, now)
        assert engine.state is EngineState.GATHERING
        assert engine.emission is None

        run_until_idle(engine, now=now)
        assert engine.distribution.total == 1
        assert int(engine.tray.sum()) == 30
        assert not np.array_equal(engine.sample.bins, first_bins)

    def test_redraw_waits_for_delay_after_gather(self, make_engine):
        engine = make_engine(redraw_delay=0.5)
        engine.draw_sample(10)
        now = run_until_idle(engine)
        engine.draw_sample(10)
        for _ in range(5000):
            now += DT
            engine.tick(DT, now)
            if engine.distribution.total == 1:
                break
        assert engine.state is EngineState.IDLE
        assert engine.resume_at == pytest.approx(now + 0.5)
        engine.tick(DT, now + 0.25)
        assert engine.state is EngineState.IDLE and engine.emission is None
        engine.tick(DT, now + 0.6)
        assert engine.state is EngineState.EMITTING

    def test_requests_are_queued_not_merged(self, make_engine):
        engine = make_engine()
        engine.draw_sample(10)
        engine.draw_sample(10)
        engine.draw_sample(10)
        engine.tick(DT, DT)
        assert engine.emission is not None and engine.emission.total == 10
        assert len(engine.pending) == 2
        run_until_idle(engine, now=DT)
        assert engine.distribution.total == 2
        assert int(engine.tray.sum()) == 10

    def test_explicit_gather_deferred_until_settled(self, make_engine):
        engine = make_engine()
        engine.draw_sample(20)
        now = run_ticks(engine, 5)
        assert engine.state is EngineState.EMITTING
        assert engine.gather() is True
        assert engine.gather_op is None
        run_until_idle(engine, now=now)
        assert engine.distribution.total == 1
        assert int(engine.tray.sum()) == 0

    def test_undefined_statistic_adds_nothing(self):
        """The SD of a single value is undefined and is never binned."""
        engine = SamplingEngine({"statistic": "sd"})
        engine.draw_sample(1)
        now = run_until_idle(engine)
        engine.gather()
        run_until_idle(engine, now=now)
        assert engine.distribution.total == 0
        assert int(engine.tray.sum()) == 0


class TestCancellation:
    """Test clear_tray and reset."""

    def test_clear_tray_mid_emission(self, make_engine):
        engine = make_engine()
        engine.draw_sample(50)
        now = run_ticks(engine, 20)
        assert engine.state is EngineState.EMITTING
        engine.clear_tray()
        assert engine.state is EngineState.IDLE
        assert engine.emission is None and len(engine.sample_particles) == 0
        run_ticks(engine, 200, now=now)
        assert int(engine.tray.sum()) == 0
        assert engine.distribution.total == 0

    def test_clear_tray_drops_queued_draws(self, make_engine):
        engine = make_engine()
        engine.draw_sample(10)
        engine.draw_sample(10)
        engine.clear_tray()
        assert not engine.pending
        assert not engine.is_animating()

    def test_reset_during_gather_settling(self, make_engine):
        """Reset discards the falling statistic without counting it."""
        engine = make_engine()
        engine.draw_sample(10)
        now = run_until_idle(engine)
        engine.gather()
        while engine.state is not EngineState.GATHER_SETTLING:
            now += DT
            engine.tick(DT, now)
        engine.reset()
        run_ticks(engine, 300, now=now)
        assert engine.distribution.total == 0
        assert len(engine.stat_particles) == 0

    def test_reset_zeroes_distribution(self, make_engine):
        engine = make_engine()
        engine.run_turbo(10, 50)
        engine.reset()
        assert engine.distribution.total == 0
        assert engine.state is EngineState.IDLE


class TestTurbo:
    """Test the synchronous bulk path."""

    def test_clt_convergence(self, make_engine):
        """Sample means of n=30 centre on the population mean with spread sigma/sqrt(30)."""
        engine = make_engine(seed=1234, generator="normal", statistic="mean")
        added = engine.run_turbo(30, 1000)
        assert added == 1000
        mean, spread = engine.distribution.mean_and_spread()
        summary = engine.population.summary(engine.threshold)
        expected_spread = summary.sd / math.sqrt(30)
        assert abs(mean - summary.mean) <= 0.02, f"Sampling mean {mean} vs {summary.mean}"
        assert abs(spread - expected_spread) / expected_spread <= 0.2, (
            f"Sampling spread {spread} vs expected {expected_spread}"
        )

    def test_creates_no_particles(self, make_engine):
        engine = make_engine()
        engine.run_turbo(30, 200)
        assert len(engine.sample_particles) == 0 and len(engine.stat_particles) == 0
        assert engine.state is EngineState.IDLE
        assert int(engine.tray.sum()) == 0

    def test_default_count(self, make_engine):
        engine = make_engine()
        assert engine.run_turbo(5) == 1000

    def test_undefined_statistics_skipped(self, make_engine):
        engine = make_engine(statistic="sd")
        assert engine.run_turbo(1, 20) == 0
        assert engine.distribution.total == 0

    def test_repeat_large_count_is_turbo(self, make_engine):
        engine = make_engine()
        engine.repeat(30, 1000)
        assert engine.distribution.total == 1000
        assert not engine.pending

    def test_repeat_small_count_is_animated(self, make_engine):
        """Ten animated draws leave nine observations and the last sample in the tray."""
        engine = make_engine()
        engine.repeat(15, 10)
        assert len(engine.pending) == 10
        assert all(r.fast for r in engine.pending)
        run_until_idle(engine)
        assert engine.distribution.total == 9
        assert int(engine.tray.sum()) == 15


class TestDeterminism:
    """Identical seeds and operations give identical histograms."""

    @pytest.mark.parametrize("seed", [1, 1234, 987654321])
    def test_animated_and_turbo(self, seed):
        def run(engine):
            engine.draw_sample(25)
            now = run_until_idle(engine)
            engine.draw_sample(25)
            now = run_until_idle(engine, now=now)
            engine.run_turbo(25, 100)
            engine.gather()
            run_until_idle(engine, now=now)
            return engine

        a = run(SamplingEngine({"seed": seed, "generator": "bimodal"}))
        b = run(SamplingEngine({"seed": seed, "generator": "bimodal"}))
        assert np.array_equal(a.distribution.counts, b.distribution.counts)
        assert np.array_equal(a.tray, b.tray)
        assert a.rng.state == b.rng.state

    def test_set_seed_restarts_stream(self, make_engine):
        engine = make_engine(generator="uniform")
        engine.draw_sample(10)
        run_until_idle(engine)
        engine.set_seed(1234)
        assert engine.distribution.total == 0 and int(engine.tray.sum()) == 0
        engine.draw_sample(10)
        run_until_idle(engine)
        assert engine.sample.bins.tolist() == GOLDEN_UNIFORM_BINS


class TestMutators:
    """Test the remaining UI-facing mutators."""

    def test_set_statistic_resets_distribution(self, make_engine):
        engine = make_engine()
        engine.run_turbo(10, 30)
        engine.set_statistic(Statistic.SD)
        assert engine.distribution.total == 0
        assert engine.distribution.domain.max == 0.5

    def test_set_same_statistic_keeps_distribution(self, make_engine):
        engine = make_engine()
        engine.run_turbo(10, 30)
        engine.set_statistic(Statistic.MEAN)
        assert engine.distribution.total == 30

    def test_threshold_resets_only_for_proportion(self, make_engine):
        engine = make_engine()
        engine.run_turbo(10, 30)
        engine.set_threshold(0.7)
        assert engine.distribution.total == 30
        engine.set_statistic(Statistic.PROPORTION)
        engine.run_turbo(10, 30)
        engine.set_threshold(0.3)
        assert engine.distribution.total == 0
        assert engine.threshold == 0.3

    def test_modify_population(self, make_engine):
        engine = make_engine()
        before = int(engine.population.weights[30])
        assert engine.modify_population(30, 1) == before + 1

    def test_set_generator(self, make_engine):
        engine = make_engine()
        engine.set_generator(Generator.UNIFORM)
        assert engine.population.total == 1200

    def test_fast_speed_doubles_gravity(self, make_engine):
        engine = make_engine()
        normal = engine._gravity_for(False)
        engine.set_speed(SpeedMode.FAST)
        assert engine._gravity_for(False) == 2 * normal


class TestSnapshot:
    """Test the read-only renderer view and the dirty flag."""

    def test_snapshot_is_read_only(self, make_engine):
        engine = make_engine()
        snap = engine.snapshot()
        with pytest.raises(ValueError):
            snap.population[0] = 5
        with pytest.raises(ValueError):
            snap.distribution[0] = 5

    def test_snapshot_is_a_copy(self, make_engine):
        engine = make_engine()
        before = int(engine.population.weights[0])
        snap = engine.snapshot()
        engine.modify_population(0, 3)
        assert snap.population[0] == before

    def test_snapshot_contents(self, make_engine):
        engine = make_engine()
        engine.draw_sample(10)
        run_ticks(engine, 30)
        snap = engine.snapshot()
        assert snap.state is EngineState.EMITTING
        assert snap.sample_particles.shape[1] == 2
        assert snap.summary.total == 482
        assert snap.lines.parameter == pytest.approx(0.5)

    def test_next_frame_only_when_dirty(self, make_engine):
        engine = make_engine()
        assert engine.next_frame() is not None
        assert engine.next_frame() is None
        engine.modify_population(3, 1)
        assert engine.next_frame() is not None

    def test_frames_while_animating(self, make_engine):
        engine = make_engine()
        engine.next_frame()
        engine.draw_sample(10)
        engine.tick(DT, DT)
        assert engine.next_frame() is not None
        assert engine.needs_redraw, "An active animation keeps requesting frames"
