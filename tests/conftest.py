"""
tests/conftest.py - shared engine fixtures.
"""

import pytest

from simulation import SamplingEngine

DT = 1.0 / 60.0


def run_until_idle(engine, now=0.0, dt=DT, max_ticks=20000):
    """Ticks the engine until no animation is active. Returns the final timestamp."""
    for _ in range(max_ticks):
        now += dt
        engine.tick(dt, now)
        if not engine.is_animating():
            return now
    raise AssertionError(f"Engine still animating after {max_ticks} ticks (state {engine.state})")


def run_ticks(engine, count, now=0.0, dt=DT):
    for _ in range(count):
        now += dt
        engine.tick(dt, now)
    return now


@pytest.fixture
def make_engine():
    """Builds an engine from keyword overrides of the default parameters."""
    def _make(**params):
        base = {"seed": 1234, "generator": "normal", "statistic": "mean"}
        base.update(params)
        return SamplingEngine(base)
    return _make
