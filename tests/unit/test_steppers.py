"""Step-level behaviour of the leapfrog and Hermite steppers."""

import warnings

import jax.numpy as jnp
import numpy as np
import pytest

from gravstep import (
    ForceEvaluator,
    HermiteConfig,
    HermiteStepper,
    LeapfrogConfig,
    LeapfrogStepper,
    SchedulingDegenerateError,
    SchedulingStallWarning,
)
from gravstep.initial_conditions import kepler_two_body, plummer_sphere


def _evaluator(softening=1e-3):
    return ForceEvaluator(softening=softening, precision="accurate")


def test_leapfrog_initialize_stores_half_step_velocity():
    particles = kepler_two_body(eccentricity=0.3)
    stepper = LeapfrogStepper(_evaluator(), LeapfrogConfig(dt=1e-2))

    state = stepper.initialize(particles)
    p = state.particles

    assert p.dtype == jnp.float64
    expected = np.asarray(particles.velocity) + 0.5e-2 * np.asarray(p.acceleration)
    assert np.allclose(np.asarray(p.velocity), expected)
    assert np.all(p.timestep == 1e-2)
    assert state.time == 0.0 and state.steps == 0


def test_leapfrog_synchronized_does_not_touch_state():
    stepper = LeapfrogStepper(_evaluator(), LeapfrogConfig(dt=1e-2))
    state = stepper.step(stepper.initialize(kepler_two_body(eccentricity=0.5)))
    before = np.asarray(state.particles.velocity).copy()

    synced = stepper.synchronized(state)

    assert np.array_equal(np.asarray(state.particles.velocity), before)
    assert np.allclose(
        np.asarray(synced.velocity),
        before - 0.5e-2 * np.asarray(state.particles.acceleration),
    )


def test_leapfrog_time_is_exact_multiple_of_dt():
    stepper = LeapfrogStepper(_evaluator(), LeapfrogConfig(dt=0.1))
    state = stepper.initialize(kepler_two_body(), time=1.0)
    for _ in range(7):
        state = stepper.step(state)

    assert state.steps == 7
    assert state.time == 1.0 + 7 * 0.1
    assert np.all(state.particles.time == state.time)
    assert stepper.reached(state, 1.7)
    assert not stepper.reached(state, 1.8)


def test_hermite_initialize_schedules_power_of_two_steps():
    config = HermiteConfig(eta=0.05, dt_max=2.0**-2)
    stepper = HermiteStepper(_evaluator(softening=1e-2), config)

    state = stepper.initialize(plummer_sphere(16, seed=2))
    mantissa, _ = np.frexp(state.particles.timestep)

    assert np.all(mantissa == 0.5)
    assert np.all(state.particles.timestep <= config.dt_max)
    assert np.all(state.particles.time == 0.0)
    assert np.all(np.isfinite(np.asarray(state.particles.jerk)))


def test_hermite_blocks_advance_only_the_active_set():
    stepper = HermiteStepper(
        _evaluator(softening=1e-2), HermiteConfig(eta=0.05, dt_max=2.0**-2)
    )
    state = stepper.initialize(plummer_sphere(16, seed=2))
    previous = 0.0
    for _ in range(12):
        p = state.particles
        due = p.time + p.timestep
        t_next = float(np.min(due))
        idle = due != t_next
        old_position = np.asarray(p.position)[idle]

        state = stepper.step(state)

        assert state.time == t_next > previous
        assert np.array_equal(np.asarray(state.particles.position)[idle], old_position)
        assert np.all(state.particles.time[~idle] == t_next)
        assert np.all(np.fmod(state.particles.time, state.particles.timestep) == 0.0)
        previous = t_next


def test_hermite_synchronized_predicts_everyone_to_block_time():
    stepper = HermiteStepper(
        _evaluator(softening=1e-2), HermiteConfig(eta=0.05, dt_max=2.0**-2)
    )
    state = stepper.initialize(plummer_sphere(16, seed=2))
    for _ in range(5):
        state = stepper.step(state)
    times_before = state.particles.time.copy()

    synced = stepper.synchronized(state)

    assert np.all(synced.time == state.time)
    assert np.array_equal(state.particles.time, times_before)
    assert synced.position.shape == state.particles.position.shape


def test_hermite_stall_warns_then_fails():
    config = HermiteConfig(
        eta=0.1,
        dt_max=2.0**-12,
        dt_min=2.0**-12,
        max_consecutive_stalls=3,
    )
    stepper = HermiteStepper(_evaluator(), config)
    state = stepper.initialize(kepler_two_body())

    with pytest.warns(SchedulingStallWarning):
        state = stepper.step(state)
    assert state.stalls == 1
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", SchedulingStallWarning)
        state = stepper.step(state)
        assert state.stalls == 2
        with pytest.raises(SchedulingDegenerateError) as excinfo:
            stepper.step(state)

    assert excinfo.value.stalls == 3
    assert excinfo.value.dt_min == 2.0**-12


def test_hermite_stall_counter_resets():
    stepper = HermiteStepper(_evaluator(), HermiteConfig(dt_max=2.0**-3))
    state = stepper.initialize(kepler_two_body())
    state = state._replace(stalls=4)

    state = stepper.step(state)

    assert state.stalls == 0


def test_hermite_schedule_does_not_depend_on_start_time():
    config = HermiteConfig(eta=0.05, dt_max=2.0**-3)
    stepper = HermiteStepper(_evaluator(softening=1e-2), config)
    particles = plummer_sphere(8, seed=3)
    from_zero = stepper.initialize(particles)
    from_offset = stepper.initialize(particles, time=0.1)
    assert np.array_equal(from_offset.particles.timestep, from_zero.particles.timestep)

    for _ in range(3):
        from_zero = stepper.step(from_zero)
        from_offset = stepper.step(from_offset)

    assert np.array_equal(from_offset.particles.timestep, from_zero.particles.timestep)
    assert np.all(from_offset.particles.timestep > config.dt_min)
    assert np.array_equal(from_offset.clock, from_zero.clock)
    assert from_offset.time == pytest.approx(0.1 + from_zero.time, abs=1e-15)
    assert np.allclose(
        np.asarray(from_offset.particles.position),
        np.asarray(from_zero.particles.position),
        rtol=0.0,
        atol=1e-14,
    )
    synced = stepper.synchronized(from_offset)
    assert np.all(synced.time == from_offset.time)
