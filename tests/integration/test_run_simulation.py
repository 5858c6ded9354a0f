"""End-to-end runs: sampling cadence, callbacks and divergence detection."""

import logging

import jax.numpy as jnp
import numpy as np
import pytest

from gravstep import (
    HermiteConfig,
    LeapfrogConfig,
    NumericDivergenceError,
    RunConfig,
    Simulation,
    build_stepper,
    run_simulation,
)
from gravstep.diagnostics import relative_energy_error
from gravstep.initial_conditions import cold_collapse_sphere, pad_particles, plummer_sphere
from gravstep.io import read_snapshot, write_snapshot


def test_hermite_run_with_callbacks(tmp_path):
    snapshots = []
    reports = []
    config = RunConfig(
        integrator="hermite",
        softening=0.05,
        hermite=HermiteConfig(eta=0.05, dt_max=2.0**-4),
        t_end=0.25,
        compute_potential=True,
        snapshot_every=4,
        diagnostics_every=2,
    )

    result = run_simulation(
        config,
        cold_collapse_sphere(32, seed=2),
        on_snapshot=snapshots.append,
        on_diagnostics=reports.append,
    )

    assert result.state.time == 0.25
    assert result.snapshots == snapshots
    assert result.energies == reports
    assert snapshots[0].time == 0.0
    assert snapshots[-1].time == 0.25
    assert result.final is snapshots[-1]
    assert result.final.potential is not None
    assert result.final.potential.shape == (32,)
    assert [r.time for r in reports] == sorted({r.time for r in reports})
    assert relative_energy_error(reports[0].total, reports[-1].total) < 1e-4

    loaded = read_snapshot(write_snapshot(tmp_path / "final", result.final))
    assert np.array_equal(loaded.position, result.final.position)


def test_leapfrog_run_counts_steps():
    config = RunConfig(
        integrator="leapfrog",
        softening=0.05,
        leapfrog=LeapfrogConfig(dt=1e-2),
        n_steps=10,
        snapshot_every=5,
    )

    result = run_simulation(config, plummer_sphere(24, seed=5))

    assert result.state.steps == 10
    assert result.state.time == pytest.approx(0.1)
    assert [s.time for s in result.snapshots] == pytest.approx([0.0, 0.05, 0.1])
    assert result.energies == []
    assert result.final.potential is None


def test_advance_continues_an_existing_state():
    config = RunConfig(leapfrog=LeapfrogConfig(dt=1e-2), n_steps=4)
    simulation = Simulation.from_config(config)
    result = simulation.run(plummer_sphere(16, seed=1), n_steps=4)

    state = simulation.advance(result.state, n_steps=3)

    assert state.steps == 7
    assert state.time == pytest.approx(0.07)


def test_padding_particles_do_not_perturb_the_run():
    particles = cold_collapse_sphere(16, seed=6, dtype=jnp.float64)
    padded = pad_particles(particles, 16, positions=np.full((16, 3), 3.0))
    config = RunConfig(softening=0.05, leapfrog=LeapfrogConfig(dt=1e-2), n_steps=20)

    plain = run_simulation(config, particles)
    extended = run_simulation(config, padded)

    assert np.allclose(
        extended.final.position[:16], plain.final.position, rtol=1e-12, atol=1e-13
    )


def test_run_logs_start_and_finish(caplog):
    config = RunConfig(leapfrog=LeapfrogConfig(dt=1e-2), n_steps=2, diagnostics_every=1)

    with caplog.at_level(logging.INFO, logger="gravstep"):
        run_simulation(config, plummer_sphere(8, seed=0))

    messages = [record.getMessage() for record in caplog.records]
    assert any(m.startswith("starting leapfrog run") for m in messages)
    assert any(m.startswith("finished leapfrog run") for m in messages)
    assert any("dE/E" in m for m in messages)


@pytest.mark.parametrize("integrator", ["leapfrog", "hermite"])
@pytest.mark.parametrize("field", ["position", "velocity"])
def test_injected_nan_reports_particle_index(integrator, field):
    config = RunConfig(integrator=integrator, softening=0.05, n_steps=5)
    simulation = Simulation(build_stepper(config))
    state = simulation.stepper.initialize(plummer_sphere(24, seed=8))
    for _ in range(2):
        state = simulation.stepper.step(state)
    k = 13
    values = getattr(state.particles, field)
    broken = state._replace(
        particles=state.particles._replace(**{field: values.at[k, 2].set(jnp.nan)})
    )

    with pytest.raises(NumericDivergenceError) as excinfo:
        simulation.advance(broken, n_steps=5)

    assert excinfo.value.index == k
    assert excinfo.value.step == 2
    assert excinfo.value.field == field


def test_injected_nan_in_initial_conditions_fails_before_stepping():
    particles = plummer_sphere(12, seed=4)
    particles = particles._replace(position=particles.position.at[5, 0].set(jnp.inf))
    config = RunConfig(n_steps=3)

    with pytest.raises(NumericDivergenceError) as excinfo:
        run_simulation(config, particles)

    assert excinfo.value.step == 0
    assert 5 in excinfo.value.indices
