"""Cold-collapse energy bound and late-time virial equilibrium."""

import numpy as np
import pytest

from gravstep import HermiteConfig, LeapfrogConfig, RunConfig, run_simulation
from gravstep.diagnostics import relative_energy_error
from gravstep.initial_conditions import cold_collapse_sphere, free_fall_time


@pytest.mark.parametrize(
    "precision, tolerance",
    [("accurate", 1e-3), ("balanced", 1e-3), ("single", 2e-3)],
)
def test_leapfrog_cold_collapse_energy_bound(precision, tolerance):
    config = RunConfig(
        integrator="leapfrog",
        softening=0.05,
        precision=precision,
        leapfrog=LeapfrogConfig(dt=1e-3),
        t_end=0.5,
        diagnostics_every=50,
    )

    result = run_simulation(config, cold_collapse_sphere(64, seed=1))

    e0 = result.energies[0].total
    assert e0 < 0.0
    assert result.state.steps == 500
    assert result.energies[-1].time == pytest.approx(0.5)
    for report in result.energies:
        assert relative_energy_error(e0, report.total) < tolerance


def test_hermite_cold_collapse_energy_bound():
    config = RunConfig(
        integrator="hermite",
        softening=0.05,
        hermite=HermiteConfig(eta=0.05, dt_max=2.0**-5),
        t_end=0.5,
        diagnostics_every=16,
    )

    result = run_simulation(config, cold_collapse_sphere(64, seed=1))

    e0 = result.energies[0].total
    assert result.state.time == 0.5
    for report in result.energies:
        assert relative_energy_error(e0, report.total) < 1e-4


@pytest.mark.slow
def test_cold_collapse_relaxes_to_virial_equilibrium():
    t_end = 4.0
    assert t_end > 3.0 * free_fall_time()
    config = RunConfig(
        integrator="leapfrog",
        softening=0.1,
        leapfrog=LeapfrogConfig(dt=2e-3),
        t_end=t_end,
        diagnostics_every=25,
    )

    result = run_simulation(config, cold_collapse_sphere(100, seed=3))

    assert result.energies[0].virial_ratio == 0.0
    late = [r.virial_ratio for r in result.energies if r.time >= 3.0]
    assert len(late) > 10
    assert 0.35 < float(np.mean(late)) < 0.7
    assert relative_energy_error(result.energies[0].total, result.energies[-1].total) < 5e-2
