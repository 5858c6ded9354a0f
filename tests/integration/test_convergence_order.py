"""Order of convergence on an eccentric two-body orbit."""

import numpy as np
import pytest

from gravstep import (
    ForceEvaluator,
    HermiteConfig,
    HermiteStepper,
    LeapfrogConfig,
    LeapfrogStepper,
    Simulation,
)
from gravstep.diagnostics import relative_energy_error
from gravstep.initial_conditions import kepler_period, kepler_two_body

SOFTENING = 1e-5
ECCENTRICITY = 0.5


def _peak_energy_error(stepper, *, t_end=None, n_steps=None):
    simulation = Simulation(stepper, diagnostics_every=1)
    result = simulation.run(
        kepler_two_body(eccentricity=ECCENTRICITY),
        t_end=t_end,
        n_steps=n_steps,
    )
    e0 = result.energies[0].total
    return max(relative_energy_error(e0, report.total) for report in result.energies)


def _evaluator():
    return ForceEvaluator(softening=SOFTENING, precision="accurate")


def test_leapfrog_is_second_order():
    period = kepler_period(1.0, 1.0)

    coarse = _peak_energy_error(
        LeapfrogStepper(_evaluator(), LeapfrogConfig(dt=period / 500)), n_steps=500
    )
    fine = _peak_energy_error(
        LeapfrogStepper(_evaluator(), LeapfrogConfig(dt=period / 1000)), n_steps=1000
    )

    assert fine < coarse < 1e-2
    assert 3.3 < coarse / fine < 4.8


def test_hermite_is_fourth_order_in_eta():
    def _config(eta):
        return HermiteConfig(eta=eta, dt_max=1.0)

    coarse = _peak_energy_error(
        HermiteStepper(_evaluator(), _config(0.05)), t_end=8.0
    )
    fine = _peak_energy_error(
        HermiteStepper(_evaluator(), _config(0.025)), t_end=8.0
    )

    assert fine < coarse < 1e-4
    assert 9.0 < coarse / fine < 26.0


@pytest.mark.parametrize("integrator", ["leapfrog", "hermite"])
def test_kepler_orbit_returns_to_apocentre(integrator):
    period = kepler_period(1.0, 1.0)
    evaluator = _evaluator()
    if integrator == "leapfrog":
        stepper = LeapfrogStepper(evaluator, LeapfrogConfig(dt=period / 2000))
        run = dict(n_steps=2000)
    else:
        stepper = HermiteStepper(evaluator, HermiteConfig(eta=0.02, dt_max=2.0**-4))
        run = dict(t_end=period)

    result = Simulation(stepper).run(kepler_two_body(eccentricity=ECCENTRICITY), **run)
    separation = result.final.position[1] - result.final.position[0]

    # Hermite stops on the first block time past the period.
    assert abs(result.final.time - period) < 2.0**-4
    assert np.isclose(np.linalg.norm(separation), 1.0 + ECCENTRICITY, rtol=1e-2)
