"""Energy, virial and momentum diagnostics over particle-store snapshots."""

from __future__ import annotations

from typing import NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, jaxtyped

from .config import PrecisionLike, PrecisionPolicy
from .forces import ForceEvaluator
from .particles import ParticleStore


class EnergyReport(NamedTuple):
    """Energy budget at one step boundary.

    Attributes
    ----------
    time:
        Simulation time of the sample.
    kinetic:
        ``K = sum(m |v|^2) / 2``.
    potential:
        ``W = sum(m Phi) / 2``.
    total:
        ``E = K + W``.
    virial_ratio:
        ``-K/W``; zero when ``W`` vanishes.
    """

    time: float
    kinetic: float
    potential: float
    total: float
    virial_ratio: float


class ConservedQuantities(NamedTuple):
    """Linear/angular momentum and mass centre of a snapshot."""

    total_mass: float
    momentum: np.ndarray
    angular_momentum: np.ndarray
    center_of_mass: np.ndarray


@jax.jit
@jaxtyped(typechecker=beartype)
def kinetic_energy(masses: Array, velocities: Array) -> Array:
    """Total kinetic energy."""
    return 0.5 * jnp.sum(masses * jnp.sum(velocities * velocities, axis=-1))


@jax.jit
@jaxtyped(typechecker=beartype)
def potential_energy(masses: Array, potentials: Array) -> Array:
    """Total potential energy; the half counts each pair once."""
    return 0.5 * jnp.sum(masses * potentials)


def virial_ratio(kinetic: float, potential: float) -> float:
    """Return ``-K/W`` (0.5 in dynamical equilibrium)."""
    if potential == 0.0:
        return 0.0
    return -float(kinetic) / float(potential)


def relative_energy_error(initial: float, current: float) -> float:
    """``|E - E0| / |E0|``, or the absolute drift when ``E0`` is zero."""
    if initial == 0.0:
        return abs(float(current))
    return abs(float(current) - float(initial)) / abs(float(initial))


class Diagnostics:
    """Read-only diagnostics evaluated at the diagnostics precision tier.

    Potentials come from an evaluator that mirrors the run's evaluator
    (softening, ``fast_rsqrt``, execution strategy) with every tier set to
    the diagnostics tier.
    """

    def __init__(self, evaluator: ForceEvaluator) -> None:
        tier = evaluator.policy.diagnostics
        self._evaluator = evaluator.with_precision(
            PrecisionPolicy(force=tier, integration=tier, diagnostics=tier)
        )
        self.dtype = self._evaluator.dtypes.diagnostics

    def potentials(self: "Diagnostics", particles: ParticleStore) -> Array:
        """Per-particle potential ``Phi_i`` of a synchronised store."""
        return self._evaluator.potentials(particles.position, particles.mass)

    def energies(
        self: "Diagnostics",
        particles: ParticleStore,
        time: float,
        *,
        potentials: Optional[Array] = None,
    ) -> EnergyReport:
        """Energy budget of a synchronised store."""
        masses = particles.mass.astype(self.dtype)
        phi = self.potentials(particles) if potentials is None else potentials
        kinetic = float(kinetic_energy(masses, particles.velocity.astype(self.dtype)))
        potential = float(potential_energy(masses, phi.astype(self.dtype)))
        return EnergyReport(
            time=float(time),
            kinetic=kinetic,
            potential=potential,
            total=kinetic + potential,
            virial_ratio=virial_ratio(kinetic, potential),
        )

    def conserved(self: "Diagnostics", particles: ParticleStore) -> ConservedQuantities:
        """Momentum, angular momentum and centre of mass."""
        masses = np.asarray(particles.mass, dtype=np.float64)
        positions = np.asarray(particles.position, dtype=np.float64)
        velocities = np.asarray(particles.velocity, dtype=np.float64)
        total_mass = float(np.sum(masses))
        momentum = np.sum(masses[:, None] * velocities, axis=0)
        angular = np.sum(masses[:, None] * np.cross(positions, velocities), axis=0)
        if total_mass > 0:
            center = np.sum(masses[:, None] * positions, axis=0) / total_mass
        else:
            center = np.zeros((3,), dtype=np.float64)
        return ConservedQuantities(
            total_mass=total_mass,
            momentum=momentum,
            angular_momentum=angular,
            center_of_mass=center,
        )


def energy_report(
    particles: ParticleStore,
    time: float,
    *,
    softening: float,
    precision: PrecisionLike = None,
    fast_rsqrt: bool = False,
) -> EnergyReport:
    """One-shot ``Diagnostics(...).energies`` for callers without a run."""
    evaluator = ForceEvaluator(
        softening=softening,
        precision=precision,
        fast_rsqrt=fast_rsqrt,
    )
    return Diagnostics(evaluator).energies(particles, time)


__all__ = [
    "ConservedQuantities",
    "Diagnostics",
    "EnergyReport",
    "energy_report",
    "kinetic_energy",
    "potential_energy",
    "relative_energy_error",
    "virial_ratio",
]
