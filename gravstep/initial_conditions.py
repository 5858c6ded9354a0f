"""Initial-condition generators for the standard test problems."""

from __future__ import annotations

import math
from typing import Optional

import jax.numpy as jnp
import numpy as np
from jaxtyping import ArrayLike, DTypeLike

from .errors import ConfigurationError
from .forces import GRAVITATIONAL_CONSTANT
from .particles import ParticleStore


def _random_directions(rng: np.random.Generator, n: int) -> np.ndarray:
    vectors = rng.normal(size=(n, 3))
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    return vectors / np.where(norms > 0, norms, 1.0)


def _to_center_of_mass(masses: np.ndarray, values: np.ndarray) -> np.ndarray:
    total = np.sum(masses)
    if total <= 0:
        return values
    return values - np.sum(masses[:, None] * values, axis=0) / total


def free_fall_time(radius: float = 1.0, total_mass: float = 1.0) -> float:
    """Free-fall time of a uniform sphere, ``pi/2 sqrt(R^3 / (2 G M))``."""
    return 0.5 * math.pi * math.sqrt(
        radius**3 / (2.0 * GRAVITATIONAL_CONSTANT * total_mass)
    )


def kepler_period(semi_major_axis: float, total_mass: float) -> float:
    """Orbital period of a bound two-body orbit."""
    return 2.0 * math.pi * math.sqrt(
        semi_major_axis**3 / (GRAVITATIONAL_CONSTANT * total_mass)
    )


def cold_collapse_sphere(
    n: int,
    *,
    radius: float = 1.0,
    total_mass: float = 1.0,
    seed: int = 0,
    dtype: Optional[DTypeLike] = None,
) -> ParticleStore:
    """Equal-mass particles uniform in a sphere, initially at rest."""
    if n < 1:
        raise ConfigurationError("need at least one particle")
    rng = np.random.default_rng(seed)
    r = radius * rng.uniform(size=(n, 1)) ** (1.0 / 3.0)
    positions = r * _random_directions(rng, n)
    masses = np.full((n,), total_mass / n)
    positions = _to_center_of_mass(masses, positions)
    return ParticleStore.create(masses, positions, np.zeros_like(positions), dtype=dtype)


def plummer_sphere(
    n: int,
    *,
    total_mass: float = 1.0,
    scale_radius: float = 1.0,
    max_mass_fraction: float = 0.999,
    seed: int = 0,
    dtype: Optional[DTypeLike] = None,
) -> ParticleStore:
    """Equal-mass Plummer model in equilibrium (Aarseth, Henon & Wielen 1974).

    Radii are drawn from the cumulative mass profile truncated at
    ``max_mass_fraction``; speeds use von Neumann rejection on
    ``q^2 (1 - q^2)^{7/2}``.
    """
    if n < 1:
        raise ConfigurationError("need at least one particle")
    if not 0.0 < max_mass_fraction < 1.0:
        raise ConfigurationError("max_mass_fraction must lie in (0, 1)")
    rng = np.random.default_rng(seed)
    mass_fraction = rng.uniform(0.0, max_mass_fraction, size=n)
    # Guard the r -> 0 end of the inverse cumulative profile.
    mass_fraction = np.maximum(mass_fraction, 1e-12)
    r = scale_radius / np.sqrt(mass_fraction ** (-2.0 / 3.0) - 1.0)
    positions = r[:, None] * _random_directions(rng, n)

    q = np.empty((n,))
    pending = np.arange(n)
    while pending.size:
        x = rng.uniform(0.0, 1.0, size=pending.size)
        y = rng.uniform(0.0, 0.1, size=pending.size)
        accepted = y < x * x * (1.0 - x * x) ** 3.5
        q[pending[accepted]] = x[accepted]
        pending = pending[~accepted]
    escape = np.sqrt(2.0 * GRAVITATIONAL_CONSTANT * total_mass / scale_radius) * (
        1.0 + (r / scale_radius) ** 2
    ) ** (-0.25)
    velocities = (q * escape)[:, None] * _random_directions(rng, n)

    masses = np.full((n,), total_mass / n)
    positions = _to_center_of_mass(masses, positions)
    velocities = _to_center_of_mass(masses, velocities)
    return ParticleStore.create(masses, positions, velocities, dtype=dtype)


def kepler_two_body(
    *,
    m1: float = 0.5,
    m2: float = 0.5,
    semi_major_axis: float = 1.0,
    eccentricity: float = 0.0,
    dtype: Optional[DTypeLike] = None,
) -> ParticleStore:
    """Bound two-body orbit in the x-y plane, starting at apocentre."""
    if m1 <= 0 or m2 <= 0:
        raise ConfigurationError("two-body masses must be positive")
    if not 0.0 <= eccentricity < 1.0:
        raise ConfigurationError("eccentricity must lie in [0, 1)")
    total = m1 + m2
    separation = semi_major_axis * (1.0 + eccentricity)
    speed = math.sqrt(
        GRAVITATIONAL_CONSTANT
        * total
        * (1.0 - eccentricity)
        / (semi_major_axis * (1.0 + eccentricity))
    )
    relative_position = np.array([separation, 0.0, 0.0])
    relative_velocity = np.array([0.0, speed, 0.0])
    positions = np.stack(
        [-(m2 / total) * relative_position, (m1 / total) * relative_position]
    )
    velocities = np.stack(
        [-(m2 / total) * relative_velocity, (m1 / total) * relative_velocity]
    )
    return ParticleStore.create([m1, m2], positions, velocities, dtype=dtype)


def pad_particles(
    particles: ParticleStore,
    n_pad: int,
    *,
    positions: Optional[ArrayLike] = None,
) -> ParticleStore:
    """Append ``n_pad`` zero-mass particles at rest.

    Padding particles get fresh identity indices after the existing ones and
    sit at the origin unless ``positions`` is given.
    """
    if n_pad < 0:
        raise ConfigurationError("n_pad must be non-negative")
    if n_pad == 0:
        return particles
    dtype = particles.dtype
    if positions is None:
        pad_positions = jnp.zeros((n_pad, 3), dtype=dtype)
    else:
        pad_positions = jnp.asarray(positions, dtype=dtype)
        if pad_positions.shape != (n_pad, 3):
            raise ConfigurationError("padding positions must have shape (n_pad, 3)")
    zeros = jnp.zeros((n_pad, 3), dtype=dtype)
    first = int(np.max(particles.index)) + 1
    return ParticleStore(
        index=np.concatenate(
            [particles.index, np.arange(first, first + n_pad, dtype=np.int64)]
        ),
        mass=jnp.concatenate([particles.mass, jnp.zeros((n_pad,), dtype=dtype)]),
        position=jnp.concatenate([particles.position, pad_positions]),
        velocity=jnp.concatenate([particles.velocity, zeros]),
        acceleration=jnp.concatenate([particles.acceleration, zeros]),
        jerk=jnp.concatenate([particles.jerk, zeros]),
        time=np.concatenate([particles.time, np.zeros((n_pad,))]),
        timestep=np.concatenate([particles.timestep, np.zeros((n_pad,))]),
    )


__all__ = [
    "cold_collapse_sphere",
    "free_fall_time",
    "kepler_period",
    "kepler_two_body",
    "pad_particles",
    "plummer_sphere",
]
