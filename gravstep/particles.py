"""Particle store, step-boundary checks and read-only snapshots."""

from __future__ import annotations

from typing import NamedTuple, Optional, Sequence

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, ArrayLike, DTypeLike

from .config import PrecisionTier
from .errors import ConfigurationError, NumericDivergenceError
from .precision import tier_dtype

CHECKED_FIELDS = ("position", "velocity", "acceleration", "jerk")


class ParticleStore(NamedTuple):
    """Per-particle state of an N-body system.

    Attributes
    ----------
    index:
        Identity index of each particle, stable for the whole run.
    mass:
        ``(N,)`` masses; zero marks a padding particle.
    position, velocity:
        ``(N, 3)`` phase-space coordinates in the integration dtype.
    acceleration, jerk:
        ``(N, 3)`` last evaluated derivatives. During a Hermite block these are
        the old values consumed by the corrector.
    time, timestep:
        ``(N,)`` host float64 arrays with each particle's own time and step.
    """

    index: np.ndarray
    mass: Array
    position: Array
    velocity: Array
    acceleration: Array
    jerk: Array
    time: np.ndarray
    timestep: np.ndarray

    @property
    def n(self: "ParticleStore") -> int:
        return int(self.mass.shape[0])

    @property
    def dtype(self: "ParticleStore") -> jnp.dtype:
        return self.position.dtype

    @classmethod
    def create(
        cls: "type[ParticleStore]",
        masses: ArrayLike,
        positions: ArrayLike,
        velocities: Optional[ArrayLike] = None,
        *,
        dtype: Optional[DTypeLike] = None,
        index: Optional[ArrayLike] = None,
    ) -> "ParticleStore":
        """Validate initial conditions and build a fresh store.

        Arrays are stored as float64 unless ``dtype`` says otherwise; integrators
        cast to their own state dtype on ``initialize``.
        """
        masses_np = np.asarray(masses, dtype=np.float64)
        positions_np = np.asarray(positions, dtype=np.float64)
        if positions_np.ndim != 2 or positions_np.shape[1] != 3:
            raise ConfigurationError("positions must have shape (N, 3)")
        n = positions_np.shape[0]
        if n == 0:
            raise ConfigurationError("need at least one particle")
        if masses_np.shape != (n,):
            raise ConfigurationError("masses must have shape (N,)")
        if not np.all(np.isfinite(masses_np)) or np.any(masses_np < 0):
            raise ConfigurationError("masses must be finite and non-negative")
        if velocities is None:
            velocities_np = np.zeros_like(positions_np)
        else:
            velocities_np = np.asarray(velocities, dtype=np.float64)
            if velocities_np.shape != positions_np.shape:
                raise ConfigurationError("velocities must have shape (N, 3)")
        if index is None:
            index_np = np.arange(n, dtype=np.int64)
        else:
            index_np = np.asarray(index, dtype=np.int64)
            if index_np.shape != (n,):
                raise ConfigurationError("index must have shape (N,)")
            if np.unique(index_np).shape[0] != n:
                raise ConfigurationError("particle indices must be unique")

        # Default matches the default (all HIGH) precision policy.
        work_dtype = tier_dtype(PrecisionTier.HIGH) if dtype is None else dtype
        return cls(
            index=index_np,
            mass=jnp.asarray(masses_np, dtype=work_dtype),
            position=jnp.asarray(positions_np, dtype=work_dtype),
            velocity=jnp.asarray(velocities_np, dtype=work_dtype),
            acceleration=jnp.zeros((n, 3), dtype=work_dtype),
            jerk=jnp.zeros((n, 3), dtype=work_dtype),
            time=np.zeros((n,), dtype=np.float64),
            timestep=np.zeros((n,), dtype=np.float64),
        )

    def astype(self: "ParticleStore", dtype: DTypeLike) -> "ParticleStore":
        """Return a copy whose floating arrays use ``dtype``."""
        return self._replace(
            mass=self.mass.astype(dtype),
            position=self.position.astype(dtype),
            velocity=self.velocity.astype(dtype),
            acceleration=self.acceleration.astype(dtype),
            jerk=self.jerk.astype(dtype),
        )


def check_finite(
    particles: ParticleStore,
    step: int,
    *,
    fields: Sequence[str] = CHECKED_FIELDS,
) -> None:
    """Raise ``NumericDivergenceError`` if any checked field is non-finite."""
    for name in fields:
        values = np.asarray(getattr(particles, name), dtype=np.float64)
        bad = ~np.all(np.isfinite(values), axis=-1)
        if np.any(bad):
            offenders = particles.index[np.flatnonzero(bad)]
            raise NumericDivergenceError(
                index=int(offenders[0]),
                step=step,
                field=name,
                indices=tuple(int(i) for i in offenders),
            )


class Snapshot(NamedTuple):
    """Read-only host copy of a synchronised particle state."""

    time: float
    index: np.ndarray
    mass: np.ndarray
    position: np.ndarray
    velocity: np.ndarray
    acceleration: Optional[np.ndarray] = None
    potential: Optional[np.ndarray] = None


def _frozen_copy(values: ArrayLike) -> np.ndarray:
    out = np.array(values, dtype=np.float64, copy=True)
    out.setflags(write=False)
    return out


def take_snapshot(
    particles: ParticleStore,
    time: float,
    *,
    potential: Optional[ArrayLike] = None,
    include_acceleration: bool = True,
) -> Snapshot:
    """Copy a synchronised store to host memory for output collaborators."""
    index = np.array(particles.index, copy=True)
    index.setflags(write=False)
    return Snapshot(
        time=float(time),
        index=index,
        mass=_frozen_copy(particles.mass),
        position=_frozen_copy(particles.position),
        velocity=_frozen_copy(particles.velocity),
        acceleration=(
            _frozen_copy(particles.acceleration) if include_acceleration else None
        ),
        potential=None if potential is None else _frozen_copy(potential),
    )


__all__ = [
    "CHECKED_FIELDS",
    "ParticleStore",
    "Snapshot",
    "check_finite",
    "take_snapshot",
]
