"""Kick-drift-kick leapfrog with a fixed, globally shared timestep."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array

from ..config import LeapfrogConfig
from ..forces import ForceEvaluator
from ..particles import ParticleStore
from .base import IntegratorState, Stepper

logger = logging.getLogger(__name__)


class LeapfrogStepper(Stepper):
    """Second-order symplectic integrator with half-step velocities.

    Between steps the store holds ``r^n``, ``v^{n+1/2}`` and ``a^n``.
    """

    name = "leapfrog"

    def __init__(
        self,
        evaluator: ForceEvaluator,
        config: Optional[LeapfrogConfig] = None,
    ) -> None:
        super().__init__(evaluator)
        self.config = LeapfrogConfig() if config is None else config
        self.dt = float(self.config.dt)
        self._dt = jnp.asarray(self.dt, dtype=evaluator.state_dtype)
        self._drift_kick = jax.jit(self._advance)

    def _accelerations(self, positions: Array, masses: Array) -> Array:
        return self.evaluator.evaluate(positions, masses).acceleration

    def _advance(
        self,
        position: Array,
        velocity_half: Array,
        mass: Array,
        dt: Array,
    ) -> Tuple[Array, Array, Array]:
        position = position + dt * velocity_half
        acceleration = self._accelerations(position, mass)
        velocity_half = velocity_half + dt * acceleration
        return position, velocity_half, acceleration

    def initialize(
        self: "LeapfrogStepper",
        particles: ParticleStore,
        *,
        time: float = 0.0,
    ) -> IntegratorState:
        particles = particles.astype(self.evaluator.state_dtype)
        acceleration = self._accelerations(particles.position, particles.mass)
        velocity_half = particles.velocity + 0.5 * self._dt * acceleration
        n = particles.n
        particles = particles._replace(
            velocity=velocity_half,
            acceleration=acceleration,
            jerk=jnp.zeros_like(acceleration),
            time=np.full((n,), float(time)),
            timestep=np.full((n,), self.dt),
        )
        logger.debug("leapfrog initialised: N=%d dt=%g t=%g", n, self.dt, time)
        return IntegratorState(
            particles=particles, time=float(time), steps=0, origin=float(time)
        )

    def step(self: "LeapfrogStepper", state: IntegratorState) -> IntegratorState:
        p = state.particles
        position, velocity_half, acceleration = self._drift_kick(
            p.position, p.velocity, p.mass, self._dt
        )
        steps = state.steps + 1
        time = state.origin + steps * self.dt
        particles = p._replace(
            position=position,
            velocity=velocity_half,
            acceleration=acceleration,
            time=np.full((p.n,), time),
        )
        return state._replace(particles=particles, time=time, steps=steps)

    def synchronized(self: "LeapfrogStepper", state: IntegratorState) -> ParticleStore:
        p = state.particles
        return p._replace(velocity=p.velocity - 0.5 * self._dt * p.acceleration)

    def reached(self: "LeapfrogStepper", state: IntegratorState, t_end: float) -> bool:
        # Step times are origin + k*dt; compare against the nearest step.
        return state.time >= t_end - 0.5 * self.dt


__all__ = ["LeapfrogStepper"]
