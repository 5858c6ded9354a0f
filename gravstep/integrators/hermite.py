"""Fourth-order Hermite predictor-corrector with block timesteps."""

from __future__ import annotations

import logging
import warnings
from typing import Iterator, Optional, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, ArrayLike, jaxtyped

from ..config import HermiteConfig
from ..errors import SchedulingDegenerateError, SchedulingStallWarning
from ..forces import ForceEvaluator
from ..particles import ParticleStore
from .base import IntegratorState, Stepper

logger = logging.getLogger(__name__)


class ActiveSet:
    """Sorted indices of the particles due at one block time."""

    __slots__ = ("indices", "time")

    def __init__(self, indices: np.ndarray, time: float) -> None:
        self.indices = np.asarray(indices, dtype=np.int64)
        self.time = float(time)

    @classmethod
    def from_schedule(
        cls: "type[ActiveSet]",
        times: np.ndarray,
        timesteps: np.ndarray,
    ) -> "ActiveSet":
        """Collect every particle whose ``t_i + dt_i`` is the earliest."""
        due = np.asarray(times, dtype=np.float64) + np.asarray(timesteps, dtype=np.float64)
        t_next = float(np.min(due))
        return cls(np.flatnonzero(due == t_next), t_next)

    def __len__(self) -> int:
        return int(self.indices.shape[0])

    def __iter__(self) -> Iterator[int]:
        return (int(i) for i in self.indices)

    def __contains__(self, index: object) -> bool:
        if not isinstance(index, (int, np.integer)):
            return False
        pos = int(np.searchsorted(self.indices, index))
        return pos < len(self) and int(self.indices[pos]) == int(index)

    def __repr__(self) -> str:
        return f"ActiveSet(size={len(self)}, time={self.time!r})"

    def mask(self: "ActiveSet", n: int) -> np.ndarray:
        """Boolean membership mask over ``n`` particles."""
        out = np.zeros((n,), dtype=bool)
        out[self.indices] = True
        return out

    def padded(self: "ActiveSet") -> np.ndarray:
        """Indices padded to the next power of two by repeating the first.

        Bounding the number of distinct target counts bounds recompilation of
        the force kernel; rows past ``len(self)`` are discarded by callers.
        """
        size = len(self)
        bucket = 1 << max(size - 1, 0).bit_length()
        out = np.full((bucket,), self.indices[0], dtype=np.int64)
        out[:size] = self.indices
        return out


@jax.jit
@jaxtyped(typechecker=beartype)
def predict(
    position: Array,
    velocity: Array,
    acceleration: Array,
    jerk: Array,
    tau: Array,
) -> Tuple[Array, Array]:
    """Taylor-extrapolate position and velocity by ``tau`` per particle."""

    tau = tau[:, None]
    predicted_position = position + tau * (
        velocity + tau * (0.5 * acceleration + tau * jerk / 6.0)
    )
    predicted_velocity = velocity + tau * (acceleration + 0.5 * tau * jerk)
    return predicted_position, predicted_velocity


@jax.jit
@jaxtyped(typechecker=beartype)
def correct(
    predicted_position: Array,
    predicted_velocity: Array,
    acceleration_old: Array,
    jerk_old: Array,
    acceleration_new: Array,
    jerk_new: Array,
    h: Array,
) -> Tuple[Array, Array, Array, Array]:
    """Hermite corrector over a step ``h`` per particle.

    Returns corrected position and velocity, the second acceleration
    derivative at the end of the step and the (constant) third derivative.
    """

    h = h[:, None]
    h2 = h * h
    h3 = h2 * h
    h4 = h3 * h
    delta = acceleration_old - acceleration_new
    snap = (-6.0 * delta - h * (4.0 * jerk_old + 2.0 * jerk_new)) / h2
    crackle = (12.0 * delta + 6.0 * h * (jerk_old + jerk_new)) / h3
    position = predicted_position + snap * h4 / 24.0 + crackle * h4 * h / 120.0
    velocity = predicted_velocity + snap * h3 / 6.0 + crackle * h4 / 24.0
    return position, velocity, snap + h * crackle, crackle


@jax.jit
@jaxtyped(typechecker=beartype)
def aarseth_timestep(
    acceleration: Array,
    jerk: Array,
    snap: Array,
    crackle: Array,
    eta: Union[float, Array],
) -> Array:
    """Generalised Aarseth step ``eta * sqrt((|a||s| + |j|^2) / (|j||c| + |s|^2))``.

    Zero marks particles whose estimate is undefined.
    """

    a = jnp.linalg.norm(acceleration, axis=-1)
    j = jnp.linalg.norm(jerk, axis=-1)
    s = jnp.linalg.norm(snap, axis=-1)
    c = jnp.linalg.norm(crackle, axis=-1)
    numerator = a * s + j * j
    denominator = j * c + s * s
    valid = (numerator > 0) & (denominator > 0)
    ratio = numerator / jnp.where(valid, denominator, 1.0)
    return jnp.where(valid, eta * jnp.sqrt(ratio), 0.0)


def bootstrap_timestep(
    acceleration: ArrayLike,
    jerk: ArrayLike,
    *,
    eta: float,
    softening: float,
    dt_max: float,
) -> np.ndarray:
    """Start-up step from acceleration and jerk magnitudes only.

    ``eta |a|/|j|`` when jerk is known, ``eta sqrt(eps/|a|)`` when it is zero
    and ``dt_max`` when the particle feels no force at all.
    """
    a = np.linalg.norm(np.asarray(acceleration, dtype=np.float64), axis=-1)
    j = np.linalg.norm(np.asarray(jerk, dtype=np.float64), axis=-1)
    dt = np.full(a.shape, float(dt_max))
    with_jerk = (a > 0) & (j > 0)
    dt[with_jerk] = eta * a[with_jerk] / j[with_jerk]
    accel_only = (a > 0) & ~(j > 0)
    dt[accel_only] = eta * np.sqrt(softening / a[accel_only])
    return dt


def block_timestep(
    raw: ArrayLike,
    t_next: float,
    *,
    dt_min: float,
    dt_max: float,
    dt_prev: Optional[ArrayLike] = None,
) -> np.ndarray:
    """Snap raw steps onto the power-of-two block hierarchy.

    Steps are floored to a power of two, grow by at most a factor two over
    ``dt_prev``, stay within ``[dt_min, dt_max]`` and are halved until
    ``t_next`` is a multiple of them. ``t_next`` is measured from the start
    of the schedule, not from absolute time zero.
    """
    raw = np.asarray(raw, dtype=np.float64)
    usable = np.isfinite(raw) & (raw > 0)
    raw = np.where(usable, raw, dt_min)
    dt = np.exp2(np.floor(np.log2(raw)))
    if dt_prev is not None:
        dt = np.minimum(dt, 2.0 * np.asarray(dt_prev, dtype=np.float64))
    dt = np.clip(dt, dt_min, dt_max)
    while True:
        misaligned = (np.fmod(t_next, dt) != 0.0) & (dt > dt_min)
        if not np.any(misaligned):
            return dt
        dt = np.where(misaligned, 0.5 * dt, dt)


def _elapsed_clock(state: IntegratorState) -> np.ndarray:
    if state.clock is not None:
        return state.clock
    return np.asarray(state.particles.time, dtype=np.float64) - state.origin


class HermiteStepper(Stepper):
    """Individual block-timestep Hermite integrator.

    Each ``step`` call processes one block: every particle is predicted to the
    block time, the active set is re-evaluated against all predicted sources,
    corrected and rescheduled.
    """

    name = "hermite"

    def __init__(
        self,
        evaluator: ForceEvaluator,
        config: Optional[HermiteConfig] = None,
    ) -> None:
        super().__init__(evaluator)
        self.config = HermiteConfig() if config is None else config

    def _bootstrap(self, acceleration: ArrayLike, jerk: ArrayLike) -> np.ndarray:
        return bootstrap_timestep(
            acceleration,
            jerk,
            eta=self.config.start_eta,
            softening=self.softening,
            dt_max=self.config.dt_max,
        )

    def initialize(
        self: "HermiteStepper",
        particles: ParticleStore,
        *,
        time: float = 0.0,
    ) -> IntegratorState:
        particles = particles.astype(self.evaluator.state_dtype)
        result = self.evaluator.evaluate(
            particles.position,
            particles.mass,
            particles.velocity,
            compute_jerk=True,
        )
        timesteps = block_timestep(
            self._bootstrap(result.acceleration, result.jerk),
            0.0,
            dt_min=self.config.dt_min,
            dt_max=self.config.dt_max,
        )
        particles = particles._replace(
            acceleration=result.acceleration,
            jerk=result.jerk,
            time=np.full((particles.n,), float(time)),
            timestep=timesteps,
        )
        logger.debug(
            "hermite initialised: N=%d min dt=%g max dt=%g",
            particles.n,
            float(np.min(timesteps)),
            float(np.max(timesteps)),
        )
        return IntegratorState(
            particles=particles,
            time=float(time),
            steps=0,
            origin=float(time),
            clock=np.zeros((particles.n,)),
        )

    def _predict_all(
        self, particles: ParticleStore, clock: np.ndarray, elapsed: float
    ) -> Tuple[Array, Array]:
        tau = jnp.asarray(elapsed - clock, dtype=particles.dtype)
        return predict(
            particles.position,
            particles.velocity,
            particles.acceleration,
            particles.jerk,
            tau,
        )

    def step(self: "HermiteStepper", state: IntegratorState) -> IntegratorState:
        p = state.particles
        dtype = p.dtype
        clock = _elapsed_clock(state)
        active = ActiveSet.from_schedule(clock, p.timestep)
        elapsed = active.time
        t_next = state.origin + elapsed
        size = len(active)
        idx = jnp.asarray(active.indices, dtype=jnp.int32)

        # PREDICT: every particle is a source at t_next.
        predicted_position, predicted_velocity = self._predict_all(p, clock, elapsed)

        # EVALUATE: active targets only.
        result = self.evaluator.evaluate(
            predicted_position,
            p.mass,
            predicted_velocity,
            target_indices=active.padded(),
            compute_jerk=True,
        )
        acceleration_new = result.acceleration[:size]
        jerk_new = result.jerk[:size]

        # CORRECT
        h_host = p.timestep[active.indices]
        position, velocity, snap, crackle = correct(
            predicted_position[idx],
            predicted_velocity[idx],
            p.acceleration[idx],
            p.jerk[idx],
            acceleration_new,
            jerk_new,
            jnp.asarray(h_host, dtype=dtype),
        )

        # RESCHEDULE
        raw = np.asarray(
            aarseth_timestep(acceleration_new, jerk_new, snap, crackle, self.config.eta),
            dtype=np.float64,
        )
        undefined = ~(raw > 0)
        if np.any(undefined):
            raw[undefined] = self._bootstrap(
                np.asarray(acceleration_new, dtype=np.float64)[undefined],
                np.asarray(jerk_new, dtype=np.float64)[undefined],
            )
        new_steps = block_timestep(
            raw,
            elapsed,
            dt_min=self.config.dt_min,
            dt_max=self.config.dt_max,
            dt_prev=h_host,
        )

        times = p.time.copy()
        times[active.indices] = t_next
        clock = clock.copy()
        clock[active.indices] = elapsed
        timesteps = p.timestep.copy()
        timesteps[active.indices] = new_steps
        particles = p._replace(
            position=p.position.at[idx].set(position),
            velocity=p.velocity.at[idx].set(velocity),
            acceleration=p.acceleration.at[idx].set(acceleration_new),
            jerk=p.jerk.at[idx].set(jerk_new),
            time=times,
            timestep=timesteps,
        )

        stalls = self._track_stalls(state.stalls, timesteps, t_next)
        logger.debug(
            "block %d: t=%.10g active=%d/%d min dt=%g",
            state.steps + 1,
            t_next,
            size,
            p.n,
            float(np.min(timesteps)),
        )
        return IntegratorState(
            particles=particles,
            time=t_next,
            steps=state.steps + 1,
            origin=state.origin,
            stalls=stalls,
            clock=clock,
        )

    def _track_stalls(self, stalls: int, timesteps: np.ndarray, time: float) -> int:
        dt_min = self.config.dt_min
        if not np.all(timesteps <= dt_min):
            return 0
        stalls += 1
        warnings.warn(
            f"every Hermite timestep is pinned at dt_min={dt_min:g} (t={time:g}, "
            f"{stalls} consecutive blocks)",
            SchedulingStallWarning,
            stacklevel=3,
        )
        limit = self.config.max_consecutive_stalls
        if limit is not None and stalls >= limit:
            raise SchedulingDegenerateError(stalls=stalls, dt_min=dt_min, time=time)
        return stalls

    def synchronized(self: "HermiteStepper", state: IntegratorState) -> ParticleStore:
        p = state.particles
        clock = _elapsed_clock(state)
        elapsed = float(np.max(clock))
        position, velocity = self._predict_all(p, clock, elapsed)
        tau = jnp.asarray(elapsed - clock, dtype=p.dtype)[:, None]
        return p._replace(
            position=position,
            velocity=velocity,
            acceleration=p.acceleration + tau * p.jerk,
            time=np.full((p.n,), state.time),
        )


__all__ = [
    "ActiveSet",
    "HermiteStepper",
    "aarseth_timestep",
    "block_timestep",
    "bootstrap_timestep",
    "correct",
    "predict",
]
