"""Timing helpers for the gravstep benchmark scripts."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Tuple

import jax
import numpy as np

from gravstep import ParticleStore


def block_until_ready(value: Any) -> Any:
    """Wait on every JAX array inside ``value`` (NamedTuples included)."""

    def _wait(x: Any) -> Any:
        return x.block_until_ready() if hasattr(x, "block_until_ready") else x

    return jax.tree_util.tree_map(_wait, value)


@dataclass(frozen=True)
class TimingResult:
    """Wall-clock samples of repeated calls, compilation excluded."""

    wall_times: Tuple[float, ...]
    result: Any

    @property
    def mean(self) -> float:
        return float(np.mean(self.wall_times))

    @property
    def std(self) -> float:
        return float(np.std(self.wall_times))

    @property
    def best(self) -> float:
        return float(np.min(self.wall_times))


def time_callable(
    fn: Callable[..., Any],
    *args: Any,
    warmup: int = 1,
    runs: int = 5,
    **kwargs: Any,
) -> TimingResult:
    """Call ``fn`` ``warmup`` times untimed, then time ``runs`` calls."""

    if runs <= 0:
        raise ValueError("runs must be positive")
    if warmup < 0:
        raise ValueError("warmup must be non-negative")

    for _ in range(warmup):
        block_until_ready(fn(*args, **kwargs))

    samples = []
    result: Any = None
    for _ in range(runs):
        start = time.perf_counter()
        result = block_until_ready(fn(*args, **kwargs))
        samples.append(time.perf_counter() - start)

    return TimingResult(wall_times=tuple(samples), result=result)


def interactions_per_second(n_targets: int, n_sources: int, seconds: float) -> float:
    """Pair interactions evaluated per second (self pairs included)."""
    return float(n_targets) * float(n_sources) / seconds


def random_cube(num_particles: int, *, seed: int = 0) -> ParticleStore:
    """Unit-mass-total particles uniform in ``[-1, 1]^3`` with small velocities."""
    if num_particles <= 0:
        raise ValueError("num_particles must be positive")
    rng = np.random.default_rng(seed)
    return ParticleStore.create(
        np.full((num_particles,), 1.0 / num_particles),
        rng.uniform(-1.0, 1.0, size=(num_particles, 3)),
        0.1 * rng.normal(size=(num_particles, 3)),
    )


__all__ = [
    "TimingResult",
    "block_until_ready",
    "interactions_per_second",
    "random_cube",
    "time_callable",
]
