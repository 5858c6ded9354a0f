"""Exception and warning types raised by gravstep."""

from __future__ import annotations

from typing import Optional


class ConfigurationError(ValueError):
    """Invalid run configuration or input arrays, detected before computing."""


class NumericDivergenceError(FloatingPointError):
    """Particle state became non-finite during a run.

    Attributes
    ----------
    index:
        Identity index of the first offending particle.
    step:
        Step boundary at which the non-finite value was detected.
    field:
        Name of the offending particle-store field.
    indices:
        Identity indices of every offending particle in ``field``.
    """

    def __init__(
        self,
        index: int,
        step: int,
        field: str,
        indices: Optional[tuple[int, ...]] = None,
    ) -> None:
        self.index = int(index)
        self.step = int(step)
        self.field = str(field)
        self.indices = (self.index,) if indices is None else tuple(indices)
        super().__init__(
            f"non-finite {self.field} for particle {self.index} at step {self.step}"
        )


class SchedulingStallWarning(RuntimeWarning):
    """Every Hermite timestep collapsed to the minimum block step."""


class SchedulingDegenerateError(RuntimeError):
    """Hermite scheduling stayed stalled for too many consecutive blocks."""

    def __init__(self, stalls: int, dt_min: float, time: float) -> None:
        self.stalls = int(stalls)
        self.dt_min = float(dt_min)
        self.time = float(time)
        super().__init__(
            f"all timesteps pinned at dt_min={self.dt_min:g} for {self.stalls} "
            f"consecutive blocks (t={self.time:g})"
        )


__all__ = [
    "ConfigurationError",
    "NumericDivergenceError",
    "SchedulingDegenerateError",
    "SchedulingStallWarning",
]
