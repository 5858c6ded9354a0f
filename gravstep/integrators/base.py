"""Common step-advance contract shared by the integrators."""

from __future__ import annotations

import abc
from typing import NamedTuple, Optional

import numpy as np

from ..forces import ForceEvaluator
from ..particles import ParticleStore


class IntegratorState(NamedTuple):
    """Integrator-owned state between two step boundaries.

    Attributes
    ----------
    particles:
        Store in the integrator's internal representation (half-step
        velocities for leapfrog, unsynchronised particle times for Hermite).
    time:
        Global time of the last completed step or block.
    steps:
        Number of completed steps or blocks.
    origin:
        Time at which the integrator was initialised.
    stalls:
        Consecutive Hermite blocks with every timestep pinned at ``dt_min``.
    clock:
        Hermite only: per-particle time elapsed since ``origin``. Block times
        are exact dyadic multiples on this clock whatever ``origin`` is.
    """

    particles: ParticleStore
    time: float
    steps: int
    origin: float = 0.0
    stalls: int = 0
    clock: Optional[np.ndarray] = None


class Stepper(abc.ABC):
    """Integration scheme built on a shared ``ForceEvaluator``."""

    name: str = "stepper"

    def __init__(self, evaluator: ForceEvaluator) -> None:
        self.evaluator = evaluator

    @property
    def softening(self: "Stepper") -> float:
        return self.evaluator.softening

    @abc.abstractmethod
    def initialize(
        self: "Stepper",
        particles: ParticleStore,
        *,
        time: float = 0.0,
    ) -> IntegratorState:
        """Evaluate initial derivatives and build the integrator state."""

    @abc.abstractmethod
    def step(self: "Stepper", state: IntegratorState) -> IntegratorState:
        """Advance by one step (leapfrog) or one block (Hermite)."""

    @abc.abstractmethod
    def synchronized(self: "Stepper", state: IntegratorState) -> ParticleStore:
        """Project ``state`` onto on-step values at ``state.time`` for reporting.

        The returned store is a new value; ``state`` is left untouched.
        """

    def reached(self: "Stepper", state: IntegratorState, t_end: float) -> bool:
        """Whether ``state`` has arrived at ``t_end``."""
        return state.time >= t_end


__all__ = ["IntegratorState", "Stepper"]
