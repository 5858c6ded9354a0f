"""Time-advance schemes sharing one force evaluator."""

from .base import IntegratorState, Stepper
from .hermite import ActiveSet, HermiteStepper
from .leapfrog import LeapfrogStepper

__all__ = [
    "ActiveSet",
    "HermiteStepper",
    "IntegratorState",
    "LeapfrogStepper",
    "Stepper",
]
