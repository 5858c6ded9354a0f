"""gravstep: direct-summation N-body integration in JAX."""

from ._typecheck import enable_runtime_typecheck

enable_runtime_typecheck()

from .config import (
    ExecutionConfig,
    HermiteConfig,
    LeapfrogConfig,
    PrecisionPolicy,
    PrecisionPreset,
    PrecisionTier,
    RunConfig,
)
from .diagnostics import ConservedQuantities, Diagnostics, EnergyReport
from .errors import (
    ConfigurationError,
    NumericDivergenceError,
    SchedulingDegenerateError,
    SchedulingStallWarning,
)
from .forces import ForceEvaluator, ForceResult, pairwise_force
from .integrators import (
    ActiveSet,
    HermiteStepper,
    IntegratorState,
    LeapfrogStepper,
    Stepper,
)
from .particles import ParticleStore, Snapshot, check_finite
from .simulation import RunResult, Simulation, build_stepper, run_simulation

__all__ = [
    "ActiveSet",
    "ConfigurationError",
    "ConservedQuantities",
    "Diagnostics",
    "EnergyReport",
    "ExecutionConfig",
    "ForceEvaluator",
    "ForceResult",
    "HermiteConfig",
    "HermiteStepper",
    "IntegratorState",
    "LeapfrogConfig",
    "LeapfrogStepper",
    "NumericDivergenceError",
    "ParticleStore",
    "PrecisionPolicy",
    "PrecisionPreset",
    "PrecisionTier",
    "RunConfig",
    "RunResult",
    "SchedulingDegenerateError",
    "SchedulingStallWarning",
    "Simulation",
    "Snapshot",
    "Stepper",
    "build_stepper",
    "check_finite",
    "pairwise_force",
    "run_simulation",
]
