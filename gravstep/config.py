"""Preset-first configuration model for gravstep."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, Union

from .errors import ConfigurationError

IntegratorName = Literal["leapfrog", "hermite"]
ExecutionStrategy = Literal["vmap", "map"]

_INTEGRATORS = ("leapfrog", "hermite")
_STRATEGIES = ("vmap", "map")


class PrecisionTier(str, Enum):
    """Numeric precision tiers (bfloat16, float32, float64)."""

    LOW = "low"
    MID = "mid"
    HIGH = "high"


class PrecisionPreset(str, Enum):
    """Named force/integration/diagnostics tier combinations."""

    FAST = "fast"
    BALANCED = "balanced"
    ACCURATE = "accurate"
    SINGLE = "single"


def _normalize_tier(tier: Union[PrecisionTier, str]) -> PrecisionTier:
    if isinstance(tier, PrecisionTier):
        return tier
    try:
        return PrecisionTier(str(tier).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in PrecisionTier)
        raise ConfigurationError(
            f"invalid precision tier {tier!r}; expected one of {allowed}"
        ) from None


def _normalize_preset(preset: Union[PrecisionPreset, str]) -> PrecisionPreset:
    if isinstance(preset, PrecisionPreset):
        return preset
    try:
        return PrecisionPreset(str(preset).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in PrecisionPreset)
        raise ConfigurationError(
            f"invalid precision preset {preset!r}; expected one of {allowed}"
        ) from None


def _is_power_of_two(value: float) -> bool:
    return value > 0 and math.isfinite(value) and math.frexp(value)[0] == 0.5


@dataclass(frozen=True)
class PrecisionPolicy:
    """Tier assignment for each quantity class.

    Attributes
    ----------
    force:
        Tier of the pairwise force/potential/jerk terms.
    integration:
        Tier of stored positions/velocities and of the update arithmetic.
    diagnostics:
        Tier used to evaluate and accumulate energies and invariants.
    """

    force: PrecisionTier = PrecisionTier.HIGH
    integration: PrecisionTier = PrecisionTier.HIGH
    diagnostics: PrecisionTier = PrecisionTier.HIGH

    def __post_init__(self) -> None:
        object.__setattr__(self, "force", _normalize_tier(self.force))
        object.__setattr__(self, "integration", _normalize_tier(self.integration))
        object.__setattr__(self, "diagnostics", _normalize_tier(self.diagnostics))

    @classmethod
    def from_preset(
        cls: "type[PrecisionPolicy]",
        preset: Union[PrecisionPreset, str],
    ) -> "PrecisionPolicy":
        """Build the policy registered for ``preset``."""
        preset_norm = _normalize_preset(preset)
        if preset_norm is PrecisionPreset.FAST:
            return cls(PrecisionTier.LOW, PrecisionTier.HIGH, PrecisionTier.HIGH)
        if preset_norm is PrecisionPreset.BALANCED:
            return cls(PrecisionTier.MID, PrecisionTier.HIGH, PrecisionTier.HIGH)
        if preset_norm is PrecisionPreset.SINGLE:
            return cls(PrecisionTier.MID, PrecisionTier.MID, PrecisionTier.MID)
        # ACCURATE
        return cls(PrecisionTier.HIGH, PrecisionTier.HIGH, PrecisionTier.HIGH)


PrecisionLike = Union[PrecisionPolicy, PrecisionPreset, str, None]


def as_precision_policy(value: PrecisionLike) -> PrecisionPolicy:
    """Coerce a policy, preset or preset name into a ``PrecisionPolicy``."""
    if value is None:
        return PrecisionPolicy()
    if isinstance(value, PrecisionPolicy):
        return value
    return PrecisionPolicy.from_preset(value)


@dataclass(frozen=True)
class ExecutionConfig:
    """Parallel-for strategy used by the force evaluator.

    ``strategy="vmap"`` evaluates all targets as vectorised lanes;
    ``strategy="map"`` walks targets with ``lax.map``. ``tile_size`` groups
    source particles into scanned tiles; ``None`` uses one tile.
    """

    strategy: ExecutionStrategy = "vmap"
    tile_size: Optional[int] = None

    def __post_init__(self) -> None:
        if self.strategy not in _STRATEGIES:
            raise ConfigurationError(
                f"execution strategy must be one of {_STRATEGIES}, "
                f"got {self.strategy!r}"
            )
        if self.tile_size is not None and int(self.tile_size) < 1:
            raise ConfigurationError("tile_size must be >= 1")


@dataclass(frozen=True)
class LeapfrogConfig:
    """Fixed global timestep for the kick-drift-kick scheme."""

    dt: float = 1.0e-3

    def __post_init__(self) -> None:
        if not (math.isfinite(self.dt) and self.dt > 0):
            raise ConfigurationError("leapfrog dt must be positive and finite")


@dataclass(frozen=True)
class HermiteConfig:
    """Block-timestep controls for the Hermite predictor-corrector.

    ``eta`` multiplies the Aarseth step estimate; ``eta_start`` (defaults to
    ``eta``) is used for bootstrap steps computed from acceleration and jerk
    alone. ``dt_max``/``dt_min`` bound the power-of-two hierarchy.
    """

    eta: float = 0.1
    eta_start: Optional[float] = None
    dt_max: float = 2.0**-3
    dt_min: float = 2.0**-30
    max_consecutive_stalls: Optional[int] = None

    def __post_init__(self) -> None:
        if not (math.isfinite(self.eta) and self.eta > 0):
            raise ConfigurationError("hermite eta must be positive and finite")
        if self.eta_start is not None and not (
            math.isfinite(self.eta_start) and self.eta_start > 0
        ):
            raise ConfigurationError("hermite eta_start must be positive and finite")
        if not _is_power_of_two(self.dt_max):
            raise ConfigurationError("dt_max must be a positive power of two")
        if not _is_power_of_two(self.dt_min):
            raise ConfigurationError("dt_min must be a positive power of two")
        if self.dt_min > self.dt_max:
            raise ConfigurationError("dt_min must not exceed dt_max")
        if self.max_consecutive_stalls is not None and self.max_consecutive_stalls < 1:
            raise ConfigurationError("max_consecutive_stalls must be >= 1")

    @property
    def start_eta(self: "HermiteConfig") -> float:
        return self.eta if self.eta_start is None else float(self.eta_start)


@dataclass(frozen=True)
class RunConfig:
    """Everything a run needs besides its initial particle store."""

    integrator: IntegratorName = "leapfrog"
    softening: float = 1.0e-2
    precision: PrecisionLike = None
    leapfrog: LeapfrogConfig = field(default_factory=LeapfrogConfig)
    hermite: HermiteConfig = field(default_factory=HermiteConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    fast_rsqrt: bool = False
    t_end: Optional[float] = None
    n_steps: Optional[int] = None
    compute_potential: bool = False
    snapshot_every: Optional[int] = None
    diagnostics_every: Optional[int] = None

    def __post_init__(self) -> None:
        if self.integrator not in _INTEGRATORS:
            raise ConfigurationError(
                f"integrator must be one of {_INTEGRATORS}, got {self.integrator!r}"
            )
        validate_softening(self.softening)
        object.__setattr__(self, "precision", as_precision_policy(self.precision))
        if self.t_end is None and self.n_steps is None:
            raise ConfigurationError("one of t_end or n_steps must be given")
        if self.t_end is not None and not (
            math.isfinite(self.t_end) and self.t_end > 0
        ):
            raise ConfigurationError("t_end must be positive and finite")
        if self.n_steps is not None and int(self.n_steps) < 0:
            raise ConfigurationError("n_steps must be non-negative")
        for name in ("snapshot_every", "diagnostics_every"):
            every = getattr(self, name)
            if every is not None and int(every) < 1:
                raise ConfigurationError(f"{name} must be >= 1")

    @property
    def policy(self: "RunConfig") -> PrecisionPolicy:
        return as_precision_policy(self.precision)


def validate_softening(softening: float) -> float:
    """Return ``softening`` as float, rejecting non-positive values."""
    value = float(softening)
    if not (math.isfinite(value) and value > 0):
        raise ConfigurationError("softening must be positive and finite")
    return value


__all__ = [
    "ExecutionConfig",
    "ExecutionStrategy",
    "HermiteConfig",
    "IntegratorName",
    "LeapfrogConfig",
    "PrecisionLike",
    "PrecisionPolicy",
    "PrecisionPreset",
    "PrecisionTier",
    "RunConfig",
    "as_precision_policy",
    "validate_softening",
]
