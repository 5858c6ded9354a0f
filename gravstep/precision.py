"""Mapping from precision tiers to JAX dtypes.

Keep a single source of truth for tier dtypes so kernels and integrators
never hard-code floating-point widths.
"""

from __future__ import annotations

from typing import NamedTuple, Union

import jax
import jax.numpy as jnp
from jaxtyping import DTypeLike

from .config import PrecisionPolicy, PrecisionTier, _normalize_tier

_TIER_DTYPES = {
    PrecisionTier.LOW: jnp.bfloat16,
    PrecisionTier.MID: jnp.float32,
    PrecisionTier.HIGH: jnp.float64,
}


def _ensure_x64() -> None:
    # float64 arrays silently downcast to float32 unless x64 mode is on.
    if not jax.config.jax_enable_x64:
        jax.config.update("jax_enable_x64", True)


def tier_dtype(tier: Union[PrecisionTier, str]) -> jnp.dtype:
    """Return the JAX dtype backing ``tier``."""
    tier_norm = _normalize_tier(tier)
    if tier_norm is PrecisionTier.HIGH:
        _ensure_x64()
    return jnp.dtype(_TIER_DTYPES[tier_norm])


def accumulation_dtype(term_dtype: DTypeLike, state_dtype: DTypeLike) -> jnp.dtype:
    """Return the wider of the force-term and state dtypes."""
    return jnp.dtype(jnp.promote_types(term_dtype, state_dtype))


class ResolvedPrecision(NamedTuple):
    """Concrete dtypes for one run.

    Attributes
    ----------
    force:
        Dtype of pairwise terms.
    integration:
        Dtype of stored particle state.
    accumulate:
        Dtype of per-target force sums.
    diagnostics:
        Dtype of energy evaluation and accumulation.
    """

    force: jnp.dtype
    integration: jnp.dtype
    accumulate: jnp.dtype
    diagnostics: jnp.dtype


def resolve_precision(policy: PrecisionPolicy) -> ResolvedPrecision:
    """Resolve every tier in ``policy`` into a dtype."""
    force = tier_dtype(policy.force)
    integration = tier_dtype(policy.integration)
    return ResolvedPrecision(
        force=force,
        integration=integration,
        accumulate=accumulation_dtype(force, integration),
        diagnostics=tier_dtype(policy.diagnostics),
    )


__all__ = [
    "ResolvedPrecision",
    "accumulation_dtype",
    "resolve_precision",
    "tier_dtype",
]
