"""Parallel-for over particle indices.

The force kernel is written per target particle; how targets are spread over
lanes is chosen here, independently of the integrators.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import jax
from jax import lax
from jaxtyping import Array

from .config import ExecutionStrategy


def parallel_for(
    fn: Callable[[Array], Any],
    indices: Array,
    *,
    strategy: ExecutionStrategy = "vmap",
) -> Any:
    """Apply ``fn`` to every entry of ``indices`` and stack the results.

    ``fn`` must not depend on the results for other indices; no ordering
    among indices is implied.
    """
    if strategy == "vmap":
        return jax.vmap(fn)(indices)
    if strategy == "map":
        return lax.map(fn, indices)
    raise ValueError(f"unknown execution strategy: {strategy!r}")


def source_tiles(n_sources: int, tile_size: Optional[int]) -> tuple[int, int]:
    """Return ``(tile, n_tiles)`` covering ``n_sources`` source particles."""
    if n_sources < 1:
        raise ValueError("need at least one source particle")
    tile = n_sources if tile_size is None else min(int(tile_size), n_sources)
    n_tiles = -(-n_sources // tile)
    return tile, n_tiles


__all__ = ["parallel_for", "source_tiles"]
