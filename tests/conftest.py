"""Shared pytest configuration."""

import jax

# Reference sums and HIGH-tier runs need float64 arrays.
jax.config.update("jax_enable_x64", True)
