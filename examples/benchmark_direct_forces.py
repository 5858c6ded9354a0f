"""Time the direct-summation kernel across presets, strategies and tiles.

Run with:
    python examples/benchmark_direct_forces.py
"""

from __future__ import annotations

import itertools

from benchmark_utils import interactions_per_second, random_cube, time_callable

from gravstep import ExecutionConfig, ForceEvaluator, PrecisionPreset

SOFTENING = 1e-2


def main() -> None:
    for num_particles in (1_024, 4_096):
        particles = random_cube(num_particles)
        print(f"N={num_particles}")
        for preset, strategy, tile_size in itertools.product(
            PrecisionPreset, ("vmap", "map"), (None, 256)
        ):
            evaluator = ForceEvaluator(
                softening=SOFTENING,
                precision=preset,
                execution=ExecutionConfig(strategy=strategy, tile_size=tile_size),
            )
            timing = time_callable(
                evaluator.evaluate,
                particles.position,
                particles.mass,
                particles.velocity,
                compute_jerk=True,
                runs=3,
            )
            rate = interactions_per_second(num_particles, num_particles, timing.best)
            print(
                f"[{preset.value:>8} {strategy:>4} tile={tile_size!s:>4}] "
                f"best={timing.best:.4f}s mean={timing.mean:.4f}s "
                f"pairs/s={rate:.3e}"
            )

    particles = random_cube(4_096)
    exact = ForceEvaluator(softening=SOFTENING, precision="single")
    fast = ForceEvaluator(softening=SOFTENING, precision="single", fast_rsqrt=True)
    for name, evaluator in (("lax.rsqrt", exact), ("approx_rsqrt", fast)):
        timing = time_callable(
            evaluator.accelerations, particles.position, particles.mass, runs=3
        )
        print(f"[single {name:>12}] best={timing.best:.4f}s")


if __name__ == "__main__":
    main()
