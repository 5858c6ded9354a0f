"""Cold collapse of a uniform sphere with either integrator.

Run with:
    python examples/cold_collapse.py leapfrog
    python examples/cold_collapse.py hermite
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from gravstep import HermiteConfig, LeapfrogConfig, RunConfig, run_simulation
from gravstep.diagnostics import relative_energy_error
from gravstep.initial_conditions import cold_collapse_sphere, free_fall_time
from gravstep.io import write_energy_log, write_snapshot


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    integrator = sys.argv[1] if len(sys.argv) > 1 else "leapfrog"
    out_dir = Path("cold_collapse_output")
    out_dir.mkdir(exist_ok=True)

    t_ff = free_fall_time()
    config = RunConfig(
        integrator=integrator,
        softening=0.05,
        precision="balanced",
        leapfrog=LeapfrogConfig(dt=1e-3),
        hermite=HermiteConfig(eta=0.02, dt_max=2.0**-6),
        t_end=4.0,
        snapshot_every=500 if integrator == "leapfrog" else 2_000,
        diagnostics_every=50 if integrator == "leapfrog" else 200,
    )

    def _save(snapshot) -> None:
        write_snapshot(out_dir / f"snap_t{snapshot.time:08.4f}", snapshot)

    result = run_simulation(config, cold_collapse_sphere(256, seed=0), on_snapshot=_save)
    write_energy_log(out_dir / "energy.txt", result.energies)

    e0 = result.energies[0].total
    for report in result.energies[:: max(len(result.energies) // 10, 1)]:
        print(
            f"t/t_ff={report.time / t_ff:6.3f}  Q={report.virial_ratio:.3f}  "
            f"dE/E={relative_energy_error(e0, report.total):.2e}"
        )


if __name__ == "__main__":
    main()
