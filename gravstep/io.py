"""Minimal ``.npz`` persistence for snapshots and energy logs."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence, Union

import numpy as np

from .diagnostics import EnergyReport
from .particles import Snapshot

PathLike = Union[str, os.PathLike]

_OPTIONAL_FIELDS = ("acceleration", "potential")


def write_snapshot(path: PathLike, snapshot: Snapshot) -> Path:
    """Write ``snapshot`` to ``path`` (``.npz`` is appended by numpy if absent)."""
    arrays = {
        "time": np.asarray(snapshot.time, dtype=np.float64),
        "index": snapshot.index,
        "mass": snapshot.mass,
        "position": snapshot.position,
        "velocity": snapshot.velocity,
    }
    for name in _OPTIONAL_FIELDS:
        value = getattr(snapshot, name)
        if value is not None:
            arrays[name] = value
    target = Path(path)
    np.savez(target, **arrays)
    return target if target.suffix == ".npz" else target.with_name(target.name + ".npz")


def read_snapshot(path: PathLike) -> Snapshot:
    """Load a snapshot written by ``write_snapshot``."""
    with np.load(Path(path)) as data:
        optional = {
            name: np.array(data[name]) if name in data.files else None
            for name in _OPTIONAL_FIELDS
        }
        return Snapshot(
            time=float(data["time"]),
            index=np.array(data["index"]),
            mass=np.array(data["mass"]),
            position=np.array(data["position"]),
            velocity=np.array(data["velocity"]),
            **optional,
        )


def energy_table(reports: Sequence[EnergyReport]) -> np.ndarray:
    """Stack reports into a ``(n, 5)`` array ordered like ``EnergyReport``."""
    if not reports:
        return np.zeros((0, len(EnergyReport._fields)), dtype=np.float64)
    return np.asarray([tuple(r) for r in reports], dtype=np.float64)


def write_energy_log(path: PathLike, reports: Sequence[EnergyReport]) -> Path:
    """Write energy reports as whitespace-separated text with a header."""
    target = Path(path)
    np.savetxt(target, energy_table(reports), header=" ".join(EnergyReport._fields))
    return target


__all__ = [
    "energy_table",
    "read_snapshot",
    "write_energy_log",
    "write_snapshot",
]
