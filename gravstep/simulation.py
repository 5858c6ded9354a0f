"""Run driver: step loop, step-boundary checks and output sampling."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, NamedTuple, Optional

from .config import RunConfig
from .diagnostics import Diagnostics, EnergyReport, relative_energy_error
from .errors import ConfigurationError
from .forces import ForceEvaluator
from .integrators import HermiteStepper, IntegratorState, LeapfrogStepper, Stepper
from .particles import ParticleStore, Snapshot, check_finite, take_snapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Snapshot], None]
DiagnosticsCallback = Callable[[EnergyReport], None]


@dataclass
class RunHistory:
    """Samples gathered while advancing."""

    energies: List[EnergyReport] = field(default_factory=list)
    snapshots: List[Snapshot] = field(default_factory=list)


class RunResult(NamedTuple):
    """Outcome of ``Simulation.run``."""

    state: IntegratorState
    final: Snapshot
    energies: List[EnergyReport]
    snapshots: List[Snapshot]


def _due(every: Optional[int], steps: int, force: bool) -> bool:
    return every is not None and (force or steps % every == 0)


def _sampled(samples: List, time: float) -> bool:
    return bool(samples) and samples[-1].time == time


def build_evaluator(config: RunConfig) -> ForceEvaluator:
    """Force evaluator described by ``config``."""
    return ForceEvaluator(
        softening=config.softening,
        precision=config.policy,
        fast_rsqrt=config.fast_rsqrt,
        execution=config.execution,
    )


def build_stepper(
    config: RunConfig,
    evaluator: Optional[ForceEvaluator] = None,
) -> Stepper:
    """Integrator selected by ``config.integrator`` around one evaluator."""
    evaluator = build_evaluator(config) if evaluator is None else evaluator
    if config.integrator == "leapfrog":
        return LeapfrogStepper(evaluator, config.leapfrog)
    if config.integrator == "hermite":
        return HermiteStepper(evaluator, config.hermite)
    raise ConfigurationError(f"unknown integrator: {config.integrator!r}")


class Simulation:
    """Drive one stepper and sample quiesced state at step boundaries.

    Every boundary, including the one before the first step, is checked for
    non-finite particle state. Snapshots and energy reports are taken every
    ``snapshot_every``/``diagnostics_every`` steps and at both ends of a run;
    they are forwarded to the callbacks and kept in ``history``.
    """

    def __init__(
        self,
        stepper: Stepper,
        *,
        compute_potential: bool = False,
        snapshot_every: Optional[int] = None,
        diagnostics_every: Optional[int] = None,
        on_snapshot: Optional[SnapshotCallback] = None,
        on_diagnostics: Optional[DiagnosticsCallback] = None,
    ) -> None:
        for name, every in (
            ("snapshot_every", snapshot_every),
            ("diagnostics_every", diagnostics_every),
        ):
            if every is not None and int(every) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        self.stepper = stepper
        self.diagnostics = Diagnostics(stepper.evaluator)
        self.compute_potential = bool(compute_potential)
        self.snapshot_every = snapshot_every
        self.diagnostics_every = diagnostics_every
        self.on_snapshot = on_snapshot
        self.on_diagnostics = on_diagnostics
        self.history = RunHistory()

    @classmethod
    def from_config(
        cls: "type[Simulation]",
        config: RunConfig,
        *,
        on_snapshot: Optional[SnapshotCallback] = None,
        on_diagnostics: Optional[DiagnosticsCallback] = None,
    ) -> "Simulation":
        return cls(
            build_stepper(config),
            compute_potential=config.compute_potential,
            snapshot_every=config.snapshot_every,
            diagnostics_every=config.diagnostics_every,
            on_snapshot=on_snapshot,
            on_diagnostics=on_diagnostics,
        )

    def snapshot(self: "Simulation", state: IntegratorState) -> Snapshot:
        """Synchronised, read-only snapshot of ``state``."""
        particles = self.stepper.synchronized(state)
        potential = (
            self.diagnostics.potentials(particles) if self.compute_potential else None
        )
        return take_snapshot(particles, state.time, potential=potential)

    def energies(self: "Simulation", state: IntegratorState) -> EnergyReport:
        """Energy budget of the synchronised ``state``."""
        return self.diagnostics.energies(self.stepper.synchronized(state), state.time)

    def _sample(self, state: IntegratorState, *, force: bool = False) -> None:
        if _due(self.diagnostics_every, state.steps, force) and not _sampled(
            self.history.energies, state.time
        ):
            report = self.energies(state)
            self.history.energies.append(report)
            logger.info(
                "t=%.6g step=%d E=%.10e dE/E=%.3e Q=%.4f",
                report.time,
                state.steps,
                report.total,
                relative_energy_error(self.history.energies[0].total, report.total),
                report.virial_ratio,
            )
            if self.on_diagnostics is not None:
                self.on_diagnostics(report)
        if _due(self.snapshot_every, state.steps, force) and not _sampled(
            self.history.snapshots, state.time
        ):
            snap = self.snapshot(state)
            self.history.snapshots.append(snap)
            if self.on_snapshot is not None:
                self.on_snapshot(snap)

    def _finished(
        self,
        state: IntegratorState,
        start_steps: int,
        t_end: Optional[float],
        n_steps: Optional[int],
    ) -> bool:
        if n_steps is not None and state.steps - start_steps >= n_steps:
            return True
        return t_end is not None and self.stepper.reached(state, t_end)

    def advance(
        self: "Simulation",
        state: IntegratorState,
        *,
        t_end: Optional[float] = None,
        n_steps: Optional[int] = None,
    ) -> IntegratorState:
        """Step until ``t_end`` or ``n_steps`` more steps, whichever is first."""
        if t_end is None and n_steps is None:
            raise ConfigurationError("one of t_end or n_steps must be given")
        start_steps = state.steps
        while True:
            check_finite(state.particles, state.steps)
            if self._finished(state, start_steps, t_end, n_steps):
                return state
            state = self.stepper.step(state)
            self._sample(state)

    def run(
        self: "Simulation",
        particles: ParticleStore,
        *,
        t_end: Optional[float] = None,
        n_steps: Optional[int] = None,
        time: float = 0.0,
    ) -> RunResult:
        """Initialise the stepper on ``particles`` and advance to the end."""
        self.history = RunHistory()
        state = self.stepper.initialize(particles, time=time)
        logger.info(
            "starting %s run: N=%d softening=%g policy=%s",
            self.stepper.name,
            state.particles.n,
            self.stepper.softening,
            self.stepper.evaluator.policy,
        )
        check_finite(state.particles, state.steps)
        self._sample(state, force=True)
        state = self.advance(state, t_end=t_end, n_steps=n_steps)
        self._sample(state, force=True)
        if _sampled(self.history.snapshots, state.time):
            final = self.history.snapshots[-1]
        else:
            final = self.snapshot(state)
        logger.info(
            "finished %s run: t=%.6g after %d steps",
            self.stepper.name,
            state.time,
            state.steps,
        )
        return RunResult(
            state=state,
            final=final,
            energies=list(self.history.energies),
            snapshots=list(self.history.snapshots),
        )


def run_simulation(
    config: RunConfig,
    particles: ParticleStore,
    *,
    on_snapshot: Optional[SnapshotCallback] = None,
    on_diagnostics: Optional[DiagnosticsCallback] = None,
) -> RunResult:
    """Build a ``Simulation`` from ``config`` and run it on ``particles``."""
    simulation = Simulation.from_config(
        config,
        on_snapshot=on_snapshot,
        on_diagnostics=on_diagnostics,
    )
    return simulation.run(particles, t_end=config.t_end, n_steps=config.n_steps)


__all__ = [
    "RunHistory",
    "RunResult",
    "Simulation",
    "build_evaluator",
    "build_stepper",
    "run_simulation",
]
