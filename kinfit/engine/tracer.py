"""Fit progress observers.

A tracer is attached to a fitter and called once before the first
iteration, once after every iteration and once after the fit. Tracers only
read fitter state; they never change it.

Tracers can be chained: each forwards its calls to ``next_tracer``, so a
:class:`TextTracer` and a :class:`RecordingTracer` can watch the same fit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


class BaseTracer:
    """No-op tracer that forwards every call to an optional next tracer."""

    def __init__(self, next_tracer: Optional["BaseTracer"] = None):
        self.next_tracer = next_tracer

    def initialize(self, fitter) -> None:
        if self.next_tracer is not None:
            self.next_tracer.initialize(fitter)

    def step(self, fitter) -> None:
        if self.next_tracer is not None:
            self.next_tracer.step(fitter)

    def finish(self, fitter) -> None:
        if self.next_tracer is not None:
            self.next_tracer.finish(fitter)


class TextTracer(BaseTracer):
    """Write fit progress to a logger."""

    def __init__(
        self,
        next_tracer: Optional[BaseTracer] = None,
        log: Optional[logging.Logger] = None,
        level: int = logging.INFO,
    ):
        super().__init__(next_tracer)
        self.log = log if log is not None else logger
        self.level = level

    def initialize(self, fitter) -> None:
        self.log.log(
            self.level,
            f"Fit start: {len(fitter.fit_objects)} objects, "
            f"{len(fitter.constraints)} constraints, "
            f"{len(fitter.soft_constraints)} soft constraints",
        )
        for fo in fitter.fit_objects:
            self.log.log(self.level, f"  {fo}")
        super().initialize(fitter)

    def step(self, fitter) -> None:
        self.log.log(
            self.level,
            f"Iteration {fitter.iterations}: chi2={fitter.chi2:.6g}, "
            f"merit {fitter.fval_start:.3e} -> {fitter.fval_best:.3e}, "
            f"scale={fitter.scale_best:.3g}"
            + (" (spectral)" if fitter.used_spectral else ""),
        )
        super().step(fitter)

    def finish(self, fitter) -> None:
        self.log.log(
            self.level,
            f"Fit end: error={fitter.error.name}, chi2={fitter.chi2:.6g}, "
            f"dof={fitter.dof}, prob={fitter.probability:.4g}, "
            f"iterations={fitter.iterations}",
        )
        for fo in fitter.fit_objects:
            self.log.log(self.level, f"  {fo}")
        for c in list(fitter.constraints) + list(fitter.soft_constraints):
            self.log.log(self.level, f"  {c}")
        super().finish(fitter)


@dataclass(frozen=True)
class IterationRecord:
    """State after one iteration."""
    iteration: int
    chi2: float
    fval_start: float
    fval_best: float
    scale_best: float
    spectral: bool


@dataclass
class RecordingTracer(BaseTracer):
    """Collect one :class:`IterationRecord` per iteration.

    Attributes
    ----------
    records : list of IterationRecord
    n_initialize, n_finish : int
        Number of start / end callbacks received.
    """
    next_tracer: Optional[BaseTracer] = None
    records: List[IterationRecord] = field(default_factory=list)
    n_initialize: int = 0
    n_finish: int = 0

    def initialize(self, fitter) -> None:
        self.records.clear()
        self.n_initialize += 1
        super().initialize(fitter)

    def step(self, fitter) -> None:
        self.records.append(IterationRecord(
            iteration=fitter.iterations,
            chi2=fitter.chi2,
            fval_start=fitter.fval_start,
            fval_best=fitter.fval_best,
            scale_best=fitter.scale_best,
            spectral=fitter.used_spectral,
        ))
        super().step(fitter)

    def finish(self, fitter) -> None:
        self.n_finish += 1
        super().finish(fitter)

    @property
    def chi2_history(self) -> List[float]:
        return [r.chi2 for r in self.records]
