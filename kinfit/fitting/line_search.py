"""
Backtracking line search along the Newton step
==============================================

Given the start point x0 and a step dx, find a scale t in (0, 1] such that
x0 - t * dx sufficiently reduces the merit

    f(t) = 0.5 * |yscal(x0 - t * dx)|^2

(the squared norm of the rescaled KKT residual). Trial scales follow the
classic backtracking scheme: t = 1 first, then the minimum of a quadratic
model of f, then of a cubic through the last two trials, each clamped to
[0.1 t, 0.5 t]. A trial is accepted by the Armijo condition

    f(t) <= f(0) + alpha * t * slope,   slope = -dxscal . grad

The lowest-merit point seen so far is carried in a :class:`LineSearchResult`
and handed back, so successive searches within one Newton iteration (direct
step, then truncated spectral steps) keep the best point overall.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from kinfit.fitting.config import DEFAULT_FITTER_CONFIG, FitterConfig

logger = logging.getLogger(__name__)

# evaluate(x) -> (merit, chi2) at the global vector x
Evaluator = Callable[[np.ndarray], Tuple[float, float]]


@dataclass
class LineSearchResult:
    """Best point found along the step direction(s).

    Attributes
    ----------
    x : np.ndarray
        Global vector at the best point.
    chi2 : float
        Chi-square at the best point.
    fval : float
        Merit at the best point.
    scale : float
        Scale t that produced it (0 for the start point).
    step : np.ndarray
        The (possibly capped) step dx it was taken along.
    """
    x: np.ndarray
    chi2: float
    fval: float
    scale: float
    step: np.ndarray

    @classmethod
    def start(cls, x: np.ndarray, chi2: float, fval: float) -> "LineSearchResult":
        """Result representing the unmoved start point."""
        x = np.array(x, dtype=np.float64)
        return cls(x, chi2, fval, 0.0, np.zeros_like(x))


def _quadratic_estimate(t: float, f1: float, f0: float, slope: float) -> float:
    denom = 2.0 * (f1 - f0 - slope * t)
    if denom == 0:
        return math.nan
    return -slope * t * t / denom


def _cubic_estimate(
    t: float, f1: float, t2: float, f2: float, f0: float, slope: float
) -> float:
    if t == t2 or t == 0 or t2 == 0:
        return math.nan
    rhs1 = f1 - f0 - t * slope
    rhs2 = f2 - f0 - t2 * slope
    a = (rhs1 / (t * t) - rhs2 / (t2 * t2)) / (t - t2)
    b = (-t2 * rhs1 / (t * t) + t * rhs2 / (t2 * t2)) / (t - t2)
    if a == 0:
        return -slope / (2.0 * b) if b != 0 else math.nan
    disc = b * b - 3.0 * a * slope
    if disc < 0:
        return 0.5 * t
    if b <= 0:
        return (-b + math.sqrt(disc)) / (3.0 * a)
    return -slope / (b + math.sqrt(disc))


def optimize_scale(
    evaluate: Evaluator,
    x_start: np.ndarray,
    dx: np.ndarray,
    dxscal: np.ndarray,
    grad: np.ndarray,
    fval0: float,
    best: LineSearchResult,
    config: Optional[FitterConfig] = None,
) -> LineSearchResult:
    """Search for a scale t along x_start - t * dx.

    Parameters
    ----------
    evaluate : callable
        ``evaluate(x) -> (merit, chi2)``. Moves the fit state to x.
    x_start : np.ndarray
        Start point x0 of the iteration.
    dx, dxscal : np.ndarray
        Step in natural and rescaled units. Not modified.
    grad : np.ndarray
        Gradient of the merit w.r.t. the rescaled vector at x0.
    fval0 : float
        Merit at x0.
    best : LineSearchResult
        Best point so far in this iteration.
    config : FitterConfig, optional

    Returns
    -------
    LineSearchResult
        The better of ``best`` and every trial evaluated here. Its merit
        never exceeds ``best.fval``.
    """
    if config is None:
        config = DEFAULT_FITTER_CONFIG

    dx = np.array(dx, dtype=np.float64)
    dxscal = np.array(dxscal, dtype=np.float64)

    stepsize = float(np.max(np.abs(dxscal))) if dxscal.size else 0.0
    if stepsize == 0 or not np.isfinite(stepsize):
        logger.debug(f"Line search skipped: step size {stepsize}")
        return best
    if stepsize > config.max_step:
        factor = config.max_step / stepsize
        dx *= factor
        dxscal *= factor

    slope = -float(dxscal @ grad)
    if slope >= 0:
        logger.debug(f"Step is not a descent direction (slope={slope:.3e})")

    t = 1.0
    t_prev = f_prev = None
    for trial in range(config.max_line_search_trials):
        x = x_start - t * dx
        fval, chi2 = evaluate(x)
        finite = np.isfinite(fval)

        if finite and fval < best.fval:
            best = LineSearchResult(x.copy(), chi2, fval, t, dx.copy())

        if finite and fval <= fval0 + config.armijo_alpha * t * slope:
            logger.debug(f"Line search accepted t={t:.4g} after {trial + 1} trials")
            break

        if not finite:
            tmp = 0.5 * t
        elif t_prev is None:
            tmp = _quadratic_estimate(t, fval, fval0, slope)
        else:
            tmp = _cubic_estimate(t, fval, t_prev, f_prev, fval0, slope)
        if not np.isfinite(tmp):
            tmp = 0.5 * t

        t_prev, f_prev = t, fval
        t = max(min(tmp, 0.5 * t), 0.1 * t)
        if t < config.min_scale:
            break

    return best
