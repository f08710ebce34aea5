"""Numeric configuration of the Newton fitter.

Every threshold used by the iteration controller, the line search and the
linear solver lives in :class:`FitterConfig`, so a fit is fully described
by its inputs plus one config object.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FitterConfig:
    """Configuration for :class:`kinfit.fitting.newton_fitter.NewtonFitter`.

    Attributes
    ----------
    max_iterations : int
        Iteration cap; exceeding it without convergence fails the fit.
    chi2_tolerance : float
        Convergence requires |chi2_new - chi2_old| below this.
    merit_tolerance : float
        Convergence requires the best merit value below this.
    merit_tight_tolerance : float
        Below this merit value the merit is considered stable.
    merit_relative_tolerance : float
        Otherwise the merit must have changed by less than this fraction
        of its best value during the iteration.
    max_step : float
        Largest allowed step component, in units of parameter errors.
    armijo_alpha : float
        Sufficient-decrease parameter of the line search.
    max_line_search_trials : int
        Maximum number of trial scales per line search.
    min_scale : float
        The line search stops once the trial scale drops to this value.
    min_accepted_scale : float
        A solve whose best scale is below this is retried with a truncated
        spectral solution.
    singular_threshold : float
        Pivots and eigenvalues below this fraction of the largest one are
        treated as zero.
    """
    max_iterations: int = 200
    chi2_tolerance: float = 1e-3
    merit_tolerance: float = 1e-3
    merit_tight_tolerance: float = 1e-6
    merit_relative_tolerance: float = 0.2
    max_step: float = 5.0
    armijo_alpha: float = 1e-4
    max_line_search_trials: int = 10
    min_scale: float = 1e-4
    min_accepted_scale: float = 0.01
    singular_threshold: float = 1e-14

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.max_line_search_trials < 1:
            raise ValueError("max_line_search_trials must be at least 1")
        if not self.max_step > 0:
            raise ValueError("max_step must be positive")
        if not 0 < self.armijo_alpha < 1:
            raise ValueError("armijo_alpha must lie in (0, 1)")


# Singleton default config
DEFAULT_FITTER_CONFIG = FitterConfig()
