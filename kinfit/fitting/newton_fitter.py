"""
Constrained Newton-Raphson fitter
=================================

Minimizes the total chi-square of a set of fit objects (plus soft
constraint penalties) subject to hard constraints c_k(p) = 0, by Newton
iterations on the Lagrangian

    L(p, lambda) = chi2(p) + sum_k lambda_k c_k(p)

Each iteration:

1. snapshot the current point ``xold`` and the error scale ``perr``,
2. assemble and rescale the KKT system (M, y),
3. solve for the step: LU first; if that fails or its line search cannot
   make progress, a truncated eigen-decomposition,
4. backtrack along the step to reduce the merit 0.5 |yscal|^2,
5. move to the best point and test convergence.

After convergence the fitted covariance is propagated and written back into
the fit objects.

Example
-------
>>> from kinfit.objects import ParameterFitObject
>>> from kinfit.constraints import FunctionConstraint
>>> a = ParameterFitObject("a", ["a"], [1.2], [1.0])
>>> b = ParameterFitObject("b", ["b"], [0.8], [1.0])
>>> fitter = NewtonFitter()
>>> fitter.add_fit_object(a)
>>> fitter.add_fit_object(b)
>>> fitter.add_constraint(FunctionConstraint("sum", [a, b], lambda p, q: p[0] + q[0] - 3.0))
>>> prob = fitter.fit()
>>> round(a.get_param(0), 6), round(b.get_param(0), 6)
(1.7, 1.3)
"""

from __future__ import annotations

import logging
from enum import Enum, IntEnum, auto
from typing import List, Optional

import numpy as np

from kinfit.constraints.base import BaseHardConstraint, BaseSoftConstraint
from kinfit.engine.stats import degrees_of_freedom, fit_probability
from kinfit.fitting.assembly import (
    assemble_gradient,
    assemble_matrix,
    fill_errors,
    rescale_matrix,
    rescale_vector,
)
from kinfit.fitting.config import DEFAULT_FITTER_CONFIG, FitterConfig
from kinfit.fitting.covariance import propagate_covariance, write_covariance_blocks
from kinfit.fitting.indexer import IndexLayout, assign_global_indices
from kinfit.fitting.line_search import LineSearchResult, optimize_scale
from kinfit.fitting.linear_solver import solve_direct, spectral_decomposition
from kinfit.objects.base import BaseFitObject

logger = logging.getLogger(__name__)


class FitState(Enum):
    """Lifecycle of a single call to :meth:`NewtonFitter.fit`."""
    INITIALIZING = auto()
    ITERATING = auto()
    CONVERGED = auto()
    FAILED = auto()


class FitError(IntEnum):
    """Error code of the last fit."""
    OK = 0
    MAX_ITERATIONS = 1
    SOLVE_FAILED = 2


class NewtonFitter:
    """Kinematic fitter with hard and soft constraints.

    Parameters
    ----------
    config : FitterConfig, optional
        Numeric thresholds. Defaults to ``DEFAULT_FITTER_CONFIG``.
    tracer : BaseTracer, optional
        Observer notified at start, after every iteration and at the end.
    debug : int
        Diagnostic verbosity: >0 end-of-fit summary, >1 per-iteration state,
        >3 full matrices. Does not affect results.
    """

    def __init__(
        self,
        config: Optional[FitterConfig] = None,
        tracer=None,
        debug: int = 0,
    ):
        self.config = config if config is not None else DEFAULT_FITTER_CONFIG
        self.tracer = tracer
        self.debug = debug

        self.fit_objects: List[BaseFitObject] = []
        self.constraints: List[BaseHardConstraint] = []
        self.soft_constraints: List[BaseSoftConstraint] = []

        self._layout = IndexLayout()
        self._allocate(0)

        self._chi2 = -1.0
        self._fitprob = -1.0
        self._nit = 0
        self._error = FitError.OK
        self._cov: Optional[np.ndarray] = None
        self._best: Optional[LineSearchResult] = None

        self.state = FitState.INITIALIZING
        self.fval_start = 0.0
        self.fval_best = 0.0
        self.scale_best = 0.0
        self.used_spectral = False
        self.n_spectral = 0

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def add_fit_object(self, fo: BaseFitObject) -> None:
        self.fit_objects.append(fo)

    def add_constraint(self, constraint) -> None:
        """Register a constraint; soft constraints go to the soft list."""
        if isinstance(constraint, BaseSoftConstraint):
            self.add_soft_constraint(constraint)
        elif isinstance(constraint, BaseHardConstraint):
            self.constraints.append(constraint)
        else:
            raise ValueError(
                f"Unsupported constraint type {type(constraint).__name__}"
            )

    def add_soft_constraint(self, constraint: BaseSoftConstraint) -> None:
        if not isinstance(constraint, BaseSoftConstraint):
            raise ValueError(
                f"{type(constraint).__name__} is not a soft constraint"
            )
        self.soft_constraints.append(constraint)

    def set_debug(self, level: int) -> None:
        self.debug = level

    # -------------------------------------------------------------------------
    # Dimensions and results
    # -------------------------------------------------------------------------

    @property
    def npar(self) -> int:
        return self._layout.npar

    @property
    def ncon(self) -> int:
        return self._layout.ncon

    @property
    def nsoft(self) -> int:
        return self._layout.nsoft

    @property
    def nunm(self) -> int:
        return self._layout.nunm

    @property
    def idim(self) -> int:
        return self._layout.idim

    @property
    def dof(self) -> int:
        return degrees_of_freedom(self.ncon, self.nsoft, self.nunm)

    @property
    def chi2(self) -> float:
        return self._chi2

    @property
    def probability(self) -> float:
        return self._fitprob

    @property
    def iterations(self) -> int:
        return self._nit

    @property
    def error(self) -> FitError:
        return self._error

    def get_global_cov_mat(self) -> Optional[np.ndarray]:
        """Fitted covariance of the free parameters, or None before a successful fit."""
        return None if self._cov is None else self._cov.copy()

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def _allocate(self, idim: int) -> None:
        self.x = np.zeros(idim)
        self.xold = np.zeros(idim)
        self.dx = np.zeros(idim)
        self.dxscal = np.zeros(idim)
        self.perr = np.ones(idim)
        self.y = np.zeros(idim)
        self.yscal = np.zeros(idim)
        self.M = np.zeros((idim, idim))
        self.Mscal = np.zeros((idim, idim))

    def initialize(self) -> None:
        """Assign global indices, size the buffers and load the start point."""
        self._layout = assign_global_indices(
            self.fit_objects, self.constraints, self.soft_constraints
        )
        if len(self.x) != self.idim:
            self._allocate(self.idim)
        else:
            for buf in (self.x, self.xold, self.dx, self.dxscal, self.y,
                        self.yscal, self.M, self.Mscal):
                buf[:] = 0.0
            self.perr[:] = 1.0

        self.fill_xold()
        self.update_params(self.xold)
        self.fill_xold()
        self.x[:] = self.xold

        self._chi2 = -1.0
        self._fitprob = -1.0
        self._nit = 0
        self._error = FitError.OK
        self._cov = None
        self._best = None
        self.fval_start = self.fval_best = self.scale_best = 0.0
        self.used_spectral = False
        self.n_spectral = 0
        self.state = FitState.INITIALIZING

        if self.debug > 1:
            logger.debug(
                f"Fit setup: npar={self.npar}, ncon={self.ncon}, "
                f"nsoft={self.nsoft}, nunm={self.nunm}, idim={self.idim}"
            )

    def fill_xold(self) -> None:
        """Copy current object parameters and multipliers into xold."""
        for fo in self.fit_objects:
            for ilocal in fo.free_indices():
                iglobal = fo.get_global_par_num(ilocal)
                assert 0 <= iglobal < self.npar, f"{fo.name}: bad global index {iglobal}"
                self.xold[iglobal] = fo.get_param(ilocal)
        for c in self.constraints:
            k = c.get_global_num()
            assert self.npar <= k < self.idim, f"{c.name}: bad global number {k}"
            self.xold[k] = self.x[k]

    def fill_perr(self) -> None:
        fill_errors(self.perr, self.fit_objects, self.constraints)

    def update_params(self, x: np.ndarray) -> bool:
        """Push the parameter part of x into the fit objects."""
        significant = False
        for fo in self.fit_objects:
            if fo.update_params(x):
                significant = True
        return significant

    # -------------------------------------------------------------------------
    # System assembly
    # -------------------------------------------------------------------------

    def calc_m(self, error_propagation: bool = False) -> None:
        assemble_matrix(
            self.M, self.x, self.fit_objects, self.constraints,
            self.soft_constraints, error_propagation=error_propagation,
        )
        rescale_matrix(self.M, self.perr, self.Mscal)
        if self.debug > 3:
            logger.debug(f"M =\n{self.M}")
            logger.debug(f"Mscal =\n{self.Mscal}")

    def calc_y(self) -> None:
        assemble_gradient(
            self.y, self.x, self.fit_objects, self.constraints, self.soft_constraints
        )
        rescale_vector(self.y, self.perr, self.yscal)
        if self.debug > 3:
            logger.debug(f"y = {self.y}")

    def calc_chi2(self) -> float:
        """Chi-square of the objects plus soft constraint penalties."""
        chi2 = 0.0
        for fo in self.fit_objects:
            chi2 += fo.chi2
        for sc in self.soft_constraints:
            chi2 += sc.chi2
        return chi2

    def _merit(self) -> float:
        return 0.5 * float(self.yscal @ self.yscal)

    def merit_function(self, mu: float, mode: str = "l1") -> float:
        """Exact penalty merit chi2 + mu * sum_k |c_k| at the current point."""
        if mode != "l1":
            raise ValueError(f"Unknown merit function mode: {mode!r}")
        return self.calc_chi2() + mu * sum(abs(c.value) for c in self.constraints)

    # -------------------------------------------------------------------------
    # Step computation
    # -------------------------------------------------------------------------

    def _evaluate(self, x: np.ndarray):
        """Move to x and return (merit, chi2) there."""
        self.update_params(x)
        self.x[:] = x
        self.calc_y()
        return self._merit(), self.calc_chi2()

    def _restore_start(self) -> float:
        fval0, _ = self._evaluate(self.xold)
        return fval0

    def optimize_scale(self) -> float:
        """Line search along the current dx from xold; returns the best scale."""
        fval0 = self._restore_start()
        grad = self.Mscal @ self.yscal
        self._best = optimize_scale(
            self._evaluate, self.xold, self.dx, self.dxscal, grad,
            fval0, self._best, self.config,
        )
        self.fval_best = self._best.fval
        self.scale_best = self._best.scale
        return self.scale_best

    def calc_dx(self) -> None:
        """Direct solve with line search; spectral fallback if it stalls.

        Raises
        ------
        numpy.linalg.LinAlgError
            If the spectral decomposition fails as well.
        """
        self.used_spectral = False
        try:
            self.dxscal[:] = solve_direct(
                self.Mscal, self.yscal, self.config.singular_threshold
            )
        except np.linalg.LinAlgError as e:
            if self.debug > 1:
                logger.debug(f"Direct solve failed ({e}), using spectral decomposition")
        else:
            self.dx[:] = self.dxscal * self.perr
            self.optimize_scale()
            if self.scale_best >= self.config.min_accepted_scale:
                return
            if self.debug > 1:
                logger.debug(
                    f"Direct step stalled (scale={self.scale_best:.3g}), "
                    f"using spectral decomposition"
                )
        self.calc_dx_spectral()

    def calc_dx_spectral(self) -> None:
        """Try truncated eigen-solutions with decreasing rank."""
        self._restore_start()
        solution = spectral_decomposition(
            self.Mscal, self.yscal, self.config.singular_threshold
        )
        self.used_spectral = True
        self.n_spectral += 1

        k = solution.rank
        while True:
            self.dxscal[:] = solution.step(k)
            self.dx[:] = self.dxscal * self.perr
            self.optimize_scale()
            if self.scale_best >= self.config.min_accepted_scale or k <= 1:
                break
            k -= 1

        # At the solution every truncation is tried without progress
        if k < solution.rank and self.scale_best >= self.config.min_accepted_scale:
            logger.warning(
                f"Spectral step truncated to {k} of {solution.rank} modes "
                f"(dimension {self.idim})"
            )

    # -------------------------------------------------------------------------
    # Covariance
    # -------------------------------------------------------------------------

    def calc_cov_matrix(self) -> np.ndarray:
        """Propagate measurement errors to the fitted parameters."""
        chi2_hessian = np.zeros((self.idim, self.idim))
        meas_cov = np.zeros((self.idim, self.idim))
        for fo in self.fit_objects:
            fo.add_to_global_chi2_der_matrix(chi2_hessian)
            fo.add_to_glob_cov(meas_cov)

        self.calc_m(error_propagation=True)
        self._cov = propagate_covariance(
            self.M, chi2_hessian, meas_cov, self.npar,
            self.config.singular_threshold,
        )
        write_covariance_blocks(self.fit_objects, self._cov)
        return self._cov

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def _converged(self, chi2old: float, chi2new: float) -> bool:
        cfg = self.config
        fbest = self.fval_best
        return (
            abs(chi2new - chi2old) < cfg.chi2_tolerance
            and fbest < cfg.merit_tolerance
            and (
                fbest < cfg.merit_tight_tolerance
                or abs(self.fval_start - fbest) < cfg.merit_relative_tolerance * fbest
            )
        )

    def fit(self) -> float:
        """Run the fit.

        Returns
        -------
        float
            Fit probability, or -1 if the fit failed or has no degrees of
            freedom.
        """
        self.initialize()
        if self.tracer is not None:
            self.tracer.initialize(self)

        chi2new = self.calc_chi2()
        self._chi2 = chi2new

        if self.idim == 0:
            self.state = FitState.CONVERGED
            self._fitprob = fit_probability(self._chi2, self.dof)
            if self.tracer is not None:
                self.tracer.finish(self)
            return self._fitprob

        self.state = FitState.ITERATING
        converged = False
        while not converged and self._error == FitError.OK:
            chi2old = chi2new

            self.fill_xold()
            self.fill_perr()
            self.calc_m()
            self.calc_y()
            self.fval_start = self._merit()
            self._best = LineSearchResult.start(self.xold, chi2old, self.fval_start)
            self.fval_best = self.fval_start
            self.scale_best = 0.0

            try:
                self.calc_dx()
            except np.linalg.LinAlgError as e:
                logger.warning(f"Iteration {self._nit + 1}: linear solve failed: {e}")
                self._error = FitError.SOLVE_FAILED

            self.update_params(self._best.x)
            self.x[:] = self._best.x
            self.calc_y()
            chi2new = self.calc_chi2()
            self._chi2 = chi2new
            self._nit += 1

            if self._error == FitError.OK:
                converged = self._converged(chi2old, chi2new)
                if not converged and self._nit > self.config.max_iterations:
                    logger.warning(
                        f"No convergence after {self._nit} iterations "
                        f"(chi2={chi2new:.6g}, merit={self.fval_best:.3e})"
                    )
                    self._error = FitError.MAX_ITERATIONS

            if self.debug > 1:
                logger.debug(
                    f"Iteration {self._nit}: chi2={chi2new:.6g}, "
                    f"merit {self.fval_start:.3e} -> {self.fval_best:.3e}, "
                    f"scale={self.scale_best:.3g}, spectral={self.used_spectral}"
                )
            if self.tracer is not None:
                self.tracer.step(self)

        if self._error == FitError.OK:
            self.state = FitState.CONVERGED
            self.calc_cov_matrix()
            self._fitprob = fit_probability(self._chi2, self.dof)
        else:
            self.state = FitState.FAILED
            self._fitprob = -1.0

        if self.debug > 0:
            logger.info(
                f"Fit {self.state.name.lower()}: chi2={self._chi2:.6g}, "
                f"dof={self.dof}, prob={self._fitprob:.4g}, "
                f"iterations={self._nit}, error={self._error.name}"
            )
        if self.tracer is not None:
            self.tracer.finish(self)
        return self._fitprob
