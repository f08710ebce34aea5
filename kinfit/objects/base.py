"""
Base class for fit objects
==========================

A fit object owns a small vector of parameters (e.g. the energy and
angles of a jet). Each parameter is either fixed, free and measured, or
free and unmeasured. Free parameters receive a global index from the
fitter; the object then contributes to the fitter's global buffers only
at its own indices:

- chi-square and its first / second derivatives,
- the measurement covariance (for error propagation),
- and it reads its new values back from the global parameter vector.

The chi-square of an object is

    chi2 = r^T V^{-1} r,   r = p - m

over its free measured parameters, with V the measurement covariance.
A measured parameter with zero error carries no information and is left
out of r, V and every derivative built from them.Subclasses only have to describe their parameters; the bookkeeping lives
here.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np


class BaseFitObject:
    """Fit object with measured parameters.

    Parameters
    ----------
    name : str
        Name used in diagnostics.
    param_names : sequence of str
        Local parameter names.
    values : sequence of float
        Measured (and starting) parameter values.
    errors : sequence of float
        Measurement uncertainties. Must be non-negative.
    measured : sequence of bool, optional
        Per-parameter measured flag. Default: all measured.
    fixed : sequence of bool, optional
        Per-parameter fixed flag. Default: none fixed.
    covariance : array-like, optional
        Full measurement covariance (npar x npar). Overrides ``errors``
        for the chi-square when given; ``errors`` become sqrt(diag).
    """

    def __init__(
        self,
        name: str,
        param_names: Sequence[str],
        values: Sequence[float],
        errors: Optional[Sequence[float]] = None,
        measured: Optional[Sequence[bool]] = None,
        fixed: Optional[Sequence[bool]] = None,
        covariance=None,
    ):
        self.name = name
        self._param_names = list(param_names)
        n = len(self._param_names)

        values = np.asarray(values, dtype=np.float64)
        if values.shape != (n,):
            raise ValueError(
                f"{name}: expected {n} values, got shape {values.shape}"
            )

        if covariance is not None:
            cov = np.asarray(covariance, dtype=np.float64)
            if cov.shape != (n, n):
                raise ValueError(
                    f"{name}: covariance must be {n}x{n}, got {cov.shape}"
                )
            if not np.allclose(cov, cov.T):
                raise ValueError(f"{name}: covariance must be symmetric")
            errors = np.sqrt(np.abs(np.diag(cov)))
        else:
            if errors is None:
                raise ValueError(f"{name}: either errors or covariance is required")
            errors = np.asarray(errors, dtype=np.float64)
            if errors.shape != (n,):
                raise ValueError(
                    f"{name}: expected {n} errors, got shape {errors.shape}"
                )
            cov = np.diag(errors ** 2)

        if np.any(errors < 0):
            raise ValueError(f"{name}: errors must be non-negative")

        self._mparams = values.copy()
        self._params = values.copy()
        self._errors = errors.copy()
        self._meas_cov = cov
        self._measured = np.ones(n, dtype=bool) if measured is None else np.asarray(measured, dtype=bool)
        self._fixed = np.zeros(n, dtype=bool) if fixed is None else np.asarray(fixed, dtype=bool)
        if self._measured.shape != (n,) or self._fixed.shape != (n,):
            raise ValueError(f"{name}: measured/fixed flags must have length {n}")

        self._global_par_num = np.full(n, -1, dtype=int)
        self._cov = np.zeros((n, n), dtype=np.float64)
        self._cov_inv_cache = None

    # -- Parameter access ---------------------------------------------------

    @property
    def npar(self) -> int:
        return len(self._param_names)

    @property
    def params(self) -> np.ndarray:
        """Current parameter values (copy)."""
        return self._params.copy()

    def get_param_name(self, ilocal: int) -> str:
        return self._param_names[ilocal]

    def get_param(self, ilocal: int) -> float:
        return float(self._params[ilocal])

    def get_mparam(self, ilocal: int) -> float:
        return float(self._mparams[ilocal])

    def get_error(self, ilocal: int) -> float:
        return float(self._errors[ilocal])

    def is_param_measured(self, ilocal: int) -> bool:
        return bool(self._measured[ilocal])

    def is_param_fixed(self, ilocal: int) -> bool:
        return bool(self._fixed[ilocal])

    def set_param(self, ilocal: int, value: float) -> None:
        self._params[ilocal] = value

    def fix_param(self, ilocal: int, fixed: bool = True) -> None:
        self._fixed[ilocal] = fixed
        self._cov_inv_cache = None

    def reset(self) -> None:
        """Restore measured values as current values and clear the fit covariance."""
        self._params = self._mparams.copy()
        self._cov[:] = 0.0

    # -- Global indexing ----------------------------------------------------

    def set_global_par_num(self, ilocal: int, iglobal: int) -> None:
        self._global_par_num[ilocal] = iglobal

    def get_global_par_num(self, ilocal: int) -> int:
        return int(self._global_par_num[ilocal])

    def free_indices(self) -> List[int]:
        """Local indices of the non-fixed parameters."""
        return [i for i in range(self.npar) if not self._fixed[i]]

    def _measured_free(self) -> np.ndarray:
        # Free measured parameters with a non-zero error
        return np.array(
            [i for i in range(self.npar)
             if self._measured[i] and not self._fixed[i] and self._errors[i] > 0],
            dtype=int,
        )

    def _cov_inv(self) -> np.ndarray:
        # Inverse of the measurement covariance restricted to free measured params
        if self._cov_inv_cache is None:
            idx = self._measured_free()
            sub = self._meas_cov[np.ix_(idx, idx)]
            self._cov_inv_cache = np.linalg.inv(sub) if len(idx) else sub
        return self._cov_inv_cache

    # -- Chi-square ---------------------------------------------------------

    @property
    def chi2(self) -> float:
        idx = self._measured_free()
        if len(idx) == 0:
            return 0.0
        r = self._params[idx] - self._mparams[idx]
        return float(r @ self._cov_inv() @ r)

    def get_chi2_param(self, ilocal: int) -> float:
        """Chi-square contribution r_i (V^{-1} r)_i of a single parameter.

        The contributions of all parameters sum to :attr:`chi2`, also for a
        correlated covariance; a single term may then be negative.
        """
        idx = self._measured_free()
        pos = np.flatnonzero(idx == ilocal)
        if len(pos) == 0:
            return 0.0
        r = self._params[idx] - self._mparams[idx]
        k = int(pos[0])
        return float(r[k] * (self._cov_inv()[k] @ r))

    # -- Contributions to global buffers ------------------------------------

    def _global_measured(self):
        idx = self._measured_free()
        return idx, self._global_par_num[idx]

    def add_to_global_chi2_der_matrix(self, M: np.ndarray) -> None:
        """Add d^2 chi2 / dp_i dp_j = 2 V^{-1} at this object's global indices."""
        idx, glob = self._global_measured()
        if len(idx) == 0:
            return
        assert np.all(glob >= 0), f"{self.name}: global indices not assigned"
        M[np.ix_(glob, glob)] += 2.0 * self._cov_inv()

    def add_to_global_chi2_der_vector(self, y: np.ndarray) -> None:
        """Add d chi2 / dp_i = 2 V^{-1} r at this object's global indices."""
        idx, glob = self._global_measured()
        if len(idx) == 0:
            return
        assert np.all(glob >= 0), f"{self.name}: global indices not assigned"
        r = self._params[idx] - self._mparams[idx]
        y[glob] += 2.0 * (self._cov_inv() @ r)

    def add_to_glob_cov(self, C: np.ndarray) -> None:
        """Add the measurement covariance of the free measured parameters."""
        idx, glob = self._global_measured()
        if len(idx) == 0:
            return
        C[np.ix_(glob, glob)] += self._meas_cov[np.ix_(idx, idx)]

    def update_params(self, x: np.ndarray) -> bool:
        """Read new values of the free parameters from the global vector.

        Returns
        -------
        bool
            True if any parameter value changed.
        """
        significant = False
        for ilocal in self.free_indices():
            iglobal = self._global_par_num[ilocal]
            assert 0 <= iglobal < len(x), f"{self.name}: bad global index {iglobal}"
            new = x[iglobal]
            if new != self._params[ilocal]:
                significant = True
                self._params[ilocal] = new
        return significant

    # -- Fitted covariance --------------------------------------------------

    def set_cov(self, ilocal: int, jlocal: int, value: float) -> None:
        self._cov[ilocal, jlocal] = value
        self._cov[jlocal, ilocal] = value

    def get_cov(self, ilocal: int, jlocal: int) -> float:
        return float(self._cov[ilocal, jlocal])

    @property
    def cov(self) -> np.ndarray:
        """Fitted covariance of the local parameters (zero before a fit)."""
        return self._cov.copy()

    def get_fit_error(self, ilocal: int) -> float:
        """Fitted uncertainty sqrt(cov[i, i])."""
        return float(np.sqrt(max(self._cov[ilocal, ilocal], 0.0)))

    def __str__(self) -> str:
        parts = []
        for i, pname in enumerate(self._param_names):
            flag = " (fixed)" if self._fixed[i] else ("" if self._measured[i] else " (unmeasured)")
            parts.append(f"{pname}={self._params[i]:.6g}+-{self._errors[i]:.3g}{flag}")
        return f"{self.name}: " + ", ".join(parts)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, npar={self.npar})"
