"""Covariance of the fitted parameters by linear error propagation.

At the solution the fitted parameters a are an implicit function of the
measurements eta. Differentiating the KKT conditions gives

    M * da = A * deta,   A = -d^2chi2/da deta = -d^2chi2/da^2

(chi2 depends on a - eta), so with Cov_eta the measurement covariance

    Cov_a = (M^{-1} A) Cov_eta (M^{-1} A)^T

restricted to the parameter block. M is assembled without the
lambda * d^2c terms for this.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from kinfit.fitting.linear_solver import invert_matrix


def propagate_covariance(
    M: np.ndarray,
    chi2_hessian: np.ndarray,
    meas_cov: np.ndarray,
    npar: int,
    threshold: float = 1e-14,
) -> np.ndarray:
    """Propagate the measurement covariance through the KKT system.

    Parameters
    ----------
    M : np.ndarray, shape (idim, idim)
        KKT matrix assembled for error propagation.
    chi2_hessian : np.ndarray, shape (idim, idim)
        Second derivatives of the objects' chi-square (zero outside the
        parameter block).
    meas_cov : np.ndarray, shape (idim, idim)
        Measurement covariance of the free parameters.
    npar : int
        Number of free parameters.

    Returns
    -------
    np.ndarray, shape (npar, npar)
        Covariance of the fitted parameters.
    """
    A = -chi2_hessian[:, :npar]
    cov_eta = meas_cov[:npar, :npar]

    Minv = invert_matrix(M, threshold)
    dadeta = Minv @ A
    cov = dadeta @ cov_eta @ dadeta.T
    cov = cov[:npar, :npar]
    # Symmetrize against round-off
    return 0.5 * (cov + cov.T)


def write_covariance_blocks(fit_objects: Sequence, cov: np.ndarray) -> None:
    """Copy each object's block of the global covariance into the object."""
    for fo in fit_objects:
        for ilocal in range(fo.npar):
            iglobal = fo.get_global_par_num(ilocal)
            if iglobal < 0:
                continue
            for jlocal in range(ilocal, fo.npar):
                jglobal = fo.get_global_par_num(jlocal)
                if jglobal < 0:
                    continue
                fo.set_cov(ilocal, jlocal, cov[iglobal, jglobal])
