"""
KKT system assembly
===================

Builds, for the current parameter state, the matrix M and vector y of the
Newton step M * dx = y:

    M = | d^2chi2/dp^2 + sum_k lambda_k d^2c_k/dp^2   dc/dp^T |
        | dc/dp                                        0      |

    y = | dchi2/dp + sum_k lambda_k dc_k/dp |
        | c                                 |

Soft constraints add their chi-square curvature and gradient to the
parameter block only. Every collaborator writes additively at its own
global indices; the buffers are zeroed first, so repeated calls with the
same state give identical results.

For conditioning, both are rescaled by the error vector perr:

    Mscal[i, j] = perr[i] * perr[j] * M[i, j],   yscal[i] = perr[i] * y[i]
"""

from __future__ import annotations

from typing import Sequence

import numpy as np


def fill_errors(
    perr: np.ndarray,
    fit_objects: Sequence,
    constraints: Sequence,
) -> np.ndarray:
    """Fill the scale vector from parameter and constraint errors.

    Free parameters get |error| (1 if zero); multiplier slots get the
    reciprocal constraint error (1 if zero).
    """
    perr[:] = 1.0
    npar = len(perr) - len(constraints)
    for fo in fit_objects:
        for ilocal in fo.free_indices():
            iglobal = fo.get_global_par_num(ilocal)
            assert 0 <= iglobal < npar, f"{fo.name}: bad global index {iglobal}"
            e = abs(fo.get_error(ilocal))
            perr[iglobal] = e if e else 1.0
    for c in constraints:
        k = c.get_global_num()
        assert 0 <= k < len(perr), f"{c.name}: bad global number {k}"
        e = c.error
        perr[k] = 1.0 / e if e else 1.0
    return perr


def assemble_matrix(
    M: np.ndarray,
    x: np.ndarray,
    fit_objects: Sequence,
    constraints: Sequence,
    soft_constraints: Sequence,
    error_propagation: bool = False,
) -> np.ndarray:
    """Fill M with the second derivatives of the Lagrangian.

    Parameters
    ----------
    M : np.ndarray, shape (idim, idim)
        Output buffer, overwritten.
    x : np.ndarray, shape (idim,)
        Global vector; multipliers are read from the constraint slots.
    error_propagation : bool
        If True, omit the lambda * d^2c/dp^2 terms (covariance propagation).
    """
    M[:] = 0.0

    for fo in fit_objects:
        fo.add_to_global_chi2_der_matrix(M)

    for c in constraints:
        k = c.get_global_num()
        assert 0 <= k < M.shape[0], f"{c.name}: bad global number {k}"
        c.add_1st_derivatives_to_matrix(M)
        if not error_propagation:
            c.add_2nd_derivatives_to_matrix(M, x[k])

    for sc in soft_constraints:
        sc.add_2nd_derivatives_to_matrix(M)

    return M


def assemble_gradient(
    y: np.ndarray,
    x: np.ndarray,
    fit_objects: Sequence,
    constraints: Sequence,
    soft_constraints: Sequence,
) -> np.ndarray:
    """Fill y with the first derivatives of the Lagrangian."""
    y[:] = 0.0

    for fo in fit_objects:
        fo.add_to_global_chi2_der_vector(y)

    for c in constraints:
        k = c.get_global_num()
        assert 0 <= k < len(y), f"{c.name}: bad global number {k}"
        c.add_to_global_chi2_der_vector(y, x[k])
        y[k] = c.value

    for sc in soft_constraints:
        sc.add_to_global_chi2_der_vector(y)

    return y


def rescale_matrix(M: np.ndarray, perr: np.ndarray, out: np.ndarray) -> np.ndarray:
    """out[i, j] = perr[i] * perr[j] * M[i, j]"""
    np.multiply(M, np.outer(perr, perr), out=out)
    return out


def rescale_vector(y: np.ndarray, perr: np.ndarray, out: np.ndarray) -> np.ndarray:
    """out[i] = perr[i] * y[i]"""
    np.multiply(y, perr, out=out)
    return out
