"""
Linear solves for the Newton step
=================================

Two ways of solving the rescaled KKT system Mscal * dxscal = yscal:

* **Direct**: LU factorization with partial pivoting. Fails (raises
  ``numpy.linalg.LinAlgError``) when the matrix is singular to working
  precision, i.e. a pivot is below ``threshold`` times the largest pivot.

* **Spectral**: symmetric eigen-decomposition

      Mscal = V diag(lambda) V^T

  with eigenpairs sorted by descending |lambda|. With v = V^T yscal / lambda
  (zero for vanishing eigenvalues) the pseudo-inverse solution restricted to
  the k leading modes is

      dxscal_k = V[:, :k] v[:k]

  The fitter tries k = rank, rank-1, ... until the line search accepts a
  usable step. This handles systems with more unmeasured parameters than
  constraints and degenerate constraint Jacobians.

The small dense kernels run through JAX (``jax.scipy.linalg``), as the
rest of the numerical code; results are returned as numpy arrays.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from kinfit.utils.jax_setup import ensure_jax_x64
ensure_jax_x64()

import jax
import jax.numpy as jnp
import jax.scipy.linalg as jla

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JIT-compiled kernels
# ---------------------------------------------------------------------------

@jax.jit
def _lu_factor(M: jnp.ndarray):
    return jla.lu_factor(M)


@jax.jit
def _lu_solve(lu: jnp.ndarray, piv: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    return jla.lu_solve((lu, piv), b)


@jax.jit
def _eigh(M: jnp.ndarray):
    return jnp.linalg.eigh(M)


def _factorize(M: np.ndarray, threshold: float):
    """LU-factorize M, raising LinAlgError if it is numerically singular."""
    lu, piv = _lu_factor(jnp.asarray(M, dtype=jnp.float64))
    pivots = np.abs(np.diag(np.asarray(lu)))
    if not np.all(np.isfinite(pivots)):
        raise np.linalg.LinAlgError("LU factorization produced non-finite pivots")
    if pivots.size and pivots.min() <= threshold * pivots.max():
        raise np.linalg.LinAlgError(
            f"Singular matrix: smallest pivot {pivots.min():.3e}, "
            f"largest {pivots.max():.3e}"
        )
    return lu, piv


# ---------------------------------------------------------------------------
# Direct path
# ---------------------------------------------------------------------------

def solve_direct(
    Mscal: np.ndarray,
    yscal: np.ndarray,
    threshold: float = 1e-14,
) -> np.ndarray:
    """Solve Mscal * dxscal = yscal by LU decomposition.

    Parameters
    ----------
    Mscal : np.ndarray, shape (n, n)
        Rescaled system matrix.
    yscal : np.ndarray, shape (n,)
        Rescaled right-hand side.
    threshold : float
        Relative pivot size below which the matrix counts as singular.

    Returns
    -------
    np.ndarray, shape (n,)
        dxscal.

    Raises
    ------
    numpy.linalg.LinAlgError
        If the matrix is singular to working precision.
    """
    lu, piv = _factorize(Mscal, threshold)
    dxscal = np.array(_lu_solve(lu, piv, jnp.asarray(yscal, dtype=jnp.float64)), dtype=np.float64)
    if not np.all(np.isfinite(dxscal)):
        raise np.linalg.LinAlgError("LU solve produced a non-finite step")
    return dxscal


# ---------------------------------------------------------------------------
# Spectral path
# ---------------------------------------------------------------------------

@dataclass
class SpectralSolution:
    """Eigen-decomposition of Mscal with the pseudo-inverse coefficients.

    Attributes
    ----------
    eigenvalues : np.ndarray, shape (n,)
        Sorted by descending magnitude.
    eigenvectors : np.ndarray, shape (n, n)
        Columns matching ``eigenvalues``.
    coefficients : np.ndarray, shape (n,)
        V^T yscal / lambda, zero for vanishing eigenvalues.
    rank : int
        Number of non-vanishing eigenvalues (they are the leading ones).
    """
    eigenvalues: np.ndarray
    eigenvectors: np.ndarray
    coefficients: np.ndarray
    rank: int

    def step(self, k: int) -> np.ndarray:
        return truncated_step(self.eigenvectors, self.coefficients, k)


def truncated_step(evecs: np.ndarray, v: np.ndarray, k: int) -> np.ndarray:
    """Solution restricted to the k leading modes, V[:, :k] v[:k]."""
    assert 0 <= k <= len(v), f"bad truncation {k} for dimension {len(v)}"
    return evecs[:, :k] @ v[:k]


def spectral_decomposition(
    Mscal: np.ndarray,
    yscal: np.ndarray,
    threshold: float = 1e-14,
) -> SpectralSolution:
    """Eigen-decompose Mscal and project yscal onto its modes.

    Raises
    ------
    numpy.linalg.LinAlgError
        If the decomposition does not produce finite values.
    """
    evals, evecs = _eigh(jnp.asarray(Mscal, dtype=jnp.float64))
    evals = np.asarray(evals, dtype=np.float64)
    evecs = np.asarray(evecs, dtype=np.float64)
    if not (np.all(np.isfinite(evals)) and np.all(np.isfinite(evecs))):
        raise np.linalg.LinAlgError("Eigen-decomposition did not converge")

    order = np.argsort(-np.abs(evals), kind="stable")
    evals = evals[order]
    evecs = evecs[:, order]

    largest = np.abs(evals[0]) if evals.size else 0.0
    nonzero = np.abs(evals) > threshold * largest
    projected = evecs.T @ np.asarray(yscal, dtype=np.float64)
    coefficients = np.where(nonzero, projected / np.where(nonzero, evals, 1.0), 0.0)
    rank = int(np.count_nonzero(nonzero))

    if rank < len(evals):
        logger.debug(f"Spectral solve: rank {rank} < dimension {len(evals)}")

    return SpectralSolution(evals, evecs, coefficients, rank)


# ---------------------------------------------------------------------------
# Inversion (covariance propagation)
# ---------------------------------------------------------------------------

def invert_matrix(M: np.ndarray, threshold: float = 1e-14) -> np.ndarray:
    """Invert M via LU; fall back to the pseudo-inverse if it is singular."""
    n = M.shape[0]
    try:
        lu, piv = _factorize(M, threshold)
    except np.linalg.LinAlgError as e:
        logger.warning(f"Matrix inversion failed ({e}); using pseudo-inverse")
        return np.array(jnp.linalg.pinv(jnp.asarray(M, dtype=jnp.float64)), dtype=np.float64)
    return np.array(_lu_solve(lu, piv, jnp.eye(n, dtype=jnp.float64)), dtype=np.float64)
