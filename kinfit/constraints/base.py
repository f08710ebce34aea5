"""
Constraint base classes
=======================

A constraint is a scalar function c(p) of the parameters of one or more
fit objects. Subclasses implement :meth:`BaseConstraint.evaluate` with
``jax.numpy``; first and second derivatives come from ``jax.grad`` and
``jax.hessian`` (jitted once per instance), so no constraint has to carry
hand-written derivatives.

Two flavours enter the fit:

* :class:`BaseHardConstraint`: c(p) = 0 must hold exactly. It owns one
  Lagrange-multiplier slot (``global_num``) in the fitter's global vector
  and contributes to the KKT matrix:

      M[k, i] = M[i, k] += dc/dp_i
      M[i, j]           += lambda * d^2c/dp_i dp_j
      y[i]              += lambda * dc/dp_i

* :class:`BaseSoftConstraint`: a penalty chi2 = (c/sigma)^2 added to the
  objective; no multiplier, contributes only to the parameter block.

Only derivatives with respect to free (non-fixed) parameters are written,
and only at the global indices of those parameters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

import numpy as np

from kinfit.utils.jax_setup import ensure_jax_x64
ensure_jax_x64()

import jax
import jax.numpy as jnp

from kinfit.objects.base import BaseFitObject


class BaseConstraint(ABC):
    """Scalar function of the parameters of a list of fit objects.

    Parameters
    ----------
    name : str
        Name used in diagnostics.
    fit_objects : sequence of BaseFitObject
        Objects whose parameters the constraint depends on. Each object
        may appear only once.

    Notes
    -----
    Attributes read inside :meth:`evaluate` are captured when the jitted
    functions are first traced and must not change afterwards.
    """

    def __init__(self, name: str, fit_objects: Sequence[BaseFitObject]):
        self.name = name
        self.fit_objects: List[BaseFitObject] = list(fit_objects)
        if len({id(fo) for fo in self.fit_objects}) != len(self.fit_objects):
            raise ValueError(f"{name}: a fit object may appear only once")
        self._sizes = [fo.npar for fo in self.fit_objects]

        self._value_fn = jax.jit(self._flat_value)
        self._grad_fn = jax.jit(jax.grad(self._flat_value))
        self._hess_fn = jax.jit(jax.hessian(self._flat_value))

    @abstractmethod
    def evaluate(self, params: List[jnp.ndarray]) -> jnp.ndarray:
        """Constraint value, one parameter array per fit object."""
        ...

    # -- Flattened evaluation -----------------------------------------------

    def _flat_value(self, flat: jnp.ndarray) -> jnp.ndarray:
        parts = []
        offset = 0
        for n in self._sizes:
            parts.append(flat[offset:offset + n])
            offset += n
        return self.evaluate(parts)

    def _flat_params(self) -> np.ndarray:
        if not self.fit_objects:
            return np.zeros(0, dtype=np.float64)
        return np.concatenate([fo.params for fo in self.fit_objects])

    def _free_map(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Positions in the flat vector, global indices and errors of free params."""
        positions, globs, errs = [], [], []
        offset = 0
        for fo in self.fit_objects:
            for ilocal in fo.free_indices():
                iglobal = fo.get_global_par_num(ilocal)
                assert iglobal >= 0, f"{self.name}: {fo.name} not indexed"
                positions.append(offset + ilocal)
                globs.append(iglobal)
                errs.append(fo.get_error(ilocal))
            offset += fo.npar
        return (
            np.asarray(positions, dtype=int),
            np.asarray(globs, dtype=int),
            np.asarray(errs, dtype=np.float64),
        )

    # -- Value and derivatives ----------------------------------------------

    @property
    def value(self) -> float:
        return float(self._value_fn(self._flat_params()))

    def first_derivatives(self) -> Tuple[np.ndarray, np.ndarray]:
        """Global indices and dc/dp for the free parameters."""
        pos, glob, _ = self._free_map()
        grad = np.asarray(self._grad_fn(self._flat_params()))
        return glob, grad[pos]

    def second_derivatives(self) -> Tuple[np.ndarray, np.ndarray]:
        """Global indices and d^2c/dp_i dp_j for the free parameters."""
        pos, glob, _ = self._free_map()
        hess = np.asarray(self._hess_fn(self._flat_params()))
        return glob, hess[np.ix_(pos, pos)]

    @property
    def error(self) -> float:
        """Uncertainty of the constraint value propagated from parameter errors."""
        pos, _, errs = self._free_map()
        if len(pos) == 0:
            return 0.0
        grad = np.asarray(self._grad_fn(self._flat_params()))[pos]
        return float(np.sqrt(np.sum((grad * errs) ** 2)))

    def __str__(self) -> str:
        return f"{self.name}: {self.value:.6g}+-{self.error:.3g}"


class BaseHardConstraint(BaseConstraint):
    """Equality constraint c(p) = 0 enforced with a Lagrange multiplier."""

    def __init__(self, name: str, fit_objects: Sequence[BaseFitObject]):
        super().__init__(name, fit_objects)
        self._global_num = -1

    def set_global_num(self, iglobal: int) -> None:
        self._global_num = iglobal

    def get_global_num(self) -> int:
        return self._global_num

    def add_1st_derivatives_to_matrix(self, M: np.ndarray) -> None:
        """Couple the multiplier row/column to the parameter columns."""
        k = self._global_num
        assert 0 <= k < M.shape[0], f"{self.name}: bad global number {k}"
        glob, grad = self.first_derivatives()
        M[k, glob] += grad
        M[glob, k] += grad

    def add_2nd_derivatives_to_matrix(self, M: np.ndarray, lam: float) -> None:
        """Add lambda * d^2c/dp^2 to the parameter block."""
        if lam == 0:
            return
        glob, hess = self.second_derivatives()
        M[np.ix_(glob, glob)] += lam * hess

    def add_to_global_chi2_der_vector(self, y: np.ndarray, lam: float) -> None:
        """Add lambda * dc/dp to the parameter rows."""
        glob, grad = self.first_derivatives()
        y[glob] += lam * grad


class BaseSoftConstraint(BaseConstraint):
    """Penalty term chi2 = (c(p)/sigma)^2.

    Parameters
    ----------
    sigma : float
        Width of the penalty. Must be positive.
    """

    def __init__(self, name: str, fit_objects: Sequence[BaseFitObject], sigma: float):
        if not sigma > 0:
            raise ValueError(f"{name}: sigma must be positive, got {sigma}")
        self.sigma = float(sigma)
        super().__init__(name, fit_objects)

    @property
    def chi2(self) -> float:
        return (self.value / self.sigma) ** 2

    def add_to_global_chi2_der_vector(self, y: np.ndarray) -> None:
        """Add d chi2/dp = 2 c dc/dp / sigma^2."""
        glob, grad = self.first_derivatives()
        y[glob] += 2.0 * self.value * grad / self.sigma ** 2

    def add_2nd_derivatives_to_matrix(self, M: np.ndarray) -> None:
        """Add d^2 chi2/dp^2 = 2 (grad grad^T + c hess) / sigma^2."""
        glob, grad = self.first_derivatives()
        _, hess = self.second_derivatives()
        M[np.ix_(glob, glob)] += 2.0 * (np.outer(grad, grad) + self.value * hess) / self.sigma ** 2

    def __str__(self) -> str:
        return f"{super().__str__()}, chi2={self.chi2:.6g}"
