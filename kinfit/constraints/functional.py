"""Constraints defined by arbitrary JAX-traceable callables.

Examples
--------
>>> from kinfit.objects import ParameterFitObject
>>> obj = ParameterFitObject("ab", ["a", "b"], [1.2, 0.8], [0.1, 0.1])
>>> c = FunctionConstraint("sum", [obj], lambda p: p[0] + p[1] - 3.0)
>>> round(c.value, 6)
-1.0
"""

from __future__ import annotations

from typing import Callable, Sequence

from kinfit.constraints.base import BaseHardConstraint, BaseSoftConstraint
from kinfit.objects.base import BaseFitObject


class FunctionConstraint(BaseHardConstraint):
    """Hard constraint ``fn(*params) == 0``.

    ``fn`` receives one ``jax.numpy`` parameter array per fit object and
    must return a scalar built from ``jax.numpy`` operations.
    """

    def __init__(
        self,
        name: str,
        fit_objects: Sequence[BaseFitObject],
        fn: Callable,
    ):
        self._fn = fn
        super().__init__(name, fit_objects)

    def evaluate(self, params):
        return self._fn(*params)


class SoftFunctionConstraint(BaseSoftConstraint):
    """Soft constraint with penalty ``(fn(*params) / sigma)^2``."""

    def __init__(
        self,
        name: str,
        fit_objects: Sequence[BaseFitObject],
        fn: Callable,
        sigma: float,
    ):
        self._fn = fn
        super().__init__(name, fit_objects, sigma)

    def evaluate(self, params):
        return self._fn(*params)
