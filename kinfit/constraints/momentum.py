"""
Four-momentum constraints
=========================

Constraints on the summed four-momentum of a set of particle fit objects:

* :class:`MomentumConstraint`: linear combination of the summed
  (px, py, pz, E), e.g. transverse momentum balance or a fixed
  centre-of-mass energy.
* :class:`MassConstraint`: invariant mass of the sum equals a value.
* :class:`SoftGaussMassConstraint`: invariant mass pulled towards a value
  with a Gaussian penalty of a given width (a resonance with finite width).
"""

from __future__ import annotations

from typing import List, Sequence

from kinfit.utils.jax_setup import ensure_jax_x64
ensure_jax_x64()

import jax.numpy as jnp

from kinfit.constraints.base import BaseHardConstraint, BaseSoftConstraint
from kinfit.objects.jet import ParticleFitObject


def _check_particles(name: str, fit_objects: Sequence) -> List[ParticleFitObject]:
    objects = list(fit_objects)
    for fo in objects:
        if not isinstance(fo, ParticleFitObject):
            raise TypeError(
                f"{name}: {fo!r} is not a ParticleFitObject"
            )
    if not objects:
        raise ValueError(f"{name}: at least one particle is required")
    return objects


class _FourMomentumSum:
    """Mixin summing the four-momenta of the constrained particles."""

    def _total_four_momentum(self, params) -> jnp.ndarray:
        total = jnp.zeros(4)
        for p4_fn, p in zip(self._p4_fns, params):
            total = total + p4_fn(p)
        return total

    def _invariant_mass(self, params) -> jnp.ndarray:
        e, px, py, pz = self._total_four_momentum(params)
        return jnp.sqrt(jnp.maximum(e * e - px * px - py * py - pz * pz, 0.0))


class MomentumConstraint(_FourMomentumSum, BaseHardConstraint):
    """``fx*sum(px) + fy*sum(py) + fz*sum(pz) + fe*sum(E) - value == 0``.

    Examples
    --------
    Transverse balance in x is ``MomentumConstraint("px", jets, fx=1)``;
    total energy ``sqrt(s)`` is ``MomentumConstraint("E", jets, fe=1, value=sqrt_s)``.
    """

    def __init__(
        self,
        name: str,
        fit_objects: Sequence[ParticleFitObject],
        fx: float = 0.0,
        fy: float = 0.0,
        fz: float = 0.0,
        fe: float = 0.0,
        value: float = 0.0,
    ):
        objects = _check_particles(name, fit_objects)
        if fx == 0 and fy == 0 and fz == 0 and fe == 0:
            raise ValueError(f"{name}: at least one of fx, fy, fz, fe must be non-zero")
        self._weights = jnp.array([fe, fx, fy, fz])
        self._target = float(value)
        self._p4_fns = [fo.four_momentum_fn() for fo in objects]
        super().__init__(name, objects)

    def evaluate(self, params):
        return jnp.dot(self._weights, self._total_four_momentum(params)) - self._target


class MassConstraint(_FourMomentumSum, BaseHardConstraint):
    """Invariant mass of the summed four-momentum equals ``mass``."""

    def __init__(
        self,
        name: str,
        fit_objects: Sequence[ParticleFitObject],
        mass: float,
    ):
        objects = _check_particles(name, fit_objects)
        self.mass = float(mass)
        self._p4_fns = [fo.four_momentum_fn() for fo in objects]
        super().__init__(name, objects)

    def evaluate(self, params):
        return self._invariant_mass(params) - self.mass


class SoftGaussMassConstraint(_FourMomentumSum, BaseSoftConstraint):
    """Invariant mass pulled towards ``mass`` with Gaussian width ``width``."""

    def __init__(
        self,
        name: str,
        fit_objects: Sequence[ParticleFitObject],
        mass: float,
        width: float,
    ):
        objects = _check_particles(name, fit_objects)
        self.mass = float(mass)
        self._p4_fns = [fo.four_momentum_fn() for fo in objects]
        super().__init__(name, objects, width)

    def evaluate(self, params):
        return self._invariant_mass(params) - self.mass
