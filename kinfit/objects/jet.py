"""
Particle fit objects
====================

Particles are parametrised by (E, theta, phi) with a fixed mass. The
four-momentum is written with ``jax.numpy`` so that constraints built on
top of it (momentum sums, invariant masses) are differentiated with JAX
autodiff instead of hand-coded derivatives.
"""

from __future__ import annotations

from typing import Callable, Optional

from kinfit.utils.jax_setup import ensure_jax_x64
ensure_jax_x64()

import jax.numpy as jnp

from kinfit.objects.base import BaseFitObject

PARTICLE_PARAMS = ("E", "theta", "phi")


def four_momentum(params: jnp.ndarray, mass: float) -> jnp.ndarray:
    """Four-momentum (E, px, py, pz) for parameters (E, theta, phi).

    |p| = sqrt(E^2 - m^2), clipped at zero below threshold.
    """
    e, theta, phi = params[0], params[1], params[2]
    p = jnp.sqrt(jnp.maximum(e * e - mass * mass, 0.0))
    sin_theta = jnp.sin(theta)
    return jnp.stack([
        e,
        p * sin_theta * jnp.cos(phi),
        p * sin_theta * jnp.sin(phi),
        p * jnp.cos(theta),
    ])


class ParticleFitObject(BaseFitObject):
    """Fit object with a JAX-traceable four-momentum."""

    def __init__(
        self,
        name: str,
        energy: float,
        theta: float,
        phi: float,
        errors,
        mass: float = 0.0,
        measured=None,
        fixed=None,
    ):
        if mass < 0:
            raise ValueError(f"{name}: mass must be non-negative")
        super().__init__(
            name, PARTICLE_PARAMS, [energy, theta, phi], errors,
            measured=measured, fixed=fixed,
        )
        self.mass = float(mass)

    def four_momentum_fn(self) -> Callable[[jnp.ndarray], jnp.ndarray]:
        """Pure function mapping local parameters to (E, px, py, pz)."""
        mass = self.mass
        return lambda params: four_momentum(params, mass)

    def four_momentum(self):
        """Current four-momentum as a numpy-compatible array."""
        return four_momentum(jnp.asarray(self._params), self.mass)

    def __str__(self) -> str:
        return f"{super().__str__()}, m={self.mass:.6g}"


class JetFitObject(ParticleFitObject):
    """A measured jet: energy and both angles carry detector resolutions.

    Parameters
    ----------
    energy, theta, phi : float
        Measured energy (GeV) and polar / azimuthal angles (rad).
    d_energy, d_theta, d_phi : float
        Resolutions.
    mass : float
        Jet mass (GeV), fixed during the fit.
    """

    def __init__(
        self,
        name: str,
        energy: float,
        theta: float,
        phi: float,
        d_energy: float,
        d_theta: float,
        d_phi: float,
        mass: float = 0.0,
        fixed=None,
    ):
        super().__init__(
            name, energy, theta, phi, [d_energy, d_theta, d_phi],
            mass=mass, fixed=fixed,
        )


class NeutrinoFitObject(ParticleFitObject):
    """An invisible, massless particle: all parameters are unmeasured.

    The errors only set the scale used to condition the fit.
    """

    def __init__(
        self,
        name: str,
        energy: float,
        theta: float,
        phi: float,
        d_energy: float = 10.0,
        d_theta: float = 0.1,
        d_phi: float = 0.1,
        fixed: Optional[list] = None,
    ):
        super().__init__(
            name, energy, theta, phi, [d_energy, d_theta, d_phi],
            mass=0.0, measured=[False, False, False], fixed=fixed,
        )
