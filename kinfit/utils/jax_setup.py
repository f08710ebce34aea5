"""Centralized JAX configuration for kinfit.

Kinematic fits combine measured values that differ by many orders of
magnitude (GeV energies next to milliradian angles), and the KKT systems
are solved and differentiated in JAX, so float64 precision is mandatory.

JAX is not configured at package import time. Modules that use JAX
(constraints, linear solver, statistics) call ensure_jax_x64() at module
load time, before their first JAX operation.

Usage:
    from kinfit.utils.jax_setup import ensure_jax_x64
    ensure_jax_x64()
    import jax.numpy as jnp
"""

import logging

import jax

logger = logging.getLogger(__name__)

# Track if we've already configured (avoid duplicate calls)
_jax_configured = False


def ensure_jax_x64() -> bool:
    """Enable float64 in JAX; later calls are no-ops.

    Returns
    -------
    bool
        True once x64 mode is active.
    """
    global _jax_configured

    if _jax_configured:
        return True

    jax.config.update('jax_enable_x64', True)
    logger.debug("JAX float64 precision enabled")
    _jax_configured = True
    return True
