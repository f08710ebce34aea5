"""kinfit: constrained kinematic fitting with Lagrange multipliers.

Fit objects carry measured parameters with uncertainties; hard and soft
constraints relate them. ``NewtonFitter`` finds the chi-square closest
parameters that satisfy the hard constraints exactly, and propagates the
measurement covariance to the fitted parameters.

JAX is configured lazily: modules that need it call
``kinfit.utils.jax_setup.ensure_jax_x64()`` at load time.
"""

# Version
__version__ = "0.1.0"
