"""Shared fixtures for the kinfit test suite.

Provides small fit setups (scalar parameters, jets) that are rebuilt for
every test, since fits modify their objects in place.
"""

import os

import numpy as np
import pytest

# Force determinism BEFORE any JAX imports
os.environ.setdefault("JAX_PLATFORM_NAME", "cpu")
os.environ.setdefault("XLA_FLAGS", "--xla_cpu_enable_fast_math=false")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def scalar(name, value, error=1.0, **kwargs):
    """A single-parameter fit object."""
    from kinfit.objects import ParameterFitObject

    return ParameterFitObject(name, [name], [value], [error], **kwargs)


def sum_constraint(name, objects, total):
    """Hard constraint sum(params) == total over single-parameter objects."""
    from kinfit.constraints import FunctionConstraint

    return FunctionConstraint(
        name, objects, lambda *ps: sum(p[0] for p in ps) - total
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def split_fit():
    """a=1.2, b=0.8, both with error 1, constrained to a + b = 3."""
    from kinfit.fitting import NewtonFitter

    a = scalar("a", 1.2)
    b = scalar("b", 0.8)
    fitter = NewtonFitter()
    fitter.add_fit_object(a)
    fitter.add_fit_object(b)
    fitter.add_constraint(sum_constraint("sum", [a, b], 3.0))
    return fitter, a, b


@pytest.fixture
def circle_fit():
    """Point (x, y) = (2, 1) with unit errors constrained to the unit circle."""
    from kinfit.constraints import FunctionConstraint
    from kinfit.fitting import NewtonFitter
    from kinfit.objects import ParameterFitObject

    point = ParameterFitObject("point", ["x", "y"], [2.0, 1.0], [1.0, 1.0])
    circle = FunctionConstraint(
        "circle", [point], lambda p: p[0] ** 2 + p[1] ** 2 - 1.0
    )
    fitter = NewtonFitter()
    fitter.add_fit_object(point)
    fitter.add_constraint(circle)
    return fitter, point, circle


@pytest.fixture
def dijet():
    """Two back-to-back-ish massless jets with realistic resolutions."""
    from kinfit.objects import JetFitObject

    j1 = JetFitObject("j1", 52.0, 1.50, 0.05, 5.0, 0.02, 0.02)
    j2 = JetFitObject("j2", 47.0, 1.62, np.pi + 0.03, 5.0, 0.02, 0.02)
    return j1, j2
