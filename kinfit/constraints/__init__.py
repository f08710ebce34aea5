"""Hard (Lagrange-multiplier) and soft (penalty) constraints."""

from kinfit.constraints.base import (
    BaseConstraint,
    BaseHardConstraint,
    BaseSoftConstraint,
)
from kinfit.constraints.functional import FunctionConstraint, SoftFunctionConstraint
from kinfit.constraints.momentum import (
    MomentumConstraint,
    MassConstraint,
    SoftGaussMassConstraint,
)

__all__ = [
    'BaseConstraint',
    'BaseHardConstraint',
    'BaseSoftConstraint',
    'FunctionConstraint',
    'SoftFunctionConstraint',
    'MomentumConstraint',
    'MassConstraint',
    'SoftGaussMassConstraint',
]
