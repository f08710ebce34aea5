"""Fit objects: parametrised measured quantities entering a kinematic fit."""

from kinfit.objects.base import BaseFitObject
from kinfit.objects.parameter import ParameterFitObject
from kinfit.objects.jet import (
    ParticleFitObject,
    JetFitObject,
    NeutrinoFitObject,
    four_momentum,
)

__all__ = [
    'BaseFitObject',
    'ParameterFitObject',
    'ParticleFitObject',
    'JetFitObject',
    'NeutrinoFitObject',
    'four_momentum',
]
