"""Generic fit object made of independent named parameters."""

from kinfit.objects.base import BaseFitObject


class ParameterFitObject(BaseFitObject):
    """Named scalar parameters with Gaussian measurement errors.

    Examples
    --------
    >>> obj = ParameterFitObject("track", ["a", "b"], [1.2, 0.8], [0.1, 0.1])
    >>> obj.npar
    2
    >>> obj.chi2
    0.0
    """
