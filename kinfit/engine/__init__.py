"""
Fit statistics, progress tracers and setup validation.

Usage Example:
--------------
from kinfit.engine import RecordingTracer, fit_summary, validate_fitter

tracer = RecordingTracer()
fitter = NewtonFitter(tracer=tracer)
...
issues = validate_fitter(fitter)
fitter.fit()
summary = fit_summary(fitter)
"""

from kinfit.engine.stats import (
    degrees_of_freedom,
    fit_probability,
    fit_summary,
)
from kinfit.engine.tracer import (
    BaseTracer,
    TextTracer,
    RecordingTracer,
    IterationRecord,
)
from kinfit.engine.validation import (
    Severity,
    ValidationIssue,
    validate_fit_setup,
    validate_fitter,
)

__all__ = [
    'degrees_of_freedom',
    'fit_probability',
    'fit_summary',
    'BaseTracer',
    'TextTracer',
    'RecordingTracer',
    'IterationRecord',
    'Severity',
    'ValidationIssue',
    'validate_fit_setup',
    'validate_fitter',
]
