"""Constrained Newton-Raphson fitting: indexing, KKT assembly, solves, line search."""

from kinfit.fitting.config import FitterConfig, DEFAULT_FITTER_CONFIG
from kinfit.fitting.indexer import IndexLayout, assign_global_indices
from kinfit.fitting.line_search import LineSearchResult, optimize_scale
from kinfit.fitting.linear_solver import (
    SpectralSolution,
    invert_matrix,
    solve_direct,
    spectral_decomposition,
    truncated_step,
)
from kinfit.fitting.covariance import propagate_covariance, write_covariance_blocks
from kinfit.fitting.newton_fitter import NewtonFitter, FitState, FitError

__all__ = [
    'FitterConfig',
    'DEFAULT_FITTER_CONFIG',
    'IndexLayout',
    'assign_global_indices',
    'LineSearchResult',
    'optimize_scale',
    'SpectralSolution',
    'invert_matrix',
    'solve_direct',
    'spectral_decomposition',
    'truncated_step',
    'propagate_covariance',
    'write_covariance_blocks',
    'NewtonFitter',
    'FitState',
    'FitError',
]
