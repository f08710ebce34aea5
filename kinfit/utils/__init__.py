"""kinfit utilities module."""

from kinfit.utils.jax_setup import ensure_jax_x64

__all__ = [
    'ensure_jax_x64',
]
