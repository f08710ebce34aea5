"""Fit statistics.

Single source of truth for degrees of freedom, the fit probability and the
end-of-fit summary, so the fitter, tracers and user code report the same
numbers.
"""

from typing import Dict

from kinfit.utils.jax_setup import ensure_jax_x64
ensure_jax_x64()

import jax.scipy.special as jss


def degrees_of_freedom(ncon: int, nsoft: int = 0, nunm: int = 0) -> int:
    """Degrees of freedom of a constrained fit.

    Each hard or soft constraint adds one, each unmeasured free parameter
    removes one.
    """
    return ncon + nsoft - nunm


def fit_probability(chi2: float, dof: int) -> float:
    """Upper-tail chi-square probability P(X >= chi2) for ``dof`` degrees of freedom.

    Returns -1 when the probability is undefined (``dof <= 0`` or a
    negative chi2).

    Examples
    --------
    >>> round(fit_probability(0.0, 3), 6)
    1.0
    >>> fit_probability(1.0, 0)
    -1.0
    """
    if dof <= 0 or chi2 < 0:
        return -1.0
    return float(jss.gammaincc(0.5 * dof, 0.5 * chi2))


# ---------------------------------------------------------------------------
# Fit summary
# ---------------------------------------------------------------------------

def fit_summary(fitter) -> Dict:
    """Summarize the last fit of a :class:`~kinfit.fitting.NewtonFitter`.

    Parameters
    ----------
    fitter : NewtonFitter
        Fitter after :meth:`fit` has been called.

    Returns
    -------
    dict
        Summary with keys:

        - ``chi2``, ``dof``, ``chi2_reduced``, ``probability``
        - ``iterations``: int
        - ``converged``: bool
        - ``error``: name of the error code
        - ``objects``: {object name: {param name: (value, fitted error)}}
        - ``constraints``: {constraint name: value}
        - ``warnings``: list of string warnings
    """
    dof = fitter.dof
    chi2 = fitter.chi2
    converged = int(fitter.error) == 0

    objects = {}
    for fo in fitter.fit_objects:
        objects[fo.name] = {
            fo.get_param_name(i): (fo.get_param(i), fo.get_fit_error(i))
            for i in range(fo.npar)
        }
    constraints = {c.name: c.value for c in fitter.constraints}
    constraints.update({sc.name: sc.value for sc in fitter.soft_constraints})

    chi2_reduced = chi2 / dof if dof > 0 else 0.0

    warnings = []
    if not converged:
        warnings.append(f"Fit did not converge ({fitter.error.name}).")
    if dof <= 0:
        warnings.append(
            f"Fit has {dof} degrees of freedom; probability is undefined."
        )
    if dof > 0 and 0 <= fitter.probability < 0.01:
        warnings.append(
            f"Fit probability {fitter.probability:.3g} is very small "
            "(check errors or constraints)."
        )

    return {
        "chi2": chi2,
        "dof": dof,
        "chi2_reduced": chi2_reduced,
        "probability": fitter.probability,
        "iterations": fitter.iterations,
        "converged": converged,
        "error": fitter.error.name,
        "objects": objects,
        "constraints": constraints,
        "warnings": warnings,
    }
