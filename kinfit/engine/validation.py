"""Pre-fit checks on fit objects and constraints.

A setup that would make the Newton iteration meaningless (non-finite
start values or errors, negative errors) is an ERROR. Setups the fitter
can still run but whose result deserves a second look are a WARNING:
measured parameters with zero error (they add no chi-square), more
unmeasured parameters than constraints, or nothing to fit at all.

With ``strict=True`` the first ERROR is raised as ``ValueError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Sequence

import numpy as np


# ---------------------------------------------------------------------------
# Severity levels
# ---------------------------------------------------------------------------

class Severity(Enum):
    """How much a setup issue matters: WARNING fits still run, ERROR fits should not."""
    WARNING = auto()
    ERROR = auto()


# ---------------------------------------------------------------------------
# Validation issue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationIssue:
    """One problem with a fit setup.

    ``code`` is a stable identifier such as ``NAN_VALUE``; ``indices`` are
    the local parameter numbers of the offending object, empty when the
    issue concerns the setup as a whole (e.g. ``UNDERDETERMINED``).
    """
    severity: Severity
    code: str
    message: str
    indices: tuple = ()

    def __str__(self) -> str:
        where = f" (parameters {', '.join(map(str, self.indices))})" if self.indices else ""
        return f"[{self.severity.name}] {self.code}: {self.message}{where}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_fit_setup(
    fit_objects: Sequence,
    constraints: Sequence = (),
    soft_constraints: Sequence = (),
    *,
    strict: bool = False,
) -> List[ValidationIssue]:
    """Validate fit objects and constraints before a fit.

    Parameters
    ----------
    fit_objects : sequence of BaseFitObject
    constraints : sequence of BaseHardConstraint
    soft_constraints : sequence of BaseSoftConstraint
    strict : bool, default False
        If True, raise ``ValueError`` on the first ERROR-level issue.

    Returns
    -------
    list of ValidationIssue
        All issues found, ordered by severity (errors first).

    Raises
    ------
    ValueError
        If *strict* is True and an ERROR-level issue is detected.
    """
    issues: List[ValidationIssue] = []
    nfree = 0
    nunm = 0

    for fo in fit_objects:
        values = np.array([fo.get_param(i) for i in range(fo.npar)])
        errors = np.array([fo.get_error(i) for i in range(fo.npar)])
        free = np.array([not fo.is_param_fixed(i) for i in range(fo.npar)], dtype=bool)
        measured = np.array([fo.is_param_measured(i) for i in range(fo.npar)], dtype=bool)

        nfree += int(np.count_nonzero(free))
        nunm += int(np.count_nonzero(free & ~measured))

        # --- NaN / Inf in values ------------------------------------------
        bad_val = np.where(~np.isfinite(values))[0]
        if len(bad_val) > 0:
            issues.append(ValidationIssue(
                Severity.ERROR, "NAN_VALUE",
                f"{fo.name}: {len(bad_val)} parameter(s) have NaN/Inf value",
                tuple(bad_val.tolist()),
            ))

        # --- NaN / Inf in errors ------------------------------------------
        bad_err = np.where(~np.isfinite(errors))[0]
        if len(bad_err) > 0:
            issues.append(ValidationIssue(
                Severity.ERROR, "NAN_ERROR",
                f"{fo.name}: {len(bad_err)} parameter(s) have NaN/Inf error",
                tuple(bad_err.tolist()),
            ))

        # --- Negative errors ----------------------------------------------
        neg_err = np.where(errors < 0)[0]
        if len(neg_err) > 0:
            issues.append(ValidationIssue(
                Severity.ERROR, "NEGATIVE_ERROR",
                f"{fo.name}: {len(neg_err)} parameter(s) have negative error",
                tuple(neg_err.tolist()),
            ))

        # --- Zero errors on free measured parameters ----------------------
        zero_err = np.where((errors == 0) & free & measured)[0]
        if len(zero_err) > 0:
            issues.append(ValidationIssue(
                Severity.WARNING, "ZERO_ERROR",
                f"{fo.name}: {len(zero_err)} free measured parameter(s) "
                f"have zero error and add no chi-square",
                tuple(zero_err.tolist()),
            ))

    ncon = len(constraints)
    nsoft = len(soft_constraints)

    # --- Under-determined system -----------------------------------------
    if nunm > ncon + nsoft:
        issues.append(ValidationIssue(
            Severity.WARNING, "UNDERDETERMINED",
            f"{nunm} unmeasured parameters but only {ncon} constraints "
            f"and {nsoft} soft constraints",
        ))

    # --- Nothing to fit --------------------------------------------------
    if nfree == 0 and ncon == 0:
        issues.append(ValidationIssue(
            Severity.WARNING, "NO_FREE_PARAMETERS",
            "No free parameters and no constraints; the fit is trivial",
        ))

    # --- Sort: errors first, then warnings -------------------------------
    issues.sort(key=lambda x: (0 if x.severity == Severity.ERROR else 1, x.code))

    # --- Strict mode: raise on first error -------------------------------
    if strict:
        for issue in issues:
            if issue.severity == Severity.ERROR:
                raise ValueError(str(issue))

    return issues


def validate_fitter(fitter, *, strict: bool = False) -> List[ValidationIssue]:
    """Convenience wrapper: validate everything registered with a fitter."""
    return validate_fit_setup(
        fitter.fit_objects,
        fitter.constraints,
        fitter.soft_constraints,
        strict=strict,
    )
