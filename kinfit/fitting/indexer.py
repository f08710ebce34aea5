"""Global parameter indexing for a fit.

Every free object parameter and every hard-constraint multiplier gets one
slot in the fitter's global vector:

    [ free params of object 0 | object 1 | ... | lambda_0 | lambda_1 | ... ]

Fixed parameters get index -1. The layout is assigned once per fit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexLayout:
    """Dimensions of the global system.

    Attributes
    ----------
    npar : int
        Number of free object parameters.
    ncon : int
        Number of hard constraints (multiplier slots).
    nsoft : int
        Number of soft constraints.
    nunm : int
        Number of free unmeasured parameters.
    """
    npar: int = 0
    ncon: int = 0
    nsoft: int = 0
    nunm: int = 0

    @property
    def idim(self) -> int:
        return self.npar + self.ncon


def assign_global_indices(
    fit_objects: Sequence,
    constraints: Sequence,
    soft_constraints: Sequence = (),
) -> IndexLayout:
    """Assign global indices to free parameters and hard constraints.

    Parameters
    ----------
    fit_objects : sequence of BaseFitObject
        In registration order.
    constraints : sequence of BaseHardConstraint
        In registration order.
    soft_constraints : sequence of BaseSoftConstraint
        Only counted.

    Returns
    -------
    IndexLayout
    """
    npar = 0
    nunm = 0
    for fo in fit_objects:
        for ilocal in range(fo.npar):
            if fo.is_param_fixed(ilocal):
                fo.set_global_par_num(ilocal, -1)
                continue
            logger.debug(
                f"parameter {fo.get_param_name(ilocal)} of {fo.name} "
                f"gets global number {npar}"
            )
            fo.set_global_par_num(ilocal, npar)
            npar += 1
            if not fo.is_param_measured(ilocal):
                nunm += 1

    ncon = len(constraints)
    for icon, c in enumerate(constraints):
        logger.debug(f"constraint {c.name} gets global number {npar + icon}")
        c.set_global_num(npar + icon)

    nsoft = len(soft_constraints)

    if nunm > ncon + nsoft:
        logger.warning(
            f"Under-determined system: {nunm} unmeasured parameters > "
            f"{ncon} constraints + {nsoft} soft constraints"
        )

    return IndexLayout(npar=npar, ncon=ncon, nsoft=nsoft, nunm=nunm)
