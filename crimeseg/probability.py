"""Per-cell class probabilities from class density surfaces."""

import logging
from collections.abc import Mapping

import numpy as np

from crimeseg.errors import InvalidInputError
from crimeseg.grid import DensitySurface, ProbabilityGrid

logger = logging.getLogger(__name__)


def probability_grid(
    surfaces: Mapping[str, DensitySurface],
    target: str,
    density_floor: float = 0.0,
) -> ProbabilityGrid:
    """Compute target density / total density for every grid cell.

    Cells where the total density is at or below `density_floor`, or whose
    centre lies outside the window, are NaN. Callers treat NaN as "no data"
    and leave those cells out of contouring and colouring.

    Args:
        surfaces: Class label -> DensitySurface, all on the same grid
        target: Class whose probability is computed
        density_floor: Totals at or below this are treated as zero

    Returns:
        ProbabilityGrid with values in [0, 1] or NaN

    Raises:
        InvalidInputError: If no surfaces are given, the target is unknown, or
            the surfaces are not on identical grids
    """
    if not surfaces:
        raise InvalidInputError("At least one density surface is required")
    if target not in surfaces:
        raise InvalidInputError(
            f"Target class '{target}' has no density surface (have {sorted(surfaces)})"
        )

    grid = surfaces[target].grid
    for label, surface in surfaces.items():
        if not surface.grid.matches(grid):
            raise InvalidInputError(
                f"Surface '{label}' grid {surface.grid.shape} does not align with "
                f"'{target}' grid {grid.shape}"
            )

    total = np.sum(np.stack([surface.values for surface in surfaces.values()]), axis=0)
    defined = (total > density_floor) & grid.inside

    values = np.full(grid.shape, np.nan)
    values[defined] = surfaces[target].values[defined] / total[defined]

    if not defined.any():
        logger.warning(
            f"Probability grid for '{target}' is undefined everywhere; "
            "total density is zero at this bandwidth"
        )

    return ProbabilityGrid(grid=grid, values=values, label=target)


def probability_grids(
    surfaces: Mapping[str, DensitySurface],
    density_floor: float = 0.0,
) -> dict[str, ProbabilityGrid]:
    """Compute a ProbabilityGrid for every class."""
    return {label: probability_grid(surfaces, label, density_floor) for label in surfaces}
