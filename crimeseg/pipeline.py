"""Segregation surface builder.

Chains the stages explicitly: bandwidth selection (unless fixed), per-class
density estimation, probability grids and the permutation test. Each stage's
output is an immutable value passed to the next; the final
SegregationSurface carries all of them.
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass

from crimeseg.bandwidth import BandwidthSelection, select_bandwidth
from crimeseg.config import Config
from crimeseg.grid import DensitySurface, Grid, ProbabilityGrid, SignificanceGrid
from crimeseg.points import PointSet
from crimeseg.segregation import SegregationResult, run_segregation_test

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SegregationSurface:
    """Everything derived from one PointSet at one bandwidth."""

    points: PointSet
    grid: Grid
    bandwidth: float
    selection: BandwidthSelection | None
    result: SegregationResult
    target_class: str

    @property
    def densities(self) -> Mapping[str, DensitySurface]:
        return self.result.densities

    @property
    def probability(self) -> ProbabilityGrid:
        """Probability grid of the target class."""
        return self.result.probabilities[self.target_class]

    @property
    def significance(self) -> SignificanceGrid:
        """Significance grid of the target class."""
        return self.result.significance[self.target_class]


def build_segregation_surface(
    points: PointSet,
    config: Config | None = None,
    bandwidth: float | None = None,
    stop_event: threading.Event | None = None,
) -> SegregationSurface:
    """Run the full pipeline on a labelled point set.

    Args:
        points: Labelled points; must contain the target class and at least
            one other class
        config: Configuration object (defaults to Config())
        bandwidth: Fixed bandwidth; overrides config.surface.bandwidth. When
            neither is set the bandwidth is selected from the candidates
        stop_event: Forwarded to the permutation test for early termination

    Returns:
        SegregationSurface

    Raises:
        InvalidInputError: If the input is unusable (see individual stages)
        SimulationInterruptedError: If stopped before any trial completed

    Example:
        >>> surface = build_segregation_surface(points, Config.from_file("config.toml"))
        >>> overlay = compose_overlay(surface.probability, surface.significance, points.window)
    """
    config = config or Config()
    surface_config = config.surface
    simulation = config.simulation
    target = surface_config.target_class

    points.require_classes([target], minimum=2)
    grid = Grid.from_window(points.window, surface_config.grid_resolution)

    selection: BandwidthSelection | None = None
    if bandwidth is None:
        bandwidth = surface_config.bandwidth
    if bandwidth is None:
        selection = select_bandwidth(
            points,
            candidates=surface_config.bandwidth_candidates or None,
            kernel=surface_config.kernel,
            method=surface_config.bandwidth_method,
            n_permutations=surface_config.bandwidth_permutations,
            random_seed=simulation.random_seed,
            classes=[target],
        )
        bandwidth = selection.bandwidth

    logger.info(f"Building segregation surface for '{target}' at h={bandwidth:g}")

    result = run_segregation_test(
        points,
        bandwidth,
        grid,
        n_simulations=simulation.n_simulations,
        significance_threshold=simulation.significance_threshold,
        kernel=surface_config.kernel,
        random_seed=simulation.random_seed,
        density_floor=surface_config.density_floor,
        n_workers=simulation.n_workers,
        max_seconds=simulation.max_seconds,
        stop_event=stop_event,
    )

    return SegregationSurface(
        points=points,
        grid=grid,
        bandwidth=float(bandwidth),
        selection=selection,
        result=result,
        target_class=target,
    )
