"""Tests for per-cell class probability grids."""

import logging

import numpy as np
import pytest
from shapely.geometry import Polygon

from crimeseg.density import estimate_class_densities, estimate_density
from crimeseg.errors import InvalidInputError
from crimeseg.grid import Grid
from crimeseg.points import PointSet, Window
from crimeseg.probability import probability_grid, probability_grids


@pytest.fixture
def scenario_grid() -> Grid:
    """20 x 20 unit cells over [-5, 15]^2."""
    return Grid.from_bounds(-5, -5, 15, 15, (20, 20))


@pytest.mark.parametrize("bandwidth", [1.0, 2.0])
def test_two_point_scenario(
    two_point_set: PointSet, scenario_grid: Grid, bandwidth: float
) -> None:
    """Probability is ~1 near the violent point, ~0 near the other, 0.5 between."""
    densities = estimate_class_densities(two_point_set, bandwidth, scenario_grid)
    probability = probability_grid(densities, "violent")

    assert probability.value_at(0, 0) > 0.99
    assert probability.value_at(10, 10) < 0.01
    # (4.5, 5.5) is equidistant from both points
    assert probability.value_at(4.5, 5.5) == pytest.approx(0.5, abs=1e-9)
    assert probability.value_at(5.5, 4.5) == pytest.approx(0.5, abs=1e-9)
    assert probability.defined.all()


def test_probabilities_sum_to_one(segregated_points: PointSet) -> None:
    """Class probabilities sum to one wherever they are defined."""
    grid = Grid.from_window(segregated_points.window, (16, 16))
    probabilities = probability_grids(estimate_class_densities(segregated_points, 1.0, grid))

    total = probabilities["violent"].values + probabilities["non_violent"].values
    np.testing.assert_allclose(total, 1.0)
    assert ((probabilities["violent"].values >= 0) & (probabilities["violent"].values <= 1)).all()


def test_single_class_is_one(two_point_set: PointSet, scenario_grid: Grid) -> None:
    """With only one surface, every defined cell has probability exactly 1."""
    surface = estimate_density(two_point_set.subset("violent"), 2.0, scenario_grid)
    probability = probability_grid({"violent": surface}, "violent")

    defined = probability.values[probability.defined]
    assert defined.size > 0
    assert (defined == 1.0).all()


def test_zero_total_is_nan(two_point_set: PointSet, scenario_grid: Grid) -> None:
    """Cells no kernel reaches are undefined, not zero."""
    densities = estimate_class_densities(two_point_set, 1.0, scenario_grid, kernel="tophat")
    probability = probability_grid(densities, "violent")

    assert np.isnan(probability.value_at(4.5, 5.5))
    assert probability.value_at(0, 0) == 1.0
    assert probability.value_at(10, 10) == 0.0


def test_density_floor(two_point_set: PointSet, scenario_grid: Grid) -> None:
    """Totals at or below the floor are undefined."""
    densities = estimate_class_densities(two_point_set, 2.0, scenario_grid)
    unfloored = probability_grid(densities, "violent")
    floored = probability_grid(densities, "violent", density_floor=1e-3)

    assert unfloored.defined.all()
    assert not floored.defined.all()
    assert floored.defined.any()


def test_all_nan_warns(
    two_point_set: PointSet, scenario_grid: Grid, caplog: pytest.LogCaptureFixture
) -> None:
    """A bandwidth too small to reach any cell centre leaves nothing defined."""
    densities = estimate_class_densities(two_point_set, 0.1, scenario_grid, kernel="tophat")

    with caplog.at_level(logging.WARNING):
        probability = probability_grid(densities, "violent")

    assert not probability.defined.any()
    assert "undefined everywhere" in caplog.text


def test_outside_window_is_nan() -> None:
    """Cells whose centre is outside the window are undefined."""
    window = Window(Polygon([(0, 0), (10, 0), (0, 10)]))
    points = PointSet.from_records([(1, 1, "violent"), (2, 1, "non_violent")], window)
    grid = Grid.from_window(window, (10, 10))
    probability = probability_grid(estimate_class_densities(points, 2.0, grid), "violent")

    assert np.isnan(probability.value_at(9.5, 9.5))
    assert not np.isnan(probability.value_at(0.5, 0.5))
    np.testing.assert_array_equal(probability.defined, grid.inside)


def test_unknown_target(two_point_set: PointSet, scenario_grid: Grid) -> None:
    """The target must be one of the surfaces."""
    densities = estimate_class_densities(two_point_set, 2.0, scenario_grid)
    with pytest.raises(InvalidInputError, match="Target class 'arson'"):
        probability_grid(densities, "arson")


def test_no_surfaces() -> None:
    """An empty mapping is invalid input."""
    with pytest.raises(InvalidInputError, match="At least one density surface"):
        probability_grid({}, "violent")


def test_misaligned_grids(two_point_set: PointSet, scenario_grid: Grid) -> None:
    """Surfaces on different grids cannot be combined."""
    other_grid = Grid.from_bounds(-5, -5, 15, 15, (10, 10))
    surfaces = {
        "violent": estimate_density(two_point_set.subset("violent"), 2.0, scenario_grid),
        "non_violent": estimate_density(two_point_set.subset("non_violent"), 2.0, other_grid),
    }
    with pytest.raises(InvalidInputError, match="does not align"):
        probability_grid(surfaces, "violent")
