"""Tests for kernel density surfaces."""

import numpy as np
import pytest

from crimeseg.density import (
    estimate_class_densities,
    estimate_density,
    intensity_at_points,
    kernel_peak,
)
from crimeseg.errors import InvalidInputError
from crimeseg.grid import Grid
from crimeseg.points import PointSet, Window


def single_point(x: float = 5.0, y: float = 5.0, label: str = "violent") -> PointSet:
    return PointSet.from_records([(x, y, label)], Window.from_bounds(0, 0, 10, 10))


def test_kernel_peak_gaussian() -> None:
    """A 2D Gaussian kernel peaks at 1 / (2 pi h^2)."""
    assert kernel_peak(1.0) == pytest.approx(1 / (2 * np.pi), rel=1e-6)
    assert kernel_peak(2.0) == pytest.approx(1 / (8 * np.pi), rel=1e-6)


def test_density_mass_converges_with_resolution() -> None:
    """Total mass approaches the point count as the grid is refined."""
    points = single_point()
    coarse = estimate_density(points, 0.5, Grid.from_bounds(0, 0, 10, 10, (10, 10)))
    fine = estimate_density(points, 0.5, Grid.from_bounds(0, 0, 10, 10, (128, 128)))

    coarse_error = abs(coarse.total_mass() - 1.0)
    fine_error = abs(fine.total_mass() - 1.0)

    assert fine_error < 1e-3
    assert fine_error < coarse_error


def test_density_scales_with_point_count() -> None:
    """Three coincident points give three times the intensity of one."""
    window = Window.from_bounds(0, 0, 10, 10)
    grid = Grid.from_bounds(0, 0, 10, 10, (20, 20))
    one = estimate_density(single_point(), 1.0, grid)
    three = estimate_density(
        PointSet.from_records([(5, 5, "violent")] * 3, window), 1.0, grid
    )

    np.testing.assert_allclose(three.values, 3 * one.values)
    assert three.n_points == 3


def test_density_peaks_at_point() -> None:
    """Intensity is highest in the cell containing the point."""
    grid = Grid.from_bounds(0, 0, 10, 10, (10, 10))
    surface = estimate_density(single_point(2.5, 7.5), 1.0, grid)

    row, col = np.unravel_index(np.argmax(surface.values), surface.values.shape)
    assert (row, col) == grid.index_of(2.5, 7.5)


def test_density_metadata(segregated_points: PointSet) -> None:
    """Surfaces record bandwidth, kernel and label."""
    grid = Grid.from_window(segregated_points.window, (16, 16))
    surface = estimate_density(segregated_points, 1.5, grid, kernel="epanechnikov")

    assert surface.label == "all"
    assert surface.bandwidth == 1.5
    assert surface.kernel == "epanechnikov"
    assert surface.n_points == len(segregated_points)
    assert (surface.values >= 0).all()


def test_tophat_density_is_zero_far_away() -> None:
    """Compact kernels leave distant cells at exactly zero."""
    grid = Grid.from_bounds(0, 0, 10, 10, (10, 10))
    surface = estimate_density(single_point(0.5, 0.5), 1.0, grid, kernel="tophat")

    assert surface.value_at(0.5, 0.5) > 0
    assert surface.value_at(9.5, 9.5) == 0.0


@pytest.mark.parametrize("bandwidth", [0.0, -1.0, np.nan, np.inf])
def test_invalid_bandwidth(bandwidth: float) -> None:
    """Bandwidth must be a positive finite number."""
    grid = Grid.from_bounds(0, 0, 10, 10, (10, 10))
    with pytest.raises(InvalidInputError, match="Bandwidth must be positive"):
        estimate_density(single_point(), bandwidth, grid)


def test_class_densities(segregated_points: PointSet) -> None:
    """One surface per class, each labelled and sized by its class."""
    grid = Grid.from_window(segregated_points.window, (16, 16))
    densities = estimate_class_densities(segregated_points, 1.0, grid)

    assert set(densities) == {"violent", "non_violent"}
    assert densities["violent"].label == "violent"
    assert densities["violent"].n_points == 50
    assert densities["violent"].value_at(2.5, 2.5) > densities["non_violent"].value_at(2.5, 2.5)
    assert densities["non_violent"].value_at(7.5, 7.5) > densities["violent"].value_at(7.5, 7.5)


def test_intensity_at_points_leave_one_out(two_point_set: PointSet) -> None:
    """Leaving a point out removes its own kernel from its class column."""
    classes = ["violent", "non_violent"]
    full = intensity_at_points(two_point_set, 1.0, classes=classes, leave_one_out=False)
    loo = intensity_at_points(two_point_set, 1.0, classes=classes, leave_one_out=True)

    assert full.shape == (2, 2)
    assert full[0, 0] == pytest.approx(kernel_peak(1.0))
    assert loo[0, 0] == pytest.approx(0.0, abs=1e-12)
    assert loo[1, 1] == pytest.approx(0.0, abs=1e-12)
    # Other-class columns are unaffected
    assert loo[0, 1] == pytest.approx(full[0, 1])


def test_intensity_at_points_missing_class(two_point_set: PointSet) -> None:
    """Classes with no points get a zero column."""
    intensities = intensity_at_points(two_point_set, 1.0, classes=["violent", "arson"])
    np.testing.assert_array_equal(intensities[:, 1], [0.0, 0.0])
