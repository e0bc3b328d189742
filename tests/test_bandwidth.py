"""Tests for bandwidth selection."""

import numpy as np
import pytest

from crimeseg.bandwidth import (
    default_bandwidth_candidates,
    likelihood_score,
    permutation_score,
    select_bandwidth,
)
from crimeseg.errors import InvalidInputError
from crimeseg.points import PointSet, Window

CANDIDATES = [0.5, 1.0, 2.0, 4.0]


def test_default_candidates(square_window: Window) -> None:
    """Defaults span 1/100 to 1/5 of the bounding-box diagonal."""
    candidates = default_bandwidth_candidates(square_window)
    diagonal = np.hypot(10, 10)

    assert len(candidates) == 16
    assert candidates[0] == pytest.approx(diagonal / 100)
    assert candidates[-1] == pytest.approx(diagonal / 5)
    assert (np.diff(candidates) > 0).all()


def test_select_bandwidth_permutation(segregated_points: PointSet) -> None:
    """Permutation selection returns one of the candidates and the full curve."""
    selection = select_bandwidth(segregated_points, CANDIDATES, random_seed=7, n_permutations=9)

    assert selection.bandwidth in CANDIDATES
    assert selection.method == "permutation"
    assert selection.candidates.tolist() == CANDIDATES
    assert selection.scores.shape == (4,)
    assert np.nanmax(selection.scores) == selection.scores[CANDIDATES.index(selection.bandwidth)]


def test_select_bandwidth_is_deterministic(segregated_points: PointSet) -> None:
    """The same seed gives the same scores."""
    first = select_bandwidth(segregated_points, CANDIDATES, random_seed=3, n_permutations=9)
    second = select_bandwidth(segregated_points, CANDIDATES, random_seed=3, n_permutations=9)

    np.testing.assert_array_equal(first.scores, second.scores)
    assert first.bandwidth == second.bandwidth


def test_select_bandwidth_sorts_candidates(segregated_points: PointSet) -> None:
    """Candidates are evaluated in ascending order."""
    selection = select_bandwidth(
        segregated_points, [4.0, 0.5, 2.0], method="likelihood", random_seed=1
    )
    assert selection.candidates.tolist() == [0.5, 2.0, 4.0]


def test_select_bandwidth_likelihood(segregated_points: PointSet) -> None:
    """Likelihood selection scores every candidate."""
    selection = select_bandwidth(segregated_points, CANDIDATES, method="likelihood")

    assert selection.method == "likelihood"
    assert np.isfinite(selection.scores).any()
    assert selection.bandwidth in CANDIDATES


def test_selection_frame(segregated_points: PointSet) -> None:
    """to_frame() marks exactly one selected bandwidth."""
    selection = select_bandwidth(segregated_points, CANDIDATES, method="likelihood")
    df = selection.to_frame()

    assert list(df.columns) == ["bandwidth", "score", "selected"]
    assert df["selected"].sum() == 1
    assert df.loc[df["selected"], "bandwidth"].item() == selection.bandwidth


def test_permutation_score_separates_patterns(
    segregated_points: PointSet, mixed_points: PointSet
) -> None:
    """Segregated data scores far above randomly labelled data."""
    segregated = permutation_score(segregated_points, 1.0, np.random.default_rng(0), 19)
    mixed = permutation_score(mixed_points, 1.0, np.random.default_rng(0), 19)

    assert segregated > 2.0
    assert segregated > mixed


def test_likelihood_score_prefers_own_class(segregated_points: PointSet) -> None:
    """Own-class log-likelihood beats the shuffled-label likelihood."""
    shuffled = segregated_points.with_labels(
        np.random.default_rng(0).permutation(segregated_points.labels)
    )
    assert likelihood_score(segregated_points, 1.0) > likelihood_score(shuffled, 1.0)


def test_select_bandwidth_single_class(square_window: Window) -> None:
    """Bandwidth selection needs two classes."""
    points = PointSet.from_records([(1, 1, "violent"), (2, 2, "violent")], square_window)
    with pytest.raises(InvalidInputError, match="at least 2 classes"):
        select_bandwidth(points, CANDIDATES)


def test_select_bandwidth_missing_target(segregated_points: PointSet) -> None:
    """A required class with no points is reported."""
    with pytest.raises(InvalidInputError, match="Class 'arson' has no points"):
        select_bandwidth(segregated_points, CANDIDATES, classes=["arson"])


@pytest.mark.parametrize("candidates", [[], [0.0, 1.0], [-1.0], [np.inf]])
def test_select_bandwidth_invalid_candidates(
    segregated_points: PointSet, candidates: list[float]
) -> None:
    """Candidates must be a non-empty list of positive numbers."""
    with pytest.raises(InvalidInputError):
        select_bandwidth(segregated_points, candidates)


def test_select_bandwidth_unknown_method(segregated_points: PointSet) -> None:
    """Only the two documented methods are accepted."""
    with pytest.raises(InvalidInputError, match="Unknown bandwidth selection method"):
        select_bandwidth(
            segregated_points, CANDIDATES, method="silverman"  # type: ignore[arg-type]
        )


def test_select_bandwidth_too_few_permutations(segregated_points: PointSet) -> None:
    """A standardised score needs at least two shuffles."""
    with pytest.raises(InvalidInputError, match="n_permutations"):
        select_bandwidth(segregated_points, CANDIDATES, n_permutations=1)
