"""Bandwidth selection for class probability surfaces.

Two scores are available, both evaluated on leave-one-out class
probabilities at the data points:

- "permutation": standardised segregation statistic,
  (T_obs - mean(T_perm)) / std(T_perm), over label shuffles. The same
  shuffles are reused for every candidate so scores are comparable.
- "likelihood": cross-validated log-likelihood of each point's own class.

The candidate with the highest score wins.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np
import pandas as pd

from crimeseg.density import intensity_at_points
from crimeseg.errors import InvalidInputError
from crimeseg.points import PointSet, Window, readonly
from crimeseg.segregation import class_priors, loo_class_probabilities, segregation_statistic

logger = logging.getLogger(__name__)

SelectionMethod = Literal["permutation", "likelihood"]


@dataclass(frozen=True, eq=False)
class BandwidthSelection:
    """Chosen bandwidth plus the full score curve."""

    bandwidth: float
    candidates: np.ndarray
    scores: np.ndarray
    method: str

    def to_frame(self) -> pd.DataFrame:
        """Score curve as a DataFrame for plotting."""
        return pd.DataFrame(
            {
                "bandwidth": self.candidates,
                "score": self.scores,
                "selected": self.candidates == self.bandwidth,
            }
        )


def default_bandwidth_candidates(window: Window, n: int = 16) -> np.ndarray:
    """Geometric range from 1/100 to 1/5 of the window's bounding-box diagonal."""
    xmin, ymin, xmax, ymax = window.bounds
    diagonal = float(np.hypot(xmax - xmin, ymax - ymin))
    return np.geomspace(diagonal / 100, diagonal / 5, n)


def likelihood_score(
    points: PointSet,
    bandwidth: float,
    kernel: str = "gaussian",
    classes: Sequence[str] | None = None,
) -> float:
    """Leave-one-out log-likelihood of each point's observed class."""
    classes = list(classes or points.classes)
    priors = class_priors(points, classes)
    intensities = intensity_at_points(points, bandwidth, kernel, classes, leave_one_out=True)
    probabilities = loo_class_probabilities(intensities, priors)

    column = {label: j for j, label in enumerate(classes)}
    own_class = np.array([column[label] for label in points.labels])
    own = probabilities[np.arange(len(points)), own_class]
    with np.errstate(divide="ignore"):
        return float(np.log(own).sum())


def permutation_score(
    points: PointSet,
    bandwidth: float,
    rng: np.random.Generator,
    n_permutations: int = 19,
    kernel: str = "gaussian",
    classes: Sequence[str] | None = None,
) -> float:
    """Standardised segregation statistic against label shuffles.

    Returns NaN when the shuffled statistics have no spread.
    """
    observed = segregation_statistic(points, bandwidth, kernel, classes)
    simulated = np.array(
        [
            segregation_statistic(
                points.with_labels(rng.permutation(points.labels)), bandwidth, kernel, classes
            )
            for _ in range(n_permutations)
        ]
    )
    spread = simulated.std(ddof=1)
    if not np.isfinite(spread) or spread == 0:
        return float("nan")
    return float((observed - simulated.mean()) / spread)


def select_bandwidth(
    points: PointSet,
    candidates: Sequence[float] | np.ndarray | None = None,
    kernel: str = "gaussian",
    method: SelectionMethod = "permutation",
    n_permutations: int = 19,
    random_seed: int | None = None,
    classes: Sequence[str] | None = None,
) -> BandwidthSelection:
    """Pick the bandwidth that best separates the classes.

    Args:
        points: Labelled points
        candidates: Bandwidths to evaluate; defaults to
            default_bandwidth_candidates(points.window)
        kernel: scikit-learn kernel name
        method: "permutation" or "likelihood"
        n_permutations: Label shuffles per candidate ("permutation" only)
        random_seed: Seed for the shuffles
        classes: Classes that must each have at least one point

    Returns:
        BandwidthSelection with the chosen bandwidth and the score curve

    Raises:
        InvalidInputError: If fewer than two classes have points, a candidate
            is not positive, or no candidate produced a finite score
    """
    points.require_classes(classes, minimum=2)
    if points.window.area <= 0:
        raise InvalidInputError("Window has zero area")

    if candidates is None:
        candidates = default_bandwidth_candidates(points.window)
    candidates = np.sort(np.asarray(candidates, dtype=float))
    if candidates.size == 0:
        raise InvalidInputError("At least one candidate bandwidth is required")
    if not (np.isfinite(candidates).all() and (candidates > 0).all()):
        raise InvalidInputError(f"Candidate bandwidths must be positive: {candidates.tolist()}")
    if method not in ("permutation", "likelihood"):
        raise InvalidInputError(f"Unknown bandwidth selection method: {method}")
    if method == "permutation" and n_permutations < 2:
        raise InvalidInputError(f"n_permutations must be at least 2, got {n_permutations}")

    logger.info(
        f"Selecting bandwidth ({method}) from {candidates.size} candidates "
        f"in [{candidates[0]:g}, {candidates[-1]:g}]"
    )

    seed_sequence = np.random.SeedSequence(random_seed)
    scores = np.empty(candidates.size)
    for i, bandwidth in enumerate(candidates):
        if method == "likelihood":
            scores[i] = likelihood_score(points, bandwidth, kernel)
        else:
            rng = np.random.default_rng(seed_sequence)
            scores[i] = permutation_score(points, bandwidth, rng, n_permutations, kernel)
        logger.debug(f"  h={bandwidth:g}: score {scores[i]:.4f}")

    finite = np.isfinite(scores)
    if not finite.any():
        raise InvalidInputError("No candidate bandwidth produced a finite score")

    best = int(np.argmax(np.where(finite, scores, -np.inf)))
    selected = float(candidates[best])
    logger.info(f"  Selected bandwidth {selected:g} (score {scores[best]:.4f})")

    return BandwidthSelection(
        bandwidth=selected,
        candidates=readonly(candidates),
        scores=readonly(scores),
        method=method,
    )
