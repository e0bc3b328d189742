"""Monte Carlo label-permutation test for spatial segregation.

Under the null hypothesis of no segregation, class labels are exchangeable
among the observed locations. Each trial shuffles the labels, recomputes the
class probability grids and records, per cell, whether the shuffled
probability is at least as large as the observed one. Ties count as "at
least as extreme". The per-cell p-value is that count divided by the number
of completed trials.

Trial i draws its shuffle from the i-th child of SeedSequence(seed), so a run
is reproducible for a given seed no matter how many workers execute it.
Trials return their own count grids and are merged by integer summation.
"""

import logging
import threading
import time
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from types import MappingProxyType

import numpy as np

from crimeseg.density import check_bandwidth, estimate_class_densities, intensity_at_points
from crimeseg.errors import InvalidInputError, SimulationInterruptedError
from crimeseg.grid import DensitySurface, Grid, ProbabilityGrid, SignificanceGrid
from crimeseg.points import PointSet
from crimeseg.probability import probability_grids

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SegregationResult:
    """Observed densities, probabilities and permutation-test significance per class."""

    bandwidth: float
    densities: Mapping[str, DensitySurface]
    probabilities: Mapping[str, ProbabilityGrid]
    significance: Mapping[str, SignificanceGrid]
    statistic: float
    statistic_p_value: float
    n_simulations_requested: int
    n_simulations_completed: int
    seed: int

    @property
    def interrupted(self) -> bool:
        """True if fewer trials ran than were requested."""
        return self.n_simulations_completed < self.n_simulations_requested

    @property
    def classes(self) -> tuple[str, ...]:
        return tuple(self.probabilities)


def loo_class_probabilities(intensities: np.ndarray, priors: np.ndarray) -> np.ndarray:
    """Row-normalise per-point class intensities.

    Rows with zero total intensity (isolated points at this bandwidth) fall
    back to the overall class proportions.
    """
    totals = intensities.sum(axis=1, keepdims=True)
    isolated = totals[:, 0] <= 0
    probabilities = np.divide(
        intensities, totals, out=np.zeros_like(intensities), where=totals > 0
    )
    probabilities[isolated] = priors
    return probabilities


def class_priors(points: PointSet, classes: Sequence[str]) -> np.ndarray:
    """Overall proportion of points in each class."""
    counts = points.counts()
    return np.array([counts.get(label, 0) for label in classes], dtype=float) / len(points)


def segregation_statistic(
    points: PointSet,
    bandwidth: float,
    kernel: str = "gaussian",
    classes: Sequence[str] | None = None,
) -> float:
    """Global segregation statistic T.

    T = sum_i sum_j (p_j(x_i) - p_j)^2, where p_j(x_i) is the leave-one-out
    probability of class j at data point i and p_j the overall proportion
    of class j. Large values mean the classes are spatially separated.
    """
    classes = list(classes or points.classes)
    priors = class_priors(points, classes)
    intensities = intensity_at_points(points, bandwidth, kernel, classes, leave_one_out=True)
    probabilities = loo_class_probabilities(intensities, priors)
    return float(((probabilities - priors) ** 2).sum())


def _run_trial(
    points: PointSet,
    bandwidth: float,
    grid: Grid,
    kernel: str,
    classes: Sequence[str],
    observed: np.ndarray,
    density_floor: float,
    seed: np.random.SeedSequence,
) -> tuple[np.ndarray, float]:
    """Run one permutation and return its exceedance counts and statistic."""
    rng = np.random.default_rng(seed)
    shuffled = points.with_labels(rng.permutation(points.labels))

    densities = estimate_class_densities(shuffled, bandwidth, grid, kernel)
    probabilities = probability_grids(densities, density_floor)
    simulated = np.stack([probabilities[label].values for label in classes])

    # NaN compares False, so undefined cells never count
    counts = (simulated >= observed).astype(np.int64)
    statistic = segregation_statistic(shuffled, bandwidth, kernel, classes)
    return counts, statistic


def run_segregation_test(
    points: PointSet,
    bandwidth: float,
    grid: Grid,
    n_simulations: int = 99,
    significance_threshold: float = 0.05,
    kernel: str = "gaussian",
    random_seed: int | None = None,
    density_floor: float = 0.0,
    n_workers: int = 1,
    max_seconds: float | None = None,
    stop_event: threading.Event | None = None,
) -> SegregationResult:
    """Test every grid cell for segregation by permuting class labels.

    Args:
        points: Labelled points with at least two classes
        bandwidth: Fixed kernel bandwidth
        grid: Grid the probabilities are evaluated on
        n_simulations: Number of label permutations N; the smallest
            resolvable p-value is 1/N
        significance_threshold: Cells with p-value below this are significant
        kernel: scikit-learn kernel name
        random_seed: Seed for the permutation sequence; None draws fresh
            entropy, which is recorded on the result
        density_floor: Totals at or below this make a cell undefined
        n_workers: Threads running trials concurrently
        max_seconds: Stop starting new trials after this many seconds
        stop_event: Stop starting new trials once this event is set

    Returns:
        SegregationResult; if stopped early, n_simulations_completed is
        smaller than n_simulations_requested and p-values use the completed
        count

    Raises:
        InvalidInputError: If n_simulations < 1, the threshold is outside
            (0, 1), the bandwidth is not positive or fewer than two classes
            have points
        SimulationInterruptedError: If stopped before any trial completed

    Example:
        >>> window = Window.from_bounds(0, 0, 10, 10)
        >>> points = PointSet.from_records([(1, 1, "violent"), (9, 9, "non_violent")], window)
        >>> grid = Grid.from_window(window, (16, 16))
        >>> result = run_segregation_test(points, 2.0, grid, n_simulations=19, random_seed=1)
        >>> result.n_simulations_completed
        19
    """
    if n_simulations < 1:
        raise InvalidInputError(f"n_simulations must be at least 1, got {n_simulations}")
    if not 0 < significance_threshold < 1:
        raise InvalidInputError(
            f"Significance threshold must be in (0, 1), got {significance_threshold}"
        )
    if n_workers < 1:
        raise InvalidInputError(f"n_workers must be at least 1, got {n_workers}")
    check_bandwidth(bandwidth)
    points.require_classes(minimum=2)

    classes = points.classes
    seed_sequence = np.random.SeedSequence(random_seed)
    trial_seeds = seed_sequence.spawn(n_simulations)

    logger.info(
        f"Segregation test: {len(points):,} points, classes {list(classes)}, "
        f"h={bandwidth:g}, N={n_simulations}, grid {grid.shape}"
    )

    densities = estimate_class_densities(points, bandwidth, grid, kernel)
    probabilities = probability_grids(densities, density_floor)
    observed = np.stack([probabilities[label].values for label in classes])
    observed_statistic = segregation_statistic(points, bandwidth, kernel, classes)

    deadline = time.monotonic() + max_seconds if max_seconds is not None else None

    def should_stop() -> bool:
        if stop_event is not None and stop_event.is_set():
            return True
        return deadline is not None and time.monotonic() >= deadline

    counts = np.zeros(observed.shape, dtype=np.int64)
    statistics: list[float] = []
    trial_args = (points, bandwidth, grid, kernel, classes, observed, density_floor)

    if n_workers == 1:
        for trial_seed in trial_seeds:
            if should_stop():
                break
            trial_counts, statistic = _run_trial(*trial_args, trial_seed)
            counts += trial_counts
            statistics.append(statistic)
    else:
        if should_stop():
            raise SimulationInterruptedError("Segregation test stopped before any trial completed")
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [executor.submit(_run_trial, *trial_args, seed) for seed in trial_seeds]
            for future in as_completed(futures):
                trial_counts, statistic = future.result()
                counts += trial_counts
                statistics.append(statistic)
                if should_stop():
                    executor.shutdown(wait=True, cancel_futures=True)
                    break

    completed = len(statistics)
    if completed == 0:
        raise SimulationInterruptedError("Segregation test stopped before any trial completed")
    if completed < n_simulations:
        logger.warning(
            f"Segregation test interrupted: {completed} of {n_simulations} trials completed"
        )

    significance: dict[str, SignificanceGrid] = {}
    for j, label in enumerate(classes):
        p_values = counts[j] / completed
        p_values[np.isnan(observed[j])] = np.nan
        significance[label] = SignificanceGrid(
            grid=grid,
            values=np.nan_to_num(p_values, nan=1.0) < significance_threshold,
            label=label,
            p_values=p_values,
            threshold=significance_threshold,
            n_simulations=completed,
        )

    exceedances = int(np.sum(np.asarray(statistics) >= observed_statistic))
    statistic_p_value = (exceedances + 1) / (completed + 1)

    for label in classes:
        logger.info(f"  {label}: {significance[label].n_significant:,} significant cells")
    logger.info(f"  Global statistic T={observed_statistic:.4f}, p={statistic_p_value:.3f}")

    return SegregationResult(
        bandwidth=float(bandwidth),
        densities=MappingProxyType(densities),
        probabilities=MappingProxyType(probabilities),
        significance=MappingProxyType(significance),
        statistic=observed_statistic,
        statistic_p_value=statistic_p_value,
        n_simulations_requested=n_simulations,
        n_simulations_completed=completed,
        seed=int(seed_sequence.entropy),  # type: ignore[arg-type]
    )
