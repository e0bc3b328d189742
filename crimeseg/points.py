"""Labelled point sets and the study windows that bound them.

A PointSet is the immutable input to every later stage: incident locations in
a planar projected CRS, one class label per point, and the Window polygon
they were observed in. Every point of a PointSet lies inside its Window.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np
import pandas as pd
import shapely
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from crimeseg.errors import InvalidInputError

logger = logging.getLogger(__name__)

OutsidePolicy = Literal["reject", "drop"]


def readonly(values: np.ndarray) -> np.ndarray:
    """Mark an array as read-only and return it."""
    values.setflags(write=False)
    return values


@dataclass(frozen=True, eq=False)
class Window:
    """Study region polygon (or rectangle) in the planar CRS."""

    geometry: BaseGeometry

    def __post_init__(self) -> None:
        if self.geometry.is_empty or self.geometry.area <= 0:
            raise InvalidInputError("Window must have positive area")

    @classmethod
    def from_bounds(cls, xmin: float, ymin: float, xmax: float, ymax: float) -> "Window":
        """Create a rectangular window."""
        if xmax <= xmin or ymax <= ymin:
            raise InvalidInputError(
                f"Window bounds are degenerate: ({xmin}, {ymin}, {xmax}, {ymax})"
            )
        return cls(box(xmin, ymin, xmax, ymax))

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(xmin, ymin, xmax, ymax) of the window."""
        xmin, ymin, xmax, ymax = self.geometry.bounds
        return float(xmin), float(ymin), float(xmax), float(ymax)

    @property
    def area(self) -> float:
        return float(self.geometry.area)

    def contains(self, x: np.ndarray | float, y: np.ndarray | float) -> np.ndarray:
        """Test which coordinates fall inside the window (boundary included)."""
        return np.asarray(
            shapely.intersects_xy(
                self.geometry, np.asarray(x, dtype=float), np.asarray(y, dtype=float)
            )
        )

    def outline(self) -> list[np.ndarray]:
        """Boundary rings as (n, 2) coordinate arrays, for plotting."""
        boundary = self.geometry.boundary
        parts = getattr(boundary, "geoms", [boundary])
        return [np.asarray(part.coords)[:, :2] for part in parts]


@dataclass(frozen=True, eq=False)
class PointSet:
    """Ordered labelled points plus the Window they lie in.

    Use from_records(), from_frame() or from_arrays() to build one; the
    constructor itself only validates.
    """

    x: np.ndarray
    y: np.ndarray
    labels: np.ndarray
    window: Window

    def __post_init__(self) -> None:
        x = np.array(self.x, dtype=float)
        y = np.array(self.y, dtype=float)
        labels = np.array(self.labels, dtype=str)

        if x.ndim != 1 or x.shape != y.shape or x.shape != labels.shape:
            raise InvalidInputError(
                f"x, y and labels must be 1D arrays of equal length, "
                f"got {x.shape}, {y.shape}, {labels.shape}"
            )
        if len(x) == 0:
            raise InvalidInputError("PointSet is empty")
        if not (np.isfinite(x).all() and np.isfinite(y).all()):
            raise InvalidInputError("PointSet coordinates must be finite")
        if not self.window.contains(x, y).all():
            raise InvalidInputError("PointSet contains points outside its window")

        object.__setattr__(self, "x", readonly(x))
        object.__setattr__(self, "y", readonly(y))
        object.__setattr__(self, "labels", readonly(labels))

    @classmethod
    def from_arrays(
        cls,
        x: Sequence[float] | np.ndarray,
        y: Sequence[float] | np.ndarray,
        labels: Sequence[str] | np.ndarray,
        window: Window,
        outside: OutsidePolicy = "reject",
    ) -> "PointSet":
        """Build a PointSet, rejecting or dropping points outside the window.

        Args:
            x: X coordinates (planar CRS)
            y: Y coordinates (planar CRS)
            labels: Class label per point
            window: Study region
            outside: "reject" raises on any outside point, "drop" discards
                them with a warning

        Returns:
            Validated PointSet

        Raises:
            InvalidInputError: If points fall outside the window under
                "reject", or nothing is left after dropping
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        labels = np.asarray(labels, dtype=str)

        if outside == "drop" and x.shape == y.shape == labels.shape:
            inside = window.contains(x, y)
            dropped = int((~inside).sum())
            if dropped:
                logger.warning(f"Dropping {dropped:,} of {len(x):,} points outside the window")
                x, y, labels = x[inside], y[inside], labels[inside]

        return cls(x=x, y=y, labels=labels, window=window)

    @classmethod
    def from_records(
        cls,
        records: Iterable[tuple[float, float, str]],
        window: Window,
        outside: OutsidePolicy = "reject",
    ) -> "PointSet":
        """Build a PointSet from (x, y, label) tuples.

        Example:
            >>> window = Window.from_bounds(0, 0, 10, 10)
            >>> points = PointSet.from_records([(1, 1, "violent"), (9, 9, "non_violent")], window)
            >>> points.counts()
            {'non_violent': 1, 'violent': 1}
        """
        rows = list(records)
        if not rows:
            raise InvalidInputError("PointSet is empty")
        xs, ys, labels = zip(*rows, strict=True)
        return cls.from_arrays(xs, ys, labels, window, outside=outside)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        window: Window,
        outside: OutsidePolicy = "reject",
    ) -> "PointSet":
        """Build a PointSet from a DataFrame with x, y and label columns."""
        missing = {"x", "y", "label"} - set(df.columns)
        if missing:
            raise InvalidInputError(f"DataFrame is missing columns: {sorted(missing)}")
        return cls.from_arrays(
            df["x"].to_numpy(), df["y"].to_numpy(), df["label"].to_numpy(), window, outside=outside
        )

    def __len__(self) -> int:
        return len(self.x)

    @property
    def coordinates(self) -> np.ndarray:
        """(n, 2) array of point coordinates."""
        return np.column_stack([self.x, self.y])

    @property
    def classes(self) -> tuple[str, ...]:
        """Distinct labels in sorted order."""
        return tuple(str(label) for label in np.unique(self.labels))

    def counts(self) -> dict[str, int]:
        """Number of points per class."""
        labels, counts = np.unique(self.labels, return_counts=True)
        return {str(label): int(count) for label, count in zip(labels, counts, strict=True)}

    def require_classes(self, expected: Iterable[str] | None = None, minimum: int = 2) -> None:
        """Check the point set is usable for a segregation comparison.

        Args:
            expected: Classes that must each have at least one point
            minimum: Minimum number of distinct classes

        Raises:
            InvalidInputError: If a class is empty or too few classes exist
        """
        counts = self.counts()
        for label in expected or ():
            if counts.get(label, 0) == 0:
                raise InvalidInputError(f"Class '{label}' has no points")
        if len(counts) < minimum:
            raise InvalidInputError(
                f"Need at least {minimum} classes, found {len(counts)}: {sorted(counts)}"
            )

    def subset(self, label: str) -> "PointSet":
        """Points of a single class."""
        mask = self.labels == label
        if not mask.any():
            raise InvalidInputError(f"Class '{label}' has no points")
        return PointSet(
            x=self.x[mask], y=self.y[mask], labels=self.labels[mask], window=self.window
        )

    def with_labels(self, labels: Sequence[str] | np.ndarray) -> "PointSet":
        """Same locations with a different labelling (e.g. a permutation)."""
        return PointSet(
            x=self.x, y=self.y, labels=np.asarray(labels, dtype=str), window=self.window
        )

    def to_frame(self) -> pd.DataFrame:
        """Points as a DataFrame with x, y and label columns."""
        return pd.DataFrame({"x": self.x, "y": self.y, "label": self.labels})
