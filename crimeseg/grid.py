"""Regular grids and the per-class surfaces computed on them.

Values are stored as 2D arrays indexed [row, col] = [y index, x index], with
cell-centre coordinates kept alongside. Every surface can be handed to a
plotting or export layer as an (x, y, values) triple.
"""

from dataclasses import dataclass

import numpy as np

from crimeseg.errors import InvalidInputError
from crimeseg.points import Window, readonly


@dataclass(frozen=True, eq=False)
class Grid:
    """Regular raster of cells over a window's bounding box."""

    x: np.ndarray
    y: np.ndarray
    inside: np.ndarray

    def __post_init__(self) -> None:
        x = np.array(self.x, dtype=float)
        y = np.array(self.y, dtype=float)
        inside = np.array(self.inside, dtype=bool)
        if len(x) < 2 or len(y) < 2:
            raise InvalidInputError("Grid needs at least 2 cells along each axis")
        if inside.shape != (len(y), len(x)):
            raise InvalidInputError(
                f"Inside mask shape {inside.shape} does not match grid {(len(y), len(x))}"
            )
        object.__setattr__(self, "x", readonly(x))
        object.__setattr__(self, "y", readonly(y))
        object.__setattr__(self, "inside", readonly(inside))

    @classmethod
    def from_bounds(
        cls,
        xmin: float,
        ymin: float,
        xmax: float,
        ymax: float,
        resolution: tuple[int, int],
        window: Window | None = None,
    ) -> "Grid":
        """Create a grid of cell centres covering the given bounds.

        Args:
            xmin, ymin, xmax, ymax: Extent covered by the cells
            resolution: (nx, ny) number of columns and rows
            window: Optional window; cells whose centre is outside it are
                flagged in the inside mask

        Returns:
            Grid with nx * ny cells

        Example:
            >>> grid = Grid.from_bounds(-5, -5, 15, 15, (20, 20))
            >>> grid.x[:3]
            array([-4.5, -3.5, -2.5])
        """
        nx, ny = resolution
        if nx < 2 or ny < 2:
            raise InvalidInputError(f"Grid resolution must be at least 2x2, got {resolution}")
        if xmax <= xmin or ymax <= ymin:
            raise InvalidInputError(
                f"Grid bounds are degenerate: ({xmin}, {ymin}, {xmax}, {ymax})"
            )

        dx = (xmax - xmin) / nx
        dy = (ymax - ymin) / ny
        x = xmin + dx * (np.arange(nx) + 0.5)
        y = ymin + dy * (np.arange(ny) + 0.5)

        if window is None:
            inside = np.ones((ny, nx), dtype=bool)
        else:
            xx, yy = np.meshgrid(x, y)
            inside = window.contains(xx, yy)

        return cls(x=x, y=y, inside=inside)

    @classmethod
    def from_window(cls, window: Window, resolution: tuple[int, int] = (128, 128)) -> "Grid":
        """Create a grid over a window's bounding box."""
        xmin, ymin, xmax, ymax = window.bounds
        return cls.from_bounds(xmin, ymin, xmax, ymax, resolution, window=window)

    @property
    def shape(self) -> tuple[int, int]:
        """(rows, cols)."""
        return len(self.y), len(self.x)

    @property
    def dx(self) -> float:
        return float(self.x[1] - self.x[0])

    @property
    def dy(self) -> float:
        return float(self.y[1] - self.y[0])

    @property
    def cell_area(self) -> float:
        return self.dx * self.dy

    @property
    def extent(self) -> tuple[float, float, float, float]:
        """(xmin, xmax, ymin, ymax) of the cell edges, as matplotlib expects."""
        return (
            float(self.x[0] - self.dx / 2),
            float(self.x[-1] + self.dx / 2),
            float(self.y[0] - self.dy / 2),
            float(self.y[-1] + self.dy / 2),
        )

    def cell_centres(self) -> np.ndarray:
        """(rows * cols, 2) cell centres in row-major order."""
        xx, yy = np.meshgrid(self.x, self.y)
        return np.column_stack([xx.ravel(), yy.ravel()])

    def index_of(self, x: float, y: float) -> tuple[int, int]:
        """(row, col) of the cell nearest to a location."""
        col = int(np.clip(np.rint((x - self.x[0]) / self.dx), 0, len(self.x) - 1))
        row = int(np.clip(np.rint((y - self.y[0]) / self.dy), 0, len(self.y) - 1))
        return row, col

    def matches(self, other: "Grid") -> bool:
        """True if both grids have identical cell centres."""
        return (
            self.shape == other.shape
            and np.array_equal(self.x, other.x)
            and np.array_equal(self.y, other.y)
        )


@dataclass(frozen=True, eq=False)
class GridValues:
    """Values for one class on a grid."""

    grid: Grid
    values: np.ndarray
    label: str

    def __post_init__(self) -> None:
        values = np.array(self.values)
        if values.shape != self.grid.shape:
            raise InvalidInputError(
                f"Values shape {values.shape} does not match grid shape {self.grid.shape}"
            )
        object.__setattr__(self, "values", readonly(values))

    def as_triple(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(x, y, values) with values indexed [row, col]."""
        return self.grid.x, self.grid.y, self.values

    def value_at(self, x: float, y: float) -> float:
        """Value of the cell nearest to a location."""
        row, col = self.grid.index_of(x, y)
        return self.values[row, col].item()


@dataclass(frozen=True, eq=False)
class DensitySurface(GridValues):
    """Kernel intensity (points per unit area) for one class."""

    bandwidth: float
    kernel: str
    n_points: int

    def total_mass(self) -> float:
        """Integral of the surface over the grid; approximates n_points."""
        return float(self.values.sum() * self.grid.cell_area)


@dataclass(frozen=True, eq=False)
class ProbabilityGrid(GridValues):
    """Share of the total intensity belonging to one class, NaN where undefined."""

    @property
    def defined(self) -> np.ndarray:
        return ~np.isnan(self.values)


@dataclass(frozen=True, eq=False)
class SignificanceGrid(GridValues):
    """Cells where the permutation test rejects the no-segregation hypothesis."""

    p_values: np.ndarray
    threshold: float
    n_simulations: int

    def __post_init__(self) -> None:
        super().__post_init__()
        p_values = np.array(self.p_values, dtype=float)
        if p_values.shape != self.grid.shape:
            raise InvalidInputError(
                f"p-value shape {p_values.shape} does not match grid shape {self.grid.shape}"
            )
        object.__setattr__(self, "values", readonly(np.array(self.values, dtype=bool)))
        object.__setattr__(self, "p_values", readonly(p_values))

    @property
    def n_significant(self) -> int:
        return int(self.values.sum())
