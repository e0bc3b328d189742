"""Map figures for segregation results.

Composition only: everything drawn here was computed upstream. Figures are
built with matplotlib's object API (Figure, not pyplot) so they render with
any backend and do not accumulate global pyplot state.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import matplotlib.image as mpimg
import numpy as np
from matplotlib.axes import Axes
from matplotlib.colors import ListedColormap
from matplotlib.contour import ContourSet
from matplotlib.figure import Figure
from matplotlib.text import Text

from crimeseg.bandwidth import BandwidthSelection
from crimeseg.config import OverlayConfig
from crimeseg.errors import InvalidInputError
from crimeseg.grid import ProbabilityGrid, SignificanceGrid
from crimeseg.points import PointSet, Window

logger = logging.getLogger(__name__)

CLASS_COLOURS = {
    "violent": "#e74c3c",
    "non_violent": "#3498db",
}
FALLBACK_COLOURS = ["#9b59b6", "#1abc9c", "#e67e22", "#95a5a6", "#2ecc71"]


@dataclass(frozen=True, eq=False)
class Basemap:
    """Raster image with its extent (xmin, xmax, ymin, ymax) in the planar CRS."""

    image: np.ndarray
    extent: tuple[float, float, float, float]

    def __post_init__(self) -> None:
        xmin, xmax, ymin, ymax = self.extent
        if xmax <= xmin or ymax <= ymin:
            raise InvalidInputError(f"Basemap extent is degenerate: {self.extent}")


@dataclass(frozen=True, eq=False)
class Overlay:
    """Rendered overlay map and its main artists."""

    figure: Figure
    axes: Axes
    contours: ContourSet | None
    contour_labels: list[Text]


def load_basemap(path: Path | str, extent: tuple[float, float, float, float]) -> Basemap:
    """Read a PNG/JPEG basemap whose extent is known.

    Raises:
        FileNotFoundError: If the image doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Basemap not found: {path}")
    return Basemap(image=mpimg.imread(path), extent=extent)


def _draw_basemap(ax: Axes, basemap: Basemap | None) -> None:
    if basemap is not None:
        ax.imshow(basemap.image, extent=basemap.extent, origin="upper", zorder=0)


def _draw_window(ax: Axes, window: Window, colour: str) -> None:
    for ring in window.outline():
        ax.plot(ring[:, 0], ring[:, 1], color=colour, linewidth=1.5, zorder=4)


def class_colour(label: str, index: int) -> str:
    """Colour for a class label, falling back to a fixed palette."""
    return CLASS_COLOURS.get(label, FALLBACK_COLOURS[index % len(FALLBACK_COLOURS)])


def compose_overlay(
    probability: ProbabilityGrid,
    significance: SignificanceGrid,
    window: Window,
    basemap: Basemap | None = None,
    contour_thresholds: tuple[float, float] | None = None,
    config: OverlayConfig | None = None,
    title: str | None = None,
) -> Overlay:
    """Draw the segregation overlay on a basemap.

    Layers, bottom to top: basemap, translucent mask over significant cells,
    probability contours at the low/high thresholds labelled "Low"/"High",
    and the window outline. NaN probability cells are left out of the
    contours.

    Args:
        probability: Probability grid of the target class
        significance: Significance grid of the same class and grid
        window: Study window to outline
        basemap: Optional raster drawn underneath
        contour_thresholds: (low, high); defaults to config.contour_thresholds
        config: Overlay styling; defaults to OverlayConfig()
        title: Optional axes title

    Returns:
        Overlay holding the figure, axes, contour set and label texts

    Raises:
        InvalidInputError: If the grids don't align or the thresholds are not
            0 < low < high < 1
    """
    config = config or OverlayConfig()
    low, high = contour_thresholds or config.contour_thresholds
    if not 0 < low < high < 1:
        raise InvalidInputError(
            f"Contour thresholds must satisfy 0 < low < high < 1, got ({low}, {high})"
        )

    grid = probability.grid
    if not grid.matches(significance.grid):
        raise InvalidInputError("Probability and significance grids do not align")

    figure = Figure(figsize=config.figsize, dpi=config.dpi)
    ax = figure.add_subplot()
    _draw_basemap(ax, basemap)

    mask = np.ma.masked_where(~significance.values, np.ones(grid.shape))
    ax.imshow(
        mask,
        extent=grid.extent,
        origin="lower",
        cmap=ListedColormap([config.mask_color]),
        alpha=config.mask_alpha,
        interpolation="nearest",
        zorder=1,
    )

    values = np.ma.masked_invalid(probability.values)
    contours: ContourSet | None = None
    labels: list[Text] = []
    if values.count() == 0:
        logger.warning(f"No defined probabilities for '{probability.label}'; skipping contours")
    else:
        contours = ax.contour(
            grid.x,
            grid.y,
            values,
            levels=[low, high],
            colors=config.contour_color,
            linewidths=1.2,
            zorder=2,
        )
        labels = ax.clabel(contours, fmt={low: "Low", high: "High"}, inline=True, fontsize=9)

    _draw_window(ax, window, config.window_color)

    xmin, xmax, ymin, ymax = grid.extent
    ax.set_xlim(xmin, xmax)
    ax.set_ylim(ymin, ymax)
    ax.set_aspect("equal")
    ax.set_title(
        title
        or f"P({probability.label}) with significant cells (p < {significance.threshold:g})"
    )

    return Overlay(figure=figure, axes=ax, contours=contours, contour_labels=list(labels))


def plot_point_set(
    points: PointSet,
    basemap: Basemap | None = None,
    config: OverlayConfig | None = None,
    title: str | None = None,
) -> Figure:
    """Scatter the points coloured by class over the basemap and window."""
    config = config or OverlayConfig()
    figure = Figure(figsize=config.figsize, dpi=config.dpi)
    ax = figure.add_subplot()
    _draw_basemap(ax, basemap)

    for i, label in enumerate(points.classes):
        members = points.labels == label
        ax.scatter(
            points.x[members],
            points.y[members],
            s=6,
            color=class_colour(label, i),
            label=f"{label} ({int(members.sum()):,})",
            alpha=0.7,
            zorder=2,
        )

    _draw_window(ax, points.window, config.window_color)
    ax.set_aspect("equal")
    ax.legend(loc="upper right")
    ax.set_title(title or f"{len(points):,} incidents")
    return figure


def plot_bandwidth_curve(selection: BandwidthSelection) -> Figure:
    """Plot score against bandwidth with the selected bandwidth marked."""
    figure = Figure(figsize=(7, 4))
    ax = figure.add_subplot()
    ax.plot(selection.candidates, selection.scores, marker="o", color="#34495e")
    ax.axvline(
        selection.bandwidth,
        color="#e74c3c",
        linestyle="--",
        label=f"h = {selection.bandwidth:g}",
    )
    ax.set_xscale("log")
    ax.set_xlabel("Bandwidth")
    ax.set_ylabel(f"Score ({selection.method})")
    ax.legend()
    return figure


def save_figure(figure: Figure, output_file: Path, dpi: int | None = None) -> Path:
    """Save a figure using the atomic write pattern.

    The format is taken from the output file's suffix (png if none).

    Raises:
        RuntimeError: If rendering or writing fails
    """
    temp_file = output_file.with_suffix(".tmp")
    output_file.parent.mkdir(parents=True, exist_ok=True)
    image_format = output_file.suffix.lstrip(".").lower() or "png"

    try:
        figure.savefig(temp_file, format=image_format, dpi=dpi or "figure", bbox_inches="tight")
        temp_file.rename(output_file)
    except Exception as e:
        if temp_file.exists():
            temp_file.unlink()
        logger.error(f"Figure export failed: {e}")
        raise RuntimeError(f"Failed to save figure to {output_file}: {e}") from e

    logger.info(f"Saved figure: {output_file} ({output_file.stat().st_size / 1024:.1f} KB)")
    return output_file
