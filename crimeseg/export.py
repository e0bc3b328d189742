"""Export segregation surfaces for external plotting.

Writes one row per (class, cell) with the cell centre and every derived
value, so any rendering layer can rebuild the grids without this package.
"""

import logging
from pathlib import Path

import duckdb
import numpy as np
import pandas as pd

from crimeseg.pipeline import SegregationSurface

logger = logging.getLogger(__name__)


def surface_to_frame(surface: SegregationSurface) -> pd.DataFrame:
    """Flatten a SegregationSurface to long format.

    Columns: label, row, col, x, y, density, probability, p_value,
    significant, bandwidth, n_simulations.
    """
    grid = surface.grid
    rows, cols = np.indices(grid.shape)
    xx, yy = np.meshgrid(grid.x, grid.y)

    frames = []
    for label in surface.result.classes:
        significance = surface.result.significance[label]
        frames.append(
            pd.DataFrame(
                {
                    "label": label,
                    "row": rows.ravel(),
                    "col": cols.ravel(),
                    "x": xx.ravel(),
                    "y": yy.ravel(),
                    "density": surface.densities[label].values.ravel(),
                    "probability": surface.result.probabilities[label].values.ravel(),
                    "p_value": significance.p_values.ravel(),
                    "significant": significance.values.ravel(),
                    "bandwidth": surface.bandwidth,
                    "n_simulations": significance.n_simulations,
                }
            )
        )
    return pd.concat(frames, ignore_index=True)


def export_surface(surface: SegregationSurface, output_file: Path) -> Path:
    """Write a SegregationSurface to Parquet.

    Uses the atomic write pattern: the file only appears once complete.

    Args:
        surface: Result of build_segregation_surface()
        output_file: Parquet path to write

    Returns:
        Path to the written file

    Raises:
        RuntimeError: If the export fails
    """
    temp_file = output_file.with_suffix(".tmp")
    output_file.parent.mkdir(parents=True, exist_ok=True)

    cells = surface_to_frame(surface)

    logger.info(f"Exporting {len(cells):,} cells to {output_file}")

    conn = duckdb.connect()
    try:
        conn.register("cells", cells)
        conn.execute(f"COPY cells TO '{temp_file}' (FORMAT PARQUET)")
        temp_file.rename(output_file)

        file_size_kb = output_file.stat().st_size / 1024
        logger.info(f"  Result: {file_size_kb:.1f} KB Parquet")

    except Exception as e:
        if temp_file.exists():
            temp_file.unlink()
        logger.error(f"Surface export failed: {e}")
        raise RuntimeError(f"Failed to export segregation surface: {e}") from e
    finally:
        conn.close()

    return output_file
