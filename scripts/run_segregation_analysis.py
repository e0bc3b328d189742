#!/usr/bin/env python3
"""Run the segregation analysis from event and boundary files.

This script:
1. Classifies and projects events into a prepared incidents Parquet
2. Loads the study window and incident point set
3. Plots the incidents on the basemap
4. Builds the segregation surface (bandwidth selection, densities,
   permutation test)
5. Saves the bandwidth curve, the overlay map and the grid export

Usage:
    python scripts/run_segregation_analysis.py \\
        --events data/events.parquet \\
        --window data/boundary.geojson \\
        --basemap data/basemap.png --basemap-extent 660000 690000 6570000 6600000
"""

import argparse
import logging
from pathlib import Path

from crimeseg.config import ClassMapping, Config
from crimeseg.export import export_surface
from crimeseg.incidents import load_point_set, load_window, prepare_incidents
from crimeseg.overlay import (
    compose_overlay,
    load_basemap,
    plot_bandwidth_curve,
    plot_point_set,
    save_figure,
)
from crimeseg.pipeline import build_segregation_surface

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def main() -> None:
    """Run the analysis."""
    parser = argparse.ArgumentParser(description="Crime segregation surface analysis")
    parser.add_argument("--config", type=Path, default=Path("config.toml"))
    parser.add_argument("--class-mapping", type=Path, default=Path("class_mapping.toml"))
    parser.add_argument("--events", type=Path, required=True, help="Events Parquet file")
    parser.add_argument("--window", type=Path, required=True, help="Study boundary file")
    parser.add_argument("--basemap", type=Path, help="Basemap image (PNG/JPEG)")
    parser.add_argument(
        "--basemap-extent",
        type=float,
        nargs=4,
        metavar=("XMIN", "XMAX", "YMIN", "YMAX"),
        help="Basemap extent in the configured CRS",
    )
    parser.add_argument("--bandwidth", type=float, help="Fixed bandwidth (skips selection)")
    parser.add_argument("--output-dir", type=Path, default=None)
    args = parser.parse_args()

    if args.basemap is not None and args.basemap_extent is None:
        parser.error("--basemap requires --basemap-extent")

    config = Config.from_file(args.config)
    mapping = ClassMapping.from_file(args.class_mapping)
    output_dir = args.output_dir or config.data_dir / "segregation"

    incidents_file = output_dir / "incidents.parquet"
    prepare_incidents(args.events, incidents_file, config, mapping)

    window = load_window(args.window, config.crs)
    points = load_point_set(incidents_file, window, config)
    basemap = load_basemap(args.basemap, tuple(args.basemap_extent)) if args.basemap else None

    save_figure(plot_point_set(points, basemap, config.overlay), output_dir / "incidents.png")

    surface = build_segregation_surface(points, config, bandwidth=args.bandwidth)
    if surface.selection is not None:
        save_figure(plot_bandwidth_curve(surface.selection), output_dir / "bandwidth.png")

    overlay = compose_overlay(
        surface.probability,
        surface.significance,
        window,
        basemap=basemap,
        config=config.overlay,
    )
    save_figure(overlay.figure, output_dir / "segregation.png")
    export_surface(surface, output_dir / "segregation.parquet")

    result = surface.result
    logger.info(
        f"Done: h={surface.bandwidth:g}, "
        f"{result.n_simulations_completed}/{result.n_simulations_requested} simulations, "
        f"global p={result.statistic_p_value:.3f}"
    )


if __name__ == "__main__":
    main()
