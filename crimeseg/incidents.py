"""Incident loading: classify, project and read point sets and windows.

Event files are processed with a SQL template (rendered and executed by qck
on a configured DuckDB connection). Python provides orchestration and error
handling.
"""

import logging
from pathlib import Path

import geopandas as gpd
from qck import qck  # type: ignore[import-untyped]

from crimeseg.config import ClassMapping, Config
from crimeseg.data_access import open_session
from crimeseg.points import PointSet, Window

logger = logging.getLogger(__name__)


def prepare_incidents(
    events_file: Path,
    output_file: Path,
    config: Config | None = None,
    mapping: ClassMapping | None = None,
) -> None:
    """Classify events into point classes and project them to the planar CRS.

    Executes the prepare_incidents.sql template. Each event type is mapped to
    a class label via the class mapping (unlisted types get the default
    class), and WGS84 latitude/longitude is transformed to config.crs with the
    DuckDB spatial extension. Uses atomic write pattern to prevent partial
    files on failure.

    Args:
        events_file: Parquet with event_id, type, latitude and longitude
        output_file: Path for output Parquet (x, y, label, type, event_id)
        config: Configuration object (loads from config.toml if None)
        mapping: Class mapping (loads from class_mapping.toml if None)

    Raises:
        FileNotFoundError: If events file doesn't exist
        ValueError: If the class mapping lists no event types at all
        RuntimeError: If SQL execution fails (wraps underlying exception)

    Example:
        >>> prepare_incidents(
        ...     Path("data/events.parquet"),
        ...     Path("data/incidents.parquet"),
        ... )
    """
    if config is None:
        config = Config.from_file("config.toml")
    if mapping is None:
        mapping = ClassMapping.from_file("class_mapping.toml")

    if not events_file.exists():
        raise FileNotFoundError(f"Events file not found: {events_file}")

    class_types = {label: c.types for label, c in mapping.classes.items()}
    if not any(class_types.values()):
        raise ValueError("Class mapping does not list any event types")

    # Atomic write pattern: write to temp file, rename on success
    temp_file = output_file.with_suffix(".tmp")
    output_file.parent.mkdir(parents=True, exist_ok=True)

    sql_path = Path(__file__).parent / "sql" / "prepare_incidents.sql"

    params = {
        "events_file": str(events_file),
        "output_file": str(temp_file),
        "crs": config.crs,
        "class_types": class_types,
        "default_class": mapping.default_class,
    }

    logger.info(f"Preparing incidents in {config.crs}")
    logger.info(f"  Events: {events_file}")
    logger.info(f"  Output: {output_file}")

    conn = open_session(config.duckdb)
    try:
        qck(str(sql_path), params=params, connection=conn)

        temp_file.rename(output_file)

        rows = conn.execute(f"""
            SELECT label, COUNT(*) AS n
            FROM '{output_file}'
            GROUP BY label
            ORDER BY label
        """).fetchall()
        summary = ", ".join(f"{label}={n:,}" for label, n in rows)
        logger.info(f"  Result: {summary}")

    except Exception as e:
        if temp_file.exists():
            temp_file.unlink()
        logger.error(f"Incident preparation failed: {e}")
        raise RuntimeError(f"Failed to prepare incidents: {e}") from e
    finally:
        conn.close()


def load_point_set(
    incidents_file: Path,
    window: Window,
    config: Config | None = None,
) -> PointSet:
    """Read prepared incidents into a PointSet.

    Points outside the window are dropped with a warning.

    Args:
        incidents_file: Parquet written by prepare_incidents()
        window: Study window in the same CRS
        config: Configuration object (loads from config.toml if None)

    Returns:
        PointSet of the incidents inside the window

    Raises:
        FileNotFoundError: If incidents file doesn't exist
    """
    if config is None:
        config = Config.from_file("config.toml")

    if not incidents_file.exists():
        raise FileNotFoundError(f"Incidents file not found: {incidents_file}")

    conn = open_session(config.duckdb, extensions=())
    try:
        df = conn.execute(f"SELECT x, y, label FROM '{incidents_file}'").fetchdf()
    finally:
        conn.close()

    points = PointSet.from_frame(df, window, outside="drop")
    logger.info(f"Loaded {len(points):,} incidents: {points.counts()}")
    return points


def load_window(path: Path, crs: str) -> Window:
    """Read a boundary file and union its geometries into a Window.

    Args:
        path: Any vector format geopandas can read (GeoJSON, GeoPackage, ...)
        crs: Target planar CRS

    Returns:
        Window in the target CRS

    Raises:
        FileNotFoundError: If boundary file doesn't exist
    """
    if not path.exists():
        raise FileNotFoundError(f"Boundary file not found: {path}")

    gdf = gpd.read_file(path).to_crs(crs)
    window = Window(gdf.geometry.union_all())
    logger.info(f"Loaded window from {path}: {len(gdf)} features, area {window.area:,.0f}")
    return window
