"""DuckDB sessions for incident processing.

Incident preparation projects coordinates with the spatial extension, so
sessions load it unless told otherwise. Reading already prepared Parquet
needs no extensions.
"""

import logging
from collections.abc import Sequence

import duckdb

from crimeseg.config import DuckDBConfig

logger = logging.getLogger(__name__)

SPATIAL: tuple[str, ...] = ("spatial",)


def load_extension(conn: duckdb.DuckDBPyConnection, name: str) -> None:
    """Load an extension, installing it first if it is not available locally.

    Raises:
        RuntimeError: If the extension can neither be loaded nor installed
    """
    try:
        conn.execute(f"LOAD {name}")
        return
    except duckdb.Error:
        logger.info(f"Installing DuckDB extension '{name}'")

    try:
        conn.execute(f"INSTALL {name}")
        conn.execute(f"LOAD {name}")
    except duckdb.Error as e:
        raise RuntimeError(f"DuckDB extension '{name}' is not available: {e}") from e


def open_session(
    settings: DuckDBConfig,
    extensions: Sequence[str] = SPATIAL,
) -> duckdb.DuckDBPyConnection:
    """Open an in-memory DuckDB session tuned by the [duckdb] config section.

    Args:
        settings: Memory, thread and spill settings
        extensions: Extensions to load; the spatial extension by default,
            pass () for plain Parquet reads

    Returns:
        Open connection; the caller closes it

    Example:
        >>> conn = open_session(Config.from_file("config.toml").duckdb)
        >>> conn.execute("SELECT ST_AsText(ST_Point(674000, 6580000))").fetchone()
        ('POINT (674000 6580000)',)
    """
    conn = duckdb.connect()
    try:
        for name, value in settings.model_dump().items():
            literal = value if isinstance(value, int) else f"'{value}'"
            conn.execute(f"SET {name} = {literal}")
        for name in extensions:
            load_extension(conn, name)
    except Exception:
        conn.close()
        raise
    return conn
