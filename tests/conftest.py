"""Shared pytest fixtures for crimeseg tests."""

from collections.abc import Generator

import duckdb
import matplotlib
import numpy as np
import pytest

from crimeseg.config import Config
from crimeseg.points import PointSet, Window

matplotlib.use("Agg")


@pytest.fixture
def test_config() -> Config:
    """Create test configuration with small, fast defaults.

    Returns:
        Config object with test-specific settings
    """
    config = Config()
    # Override for tests
    config.surface.grid_resolution = (24, 24)
    config.surface.bandwidth_candidates = [0.5, 1.0, 2.0, 4.0]
    config.surface.bandwidth_permutations = 9
    config.simulation.n_simulations = 19
    config.simulation.random_seed = 7
    config.duckdb.memory_limit = "1GB"
    config.duckdb.threads = 1
    config.duckdb.temp_directory = "/tmp/test_duckdb"
    return config


@pytest.fixture
def square_window() -> Window:
    """10 x 10 study window at the origin."""
    return Window.from_bounds(0, 0, 10, 10)


@pytest.fixture
def two_point_set() -> PointSet:
    """One violent point at (0, 0) and one non-violent point at (10, 10)."""
    window = Window.from_bounds(-5, -5, 15, 15)
    return PointSet.from_records([(0, 0, "violent"), (10, 10, "non_violent")], window)


@pytest.fixture
def segregated_points(square_window: Window) -> PointSet:
    """Violent cluster bottom-left, non-violent cluster top-right, plus background.

    30 clustered points per class and 20 uniform background points per class.
    """
    rng = np.random.default_rng(12345)
    violent = rng.uniform(0.5, 4.5, size=(30, 2))
    non_violent = rng.uniform(5.5, 9.5, size=(30, 2))
    background = rng.uniform(0.0, 10.0, size=(40, 2))

    coordinates = np.vstack([violent, non_violent, background])
    labels = ["violent"] * 30 + ["non_violent"] * 30 + ["violent", "non_violent"] * 20
    return PointSet.from_arrays(coordinates[:, 0], coordinates[:, 1], labels, square_window)


@pytest.fixture
def mixed_points(square_window: Window) -> PointSet:
    """60 uniform points with labels assigned independently of location."""
    rng = np.random.default_rng(2024)
    coordinates = rng.uniform(0.0, 10.0, size=(60, 2))
    labels = rng.permutation(["violent"] * 30 + ["non_violent"] * 30)
    return PointSet.from_arrays(coordinates[:, 0], coordinates[:, 1], labels, square_window)


@pytest.fixture
def duckdb_conn(test_config: Config) -> Generator[duckdb.DuckDBPyConnection]:
    """In-memory DuckDB with the spatial extension.

    Args:
        test_config: Test configuration fixture

    Yields:
        Configured DuckDB connection

    Note:
        Tests using this fixture are skipped when the spatial extension
        cannot be installed (e.g. offline CI)
    """
    conn = duckdb.connect(":memory:")
    conn.execute(f"SET memory_limit = '{test_config.duckdb.memory_limit}'")
    conn.execute(f"SET threads = {test_config.duckdb.threads}")

    try:
        conn.execute("INSTALL spatial")
        conn.execute("LOAD spatial")
    except Exception as e:
        conn.close()
        pytest.skip(f"Spatial extension not available: {e}")

    yield conn
    conn.close()
