"""Configuration management with Pydantic validation."""

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Kernel = Literal["gaussian", "tophat", "epanechnikov", "exponential", "linear", "cosine"]


class SurfaceConfig(BaseModel):
    """Configuration for density surfaces and bandwidth selection."""

    grid_resolution: tuple[int, int] = Field(default=(128, 128))
    kernel: Kernel = Field(default="gaussian")
    bandwidth: float | None = Field(default=None, gt=0)
    bandwidth_candidates: list[float] = Field(default=[])
    bandwidth_method: Literal["permutation", "likelihood"] = Field(default="permutation")
    bandwidth_permutations: int = Field(default=19, ge=2)
    density_floor: float = Field(default=0.0, ge=0)
    target_class: str = Field(default="violent")

    @field_validator("grid_resolution")
    @classmethod
    def validate_grid_resolution(cls, v: tuple[int, int]) -> tuple[int, int]:
        """Ensure the grid has at least two cells along each axis."""
        if any(n < 2 for n in v):
            raise ValueError("Grid resolution must be at least 2 in each dimension")
        return v

    @field_validator("bandwidth_candidates")
    @classmethod
    def validate_bandwidth_candidates(cls, v: list[float]) -> list[float]:
        """Ensure candidate bandwidths are positive."""
        if any(h <= 0 for h in v):
            raise ValueError("Bandwidth candidates must be positive")
        return sorted(v)


class SimulationConfig(BaseModel):
    """Configuration for the permutation significance test."""

    n_simulations: int = Field(default=99, ge=1)
    significance_threshold: float = Field(default=0.05, gt=0, lt=1)
    random_seed: int | None = Field(default=None)
    n_workers: int = Field(default=1, ge=1)
    max_seconds: float | None = Field(default=None, gt=0)


class OverlayConfig(BaseModel):
    """Configuration for overlay rendering."""

    contour_thresholds: tuple[float, float] = Field(default=(0.3, 0.7))
    mask_color: str = Field(default="#d7301f")
    mask_alpha: float = Field(default=0.35, ge=0, le=1)
    contour_color: str = Field(default="black")
    window_color: str = Field(default="#2b8cbe")
    figsize: tuple[float, float] = Field(default=(10.0, 10.0))
    dpi: int = Field(default=150)

    @field_validator("contour_thresholds")
    @classmethod
    def validate_contour_thresholds(cls, v: tuple[float, float]) -> tuple[float, float]:
        """Ensure 0 < low < high < 1."""
        low, high = v
        if not 0 < low < high < 1:
            raise ValueError("Contour thresholds must satisfy 0 < low < high < 1")
        return v


class DuckDBConfig(BaseModel):
    """Configuration for DuckDB execution."""

    memory_limit: str = Field(default="4GB")
    threads: int = Field(default=2)
    temp_directory: str = Field(default="/tmp/duckdb")
    max_temp_directory_size: str = Field(default="50GB")


class Config(BaseModel):
    """Main configuration."""

    data_dir: Path = Field(default=Path("data"))
    crs: str = Field(default="EPSG:3006")
    surface: SurfaceConfig = Field(default_factory=SurfaceConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    overlay: OverlayConfig = Field(default_factory=OverlayConfig)
    duckdb: DuckDBConfig = Field(default_factory=DuckDBConfig)

    @classmethod
    def from_file(cls, path: Path | str) -> "Config":
        """Load configuration from TOML file.

        Args:
            path: Path to config.toml file

        Returns:
            Validated Config object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config validation fails
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls(**data)


class LabelClass(BaseModel):
    """A point class and the event types assigned to it."""

    name: str = Field(description="Display name for class")
    types: list[str] = Field(default=[], description="Event types in this class")

    @field_validator("types")
    @classmethod
    def validate_types(cls, v: list[str]) -> list[str]:
        """Reject quotes, which would break the SQL CASE expression."""
        for event_type in v:
            if "'" in event_type:
                raise ValueError(f"Event type may not contain quotes: {event_type}")
        return v


class ClassMapping(BaseModel):
    """Event type to point class mapping."""

    default_class: str = Field(
        default="non_violent", description="Class for types not listed anywhere"
    )
    classes: dict[str, LabelClass] = Field(description="Class definitions")

    @model_validator(mode="after")
    def validate_classes(self) -> "ClassMapping":
        """Ensure types are unique and the default class is defined."""
        if self.default_class not in self.classes:
            raise ValueError(f"Default class '{self.default_class}' is not defined")

        seen: set[str] = set()
        for label_class in self.classes.values():
            duplicates = seen.intersection(label_class.types)
            if duplicates:
                raise ValueError(f"Event types assigned to several classes: {sorted(duplicates)}")
            seen.update(label_class.types)
        return self

    def classify(self, event_type: str) -> str:
        """Get the class label for an event type.

        Args:
            event_type: Event type string (e.g., "Misshandel")

        Returns:
            Class label. Returns default_class for unknown types.
        """
        for label, label_class in self.classes.items():
            if event_type in label_class.types:
                return label
        return self.default_class

    @classmethod
    def from_file(cls, path: Path | str) -> "ClassMapping":
        """Load class mapping from TOML file.

        Args:
            path: Path to class_mapping.toml file

        Returns:
            Validated ClassMapping object

        Raises:
            ClassMappingError: If file not found or validation fails
        """
        path = Path(path)

        if not path.exists():
            raise ClassMappingError(f"Class mapping not found: {path}")

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ClassMappingError(f"Invalid TOML syntax: {e}") from e

        try:
            return cls(**data)
        except Exception as e:
            raise ClassMappingError(f"Invalid class mapping structure: {e}") from e


class ClassMappingError(Exception):
    """Class mapping configuration error."""

    pass
