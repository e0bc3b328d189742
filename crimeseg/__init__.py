"""Spatial segregation surfaces for labelled crime incidents."""

from crimeseg.errors import InvalidInputError, SimulationInterruptedError
from crimeseg.grid import DensitySurface, Grid, ProbabilityGrid, SignificanceGrid
from crimeseg.points import PointSet, Window

__all__ = [
    "DensitySurface",
    "Grid",
    "InvalidInputError",
    "PointSet",
    "ProbabilityGrid",
    "SignificanceGrid",
    "SimulationInterruptedError",
    "Window",
]
