"""Exceptions raised by the segregation surface pipeline."""


class InvalidInputError(ValueError):
    """Input rejected before any computation ran.

    Raised for empty point sets, empty classes, non-positive bandwidths,
    zero-area windows, non-positive simulation counts and grids that do not
    line up cell-for-cell.
    """

    pass


class SimulationInterruptedError(RuntimeError):
    """Permutation test stopped before a single trial completed."""

    pass
