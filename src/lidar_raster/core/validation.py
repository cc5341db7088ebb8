"""
Input Validation Module

Provides validation functions and custom exceptions for the lidar_raster package.
All validation functions provide clear, actionable error messages.
"""

from __future__ import annotations

import math
import numbers
import os
import warnings
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union


class ValidationError(ValueError):
    """Base exception for validation errors with user-friendly messages."""
    pass


class InvalidGeometryError(ValidationError):
    """Non-positive cell size, empty dimensions or inverted bounds."""
    pass


class InvalidConfigurationError(ValidationError):
    """Inconsistent strategy/method combination or bad option value."""
    pass


class InsufficientPointsError(ValidationError):
    """Too few points to build a triangulation."""
    pass


class DegenerateGeometryError(ValidationError):
    """Points are collinear or coincident; no triangulation exists."""
    pass


class FilePermissionError(ValidationError):
    """Cannot write to specified path."""
    pass


class IndexOutOfRangeError(IndexError):
    """Cell index outside the grid. Always a programming error."""
    pass


def validate_cell_size(
    cell_size: Union[float, Sequence[float], None],
    context: str = "cell size",
) -> Tuple[float, float]:
    """
    Validate a cell size and normalize it to an (dx, dy) pair.

    Args:
        cell_size: A single positive number, or a (dx, dy) pair
        context: Description used in error messages

    Returns:
        (dx, dy) as floats

    Raises:
        InvalidGeometryError: If the value is missing, not numeric or <= 0
    """
    if cell_size is None:
        raise InvalidGeometryError(f"{context} cannot be None")

    if isinstance(cell_size, numbers.Real) and not isinstance(cell_size, bool):
        parts = (cell_size, cell_size)
    elif isinstance(cell_size, str):
        raise InvalidGeometryError(
            f"{context} must be a number or an (dx, dy) pair, got str"
        )
    else:
        try:
            parts = tuple(cell_size)
        except TypeError:
            raise InvalidGeometryError(
                f"{context} must be a number or an (dx, dy) pair, "
                f"got {type(cell_size).__name__}"
            )
        if len(parts) != 2:
            raise InvalidGeometryError(
                f"{context} must have exactly 2 components, got {len(parts)}"
            )

    result = []
    for value in parts:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidGeometryError(
                f"{context} must be numeric, got {type(value).__name__}"
            )
        if not math.isfinite(value) or value <= 0:
            raise InvalidGeometryError(
                f"{context} must be positive, got {value}. "
                "Typical values are 0.25-5.0 map units for LiDAR rasters."
            )
        result.append(float(value))

    return result[0], result[1]


def validate_bounds(
    bounds: Sequence[float],
    context: str = "bounds",
) -> Tuple[float, float, float, float]:
    """
    Validate a (min_x, min_y, max_x, max_y) extent.

    Degenerate (zero-width) extents are allowed; a single point still
    produces a one-cell grid.

    Raises:
        InvalidGeometryError: If the extent is malformed or inverted
    """
    try:
        values = tuple(float(v) for v in bounds)
    except (TypeError, ValueError):
        raise InvalidGeometryError(f"{context} must be four numbers, got {bounds!r}")

    if len(values) != 4:
        raise InvalidGeometryError(
            f"{context} must be (min_x, min_y, max_x, max_y), got {len(values)} values"
        )

    if not all(math.isfinite(v) for v in values):
        raise InvalidGeometryError(f"{context} must be finite, got {values}")

    min_x, min_y, max_x, max_y = values
    if min_x > max_x or min_y > max_y:
        raise InvalidGeometryError(
            f"Invalid {context}: minimum ({min_x}, {min_y}) is greater than "
            f"maximum ({max_x}, {max_y})"
        )

    return values


def validate_z_range(
    z_range: Optional[Sequence[float]],
) -> Optional[Tuple[float, float]]:
    """Validate an optional (min_z, max_z) elevation filter."""
    if z_range is None:
        return None

    try:
        min_z, max_z = (float(v) for v in z_range)
    except (TypeError, ValueError):
        raise InvalidConfigurationError(
            f"z_range must be (min_z, max_z), got {z_range!r}"
        )

    if min_z > max_z:
        raise InvalidConfigurationError(
            f"Invalid z_range: {min_z} is greater than {max_z}"
        )

    return min_z, max_z


def validate_grid_dimensions(
    rows: int,
    cols: int,
    bounds: Optional[Tuple[float, float, float, float]] = None,
    cell_size: Optional[Tuple[float, float]] = None,
    warn_large: bool = True,
) -> None:
    """
    Validate that grid dimensions are valid.

    Args:
        rows: Number of rows
        cols: Number of columns
        bounds: Optional (min_x, min_y, max_x, max_y) the grid was derived from
        cell_size: Optional (dx, dy) the grid was derived with
        warn_large: Warn when the grid exceeds 100M cells

    Raises:
        InvalidGeometryError: If dimensions are invalid
    """
    if rows <= 0 or cols <= 0:
        message = f"Invalid grid dimensions ({rows} rows x {cols} cols)."
        if bounds is not None and cell_size is not None:
            min_x, min_y, max_x, max_y = bounds
            message += (
                f" Check that bounds ({min_x:.1f}, {min_y:.1f}) to "
                f"({max_x:.1f}, {max_y:.1f}) are valid with cell size {cell_size}."
            )
        raise InvalidGeometryError(message)

    # Warn on very large grids
    total_cells = rows * cols
    if warn_large and total_cells > 100_000_000:  # 100M cells
        warnings.warn(
            f"Creating very large grid ({rows}x{cols} = {total_cells:,} cells). "
            "Consider using a coarser cell size to reduce memory usage.",
            UserWarning,
            stacklevel=2
        )


def validate_output_path(filepath: Union[str, Path], context: str = "output file") -> Path:
    """
    Validate output path is writable before attempting to write.

    Args:
        filepath: The path to validate
        context: Description of what will be written (used in error messages)

    Returns:
        The validated path as a Path object

    Raises:
        FilePermissionError: If directory doesn't exist or isn't writable
    """
    path = Path(filepath)
    parent = path.parent

    # Handle empty parent (current directory)
    if str(parent) == '.':
        parent = Path.cwd()

    if not parent.exists():
        raise FilePermissionError(
            f"Cannot write {context}: directory '{parent}' does not exist. "
            "Create the directory first or specify a different path."
        )

    if not os.access(parent, os.W_OK):
        raise FilePermissionError(
            f"Cannot write {context}: no write permission for directory '{parent}'."
        )

    if path.exists() and not os.access(path, os.W_OK):
        raise FilePermissionError(
            f"Cannot overwrite {context}: file '{path}' exists but is not writable."
        )

    return path
