"""
Raster Grid Module

The output raster's geometry and storage: cell values plus the
georeferencing needed to map between world coordinates and cells.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union
import math

import numpy as np

from .config import NODATA
from .validation import (
    IndexOutOfRangeError,
    validate_bounds,
    validate_cell_size,
    validate_grid_dimensions,
)


@dataclass
class Grid:
    """
    Regular north-up raster grid.

    Attributes:
        values: 2D array of cell values [rows, cols], row 0 is the northmost row
        origin: (x, y) of the grid's upper-left corner
        cell_size: (dx, dy) cell size in coordinate units, both positive
        nodata: Value used for cells with no estimate
        crs: Coordinate reference system, passed through untouched
    """
    values: np.ndarray
    origin: Tuple[float, float]
    cell_size: Tuple[float, float]
    nodata: float = NODATA
    crs: Optional[str] = None

    def __post_init__(self):
        self.cell_size = validate_cell_size(self.cell_size)
        if self.values.ndim != 2:
            raise ValueError(f"values must be a 2D array, got shape {self.values.shape}")
        # Large-grid warnings are issued before allocation, in empty()
        validate_grid_dimensions(*self.values.shape, warn_large=False)
        self.origin = (float(self.origin[0]), float(self.origin[1]))

    @classmethod
    def empty(
        cls,
        origin: Tuple[float, float],
        cell_size: Union[float, Tuple[float, float]],
        shape: Tuple[int, int],
        nodata: float = NODATA,
        crs: Optional[str] = None,
    ) -> Grid:
        """
        Allocate a grid with every cell set to nodata.

        Args:
            origin: Upper-left corner (x0, y0)
            cell_size: Scalar or (dx, dy)
            shape: (rows, cols)
            nodata: Sentinel value
            crs: Optional CRS tag

        Raises:
            InvalidGeometryError: If the cell size is non-positive or a
                dimension is zero
        """
        dx_dy = validate_cell_size(cell_size)
        rows, cols = (int(n) for n in shape)
        validate_grid_dimensions(rows, cols, cell_size=dx_dy)

        return cls(
            values=np.full((rows, cols), nodata, dtype=np.float64),
            origin=origin,
            cell_size=dx_dy,
            nodata=nodata,
            crs=crs,
        )

    @classmethod
    def from_bounds(
        cls,
        bounds: Tuple[float, float, float, float],
        cell_size: Union[float, Tuple[float, float]],
        nodata: float = NODATA,
        crs: Optional[str] = None,
    ) -> Grid:
        """
        Create an empty grid covering (min_x, min_y, max_x, max_y).

        The grid is anchored at (min_x, max_y) and sized so that every
        coordinate inside the closed bounds falls in a cell, which means it
        may extend up to one cell past max_x and below min_y.
        """
        min_x, min_y, max_x, max_y = validate_bounds(bounds)
        dx, dy = validate_cell_size(cell_size)

        cols = int(math.floor((max_x - min_x) / dx)) + 1
        rows = int(math.floor((max_y - min_y) / dy)) + 1

        return cls.empty((min_x, max_y), (dx, dy), (rows, cols), nodata=nodata, crs=crs)

    @property
    def shape(self) -> Tuple[int, int]:
        """Grid dimensions (rows, cols)."""
        return self.values.shape

    @property
    def rows(self) -> int:
        return self.values.shape[0]

    @property
    def cols(self) -> int:
        return self.values.shape[1]

    @property
    def size(self) -> int:
        return self.values.size

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Spatial bounds (min_x, min_y, max_x, max_y)."""
        x0, y0 = self.origin
        dx, dy = self.cell_size
        return (x0, y0 - self.rows * dy, x0 + self.cols * dx, y0)

    @property
    def sealed(self) -> bool:
        return not self.values.flags.writeable

    def seal(self) -> Grid:
        """Freeze the buffer; cells never written keep the nodata sentinel."""
        self.values.setflags(write=False)
        return self

    def same_geometry(self, other: Grid) -> bool:
        """True if both grids share origin, cell size and shape."""
        return (
            self.origin == other.origin
            and self.cell_size == other.cell_size
            and self.shape == other.shape
        )

    def _check_index(self, row: int, col: int) -> None:
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexOutOfRangeError(
                f"Cell ({row}, {col}) is outside grid of shape {self.shape}"
            )

    def get(self, row: int, col: int) -> float:
        self._check_index(row, col)
        return float(self.values[row, col])

    def set(self, row: int, col: int, value: float) -> None:
        self._check_index(row, col)
        if self.sealed:
            raise RuntimeError("Grid is sealed and can no longer be modified")
        self.values[row, col] = value

    def cell_index_of(self, x: float, y: float) -> Optional[Tuple[int, int]]:
        """
        Convert world coordinates to (row, col).

        Returns None when the coordinate falls outside the grid.
        """
        if not (math.isfinite(x) and math.isfinite(y)):
            return None
        x0, y0 = self.origin
        dx, dy = self.cell_size
        col = math.floor((x - x0) / dx)
        row = math.floor((y0 - y) / dy)
        if 0 <= row < self.rows and 0 <= col < self.cols:
            return (row, col)
        return None

    def cell_indices(
        self,
        x: np.ndarray,
        y: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Vectorized cell_index_of.

        Returns:
            (rows, cols, inside) where inside is a boolean mask; indices of
            points outside the grid are meaningless and must be masked out
        """
        x0, y0 = self.origin
        dx, dy = self.cell_size
        cols = np.floor((np.asarray(x, dtype=np.float64) - x0) / dx)
        rows = np.floor((y0 - np.asarray(y, dtype=np.float64)) / dy)
        inside = (
            (cols >= 0) & (cols < self.cols) &
            (rows >= 0) & (rows < self.rows)
        )
        with np.errstate(invalid="ignore"):
            return rows.astype(np.int64), cols.astype(np.int64), inside

    def flat_indices(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Row-major cell number of every point inside the grid."""
        rows, cols, inside = self.cell_indices(x, y)
        return rows[inside] * self.cols + cols[inside]

    def cell_center(self, row: int, col: int) -> Tuple[float, float]:
        """World coordinates of a cell center."""
        self._check_index(row, col)
        x0, y0 = self.origin
        dx, dy = self.cell_size
        return (x0 + (col + 0.5) * dx, y0 - (row + 0.5) * dy)

    def cell_bounds(self, row: int, col: int) -> Tuple[float, float, float, float]:
        """Cell footprint (min_x, min_y, max_x, max_y)."""
        self._check_index(row, col)
        x0, y0 = self.origin
        dx, dy = self.cell_size
        min_x = x0 + col * dx
        max_y = y0 - row * dy
        return (min_x, max_y - dy, min_x + dx, max_y)

    @property
    def x_coords(self) -> np.ndarray:
        """X coordinates of cell centers, west to east."""
        return self.origin[0] + (np.arange(self.cols) + 0.5) * self.cell_size[0]

    @property
    def y_coords(self) -> np.ndarray:
        """Y coordinates of cell centers, north to south."""
        return self.origin[1] - (np.arange(self.rows) + 0.5) * self.cell_size[1]

    def cell_centers(self, row_start: int = 0, row_stop: Optional[int] = None):
        """Meshgrid of cell-center coordinates for a block of rows."""
        return np.meshgrid(self.x_coords, self.y_coords[row_start:row_stop])

    def nodata_mask(self) -> np.ndarray:
        if np.isnan(self.nodata):
            return np.isnan(self.values)
        return self.values == self.nodata

    def data_mask(self) -> np.ndarray:
        return ~self.nodata_mask()

    def statistics(self) -> dict:
        """Calculate basic statistics for the raster."""
        valid = self.values[self.data_mask()]

        stats = {
            "rows": self.rows,
            "cols": self.cols,
            "total_cells": int(self.size),
            "valid_cells": int(valid.size),
            "nodata_cells": int(self.size - valid.size),
        }

        if valid.size:
            stats.update({
                "min_value": float(np.min(valid)),
                "max_value": float(np.max(valid)),
                "mean_value": float(np.mean(valid)),
            })

        return stats
