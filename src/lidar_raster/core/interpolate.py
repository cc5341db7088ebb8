"""
Triangulated Interpolation Module

Estimates one value per cell from a TriangleMesh, either by plain
barycentric interpolation in the enclosing triangle, or with the
spike-free rule: the minimum interpolated value over every triangle that
covers the cell center.

Spikes are spurious over-estimates from triangles stretched across a gap
(e.g. a building edge), so taking the minimum over all covering triangles
suppresses them without detecting thin triangles explicitly.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Optional, Tuple

import numpy as np

from .grid import Grid
from .mesh import CONTAINMENT_TOLERANCE, TriangleMesh

log = logging.getLogger(__name__)


class SpikeFreeInterpolator:
    """
    Plain and spike-free triangulated interpolation over a mesh.

    Args:
        mesh: Triangulation of the points to interpolate
        spike_free: Use the minimum-over-covering-triangles rule
        block_rows: Grid rows evaluated per vectorized block
    """

    def __init__(self, mesh: TriangleMesh, spike_free: bool = True, block_rows: int = 64):
        self.mesh = mesh
        self.spike_free = spike_free
        self.block_rows = max(1, int(block_rows))

    def interpolate_plain(self, x: float, y: float) -> Optional[float]:
        """Value at (x, y) from the single enclosing triangle, None outside."""
        index = self.mesh.triangle_at(x, y)
        if index is None:
            return None
        return float(self.mesh.interpolate_in(index, x, y)[0])

    def interpolate_spike_free(
        self,
        cell_bounds: Tuple[float, float, float, float],
        x: float,
        y: float,
    ) -> Optional[float]:
        """
        Minimum interpolated value over every triangle covering (x, y).

        Candidates come from the triangles whose bounding box overlaps the
        cell footprint; only those that actually contain the point count.
        Returns None when no candidate contains it.
        """
        candidates = np.fromiter(self.mesh.candidate_triangles(cell_bounds), dtype=np.int64)
        if candidates.size == 0:
            return None

        px = np.full(candidates.size, x, dtype=np.float64)
        py = np.full(candidates.size, y, dtype=np.float64)
        covering = candidates[self.mesh.contains(candidates, px, py)]
        if covering.size == 0:
            return None

        estimates = self.mesh.interpolate_in(covering, px[:covering.size], py[:covering.size])
        return float(np.min(estimates))

    def estimate_cell(self, grid: Grid, row: int, col: int) -> Optional[float]:
        """Estimate for one cell, evaluated at its center."""
        x, y = grid.cell_center(row, col)
        if self.spike_free:
            return self.interpolate_spike_free(grid.cell_bounds(row, col), x, y)
        return self.interpolate_plain(x, y)

    def plain_values(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Vectorized plain interpolation; NaN outside the hull."""
        x = np.asarray(x, dtype=np.float64).ravel()
        y = np.asarray(y, dtype=np.float64).ravel()
        out = np.full(x.size, np.nan)

        triangles = self.mesh.locate(x, y)
        found = triangles >= 0
        if np.any(found):
            out[found] = self.mesh.interpolate_in(triangles[found], x[found], y[found])
        return out

    def spike_free_values(
        self,
        x: np.ndarray,
        y: np.ndarray,
        half_width: float,
        half_height: float,
    ) -> np.ndarray:
        """
        Vectorized spike-free interpolation at cell centers.

        Args:
            x, y: Cell-center coordinates
            half_width, half_height: Half the cell footprint in x and y

        Returns:
            Minimum covering estimate per center; NaN where nothing covers it
        """
        x = np.asarray(x, dtype=np.float64).ravel()
        y = np.asarray(y, dtype=np.float64).ravel()

        cells, triangles = self.mesh.candidate_pairs(
            x - half_width, y - half_height, x + half_width, y + half_height,
        )

        weights = self.mesh.barycentric(triangles, x[cells], y[cells])
        covering = weights.min(axis=1) >= -CONTAINMENT_TOLERANCE
        cells = cells[covering]
        corner_values = self.mesh.values[self.mesh.triangles[triangles[covering]]]
        estimates = np.sum(weights[covering] * corner_values, axis=1)

        out = np.full(x.size, np.inf)
        np.minimum.at(out, cells, estimates)
        out[np.isinf(out)] = np.nan
        return out

    def _fill_block(self, grid: Grid, row_start: int, row_stop: int) -> int:
        xx, yy = grid.cell_centers(row_start, row_stop)

        if self.spike_free:
            dx, dy = grid.cell_size
            values = self.spike_free_values(xx, yy, dx / 2.0, dy / 2.0)
        else:
            values = self.plain_values(xx, yy)

        missing = np.isnan(values)
        values[missing] = grid.nodata
        grid.values[row_start:row_stop, :] = values.reshape(xx.shape)
        return int(values.size - np.count_nonzero(missing))

    def fill(self, grid: Grid, workers: int = 1, block_rows: Optional[int] = None) -> Grid:
        """
        Evaluate every cell of `grid` in place.

        Row blocks are independent, so with workers > 1 they run in a
        thread pool; each block writes a disjoint slice of the grid.
        `block_rows` overrides the interpolator's block height for this call.
        """
        step = self.block_rows if block_rows is None else max(1, int(block_rows))
        blocks = [
            (start, min(start + step, grid.rows))
            for start in range(0, grid.rows, step)
        ]

        if workers > 1 and len(blocks) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                filled = sum(executor.map(lambda b: self._fill_block(grid, *b), blocks))
        else:
            filled = sum(self._fill_block(grid, *b) for b in blocks)

        log.debug(
            "Interpolated %d of %d cells (%s)",
            filled, grid.size, "spike-free" if self.spike_free else "plain",
        )
        return grid
