"""
Cell Binning Module

Streams points into grid cells and collapses each cell's points into a
single statistic (count, mean, min, max or median).

Accumulators are dense over the grid (O(cells)) except for the median,
which has to retain every binned value and therefore grows with point
density. All accumulators can be merged, so partial aggregators built by
independent workers combine into the same result as a sequential run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import List, Tuple

import numpy as np

from .config import NODATA, BinningMethod, Variable
from .grid import Grid
from .validation import InvalidConfigurationError

log = logging.getLogger(__name__)


class CellAccumulator(ABC):
    """Running per-cell state for one binning method."""

    def __init__(self, size: int):
        self.size = size
        self.counts = np.zeros(size, dtype=np.int64)

    def update(self, cells: np.ndarray, values: np.ndarray) -> None:
        """Fold a batch of (cell number, value) pairs into the state."""
        if len(cells) == 0:
            return
        self.counts += np.bincount(cells, minlength=self.size)
        self._update(cells, values)

    def merge(self, other: CellAccumulator) -> None:
        """Combine another partial accumulator for the same grid."""
        if type(other) is not type(self) or other.size != self.size:
            raise InvalidConfigurationError(
                f"Cannot merge {type(other).__name__}({other.size}) into "
                f"{type(self).__name__}({self.size})"
            )
        self.counts += other.counts
        self._merge(other)

    def finalize(self, nodata: float) -> np.ndarray:
        """Flat array of per-cell results; empty cells get nodata."""
        out = np.full(self.size, nodata, dtype=np.float64)
        occupied = self.counts > 0
        if np.any(occupied):
            out[occupied] = self._finalize(occupied)
        return out

    @property
    def occupied_cells(self) -> int:
        return int(np.count_nonzero(self.counts))

    @abstractmethod
    def _update(self, cells: np.ndarray, values: np.ndarray) -> None:
        pass

    @abstractmethod
    def _merge(self, other: CellAccumulator) -> None:
        pass

    @abstractmethod
    def _finalize(self, occupied: np.ndarray) -> np.ndarray:
        pass


class CountAccumulator(CellAccumulator):
    """Integer tally; the value is the number of points."""

    def _update(self, cells, values):
        pass

    def _merge(self, other):
        pass

    def _finalize(self, occupied):
        return self.counts[occupied].astype(np.float64)


class MeanAccumulator(CellAccumulator):
    """Running sum and count, finalized as sum / count."""

    def __init__(self, size: int):
        super().__init__(size)
        self.sums = np.zeros(size, dtype=np.float64)

    def _update(self, cells, values):
        self.sums += np.bincount(cells, weights=values, minlength=self.size)

    def _merge(self, other):
        self.sums += other.sums

    def _finalize(self, occupied):
        return self.sums[occupied] / self.counts[occupied]


class MinAccumulator(CellAccumulator):
    """Running minimum."""

    def __init__(self, size: int):
        super().__init__(size)
        self.extrema = np.full(size, np.inf, dtype=np.float64)

    def _update(self, cells, values):
        np.minimum.at(self.extrema, cells, values)

    def _merge(self, other):
        np.minimum(self.extrema, other.extrema, out=self.extrema)

    def _finalize(self, occupied):
        return self.extrema[occupied]


class MaxAccumulator(CellAccumulator):
    """Running maximum."""

    def __init__(self, size: int):
        super().__init__(size)
        self.extrema = np.full(size, -np.inf, dtype=np.float64)

    def _update(self, cells, values):
        np.maximum.at(self.extrema, cells, values)

    def _merge(self, other):
        np.maximum(self.extrema, other.extrema, out=self.extrema)

    def _finalize(self, occupied):
        return self.extrema[occupied]


class MedianAccumulator(CellAccumulator):
    """
    Keeps every (cell, value) pair; the median is not incrementally
    combinable, so memory grows with the number of binned points.
    """

    def __init__(self, size: int):
        super().__init__(size)
        self._chunks: List[Tuple[np.ndarray, np.ndarray]] = []

    def _update(self, cells, values):
        self._chunks.append((cells.copy(), np.asarray(values, dtype=np.float64).copy()))

    def _merge(self, other):
        self._chunks.extend(other._chunks)

    def _finalize(self, occupied):
        cells = np.concatenate([c for c, _ in self._chunks])
        values = np.concatenate([v for _, v in self._chunks])

        # Sort by cell, then by value within each cell
        order = np.lexsort((values, cells))
        values = values[order]

        counts = self.counts[occupied]
        starts = np.concatenate(([0], np.cumsum(counts)[:-1]))
        lower = values[starts + (counts - 1) // 2]
        upper = values[starts + counts // 2]
        return (lower + upper) / 2.0


ACCUMULATORS = {
    BinningMethod.COUNT: CountAccumulator,
    BinningMethod.MEAN: MeanAccumulator,
    BinningMethod.MIN: MinAccumulator,
    BinningMethod.MAX: MaxAccumulator,
    BinningMethod.MEDIAN: MedianAccumulator,
}


class Aggregator:
    """
    Binning strategy: estimates one value per cell from the points inside it.

    Usage:
        aggregator = Aggregator(grid, BinningMethod.MEDIAN)
        for chunk in point_chunks:
            aggregator.add(chunk.x, chunk.y, chunk.z)
        aggregator.finalize()
    """

    def __init__(self, grid: Grid, method: BinningMethod = BinningMethod.MEAN):
        try:
            self.method = BinningMethod(method)
        except ValueError as e:
            raise InvalidConfigurationError(str(e)) from e

        self.grid = grid
        self.accumulator = ACCUMULATORS[self.method](grid.size)
        self.points_seen = 0
        self.points_binned = 0
        self._finalized = False

    def add(self, x: np.ndarray, y: np.ndarray, values: np.ndarray) -> int:
        """
        Bin a batch of points.

        Points outside the grid footprint are skipped.

        Returns:
            Number of points that landed in a cell
        """
        if self._finalized:
            raise RuntimeError("Aggregator has already been finalized")

        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        values = np.asarray(values, dtype=np.float64)
        if not (len(x) == len(y) == len(values)):
            raise ValueError("x, y and values must have the same length")

        rows, cols, inside = self.grid.cell_indices(x, y)
        cells = rows[inside] * self.grid.cols + cols[inside]
        self.accumulator.update(cells, values[inside])

        binned = int(len(cells))
        self.points_seen += len(x)
        self.points_binned += binned
        return binned

    def add_point(self, x: float, y: float, value: float) -> bool:
        """Bin a single point; returns False if it fell outside the grid."""
        return self.add(np.array([x]), np.array([y]), np.array([value])) == 1

    def add_cloud(self, cloud, variable: Variable = Variable.Z) -> int:
        """Bin every point of a PointCloud, rasterizing `variable`."""
        return self.add(cloud.x, cloud.y, cloud.values(variable))

    def spawn(self) -> Aggregator:
        """Fresh partial aggregator over the same grid geometry."""
        return Aggregator(self.grid, self.method)

    def merge(self, other: Aggregator) -> Aggregator:
        """
        Fold a partial aggregator into this one.

        Raises:
            InvalidConfigurationError: If methods or grid geometries differ
        """
        if other.method != self.method:
            raise InvalidConfigurationError(
                f"Cannot merge '{other.method.value}' aggregator into "
                f"'{self.method.value}' aggregator"
            )
        if not self.grid.same_geometry(other.grid):
            raise InvalidConfigurationError(
                "Cannot merge aggregators built over different grids"
            )

        self.accumulator.merge(other.accumulator)
        self.points_seen += other.points_seen
        self.points_binned += other.points_binned
        return self

    def finalize(self) -> Grid:
        """Write each cell's statistic into the grid."""
        if not self._finalized:
            result = self.accumulator.finalize(self.grid.nodata)
            self.grid.values[...] = result.reshape(self.grid.shape)
            self._finalized = True
            log.debug(
                "Binned %d of %d points into %d cells (%s)",
                self.points_binned, self.points_seen,
                self.accumulator.occupied_cells, self.method.value,
            )
        return self.grid

    def result(self) -> np.ndarray:
        """Finalized values as a 2D array without touching the grid."""
        return self.accumulator.finalize(self.grid.nodata).reshape(self.grid.shape)


def collapse_cell(values, method: BinningMethod, nodata: float = NODATA) -> float:
    """
    Collapse the values of a single cell.

    Reference implementation of the per-cell combine rules; returns
    nodata for an empty cell.
    """
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return nodata

    accumulator = ACCUMULATORS[BinningMethod(method)](1)
    accumulator.update(np.zeros(values.size, dtype=np.int64), values)
    return float(accumulator.finalize(nodata)[0])
