"""
Tests for cell binning.
"""

import numpy as np
import pytest

from lidar_raster.core.aggregate import Aggregator, collapse_cell
from lidar_raster.core.config import NODATA, BinningMethod, Variable
from lidar_raster.core.grid import Grid
from lidar_raster.core.validation import InvalidConfigurationError
from lidar_raster.io.point_cloud import PointCloud


def single_cell_grid():
    return Grid.empty((0.0, 1.0), 1.0, (1, 1))


def bin_values(method, values, order=None):
    """Bin values into the one cell of a 1x1 grid and return the result."""
    values = np.asarray(values, dtype=float)
    if order is not None:
        values = values[order]
    aggregator = Aggregator(single_cell_grid(), method)
    aggregator.add(np.full(len(values), 0.5), np.full(len(values), 0.5), values)
    return aggregator.finalize().get(0, 0)


class TestCombineRules:
    """Tests for per-cell statistics."""

    @pytest.mark.parametrize("method", list(BinningMethod))
    def test_empty_cells_are_nodata(self, method, unit_square_grid):
        """Test that cells with no points hold the nodata sentinel."""
        aggregator = Aggregator(unit_square_grid, method)
        aggregator.add_point(0.5, 3.5, 7.0)
        grid = aggregator.finalize()

        assert grid.get(0, 0) != NODATA
        assert np.count_nonzero(grid.values == NODATA) == 15

    def test_mean_is_order_independent(self):
        """Test that {2, 4, 6} gives 4 in any arrival order."""
        for order in ([0, 1, 2], [2, 0, 1], [1, 2, 0]):
            assert bin_values(BinningMethod.MEAN, [2.0, 4.0, 6.0], order) == 4.0

    def test_min_and_max(self):
        """Test true extremum regardless of order."""
        values = [5.0, -2.5, 9.0, 3.0]
        for order in ([0, 1, 2, 3], [3, 2, 1, 0]):
            assert bin_values(BinningMethod.MIN, values, order) == -2.5
            assert bin_values(BinningMethod.MAX, values, order) == 9.0

    def test_median_even_count(self):
        """Test that the median of an even count averages the middle pair."""
        assert bin_values(BinningMethod.MEDIAN, [4.0, 1.0, 3.0, 2.0]) == 2.5

    def test_median_odd_count(self):
        """Test median of an odd count."""
        assert bin_values(BinningMethod.MEDIAN, [10.0, 1.0, 7.0]) == 7.0

    def test_count_ignores_values(self):
        """Test that count is the number of points whatever their values."""
        assert bin_values(BinningMethod.COUNT, [100.0, -3.0, 0.0, 1e6, 5.0]) == 5.0

    def test_collapse_cell(self):
        """Test the single-cell reference helper."""
        assert collapse_cell([2.0, 4.0, 6.0], "mean") == 4.0
        assert collapse_cell([1.0, 2.0, 3.0, 4.0], BinningMethod.MEDIAN) == 2.5
        assert collapse_cell([], "max") == NODATA
        assert collapse_cell([], "max", nodata=-1.0) == -1.0


class TestAggregatorBinning:
    """Tests for streaming points into a grid."""

    def test_points_outside_are_skipped(self, unit_square_grid):
        """Test that out-of-footprint points are silently ignored."""
        aggregator = Aggregator(unit_square_grid, BinningMethod.COUNT)
        binned = aggregator.add(
            np.array([0.5, -1.0, 10.0, 2.5]),
            np.array([0.5, 0.5, 0.5, 2.5]),
            np.array([1.0, 1.0, 1.0, 1.0]),
        )

        assert binned == 2
        assert aggregator.points_seen == 4
        assert aggregator.points_binned == 2

    def test_median_across_cells(self, unit_square_grid):
        """Test that the median is computed per cell."""
        aggregator = Aggregator(unit_square_grid, BinningMethod.MEDIAN)
        aggregator.add(
            np.array([0.5, 3.5, 0.5, 3.5, 0.5]),
            np.array([3.5, 0.5, 3.5, 0.5, 3.5]),
            np.array([9.0, 1.0, 1.0, 3.0, 5.0]),
        )
        grid = aggregator.finalize()

        assert grid.get(0, 0) == 5.0
        assert grid.get(3, 3) == 2.0

    def test_add_cloud_with_intensity(self, unit_square_grid):
        """Test rasterizing a non-elevation variable."""
        cloud = PointCloud(
            xyz=np.array([[0.5, 3.5, 100.0], [0.6, 3.4, 101.0]]),
            intensity=np.array([10, 30], dtype=np.uint16),
        )
        aggregator = Aggregator(unit_square_grid, BinningMethod.MEAN)
        aggregator.add_cloud(cloud, Variable.INTENSITY)

        assert aggregator.finalize().get(0, 0) == 20.0

    def test_result_does_not_touch_grid(self, unit_square_grid):
        """Test that result() leaves the grid untouched."""
        aggregator = Aggregator(unit_square_grid, BinningMethod.MAX)
        aggregator.add_point(1.5, 1.5, 4.0)

        values = aggregator.result()
        assert values[2, 1] == 4.0
        assert np.all(unit_square_grid.values == NODATA)

    def test_add_after_finalize_raises(self, unit_square_grid):
        """Test that a finalized aggregator rejects more points."""
        aggregator = Aggregator(unit_square_grid)
        aggregator.finalize()
        with pytest.raises(RuntimeError):
            aggregator.add_point(0.5, 0.5, 1.0)

    def test_unknown_method_raises(self, unit_square_grid):
        """Test an invalid method name."""
        with pytest.raises(InvalidConfigurationError):
            Aggregator(unit_square_grid, "mode")


class TestAggregatorMerge:
    """Tests for combining partial aggregators."""

    @pytest.fixture
    def points(self):
        rng = np.random.default_rng(7)
        x = rng.uniform(0, 4, 500)
        y = rng.uniform(0, 4, 500)
        z = rng.normal(100.0, 5.0, 500)
        return x, y, z

    @pytest.mark.parametrize("method", list(BinningMethod))
    def test_split_merge_matches_sequential(self, method, points):
        """Test that merged partials reproduce a sequential run."""
        x, y, z = points

        sequential = Aggregator(Grid.empty((0.0, 4.0), 1.0, (4, 4)), method)
        sequential.add(x, y, z)
        expected = sequential.finalize().values

        merged = Aggregator(Grid.empty((0.0, 4.0), 1.0, (4, 4)), method)
        first, second = merged.spawn(), merged.spawn()
        first.add(x[:200], y[:200], z[:200])
        second.add(x[200:], y[200:], z[200:])
        merged.merge(second).merge(first)

        np.testing.assert_allclose(merged.finalize().values, expected, rtol=1e-12)
        assert merged.points_binned == sequential.points_binned

    def test_merge_mismatched_method_raises(self, unit_square_grid):
        """Test that different methods cannot be merged."""
        mean = Aggregator(unit_square_grid, BinningMethod.MEAN)
        median = Aggregator(unit_square_grid, BinningMethod.MEDIAN)
        with pytest.raises(InvalidConfigurationError, match="Cannot merge"):
            mean.merge(median)

    def test_merge_mismatched_grid_raises(self, unit_square_grid):
        """Test that different grid geometries cannot be merged."""
        other = Grid.empty((0.0, 4.0), 2.0, (2, 2))
        with pytest.raises(InvalidConfigurationError, match="different grids"):
            Aggregator(unit_square_grid).merge(Aggregator(other))
