"""
Tests for plain and spike-free triangulated interpolation.
"""

import numpy as np
import pytest

from lidar_raster.core.config import NODATA
from lidar_raster.core.grid import Grid
from lidar_raster.core.interpolate import SpikeFreeInterpolator
from lidar_raster.core.mesh import TriangleMesh


@pytest.fixture
def square_mesh(square_points):
    return TriangleMesh.build(*square_points)


@pytest.fixture
def spiky_mesh():
    """Flat ground at 0 with one tall return in the middle."""
    xs, ys = np.meshgrid(np.arange(0.0, 11.0, 2.0), np.arange(0.0, 11.0, 2.0))
    x = np.append(xs.ravel(), 5.0)
    y = np.append(ys.ravel(), 5.0)
    z = np.append(np.zeros(xs.size), 30.0)
    return TriangleMesh.build(x, y, z)


class TestPlainInterpolation:
    """Tests for single-triangle barycentric interpolation."""

    def test_vertex_returns_exact_value(self, square_mesh, square_points):
        """Test that interpolating at a vertex returns its own elevation."""
        interpolator = SpikeFreeInterpolator(square_mesh, spike_free=False)
        for x, y, z in zip(*square_points):
            assert interpolator.interpolate_plain(x, y) == z

    def test_outside_hull_is_none(self, square_mesh):
        """Test that points outside the hull have no estimate."""
        interpolator = SpikeFreeInterpolator(square_mesh, spike_free=False)
        assert interpolator.interpolate_plain(-1.0, 5.0) is None

    def test_planar_surface_is_reproduced(self):
        """Test that a plane is interpolated exactly everywhere inside."""
        rng = np.random.default_rng(5)
        x = rng.uniform(0, 20, 40)
        y = rng.uniform(0, 20, 40)
        z = 3.0 + 0.5 * x - 0.25 * y
        interpolator = SpikeFreeInterpolator(TriangleMesh.build(x, y, z), spike_free=False)

        px, py = np.array([8.0, 10.0, 12.0]), np.array([9.0, 10.0, 11.0])
        np.testing.assert_allclose(
            interpolator.plain_values(px, py), 3.0 + 0.5 * px - 0.25 * py, atol=1e-9
        )


class TestSpikeFreeInterpolation:
    """Tests for the minimum-over-covering-triangles rule."""

    def test_matches_plain_on_a_valid_mesh(self, spiky_mesh):
        """Test that covering triangles agree wherever the mesh has no overlaps."""
        interpolator = SpikeFreeInterpolator(spiky_mesh)
        grid = Grid.from_bounds((0.0, 0.0, 10.0, 10.0), 0.5)

        for row in range(grid.rows):
            for col in range(grid.cols):
                x, y = grid.cell_center(row, col)
                plain = interpolator.interpolate_plain(x, y)
                spike_free = interpolator.interpolate_spike_free(grid.cell_bounds(row, col), x, y)
                if plain is None:
                    continue
                assert spike_free == pytest.approx(plain, abs=1e-9)

    def test_spike_free_mesh_fills_roof_gaps(self, roof_with_gaps):
        """Test that low returns under a roof no longer pull cells down."""
        grid = Grid.from_bounds((0.0, 0.0, 10.0, 10.0), 1.0)
        spike_free = SpikeFreeInterpolator(
            TriangleMesh.build_spike_free(*roof_with_gaps, freeze_distance=2.0)
        ).fill(grid)
        plain = SpikeFreeInterpolator(
            TriangleMesh.build(*roof_with_gaps), spike_free=False
        ).fill(Grid.from_bounds((0.0, 0.0, 10.0, 10.0), 1.0))

        # Cells centered on the gap squares
        for row, col in [(7, 2), (2, 6), (6, 7)]:
            assert spike_free.get(row, col) == pytest.approx(10.0)
            assert plain.get(row, col) < 10.0

        both = spike_free.data_mask() & plain.data_mask()
        assert np.all(spike_free.values[both] >= plain.values[both] - 1e-9)
        assert np.count_nonzero(spike_free.values[both] > plain.values[both] + 1e-9) == 3

    def test_shared_edge_is_covered_by_both_triangles(self):
        """Test that a point on a shared edge gets the common edge value."""
        x = np.array([0.0, 2.0, 1.0, 1.0])
        y = np.array([0.0, 0.0, 3.0, -3.0])
        z = np.array([4.0, 4.0, 10.0, 0.0])
        mesh = TriangleMesh.build(x, y, z)
        interpolator = SpikeFreeInterpolator(mesh)

        # (1, 0) lies on the edge shared by the upper and lower triangles
        cell = (0.9, -0.1, 1.1, 0.1)
        candidates = list(mesh.candidate_triangles(cell))
        assert len(candidates) == 2
        assert mesh.contains(candidates, [1.0, 1.0], [0.0, 0.0]).all()

        value = interpolator.interpolate_spike_free(cell, 1.0, 0.0)
        assert value == pytest.approx(4.0)

    def test_no_covering_triangle_is_none(self, square_mesh):
        """Test that a center outside every triangle has no estimate."""
        interpolator = SpikeFreeInterpolator(square_mesh)
        assert interpolator.interpolate_spike_free((10.5, 4.5, 11.5, 5.5), 11.0, 5.0) is None
        assert interpolator.interpolate_spike_free((50.0, 50.0, 51.0, 51.0), 50.5, 50.5) is None

    def test_vectorized_matches_scalar(self, spiky_mesh):
        """Test spike_free_values against interpolate_spike_free."""
        interpolator = SpikeFreeInterpolator(spiky_mesh)
        x = np.array([0.25, 5.0, 4.2, 9.9, 12.0])
        y = np.array([0.25, 5.0, 6.1, 0.1, 5.0])
        values = interpolator.spike_free_values(x, y, 0.25, 0.25)

        for i in range(len(x)):
            expected = interpolator.interpolate_spike_free(
                (x[i] - 0.25, y[i] - 0.25, x[i] + 0.25, y[i] + 0.25), x[i], y[i]
            )
            if expected is None:
                assert np.isnan(values[i])
            else:
                assert values[i] == pytest.approx(expected)


class TestFill:
    """Tests for filling a whole grid."""

    @pytest.mark.parametrize("spike_free", [True, False])
    def test_fill_matches_per_cell_estimates(self, spiky_mesh, spike_free):
        """Test that block evaluation agrees with estimate_cell."""
        grid = Grid.from_bounds((-1.0, -1.0, 11.0, 11.0), 1.0)
        interpolator = SpikeFreeInterpolator(spiky_mesh, spike_free=spike_free, block_rows=5)
        interpolator.fill(grid)

        for row in range(grid.rows):
            for col in range(grid.cols):
                expected = interpolator.estimate_cell(grid, row, col)
                if expected is None:
                    assert grid.get(row, col) == NODATA
                else:
                    assert grid.get(row, col) == pytest.approx(expected)

    def test_outside_hull_is_nodata(self, square_mesh):
        """Test that cells beyond the hull stay nodata."""
        grid = Grid.from_bounds((0.0, 0.0, 20.0, 10.0), 1.0)
        SpikeFreeInterpolator(square_mesh).fill(grid)

        assert grid.get(5, 5) != NODATA
        assert grid.get(5, 15) == NODATA

    def test_workers_give_same_result(self, spiky_mesh):
        """Test that threaded row blocks match a sequential fill."""
        sequential = Grid.from_bounds((0.0, 0.0, 10.0, 10.0), 0.25)
        threaded = Grid.from_bounds((0.0, 0.0, 10.0, 10.0), 0.25)

        SpikeFreeInterpolator(spiky_mesh, block_rows=4).fill(sequential)
        SpikeFreeInterpolator(spiky_mesh, block_rows=4).fill(threaded, workers=4)

        np.testing.assert_array_equal(sequential.values, threaded.values)

    def test_block_rows_override(self, spiky_mesh):
        """Test that a per-call block height leaves the values unchanged."""
        default = Grid.from_bounds((0.0, 0.0, 10.0, 10.0), 0.5)
        single_rows = Grid.from_bounds((0.0, 0.0, 10.0, 10.0), 0.5)

        interpolator = SpikeFreeInterpolator(spiky_mesh)
        interpolator.fill(default)
        interpolator.fill(single_rows, workers=2, block_rows=1)

        np.testing.assert_array_equal(default.values, single_rows.values)
