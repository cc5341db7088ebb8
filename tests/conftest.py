"""
Shared pytest fixtures and configuration for lidar_raster tests.
"""

import logging

import numpy as np
import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "requires_laspy: requires laspy to be installed"
    )
    config.addinivalue_line(
        "markers", "requires_matplotlib: requires matplotlib to be installed"
    )
    config.addinivalue_line(
        "markers", "requires_rasterio: requires rasterio for GeoTIFF tests"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-skip tests based on missing dependencies."""
    try:
        import laspy
        laspy_available = True
    except ImportError:
        laspy_available = False

    try:
        import matplotlib
        matplotlib_available = True
    except ImportError:
        matplotlib_available = False

    try:
        import rasterio
        rasterio_available = True
    except ImportError:
        rasterio_available = False

    for item in items:
        if "requires_laspy" in item.keywords and not laspy_available:
            item.add_marker(pytest.mark.skip(reason="laspy not installed"))
        if "requires_matplotlib" in item.keywords and not matplotlib_available:
            item.add_marker(pytest.mark.skip(reason="matplotlib not installed"))
        if "requires_rasterio" in item.keywords and not rasterio_available:
            item.add_marker(pytest.mark.skip(reason="rasterio not installed"))


@pytest.fixture(autouse=True)
def reset_package_logger():
    """CLI runs attach a handler to the package logger; drop it after each test."""
    yield
    logging.getLogger("lidar_raster").handlers.clear()


@pytest.fixture
def sample_point_cloud():
    """Generate a small synthetic point cloud for fast tests."""
    from lidar_raster.io.point_cloud import generate_sample_surface

    return generate_sample_surface(
        size=(20.0, 20.0),
        resolution=1.0,
        base_elevation=100.0,
        buildings=((5.0, 5.0, 6.0, 6.0, 10.0),),
        seed=42,
    )


@pytest.fixture
def unit_square_grid():
    """A 4x4 grid of 1m cells covering (0, 0) to (4, 4)."""
    from lidar_raster.core.grid import Grid

    return Grid.empty(origin=(0.0, 4.0), cell_size=1.0, shape=(4, 4))


@pytest.fixture
def square_points():
    """Corners of a 10x10 square with distinct elevations."""
    x = np.array([0.0, 10.0, 10.0, 0.0])
    y = np.array([0.0, 0.0, 10.0, 10.0])
    z = np.array([1.0, 2.0, 3.0, 4.0])
    return x, y, z


@pytest.fixture
def roof_with_gaps():
    """
    Flat 10 m roof sampled on a 1 m lattice over (0, 0) to (10, 10), one
    ground return at (20, 5) and three returns that reach the ground
    through the roof, in the squares centered on (2.5, 2.5), (6.5, 7.5)
    and (7.5, 3.5).
    """
    xs, ys = np.meshgrid(np.arange(0.0, 11.0), np.arange(0.0, 11.0))
    x = np.concatenate([xs.ravel(), [20.0, 2.3, 6.4, 7.5]])
    y = np.concatenate([ys.ravel(), [5.0, 2.6, 7.7, 3.2]])
    z = np.concatenate([np.full(xs.size, 10.0), [1.0, 0.0, 0.2, 0.1]])
    return x, y, z


@pytest.fixture
def sample_xyz_file(tmp_path, sample_point_cloud):
    """Sample cloud written as a 5-column XYZ text file."""
    path = tmp_path / "sample.xyz"
    pc = sample_point_cloud
    data = np.column_stack([pc.xyz, pc.classification, pc.intensity])
    np.savetxt(path, data, fmt=["%.3f", "%.3f", "%.3f", "%d", "%d"])
    return path


@pytest.fixture
def tmp_output_dir(tmp_path):
    """Temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
