"""
LiDAR Rasterization Tool

A Python library for turning LiDAR point clouds into regular rasters:
surface models (DSM), terrain models (DTM) and point-density grids,
by cell binning or by (spike-free) triangulated interpolation.
"""

__version__ = "0.1.0"

from .core.config import RasterizationConfig, Strategy, BinningMethod, Variable, NODATA
from .core.grid import Grid
from .core.aggregate import Aggregator
from .core.mesh import TriangleMesh
from .core.interpolate import SpikeFreeInterpolator
from .core.engine import RasterizationEngine, RasterizationResult, rasterize
from .io.point_cloud import Point, PointCloud, PointCloudLoader

__all__ = [
    "RasterizationConfig",
    "Strategy",
    "BinningMethod",
    "Variable",
    "NODATA",
    "Grid",
    "Aggregator",
    "TriangleMesh",
    "SpikeFreeInterpolator",
    "RasterizationEngine",
    "RasterizationResult",
    "rasterize",
    "Point",
    "PointCloud",
    "PointCloudLoader",
]
