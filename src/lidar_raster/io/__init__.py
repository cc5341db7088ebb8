"""I/O modules for loading points and saving rasters."""

from .point_cloud import Point, PointCloud, PointCloudLoader, LasPointSource
from .exporters import write_geotiff, read_geotiff, export_summary_json

__all__ = [
    "Point",
    "PointCloud",
    "PointCloudLoader",
    "LasPointSource",
    "write_geotiff",
    "read_geotiff",
    "export_summary_json",
]
