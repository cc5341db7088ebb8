"""
Export utilities for rasterization results.

GeoTIFF (or another rasterio driver picked from the file extension) for
the grid itself, JSON for the run summary.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

import numpy as np

from ..core.validation import validate_output_path

if TYPE_CHECKING:
    from ..core.grid import Grid
    from ..core.engine import RasterizationResult


def _require_rasterio():
    try:
        import rasterio
    except ImportError:
        raise ImportError(
            "rasterio required for raster export. "
            "Install with: pip install rasterio"
        )
    return rasterio


# GDAL drivers for the raster extensions we write
RASTER_DRIVERS = {
    ".tif": "GTiff",
    ".tiff": "GTiff",
    ".img": "HFA",
}


def driver_for_path(filepath: Union[str, Path]) -> str:
    """
    GDAL driver name for an output path, chosen by its extension.

    Raises:
        ValueError: If the extension has no known raster driver
    """
    suffix = Path(filepath).suffix.lower()
    try:
        return RASTER_DRIVERS[suffix]
    except KeyError:
        supported = ", ".join(sorted(RASTER_DRIVERS))
        raise ValueError(
            f"No raster driver for extension '{suffix or Path(filepath).name}' "
            f"(supported: {supported})"
        ) from None


def grid_transform(grid: 'Grid'):
    """Affine transform of a north-up grid (origin at the upper-left corner)."""
    from rasterio.transform import from_origin

    dx, dy = grid.cell_size
    return from_origin(grid.origin[0], grid.origin[1], dx, dy)


def write_geotiff(
    grid: 'Grid',
    filepath: Union[str, Path],
    crs: Optional[str] = None,
    driver: Optional[str] = None,
    dtype: str = "float64",
    **creation_options,
) -> Path:
    """
    Write a grid to a single-band raster.

    Row 0 of the grid is already the northmost row, so no flip is needed.

    Args:
        grid: Finished grid
        filepath: Output path
        crs: CRS override; defaults to the grid's own tag
        driver: GDAL driver name; chosen from the extension when omitted
        dtype: Output band data type
        **creation_options: Passed through to rasterio (e.g. compress="deflate")

    Returns:
        The written path
    """
    rasterio = _require_rasterio()

    if driver is None:
        driver = driver_for_path(filepath)
    filepath = validate_output_path(filepath, "raster output")
    data = grid.values.astype(dtype, copy=False)

    with rasterio.open(
        filepath,
        'w',
        driver=driver,
        height=grid.rows,
        width=grid.cols,
        count=1,
        dtype=data.dtype,
        crs=crs or grid.crs,
        transform=grid_transform(grid),
        nodata=grid.nodata,
        **creation_options,
    ) as dst:
        dst.write(data, 1)

    return filepath


def read_geotiff(filepath: Union[str, Path]) -> 'Grid':
    """Read a single-band north-up raster back into a Grid."""
    from ..core.config import NODATA
    from ..core.grid import Grid

    rasterio = _require_rasterio()

    with rasterio.open(filepath) as src:
        values = src.read(1).astype(np.float64)
        transform = src.transform
        nodata = src.nodata if src.nodata is not None else NODATA
        crs = src.crs.to_string() if src.crs else None

    return Grid(
        values=values,
        origin=(transform.c, transform.f),
        cell_size=(transform.a, -transform.e),
        nodata=nodata,
        crs=crs,
    )


def export_summary_json(
    result: 'RasterizationResult',
    filepath: Union[str, Path],
    indent: int = 2,
) -> None:
    """
    Export the run summary to JSON.

    Args:
        result: RasterizationResult from the engine
        filepath: Output JSON file path
        indent: JSON indentation level (default: 2)
    """
    filepath = validate_output_path(filepath, "summary JSON")
    data = result.to_dict()
    data["statistics"] = result.grid.statistics()

    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent)
