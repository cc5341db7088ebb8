"""
Command Line Interface for LiDAR Rasterization

Usage:
    lidar-raster info <input>
    lidar-raster bin <input> <output> --resolution <size> [--method <stat>]
    lidar-raster triangulate <input> <output> --resolution <size> [--plain]
    lidar-raster generate-sample --output <file>
"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import numpy as np

from . import __version__
from .core.config import BinningMethod, RasterizationConfig, Strategy, Variable, NODATA
from .core.engine import RasterizationEngine
from .core.validation import ValidationError
from .io.exporters import driver_for_path
from .io.point_cloud import PointCloudLoader, generate_sample_surface
from .utils.logging import setup_logging


def parse_extent(extent: str) -> Tuple[Tuple[float, float, float, float], Optional[Tuple[float, float]]]:
    """
    Parse an extent string.

    Accepts "minx,miny,maxx,maxy" or "minx,miny,minz,maxx,maxy,maxz";
    in the second form the z pair is returned as a z-range filter.

    Returns:
        (bounds, z_range) where z_range is None for the 4-value form
    """
    parts = [p.strip() for p in extent.split(',')]
    if len(parts) not in (4, 6):
        raise ValueError(
            f"Extent must have 4 or 6 values (got {len(parts)}). "
            "Format: minx,miny,maxx,maxy or minx,miny,minz,maxx,maxy,maxz"
        )

    try:
        values = [float(p) for p in parts]
    except ValueError as e:
        raise ValueError(f"Extent values must be numbers. Got: {parts}. Error: {e}")

    if len(values) == 4:
        return tuple(values), None

    min_x, min_y, min_z, max_x, max_y, max_z = values
    return (min_x, min_y, max_x, max_y), (min_z, max_z)


def common_options(func):
    """Options shared by the bin and triangulate commands."""
    options = [
        click.argument('input_file', type=click.Path(exists=True)),
        click.argument('output_file', type=click.Path()),
        click.option('--resolution', '-r', required=True, type=float,
                     help='Cell size in map units'),
        click.option('--class', '-c', 'classes', type=int, multiple=True,
                     help='Keep only this classification (repeatable), e.g. -c 2 for a DTM'),
        click.option('--variable', type=click.Choice([v.value for v in Variable]),
                     default=Variable.Z.value, help='Point attribute to rasterize (default: z)'),
        click.option('--extent', type=str,
                     help='Output extent as "minx,miny,maxx,maxy" '
                          'or "minx,miny,minz,maxx,maxy,maxz"'),
        click.option('--nodata', type=float, default=NODATA,
                     help=f'Nodata value (default: {NODATA:g})'),
        click.option('--workers', '-j', type=int, default=1,
                     help='Worker threads (default: 1)'),
        click.option('--chunk-size', type=int, default=1_000_000,
                     help='Points read per chunk (default: 1000000)'),
        click.option('--summary', type=click.Path(),
                     help='Write the run summary to a JSON file'),
        click.option('--preview', type=click.Path(),
                     help='Save a PNG preview of the raster'),
        click.option('--verbose', '-v', is_flag=True, help='Enable debug logging'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _run(input_file: str, output_file: str, config_kwargs: dict,
         extent: Optional[str], summary: Optional[str], preview: Optional[str]):
    """Load, rasterize and write; exits with status 1 on any error."""
    if extent:
        try:
            bounds, z_range = parse_extent(extent)
        except ValueError as e:
            click.echo(f"Error parsing extent: {e}", err=True)
            click.echo('Example: --extent "0,0,100,100"', err=True)
            sys.exit(1)
        config_kwargs.update(bounds=bounds, z_range=z_range)

    # Fail on bad options before touching the input
    try:
        engine = RasterizationEngine(RasterizationConfig(**config_kwargs))
        driver = driver_for_path(output_file)
    except (ValidationError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Loading point cloud: {input_file}")
    try:
        source = PointCloudLoader.open(input_file, chunk_size=engine.config.chunk_size)
    except Exception as e:
        click.echo(f"Error loading file: {e}", err=True)
        sys.exit(1)

    click.echo(f"Rasterizing ({engine.config.strategy.value}, {engine.config.method_name})...")
    try:
        result = engine.run(source)
    except Exception as e:
        click.echo(f"Error rasterizing: {e}", err=True)
        sys.exit(1)

    click.echo("\n" + result.summary())

    try:
        from .io.exporters import write_geotiff
        write_geotiff(result.grid, output_file, driver=driver)
        click.echo(f"\nRaster saved to: {output_file}")
    except Exception as e:
        click.echo(f"Error writing raster: {e}", err=True)
        sys.exit(1)

    if summary:
        try:
            from .io.exporters import export_summary_json
            export_summary_json(result, summary)
            click.echo(f"Summary saved to: {summary}")
        except Exception as e:
            click.echo(f"Error saving summary: {e}", err=True)
            sys.exit(1)

    if preview:
        try:
            from .utils.visualization import save_preview
            save_preview(result.grid, preview, title=Path(output_file).name)
            click.echo(f"Preview saved to: {preview}")
        except ImportError:
            click.echo("Warning: matplotlib required for previews", err=True)


@click.group()
@click.version_option(version=__version__)
def main():
    """LiDAR Rasterization Tool

    Convert LiDAR point clouds into DSM, DTM and density rasters
    by cell binning or triangulated interpolation.
    """
    pass


@main.command()
@click.argument('input_file', type=click.Path(exists=True))
def info(input_file: str):
    """Display information about a point cloud file."""
    click.echo(f"Loading: {input_file}")

    try:
        pc = PointCloudLoader.load(input_file)
    except Exception as e:
        click.echo(f"Error loading file: {e}", err=True)
        sys.exit(1)

    if pc.num_points == 0:
        click.echo("Error: point cloud is empty", err=True)
        sys.exit(1)

    min_x, min_y, max_x, max_y = pc.extent
    min_z, max_z = float(pc.z.min()), float(pc.z.max())

    click.echo("\n" + "=" * 50)
    click.echo("POINT CLOUD INFO")
    click.echo("=" * 50)
    click.echo(f"File:           {input_file}")
    click.echo(f"Points:         {pc.num_points:,}")
    click.echo(f"CRS:            {pc.crs or 'unknown'}")
    click.echo(f"")
    click.echo(f"Bounds:")
    click.echo(f"  X:            {min_x:.2f} to {max_x:.2f}")
    click.echo(f"  Y:            {min_y:.2f} to {max_y:.2f}")
    click.echo(f"  Z:            {min_z:.2f} to {max_z:.2f}")
    click.echo(f"")
    click.echo(f"Extent:")
    click.echo(f"  Width:        {max_x - min_x:.2f}")
    click.echo(f"  Height:       {max_y - min_y:.2f}")
    click.echo(f"  Z Range:      {max_z - min_z:.2f}")

    if pc.classification is not None:
        unique, counts = np.unique(pc.classification, return_counts=True)
        click.echo(f"\nClassifications:")
        for cls, count in zip(unique, counts):
            name = PointCloudLoader.CLASS_NAMES.get(int(cls), f"Class {cls}")
            pct = count / pc.num_points * 100
            click.echo(f"  {name}: {count:,} ({pct:.1f}%)")

    click.echo("=" * 50)


@main.command(name='bin')
@common_options
@click.option('--method', '-m', type=click.Choice([m.value for m in BinningMethod]),
              default=BinningMethod.MEAN.value, help='Cell statistic (default: mean)')
def bin_command(
    input_file: str,
    output_file: str,
    resolution: float,
    classes: Tuple[int, ...],
    variable: str,
    extent: Optional[str],
    nodata: float,
    workers: int,
    chunk_size: int,
    summary: Optional[str],
    preview: Optional[str],
    verbose: bool,
    method: str,
):
    """Rasterize by binning points into cells.

    Examples:

        # Surface model from the highest return per cell
        lidar-raster bin cloud.las dsm.tif -r 1.0 -m max

        # Point density of ground returns
        lidar-raster bin cloud.las density.tif -r 2.0 -m count -c 2
    """
    setup_logging(verbose)
    _run(
        input_file,
        output_file,
        dict(
            cell_size=resolution,
            strategy=Strategy.BINNING,
            method=method,
            classes=classes or None,
            variable=variable,
            nodata=nodata,
            workers=workers,
            chunk_size=chunk_size,
        ),
        extent,
        summary,
        preview,
    )


@main.command()
@common_options
@click.option('--spike-free/--plain', default=True,
              help='Spike-free triangulation, or plain Delaunay (default: spike-free)')
@click.option('--freeze-distance', type=float,
              help='Longest edge that may freeze in spike-free mode '
                   '(default: 3x the mean point spacing)')
@click.option('--insertion-buffer', type=float,
              help='Drop below a vertex before its edges freeze (default: 0.5)')
@click.option('--drop-noise/--keep-noise', default=True,
              help='Drop noise classes 7 and 18 before triangulating (default: drop)')
def triangulate(
    input_file: str,
    output_file: str,
    resolution: float,
    classes: Tuple[int, ...],
    variable: str,
    extent: Optional[str],
    nodata: float,
    workers: int,
    chunk_size: int,
    summary: Optional[str],
    preview: Optional[str],
    verbose: bool,
    spike_free: bool,
    freeze_distance: Optional[float],
    insertion_buffer: Optional[float],
    drop_noise: bool,
):
    """Rasterize by Delaunay triangulation and linear interpolation.

    Examples:

        # Terrain model from ground returns
        lidar-raster triangulate cloud.las dtm.tif -r 0.5 -c 2

        # Surface model without the spike-free correction
        lidar-raster triangulate cloud.las dsm.tif -r 0.5 --plain

        # Canopy model that closes over gaps up to 2 m wide
        lidar-raster triangulate cloud.las chm.tif -r 0.5 --freeze-distance 2 --insertion-buffer 0.5
    """
    setup_logging(verbose)
    _run(
        input_file,
        output_file,
        dict(
            cell_size=resolution,
            strategy=Strategy.TRIANGULATION,
            spike_free=spike_free,
            freeze_distance=freeze_distance,
            insertion_buffer=insertion_buffer,
            drop_noise=drop_noise,
            classes=classes or None,
            variable=variable,
            nodata=nodata,
            workers=workers,
            chunk_size=chunk_size,
        ),
        extent,
        summary,
        preview,
    )


@main.command()
@click.option('--output', '-o', required=True, type=click.Path(),
              help='Output file path (.las or .xyz)')
@click.option('--size', default="100,100", help='Surface size as "width,height" (default: 100,100)')
@click.option('--resolution', '-r', default=1.0, help='Point spacing (default: 1.0)')
@click.option('--base-elevation', default=100.0, help='Base elevation (default: 100)')
@click.option('--hill-height', default=5.0, help='Maximum hill height (default: 5)')
@click.option('--seed', default=42, help='Random seed (default: 42)')
def generate_sample(
    output: str,
    size: str,
    resolution: float,
    base_elevation: float,
    hill_height: float,
    seed: int,
):
    """Generate a sample point cloud with ground and a building.

    Example:
        lidar-raster generate-sample -o sample.xyz --size 200,200
    """
    try:
        width, height = [float(x) for x in size.split(',')]
    except ValueError:
        click.echo("Error: Size must be 'width,height'", err=True)
        sys.exit(1)

    click.echo(f"Generating sample surface...")
    click.echo(f"  Size: {width} x {height}")
    click.echo(f"  Resolution: {resolution}")
    click.echo(f"  Base elevation: {base_elevation}")

    pc = generate_sample_surface(
        size=(width, height),
        resolution=resolution,
        base_elevation=base_elevation,
        hill_height=hill_height,
        seed=seed,
    )

    click.echo(f"  Generated {pc.num_points:,} points")

    output_path = Path(output)

    if output_path.suffix.lower() in ['.las', '.laz']:
        try:
            import laspy
        except ImportError:
            click.echo("Error: laspy required for LAS output. Use .xyz instead.", err=True)
            sys.exit(1)

        header = laspy.LasHeader(point_format=0, version="1.2")
        header.offsets = np.floor(pc.xyz.min(axis=0))
        header.scales = np.array([0.001, 0.001, 0.001])
        las = laspy.LasData(header)
        las.x = pc.x
        las.y = pc.y
        las.z = pc.z
        las.classification = pc.classification
        las.intensity = pc.intensity
        las.write(output)
    else:
        with open(output, 'w') as f:
            for i in range(pc.num_points):
                f.write(f"{pc.x[i]:.3f} {pc.y[i]:.3f} {pc.z[i]:.3f}")
                if pc.classification is not None:
                    f.write(f" {pc.classification[i]}")
                if pc.intensity is not None:
                    f.write(f" {pc.intensity[i]}")
                f.write("\n")

    click.echo(f"Saved to: {output}")


if __name__ == '__main__':
    main()
