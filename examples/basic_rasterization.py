"""
Basic Rasterization Example

This example demonstrates:
1. Generating point cloud data with ground and buildings
2. Binning a surface model (DSM) and a terrain model (DTM)
3. Triangulating a spike-free DSM and comparing it with plain interpolation
4. Point density
5. Saving the results

Run from the project root:
    python examples/basic_rasterization.py
"""

import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lidar_raster.io.point_cloud import generate_sample_surface
from lidar_raster.core.config import RasterizationConfig, Strategy, BinningMethod
from lidar_raster.core.engine import RasterizationEngine


def main():
    print("=" * 60)
    print("LIDAR RASTERIZATION - EXAMPLE")
    print("=" * 60)

    # =========================================================================
    # Step 1: Generate point cloud
    # =========================================================================
    print("\n[1] Generating sample surface...")

    # Replace with PointCloudLoader.open() for real data
    point_cloud = generate_sample_surface(
        size=(200.0, 150.0),     # 200m x 150m site
        resolution=1.0,          # 1m point spacing
        base_elevation=100.0,
        hill_height=8.0,
        buildings=(
            (40.0, 40.0, 30.0, 20.0, 12.0),
            (120.0, 90.0, 25.0, 25.0, 8.0),
        ),
        seed=42,
    )

    min_x, min_y, max_x, max_y = point_cloud.extent
    print(f"   Points: {point_cloud.num_points:,}")
    print(f"   X range: {min_x:.1f} to {max_x:.1f}")
    print(f"   Y range: {min_y:.1f} to {max_y:.1f}")
    print(f"   Z range: {point_cloud.z.min():.1f} to {point_cloud.z.max():.1f}")

    # =========================================================================
    # Step 2: Binned DSM and DTM
    # =========================================================================
    print("\n[2] Binning DSM (max of all returns) and DTM (mean of ground)...")

    dsm = RasterizationEngine(RasterizationConfig(
        cell_size=2.0,
        method=BinningMethod.MAX,
    )).run(point_cloud)

    dtm = RasterizationEngine(RasterizationConfig(
        cell_size=2.0,
        method=BinningMethod.MEAN,
        classes=[2],                # Ground only
    )).run(point_cloud)

    print(dsm.summary())
    print(f"   DTM cells without ground: {dtm.nodata_cells:,}")

    # =========================================================================
    # Step 3: Triangulated DSM
    # =========================================================================
    print("\n[3] Triangulating DSM (spike-free vs plain)...")

    spike_free = RasterizationEngine(RasterizationConfig(
        cell_size=0.5,
        strategy=Strategy.TRIANGULATION,
        freeze_distance=3.0,        # Close over gaps narrower than 3 m
        insertion_buffer=0.5,
        workers=4,
    )).run(point_cloud)

    plain = RasterizationEngine(RasterizationConfig(
        cell_size=0.5,
        strategy=Strategy.TRIANGULATION,
        spike_free=False,
        workers=4,
    )).run(point_cloud)

    both = spike_free.grid.data_mask() & plain.grid.data_mask()
    diff = spike_free.grid.values[both] - plain.grid.values[both]
    print(f"   Triangles: {spike_free.triangles:,}")
    print(f"   Points blocked: {spike_free.points_blocked:,}")
    print(f"   Max spike-free - plain difference: {diff.max():.4f}")

    # =========================================================================
    # Step 4: Point density
    # =========================================================================
    print("\n[4] Point density (points per 5m cell)...")

    density = RasterizationEngine(RasterizationConfig(
        cell_size=5.0,
        method=BinningMethod.COUNT,
    )).run(point_cloud)

    stats = density.grid.statistics()
    print(f"   Min: {stats['min_value']:.0f}  Max: {stats['max_value']:.0f}  "
          f"Mean: {stats['mean_value']:.1f}")

    # =========================================================================
    # Step 5: Save results
    # =========================================================================
    print("\n[5] Saving results...")

    output_dir = Path(__file__).parent / "output"
    output_dir.mkdir(exist_ok=True)

    try:
        from lidar_raster.io.exporters import write_geotiff, export_summary_json

        write_geotiff(dsm.grid, output_dir / "dsm.tif")
        write_geotiff(dtm.grid, output_dir / "dtm.tif")
        write_geotiff(spike_free.grid, output_dir / "dsm_spike_free.tif")
        export_summary_json(spike_free, output_dir / "dsm_spike_free.json")
        print(f"   Rasters saved to: {output_dir}")
    except ImportError:
        print("   Install rasterio to save GeoTIFFs")

    try:
        from lidar_raster.utils.visualization import save_preview

        save_preview(spike_free.grid, output_dir / "dsm_spike_free.png",
                     title="Spike-free DSM")
        print(f"   Preview saved to: {output_dir / 'dsm_spike_free.png'}")
    except ImportError:
        print("   Install matplotlib for previews")

    print("\n" + "=" * 60)
    print("DONE")
    print("=" * 60)


if __name__ == "__main__":
    main()
