"""
Rasterization Engine

Drives a point source through the configured strategy and returns a
sealed Grid:

- binning streams chunks straight into an Aggregator (optionally split
  across worker-local partial aggregators that are merged at the end);
- triangulation materializes the filtered points, builds a TriangleMesh
  (spike-free or plain Delaunay) and evaluates every cell through the
  SpikeFreeInterpolator.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import Iterable, List, Optional, Tuple

import numpy as np

from .aggregate import Aggregator
from .config import NOISE_CLASSES, RasterizationConfig, Strategy
from .grid import Grid
from .interpolate import SpikeFreeInterpolator
from .mesh import TriangleMesh
from .validation import InvalidConfigurationError, InvalidGeometryError
from ..io.point_cloud import PointCloud, iter_chunks

log = logging.getLogger(__name__)


@dataclass
class RasterizationResult:
    """Sealed grid plus summary statistics of one run."""
    grid: Grid
    strategy: Strategy
    method: str
    points_read: int
    points_used: int
    cells_with_data: int
    nodata_cells: int
    triangles: Optional[int] = None
    points_blocked: Optional[int] = None

    def summary(self) -> str:
        """Return human-readable summary."""
        rows, cols = self.grid.shape
        dx, dy = self.grid.cell_size
        min_x, min_y, max_x, max_y = self.grid.bounds
        lines = [
            "=" * 50,
            "RASTERIZATION SUMMARY",
            "=" * 50,
            f"Strategy:        {self.strategy.value} ({self.method})",
            f"Grid:            {rows} rows x {cols} cols",
            f"Cell size:       {dx:g} x {dy:g}",
            f"Extent:          X {min_x:.2f} to {max_x:.2f}",
            f"                 Y {min_y:.2f} to {max_y:.2f}",
            f"",
            f"Points read:     {self.points_read:,}",
            f"Points used:     {self.points_used:,}",
        ]
        if self.triangles is not None:
            lines.append(f"Triangles:       {self.triangles:,}")
        if self.points_blocked is not None:
            lines.append(f"Points blocked:  {self.points_blocked:,}")
        lines.extend([
            f"Cells with data: {self.cells_with_data:,}",
            f"Nodata cells:    {self.nodata_cells:,}",
            "=" * 50,
        ])
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "strategy": self.strategy.value,
            "method": self.method,
            "rows": self.grid.rows,
            "cols": self.grid.cols,
            "cell_size": list(self.grid.cell_size),
            "origin": list(self.grid.origin),
            "bounds": list(self.grid.bounds),
            "nodata": self.grid.nodata,
            "crs": self.grid.crs,
            "points_read": self.points_read,
            "points_used": self.points_used,
            "triangles": self.triangles,
            "points_blocked": self.points_blocked,
            "cells_with_data": self.cells_with_data,
            "nodata_cells": self.nodata_cells,
        }


class RasterizationEngine:
    """
    Produces a Grid from a point source and a RasterizationConfig.

    The configuration is validated when the engine is created, and the
    grid is built before the first point is consumed whenever its bounds
    are known up front (explicit bounds, a PointCloud, or a LAS header).
    """

    def __init__(self, config: RasterizationConfig):
        self.config = config.resolved()

    def run(self, source, crs: Optional[str] = None) -> RasterizationResult:
        """
        Rasterize a point source.

        Args:
            source: PointCloud, LasPointSource, or iterable of Point/PointCloud
            crs: CRS tag for the output; defaults to the source's own

        Returns:
            RasterizationResult holding the sealed grid
        """
        cfg = self.config
        self._check_source(source)
        chunks, bounds = self._resolve_bounds(source)

        grid = Grid.from_bounds(
            bounds,
            cfg.cell_size,
            nodata=cfg.nodata,
            crs=crs or getattr(source, "crs", None),
        )
        log.info("Creating raster: %d x %d cells (%s, %s)",
                 grid.rows, grid.cols, cfg.strategy.value, cfg.method_name)

        counter = _ChunkCounter(chunks, self._filter)
        if cfg.strategy == Strategy.BINNING:
            points_used, triangles, blocked = self._run_binning(grid, counter), None, None
        else:
            points_used, triangles, blocked = self._run_triangulation(grid, counter)

        if grid.crs is None:
            grid.crs = counter.crs
        grid.seal()

        cells_with_data = int(np.count_nonzero(grid.data_mask()))
        result = RasterizationResult(
            grid=grid,
            strategy=cfg.strategy,
            method=cfg.method_name,
            points_read=counter.points_read,
            points_used=points_used,
            cells_with_data=cells_with_data,
            nodata_cells=grid.size - cells_with_data,
            triangles=triangles,
            points_blocked=blocked,
        )
        log.info("Done: %d cells with data, %d nodata",
                 result.cells_with_data, result.nodata_cells)
        return result

    def _check_source(self, source) -> None:
        """Reject a classification filter the source cannot satisfy, before reading it."""
        if (
            self.config.classes is not None
            and isinstance(source, PointCloud)
            and source.classification is None
        ):
            raise InvalidConfigurationError(
                "A classification filter was requested but the point "
                "source carries no classification data"
            )

    def _resolve_bounds(
        self,
        source,
    ) -> Tuple[Iterable[PointCloud], Tuple[float, float, float, float]]:
        """Explicit bounds, else the source's extent, else a scan of the stream."""
        cfg = self.config
        chunks = iter_chunks(source, cfg.chunk_size)

        if cfg.bounds is not None:
            return chunks, cfg.bounds

        if isinstance(source, PointCloud):
            if source.num_points == 0:
                raise InvalidGeometryError(
                    "Cannot derive grid bounds from an empty point cloud; "
                    "supply explicit bounds"
                )
            return chunks, source.extent

        extent = getattr(source, "extent", None)
        if extent is not None:
            return chunks, tuple(extent)

        # Unknown extent: materialize the stream and scan it
        log.debug("Point source has no extent; scanning points for bounds")
        materialized = [c for c in chunks if c.num_points > 0]
        if not materialized:
            raise InvalidGeometryError(
                "Cannot derive grid bounds from an empty point source; "
                "supply explicit bounds"
            )
        extents = np.array([c.extent for c in materialized])
        bounds = (
            float(extents[:, 0].min()), float(extents[:, 1].min()),
            float(extents[:, 2].max()), float(extents[:, 3].max()),
        )
        return materialized, bounds

    def _filter(self, cloud: PointCloud) -> PointCloud:
        """Apply the z-range, classification and noise filters."""
        cfg = self.config

        if cfg.z_range is not None:
            cloud = cloud.filter_by_bounds(min_z=cfg.z_range[0], max_z=cfg.z_range[1])

        if cfg.classes is not None:
            if cloud.classification is None:
                raise InvalidConfigurationError(
                    "A classification filter was requested but the point "
                    "source carries no classification data"
                )
            cloud = cloud.filter_by_classification(cfg.classes)

        if cfg.drop_noise:
            cloud = cloud.exclude_classification(NOISE_CLASSES)

        return cloud

    def _run_binning(self, grid: Grid, chunks: Iterable[PointCloud]) -> int:
        cfg = self.config
        aggregator = Aggregator(grid, cfg.method)

        if cfg.workers == 1:
            for cloud in chunks:
                aggregator.add_cloud(cloud, cfg.variable)
        else:
            partials = [aggregator.spawn() for _ in range(cfg.workers)]
            with ThreadPoolExecutor(max_workers=cfg.workers) as executor:
                for cloud in chunks:
                    pieces = cloud.split(cfg.workers)
                    list(executor.map(
                        lambda pair: pair[0].add_cloud(pair[1], cfg.variable),
                        zip(partials, pieces),
                    ))
            for partial in partials:
                aggregator.merge(partial)

        aggregator.finalize()
        return aggregator.points_binned

    def _run_triangulation(
        self,
        grid: Grid,
        chunks: Iterable[PointCloud],
    ) -> Tuple[int, int, Optional[int]]:
        cfg = self.config

        cloud = PointCloud.concatenate(list(chunks))
        log.info("Building triangulation from %d points...", cloud.num_points)
        if cfg.spike_free:
            mesh = TriangleMesh.build_spike_free(
                cloud.x, cloud.y, cloud.z, cloud.values(cfg.variable),
                freeze_distance=cfg.freeze_distance,
                insertion_buffer=cfg.insertion_buffer,
            )
            blocked = mesh.points_blocked
        else:
            mesh = TriangleMesh.from_cloud(cloud, cfg.variable)
            blocked = None

        log.info("Interpolating %s...", cfg.method_name)
        interpolator = SpikeFreeInterpolator(mesh, spike_free=cfg.spike_free)
        interpolator.fill(grid, workers=cfg.workers)
        return cloud.num_points, mesh.num_triangles, blocked


class _ChunkCounter:
    """Iterates filtered chunks while counting raw points and picking up the CRS."""

    def __init__(self, chunks: Iterable[PointCloud], prepare):
        self._chunks = chunks
        self._prepare = prepare
        self.points_read = 0
        self.crs: Optional[str] = None

    def __iter__(self):
        for cloud in self._chunks:
            self.points_read += cloud.num_points
            if self.crs is None:
                self.crs = cloud.crs
            yield self._prepare(cloud)


def rasterize(source, cell_size, **options) -> RasterizationResult:
    """Convenience wrapper: build a config from keyword options and run it."""
    return RasterizationEngine(RasterizationConfig(cell_size=cell_size, **options)).run(source)
