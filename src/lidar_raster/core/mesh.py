"""
Triangle Mesh Module

2D triangulation over the horizontal projection of a point set, with
per-triangle bounding boxes and a spatial index over them.

Plain meshes are delegated to Qhull (scipy.spatial.Delaunay), which is
deterministic for identical input, so co-circular ties resolve the same way
on every run. Spike-free meshes come from the incremental construction in
spike_free.py. Coordinates are shifted to a local origin first; projected
LiDAR coordinates are large and lose precision in the in-circle tests
otherwise.
"""

from __future__ import annotations

from functools import cached_property
import logging
from typing import Iterator, Optional, Tuple

import numpy as np
import shapely
from scipy.spatial import Delaunay, QhullError

from .config import DEFAULT_INSERTION_BUFFER, Variable
from .spike_free import FREEZE_SPACINGS, SpikeFreeTriangulation, estimate_point_spacing
from .validation import (
    DegenerateGeometryError,
    IndexOutOfRangeError,
    InsufficientPointsError,
    InvalidConfigurationError,
)

log = logging.getLogger(__name__)

# Barycentric weights this far below zero still count as inside a triangle
CONTAINMENT_TOLERANCE = 1e-9

# Relative area below which a point set is treated as collinear
COLLINEAR_TOLERANCE = 1e-12


class TriangleMesh:
    """
    Immutable 2D triangulation.

    Attributes:
        x, y: Vertex coordinates (copies of the input)
        values: Vertex values interpolated across triangles (elevation by default)
        triangles: (T, 3) vertex indices per triangle
        neighbors: (T, 3) index of the triangle opposite each vertex, -1 on the hull
        bboxes: (T, 4) triangle bounding boxes (min_x, min_y, max_x, max_y)
        points_blocked: Points a spike-free build left out (0 for plain meshes)
    """

    def __init__(
        self,
        x: np.ndarray,
        y: np.ndarray,
        values: np.ndarray,
        triangles: np.ndarray,
        offset: Tuple[float, float],
        delaunay: Optional[Delaunay] = None,
    ):
        self.x = x
        self.y = y
        self.values = values
        self.offset = offset
        self._delaunay = delaunay
        self._local = np.column_stack([x - offset[0], y - offset[1]])
        self.points_blocked = 0

        self.triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        if delaunay is not None:
            self.neighbors = delaunay.neighbors.astype(np.int64)
        else:
            self.neighbors = _edge_neighbors(self.triangles)

        tri_x = x[self.triangles]
        tri_y = y[self.triangles]
        self.bboxes = np.column_stack([
            tri_x.min(axis=1), tri_y.min(axis=1),
            tri_x.max(axis=1), tri_y.max(axis=1),
        ])

    @classmethod
    def build(cls, x, y, values=None) -> TriangleMesh:
        """
        Delaunay-triangulate points by their (x, y) coordinates.

        Args:
            x, y: Horizontal coordinates
            values: Per-point values to interpolate (defaults to zeros)

        Returns:
            TriangleMesh

        Raises:
            InsufficientPointsError: If fewer than 3 points are supplied
            DegenerateGeometryError: If all points are collinear or coincident
        """
        x, y, values, _ = _prepare(x, y, values)

        # Duplicate xy positions: keep the first occurrence, in input order
        keep = _first_positions(x, y)
        if len(keep) < len(x):
            log.debug("Dropping %d duplicate xy positions", len(x) - len(keep))
            x, y, values = x[keep], y[keep], values[keep]

        offset, local = _localize(x, y)

        try:
            delaunay = Delaunay(local)
        except QhullError as e:
            raise DegenerateGeometryError(f"Triangulation failed: {e}") from e

        mesh = cls(x.copy(), y.copy(), values.copy(), delaunay.simplices, offset, delaunay)
        log.debug("Triangulated %d vertices into %d triangles",
                  mesh.num_vertices, mesh.num_triangles)
        return mesh

    @classmethod
    def build_spike_free(
        cls,
        x,
        y,
        z,
        values=None,
        freeze_distance: Optional[float] = None,
        insertion_buffer: float = DEFAULT_INSERTION_BUFFER,
    ) -> TriangleMesh:
        """
        Triangulate points from the highest down, freezing short edges.

        Points are inserted in descending `z`. Edges shorter than
        `freeze_distance` freeze once the insertion front is more than
        `insertion_buffer` below both ends, and later points enclosed by
        frozen edges are left out. Of several points sharing an xy
        position, the highest is kept.

        Args:
            x, y: Horizontal coordinates
            z: Elevations that set the insertion order
            values: Per-point values to interpolate (defaults to z)
            freeze_distance: Maximum frozen edge length; defaults to a few
                times the mean point spacing
            insertion_buffer: Height the front must drop below a vertex
                before its edges may freeze

        Returns:
            TriangleMesh with `points_blocked` set

        Raises:
            InvalidConfigurationError: If freeze_distance or insertion_buffer is invalid
            InsufficientPointsError: If fewer than 3 points are supplied
            DegenerateGeometryError: If all points are collinear or coincident
        """
        if freeze_distance is not None and not (np.isfinite(freeze_distance) and freeze_distance > 0):
            raise InvalidConfigurationError(
                f"Freeze distance must be positive, got {freeze_distance}"
            )
        if not (np.isfinite(insertion_buffer) and insertion_buffer >= 0):
            raise InvalidConfigurationError(
                f"Insertion buffer must be non-negative, got {insertion_buffer}"
            )

        z = np.asarray(z, dtype=np.float64)
        x, y, values, z = _prepare(x, y, z if values is None else values, z)

        order = np.argsort(-z, kind="stable")
        x, y, z, values = x[order], y[order], z[order], values[order]
        keep = _first_positions(x, y)
        if len(keep) < len(x):
            log.debug("Dropping %d lower points at duplicate xy positions", len(x) - len(keep))
            x, y, z, values = x[keep], y[keep], z[keep], values[keep]

        offset, local = _localize(x, y)

        if freeze_distance is None:
            freeze_distance = FREEZE_SPACINGS * estimate_point_spacing(local[:, 0], local[:, 1])

        build = SpikeFreeTriangulation(
            local[:, 0], local[:, 1], z, freeze_distance, insertion_buffer,
        ).build()
        if len(build.triangles) == 0:
            raise DegenerateGeometryError("Spike-free triangulation produced no triangles")

        # Renumber the surviving points
        inserted = build.inserted
        remap = np.cumsum(inserted) - 1
        mesh = cls(
            x[inserted].copy(), y[inserted].copy(), values[inserted].copy(),
            remap[build.triangles], offset,
        )
        mesh.points_blocked = int(len(x) - np.count_nonzero(inserted))

        log.info(
            "Spike-free triangulation: %d vertices, %d triangles, %d points blocked "
            "(freeze distance %.3f, insertion buffer %.3f)",
            mesh.num_vertices, mesh.num_triangles, mesh.points_blocked,
            freeze_distance, insertion_buffer,
        )
        return mesh

    @classmethod
    def from_cloud(cls, cloud, variable: Variable = Variable.Z) -> TriangleMesh:
        """Triangulate a PointCloud, interpolating `variable`."""
        return cls.build(cloud.x, cloud.y, cloud.values(variable))

    @property
    def num_triangles(self) -> int:
        return len(self.triangles)

    @property
    def num_vertices(self) -> int:
        return len(self.x)

    def __len__(self) -> int:
        return self.num_triangles

    def _check_triangle(self, index: int) -> None:
        if not 0 <= index < self.num_triangles:
            raise IndexOutOfRangeError(
                f"Triangle {index} out of range (mesh has {self.num_triangles})"
            )

    def triangle_vertices_of(self, index: int) -> Tuple[int, int, int]:
        """The three vertex indices of a triangle."""
        self._check_triangle(index)
        a, b, c = self.triangles[index]
        return (int(a), int(b), int(c))

    def triangle_bounds(self, index: int) -> Tuple[float, float, float, float]:
        """Precomputed (min_x, min_y, max_x, max_y) of a triangle."""
        self._check_triangle(index)
        return tuple(float(v) for v in self.bboxes[index])

    def neighbors_of(self, index: int) -> Tuple[int, ...]:
        """Triangles sharing an edge with `index` (hull edges omitted)."""
        self._check_triangle(index)
        return tuple(int(n) for n in self.neighbors[index] if n >= 0)

    def locate(self, x, y) -> np.ndarray:
        """Vectorized triangle lookup; -1 where a point is outside the mesh."""
        x = np.atleast_1d(np.asarray(x, dtype=np.float64))
        y = np.atleast_1d(np.asarray(y, dtype=np.float64))
        if self._delaunay is not None:
            query = np.column_stack([x - self.offset[0], y - self.offset[1]])
            return self._delaunay.find_simplex(query).astype(np.int64)

        # Lowest-numbered containing triangle, matching find_simplex on ties
        points, triangles = self.spatial_index.query(shapely.points(x, y))
        inside = self.contains(triangles, x[points], y[points])
        found = np.full(x.size, self.num_triangles, dtype=np.int64)
        np.minimum.at(found, points[inside], triangles[inside])
        found[found == self.num_triangles] = -1
        return found

    def triangle_at(self, x: float, y: float) -> Optional[int]:
        """Index of the triangle containing (x, y), or None outside the hull."""
        index = int(self.locate(x, y)[0])
        return index if index >= 0 else None

    @cached_property
    def spatial_index(self) -> shapely.STRtree:
        """R-tree over triangle bounding boxes, built on first use."""
        boxes = shapely.box(
            self.bboxes[:, 0], self.bboxes[:, 1],
            self.bboxes[:, 2], self.bboxes[:, 3],
        )
        return shapely.STRtree(boxes)

    def candidate_triangles(
        self,
        cell_bounds: Tuple[float, float, float, float],
    ) -> Iterator[int]:
        """
        Lazily yield every triangle whose bounding box overlaps a rectangle.

        The sequence is exhaustive but may include triangles that do not
        actually intersect the rectangle.
        """
        hits = self.spatial_index.query(shapely.box(*cell_bounds))
        for index in np.sort(hits):
            yield int(index)

    def candidate_pairs(
        self,
        min_x: np.ndarray,
        min_y: np.ndarray,
        max_x: np.ndarray,
        max_y: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Bulk candidate query for many rectangles.

        Returns:
            (rect_index, triangle_index) arrays, one entry per overlapping pair
        """
        boxes = shapely.box(min_x, min_y, max_x, max_y)
        rect_index, tri_index = self.spatial_index.query(boxes)
        return rect_index.astype(np.int64), tri_index.astype(np.int64)

    def barycentric(self, triangles, x, y) -> np.ndarray:
        """
        Barycentric weights of points within triangles.

        Args:
            triangles: Triangle index per point
            x, y: Query coordinates

        Returns:
            (N, 3) weights, one column per triangle vertex. A query located
            exactly on a vertex gets weight 1 for that vertex.
        """
        triangles = np.atleast_1d(np.asarray(triangles, dtype=np.int64))
        px = np.atleast_1d(np.asarray(x, dtype=np.float64)) - self.offset[0]
        py = np.atleast_1d(np.asarray(y, dtype=np.float64)) - self.offset[1]

        corners = self._local[self.triangles[triangles]]
        xa, ya = corners[:, 0, 0], corners[:, 0, 1]
        xb, yb = corners[:, 1, 0], corners[:, 1, 1]
        xc, yc = corners[:, 2, 0], corners[:, 2, 1]

        det = (yb - yc) * (xa - xc) + (xc - xb) * (ya - yc)
        w0 = ((yb - yc) * (px - xc) + (xc - xb) * (py - yc)) / det
        w1 = ((yc - ya) * (px - xc) + (xa - xc) * (py - yc)) / det
        w2 = 1.0 - w0 - w1
        return np.column_stack([w0, w1, w2])

    def contains(self, triangles, x, y) -> np.ndarray:
        """Precise point-in-triangle test (edges and vertices count as inside)."""
        weights = self.barycentric(triangles, x, y)
        return weights.min(axis=1) >= -CONTAINMENT_TOLERANCE

    def interpolate_in(self, triangles, x, y) -> np.ndarray:
        """Linear interpolation of vertex values within the given triangles."""
        triangles = np.atleast_1d(np.asarray(triangles, dtype=np.int64))
        weights = self.barycentric(triangles, x, y)
        corner_values = self.values[self.triangles[triangles]]
        return np.sum(weights * corner_values, axis=1)


def _prepare(x, y, values, z=None):
    """Coerce inputs to float arrays and drop non-finite points."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    values = np.zeros_like(x) if values is None else np.asarray(values, dtype=np.float64)
    if z is None:
        z = values

    if not (len(x) == len(y) == len(values) == len(z)):
        raise ValueError("x, y and values must have the same length")

    if len(x) < 3:
        raise InsufficientPointsError(
            f"Triangulation needs at least 3 points, got {len(x)}"
        )

    finite = np.isfinite(x) & np.isfinite(y) & np.isfinite(values) & np.isfinite(z)
    if not np.all(finite):
        log.warning("Dropping %d non-finite points before triangulation",
                    int(np.count_nonzero(~finite)))
        x, y, values, z = x[finite], y[finite], values[finite], z[finite]
        if len(x) < 3:
            raise InsufficientPointsError(
                f"Triangulation needs at least 3 finite points, got {len(x)}"
            )
    return x, y, values, z


def _first_positions(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Sorted indices of the first point at each distinct xy position."""
    _, first = np.unique(np.column_stack([x, y]), axis=0, return_index=True)
    return np.sort(first)


def _localize(x: np.ndarray, y: np.ndarray):
    """Shift to a local origin; raises if the points span no area."""
    offset = (float(x.min()), float(y.min()))
    local = np.column_stack([x - offset[0], y - offset[1]])

    if _is_collinear(local):
        raise DegenerateGeometryError(
            f"All {len(x)} points are collinear or coincident; "
            "no triangulation exists"
        )
    return offset, local


def _edge_neighbors(triangles: np.ndarray) -> np.ndarray:
    """Triangle opposite each vertex, found by matching shared edges."""
    neighbors = np.full(triangles.shape, -1, dtype=np.int64)
    edges = {}
    for t, (a, b, c) in enumerate(triangles.tolist()):
        for i, (u, v) in enumerate(((b, c), (c, a), (a, b))):
            key = (u, v) if u < v else (v, u)
            other = edges.pop(key, None)
            if other is None:
                edges[key] = (t, i)
            else:
                neighbors[t, i] = other[0]
                neighbors[other[0], other[1]] = t
    return neighbors


def _is_collinear(points: np.ndarray) -> bool:
    """True if every point lies on one line through the first point."""
    delta = points - points[0]
    lengths = np.einsum("ij,ij->i", delta, delta)
    far = int(np.argmax(lengths))
    if lengths[far] == 0.0:
        return True

    direction = delta[far]
    cross = direction[0] * delta[:, 1] - direction[1] * delta[:, 0]
    return bool(np.max(np.abs(cross)) <= COLLINEAR_TOLERANCE * lengths[far])
