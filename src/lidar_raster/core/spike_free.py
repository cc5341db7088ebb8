"""
Spike-Free Triangulation

Builds the triangulation behind spike-free surface models. Points are
inserted from the highest to the lowest into an incremental Delaunay
triangulation (Bowyer-Watson). Once the insertion front has dropped more
than `insertion_buffer` below a vertex, that vertex's edges to the higher
vertices around it are frozen if they are shorter than `freeze_distance`.
Frozen edges are constraints and never flip again. A triangle whose three
edges are frozen is closed: a later, lower point that falls inside it, or
on a frozen edge, is not inserted.

Roofs and canopy therefore close over the sparse returns that reach the
ground beneath them, which a plain triangulation turns into pits of long,
steep triangles.
"""

from __future__ import annotations

from collections import deque
import logging
import math
from typing import List, Set

import numpy as np

log = logging.getLogger(__name__)

# Super-triangle vertices sit this many data extents from the center
SUPER_TRIANGLE_SCALE = 20.0

# Orientations within this fraction of extent**2 count as collinear
ORIENT_TOLERANCE = 1e-12

# Default freeze distance in multiples of the mean point spacing
FREEZE_SPACINGS = 3.0


def estimate_point_spacing(x: np.ndarray, y: np.ndarray) -> float:
    """Mean point spacing, from the bounding-box area per point."""
    width = float(np.max(x) - np.min(x))
    height = float(np.max(y) - np.min(y))
    n = len(x)
    if width > 0.0 and height > 0.0:
        return math.sqrt(width * height / n)
    return max(width, height) / max(n - 1, 1)


class SpikeFreeTriangulation:
    """
    Incremental triangulation with edge freezing.

    Args:
        x, y: Local (origin-shifted) coordinates, already in insertion
            order (descending elevation) and free of duplicate positions
        z: Elevations in the same order
        freeze_distance: Edges shorter than this may freeze
        insertion_buffer: Height the insertion front must drop below a
            vertex before its edges may freeze

    After build(), `inserted` flags the points that made it into the
    triangulation and `triangles` holds counter-clockwise vertex triples
    indexing the input arrays.
    """

    def __init__(self, x, y, z, freeze_distance: float, insertion_buffer: float):
        n = len(x)
        self._n = n
        self._z = [float(v) for v in z]
        self._freeze_2 = float(freeze_distance) ** 2
        self._buffer = float(insertion_buffer)

        min_x, max_x = float(np.min(x)), float(np.max(x))
        min_y, max_y = float(np.min(y)), float(np.max(y))
        extent = max(max_x - min_x, max_y - min_y)
        self._tolerance = ORIENT_TOLERANCE * extent * extent

        # Enclosing super-triangle, counter-clockwise
        cx, cy = (min_x + max_x) / 2.0, (min_y + max_y) / 2.0
        r = SUPER_TRIANGLE_SCALE * extent
        self._px = [float(v) for v in x] + [cx - math.sqrt(3.0) * r, cx + math.sqrt(3.0) * r, cx]
        self._py = [float(v) for v in y] + [cy - r, cy - r, cy + 2.0 * r]

        self._tv: List[List[int]] = [[n, n + 1, n + 2]]
        self._tn: List[List[int]] = [[-1, -1, -1]]
        self._alive: List[bool] = [True]
        self._vertex_tri = [-1] * n + [0, 0, 0]
        self._frozen: Set[tuple] = set()
        self._last = 0

        # Walk start hints, one per bucket of a coarse grid
        self._grid_n = max(1, int(math.sqrt(n)) // 2)
        self._grid_origin = (min_x, min_y)
        self._grid_cell = extent / self._grid_n if extent > 0 else 1.0
        self._hints = [-1] * (self._grid_n * self._grid_n)

        self.inserted = np.zeros(n, dtype=bool)
        self.triangles = np.empty((0, 3), dtype=np.int64)

    @property
    def frozen_edges(self) -> int:
        return len(self._frozen)

    def build(self) -> SpikeFreeTriangulation:
        """Insert every point in order, freezing edges behind the front."""
        pending = deque()
        front = max(self._z) if self._n else 0.0

        for k in range(self._n):
            while pending and self._z[pending[0]] > front + self._buffer:
                self._freeze_edges(pending.popleft())

            if self._insert(k):
                self.inserted[k] = True
                pending.append(k)
                front = min(front, self._z[k])

        n = self._n
        rows = [
            verts for t, verts in enumerate(self._tv)
            if self._alive[t] and max(verts) < n
        ]
        self.triangles = np.array(rows, dtype=np.int64).reshape(-1, 3)

        log.debug("Spike-free build: %d of %d points inserted, %d edges frozen",
                  int(np.count_nonzero(self.inserted)), n, self.frozen_edges)
        return self

    # ------------------------------------------------------------------
    # Geometry predicates
    # ------------------------------------------------------------------

    def _orient(self, u: int, v: int, px: float, py: float) -> float:
        """Twice the signed area of (u, v, p); positive when p is left of u->v."""
        ux, uy = self._px[u], self._py[u]
        return (self._px[v] - ux) * (py - uy) - (self._py[v] - uy) * (px - ux)

    def _in_circle(self, t: int, px: float, py: float) -> bool:
        """True if p lies strictly inside the circumcircle of triangle t."""
        a, b, c = self._tv[t]
        adx, ady = self._px[a] - px, self._py[a] - py
        bdx, bdy = self._px[b] - px, self._py[b] - py
        cdx, cdy = self._px[c] - px, self._py[c] - py
        det = (
            (adx * adx + ady * ady) * (bdx * cdy - cdx * bdy)
            + (bdx * bdx + bdy * bdy) * (cdx * ady - adx * cdy)
            + (cdx * cdx + cdy * cdy) * (adx * bdy - bdx * ady)
        )
        return det > 0.0

    def _is_frozen(self, u: int, v: int) -> bool:
        return ((u, v) if u < v else (v, u)) in self._frozen

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def _bucket(self, px: float, py: float) -> int:
        last = self._grid_n - 1
        i = min(last, max(0, int((px - self._grid_origin[0]) / self._grid_cell)))
        j = min(last, max(0, int((py - self._grid_origin[1]) / self._grid_cell)))
        return j * self._grid_n + i

    def _locate(self, px: float, py: float) -> int:
        """Visibility walk to a triangle whose closure contains p."""
        t = self._last
        hint = self._hints[self._bucket(px, py)]
        if hint >= 0 and self._alive[hint]:
            t = hint

        limit = 4 * len(self._tv) + 16
        steps = 0
        while True:
            verts, nbrs = self._tv[t], self._tn[t]
            moved = False
            # Rotating the first edge tested keeps the walk from cycling
            for s in range(3):
                i = (s + steps) % 3
                if self._orient(verts[(i + 1) % 3], verts[(i + 2) % 3], px, py) < -self._tolerance:
                    t = nbrs[i]
                    moved = True
                    break
            if not moved:
                return t
            steps += 1
            if t < 0 or steps > limit:
                return self._scan(px, py)

    def _scan(self, px: float, py: float) -> int:
        for t, verts in enumerate(self._tv):
            if not self._alive[t]:
                continue
            if all(
                self._orient(verts[(i + 1) % 3], verts[(i + 2) % 3], px, py) >= -self._tolerance
                for i in range(3)
            ):
                return t
        raise RuntimeError(f"No triangle contains ({px}, {py})")

    def _insert(self, k: int) -> bool:
        """Insert point k unless it is blocked; returns True if inserted."""
        px, py = self._px[k], self._py[k]
        t = self._locate(px, py)
        verts = self._tv[t]

        on_edge = [
            i for i in range(3)
            if abs(self._orient(verts[(i + 1) % 3], verts[(i + 2) % 3], px, py)) <= self._tolerance
        ]
        if len(on_edge) > 1:
            # Coincides with an existing vertex
            return False

        if on_edge:
            i = on_edge[0]
            if self._is_frozen(verts[(i + 1) % 3], verts[(i + 2) % 3]):
                return False
            nb = self._tn[t][i]
            seeds = [t] if nb < 0 else [t, nb]
        else:
            if all(self._is_frozen(verts[(i + 1) % 3], verts[(i + 2) % 3]) for i in range(3)):
                return False
            seeds = [t]

        self._retriangulate(self._cavity(seeds, px, py), k)
        return True

    def _cavity(self, seeds: List[int], px: float, py: float) -> Set[int]:
        """
        Triangles to replace when inserting p.

        Grows from the seeds across unfrozen edges into every triangle whose
        circumcircle contains p, then drops triangles until p strictly sees
        every boundary edge and no frozen edge lies inside. The seeds contain
        p, so they always survive.
        """
        cavity = set(seeds)
        stack = list(seeds)
        while stack:
            t = stack.pop()
            verts, nbrs = self._tv[t], self._tn[t]
            for i in range(3):
                nb = nbrs[i]
                if nb < 0 or nb in cavity:
                    continue
                if self._is_frozen(verts[(i + 1) % 3], verts[(i + 2) % 3]):
                    continue
                if self._in_circle(nb, px, py):
                    cavity.add(nb)
                    stack.append(nb)

        while True:
            drop = None
            for t in cavity:
                if t in seeds:
                    continue
                verts, nbrs = self._tv[t], self._tn[t]
                for i in range(3):
                    u, v = verts[(i + 1) % 3], verts[(i + 2) % 3]
                    if nbrs[i] in cavity:
                        hidden = self._is_frozen(u, v)
                    else:
                        hidden = self._orient(u, v, px, py) <= self._tolerance
                    if hidden:
                        drop = t
                        break
                if drop is not None:
                    break
            if drop is None:
                return cavity
            cavity.discard(drop)

    def _retriangulate(self, cavity: Set[int], k: int) -> None:
        """Replace the cavity with a fan of triangles around vertex k."""
        boundary = []
        for t in cavity:
            verts, nbrs = self._tv[t], self._tn[t]
            for i in range(3):
                if nbrs[i] not in cavity:
                    boundary.append((verts[(i + 1) % 3], verts[(i + 2) % 3], nbrs[i]))
            self._alive[t] = False

        starts, ends, created = {}, {}, []
        for u, v, nb in boundary:
            t_new = len(self._tv)
            self._tv.append([u, v, k])
            self._tn.append([-1, -1, nb])
            self._alive.append(True)
            if nb >= 0:
                nverts = self._tv[nb]
                j = next(j for j in range(3) if nverts[j] != u and nverts[j] != v)
                self._tn[nb][j] = t_new
            starts[u] = t_new
            ends[v] = t_new
            self._vertex_tri[u] = t_new
            self._vertex_tri[v] = t_new
            created.append(t_new)

        for t_new in created:
            u, v, _ = self._tv[t_new]
            self._tn[t_new][0] = starts[v]
            self._tn[t_new][1] = ends[u]

        self._vertex_tri[k] = created[0]
        self._last = created[0]
        self._hints[self._bucket(self._px[k], self._py[k])] = created[0]

    # ------------------------------------------------------------------
    # Freezing
    # ------------------------------------------------------------------

    def _neighbors(self, v: int) -> Set[int]:
        """Vertices sharing an edge with v."""
        start = self._vertex_tri[v]
        seen = {start}
        stack = [start]
        around = set()
        while stack:
            t = stack.pop()
            verts, nbrs = self._tv[t], self._tn[t]
            for i in range(3):
                if verts[i] == v:
                    continue
                around.add(verts[i])
                # The edge opposite a vertex other than v touches v
                nb = nbrs[i]
                if nb >= 0 and nb not in seen:
                    seen.add(nb)
                    stack.append(nb)
        return around

    def _freeze_edges(self, v: int) -> None:
        """Freeze v's short edges to vertices inserted before it."""
        vx, vy = self._px[v], self._py[v]
        for u in self._neighbors(v):
            if u >= self._n or u > v:
                continue
            dx, dy = self._px[u] - vx, self._py[u] - vy
            if dx * dx + dy * dy < self._freeze_2:
                self._frozen.add((u, v))
