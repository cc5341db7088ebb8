"""
Point Cloud Module

Point data model plus the point sources feeding the rasterization engine:
LAS/LAZ files (read through laspy, optionally streamed in chunks), XYZ
text files and in-memory points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import struct
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

try:
    import laspy
    HAS_LASPY = True
except ImportError:
    HAS_LASPY = False

from ..core.config import Variable


def require_laspy():
    if not HAS_LASPY:
        raise ImportError(
            "laspy is required to read LAS/LAZ files.\n"
            "Install with: pip install laspy lazrs"
        )


@dataclass(frozen=True)
class Point:
    """A single LiDAR return."""
    x: float
    y: float
    z: float
    classification: Optional[int] = None
    intensity: Optional[int] = None


def _extract_crs_from_las(header) -> Optional[str]:
    """
    Extract a CRS tag from LAS header VLRs.

    Looks for OGC WKT (LASF_Projection/2112, LAS 1.4 writes it there too)
    and falls back to the GeoKey directory (LASF_Projection/34735), where
    ProjectedCSTypeGeoKey (3072) or GeographicTypeGeoKey (2048) carry an
    EPSG code.

    Returns:
        WKT string, "EPSG:<code>", or None
    """
    vlrs = list(getattr(header, "vlrs", None) or [])
    vlrs += list(getattr(header, "evlrs", None) or [])

    for vlr in vlrs:
        if vlr.user_id == "LASF_Projection" and vlr.record_id == 2112:
            raw = getattr(vlr, "record_data", None)
            if raw is None:
                raw = getattr(vlr, "string", b"")
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="ignore")
            wkt = raw.rstrip("\x00").strip()
            if wkt:
                return wkt

    for vlr in vlrs:
        if vlr.user_id == "LASF_Projection" and vlr.record_id == 34735:
            # laspy parses the directory into geo_keys for known VLRs
            for key in getattr(vlr, "geo_keys", None) or []:
                if key.id in (3072, 2048) and key.tiff_tag_location == 0:
                    return f"EPSG:{key.value_offset}"

            data = getattr(vlr, "record_data", None)
            if not isinstance(data, bytes) or len(data) < 8:
                continue
            num_keys = struct.unpack("<H", data[6:8])[0]
            for i in range(num_keys):
                offset = 8 + i * 8
                if offset + 8 > len(data):
                    break
                key_id, location, _, value = struct.unpack("<HHHH", data[offset:offset + 8])
                # location 0 means the value is stored inline
                if key_id in (3072, 2048) and location == 0:
                    return f"EPSG:{value}"

    return None


@dataclass
class PointCloud:
    """
    Batch of points.

    Attributes:
        xyz: Nx3 array of point coordinates
        classification: Optional N array of ASPRS classification codes
            (2 = ground, 6 = building, 7/18 = noise)
        intensity: Optional N array of return intensity values
        crs: Coordinate reference system (EPSG code or WKT)
    """
    xyz: np.ndarray
    classification: Optional[np.ndarray] = None
    intensity: Optional[np.ndarray] = None
    crs: Optional[str] = None
    _extent: Optional[Tuple[float, float, float, float]] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate data shapes."""
        self.xyz = np.asarray(self.xyz, dtype=np.float64)
        if self.xyz.ndim == 1 and self.xyz.size == 0:
            self.xyz = self.xyz.reshape(0, 3)
        if self.xyz.ndim != 2 or self.xyz.shape[1] != 3:
            raise ValueError(f"xyz must be Nx3 array, got shape {self.xyz.shape}")

        n_points = len(self.xyz)

        if self.classification is not None and len(self.classification) != n_points:
            raise ValueError("classification length must match xyz")
        if self.intensity is not None and len(self.intensity) != n_points:
            raise ValueError("intensity length must match xyz")

    @classmethod
    def from_points(cls, points: Iterable[Point], crs: Optional[str] = None) -> PointCloud:
        """Pack individual Points into a cloud."""
        points = list(points)
        xyz = np.array([(p.x, p.y, p.z) for p in points], dtype=np.float64).reshape(-1, 3)

        classification = None
        if points and all(p.classification is not None for p in points):
            classification = np.array([p.classification for p in points], dtype=np.uint8)

        intensity = None
        if points and all(p.intensity is not None for p in points):
            intensity = np.array([p.intensity for p in points], dtype=np.uint16)

        return cls(xyz=xyz, classification=classification, intensity=intensity, crs=crs)

    @classmethod
    def concatenate(cls, clouds: Sequence[PointCloud]) -> PointCloud:
        """Join clouds; optional attributes survive only if every cloud has them."""
        clouds = [c for c in clouds if c.num_points > 0]
        if not clouds:
            return cls(xyz=np.empty((0, 3)))

        def join(attr):
            parts = [getattr(c, attr) for c in clouds]
            if any(p is None for p in parts):
                return None
            return np.concatenate(parts)

        return cls(
            xyz=np.concatenate([c.xyz for c in clouds]),
            classification=join("classification"),
            intensity=join("intensity"),
            crs=clouds[0].crs,
        )

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """Horizontal bounding box (min_x, min_y, max_x, max_y)."""
        if self.num_points == 0:
            raise ValueError("Point cloud is empty")
        if self._extent is None:
            min_x, min_y = np.min(self.xyz[:, :2], axis=0)
            max_x, max_y = np.max(self.xyz[:, :2], axis=0)
            self._extent = (float(min_x), float(min_y), float(max_x), float(max_y))
        return self._extent

    @property
    def num_points(self) -> int:
        """Total number of points."""
        return len(self.xyz)

    def __len__(self) -> int:
        return self.num_points

    @property
    def x(self) -> np.ndarray:
        return self.xyz[:, 0]

    @property
    def y(self) -> np.ndarray:
        return self.xyz[:, 1]

    @property
    def z(self) -> np.ndarray:
        return self.xyz[:, 2]

    def values(self, variable: Variable = Variable.Z) -> np.ndarray:
        """Per-point values of the attribute being rasterized."""
        variable = Variable(variable)
        if variable == Variable.INTENSITY:
            if self.intensity is None:
                raise ValueError("Point cloud has no intensity data")
            return self.intensity.astype(np.float64)
        return self.xyz[:, "xyz".index(variable.value)]

    def iter_points(self) -> Iterator[Point]:
        """Yield the cloud as individual Points."""
        for i in range(self.num_points):
            yield Point(
                x=float(self.xyz[i, 0]),
                y=float(self.xyz[i, 1]),
                z=float(self.xyz[i, 2]),
                classification=None if self.classification is None else int(self.classification[i]),
                intensity=None if self.intensity is None else int(self.intensity[i]),
            )

    def filter_by_classification(self, classes: Sequence[int]) -> PointCloud:
        """
        Return a new PointCloud containing only points with specified classifications.

        Args:
            classes: Classification codes to keep (e.g., [2] for ground only)
        """
        if self.classification is None:
            raise ValueError("Point cloud has no classification data")

        mask = np.isin(self.classification, list(classes))
        return self._apply_mask(mask)

    def exclude_classification(self, classes: Sequence[int]) -> PointCloud:
        """Drop points with the given classifications; unclassified clouds pass through."""
        if self.classification is None:
            return self
        return self._apply_mask(~np.isin(self.classification, list(classes)))

    def filter_by_bounds(
        self,
        min_x: float = -np.inf,
        max_x: float = np.inf,
        min_y: float = -np.inf,
        max_y: float = np.inf,
        min_z: float = -np.inf,
        max_z: float = np.inf,
    ) -> PointCloud:
        """Filter points by spatial bounds (inclusive)."""
        mask = (
            (self.xyz[:, 0] >= min_x) & (self.xyz[:, 0] <= max_x) &
            (self.xyz[:, 1] >= min_y) & (self.xyz[:, 1] <= max_y) &
            (self.xyz[:, 2] >= min_z) & (self.xyz[:, 2] <= max_z)
        )
        return self._apply_mask(mask)

    def split(self, parts: int) -> List[PointCloud]:
        """Split into `parts` contiguous, nearly equal slices."""
        edges = np.linspace(0, self.num_points, parts + 1).astype(int)
        return [self._apply_mask(slice(a, b)) for a, b in zip(edges[:-1], edges[1:])]

    def _apply_mask(self, mask: np.ndarray) -> PointCloud:
        """Apply boolean mask to create filtered point cloud."""
        return PointCloud(
            xyz=self.xyz[mask].copy(),
            classification=self.classification[mask].copy() if self.classification is not None else None,
            intensity=self.intensity[mask].copy() if self.intensity is not None else None,
            crs=self.crs,
        )


def _cloud_from_las_points(points, crs: Optional[str] = None) -> PointCloud:
    """Convert a laspy point record (LasData or ScaleAwarePointRecord)."""
    xyz = np.column_stack([points.x, points.y, points.z]).astype(np.float64)
    classification = np.array(points.classification, dtype=np.uint8)
    intensity = np.array(points.intensity, dtype=np.uint16)
    return PointCloud(xyz=xyz, classification=classification, intensity=intensity, crs=crs)


class LasPointSource:
    """
    Streams a LAS/LAZ file in chunks.

    The header extent is available up front, so binning can size its grid
    without a pre-scan and never holds more than one chunk in memory.
    """

    def __init__(self, filepath: Union[str, Path], chunk_size: int = 1_000_000):
        require_laspy()
        self.filepath = Path(filepath)
        self.chunk_size = chunk_size

        with laspy.open(self.filepath) as reader:
            header = reader.header
            self.extent = (
                float(header.x_min), float(header.y_min),
                float(header.x_max), float(header.y_max),
            )
            self.z_range = (float(header.z_min), float(header.z_max))
            self.num_points = int(header.point_count)
            self.crs = _extract_crs_from_las(header)

    def __iter__(self) -> Iterator[PointCloud]:
        with laspy.open(self.filepath) as reader:
            for points in reader.chunk_iterator(self.chunk_size):
                yield _cloud_from_las_points(points, crs=self.crs)

    def __repr__(self) -> str:
        return f"LasPointSource({str(self.filepath)!r}, points={self.num_points})"


class PointCloudLoader:
    """
    Factory for loading point clouds from various file formats.

    Supported formats:
        - LAS/LAZ (laspy; LAZ needs the lazrs backend)
        - XYZ (plain text: x y z [classification] [intensity] per line)
    """

    # ASPRS LAS Classification codes
    CLASS_UNCLASSIFIED = 1
    CLASS_GROUND = 2
    CLASS_LOW_VEGETATION = 3
    CLASS_MEDIUM_VEGETATION = 4
    CLASS_HIGH_VEGETATION = 5
    CLASS_BUILDING = 6
    CLASS_LOW_NOISE = 7
    CLASS_WATER = 9
    CLASS_HIGH_NOISE = 18

    CLASS_NAMES = {
        1: "Unclassified",
        2: "Ground",
        3: "Low Vegetation",
        4: "Medium Vegetation",
        5: "High Vegetation",
        6: "Building",
        7: "Low Noise",
        9: "Water",
        18: "High Noise",
    }

    @classmethod
    def load(cls, filepath: Union[str, Path], **kwargs) -> PointCloud:
        """
        Load point cloud from file, auto-detecting format.

        Args:
            filepath: Path to point cloud file
            **kwargs: Format-specific options

        Returns:
            PointCloud instance
        """
        filepath = Path(filepath)
        suffix = filepath.suffix.lower()

        loaders = {
            '.las': cls._load_las,
            '.laz': cls._load_las,
            '.xyz': cls._load_xyz,
            '.txt': cls._load_xyz,
        }

        if suffix not in loaders:
            raise ValueError(f"Unsupported format: {suffix}")

        return loaders[suffix](filepath, **kwargs)

    @classmethod
    def open(cls, filepath: Union[str, Path], chunk_size: int = 1_000_000):
        """
        Open a file as a point source for the engine.

        LAS/LAZ files are streamed; text formats are loaded whole.
        """
        filepath = Path(filepath)
        if filepath.suffix.lower() in ('.las', '.laz'):
            return LasPointSource(filepath, chunk_size=chunk_size)
        return cls.load(filepath)

    @classmethod
    def _load_las(cls, filepath: Path, **kwargs) -> PointCloud:
        """Load a whole LAS/LAZ file using laspy."""
        require_laspy()
        try:
            with laspy.open(filepath) as reader:
                crs = _extract_crs_from_las(reader.header)
                las = reader.read()
        except laspy.errors.LaspyException as e:
            if filepath.suffix.lower() == '.laz':
                raise ImportError(
                    f"Failed to decompress LAZ file: {e}\n\n"
                    "LAZ decompression requires the 'lazrs' package.\n"
                    "Install with: pip install lazrs"
                ) from e
            raise

        return _cloud_from_las_points(las, crs=crs)

    @classmethod
    def _load_xyz(
        cls,
        filepath: Path,
        delimiter: Optional[str] = None,
        skip_header: int = 0,
        **kwargs
    ) -> PointCloud:
        """
        Load XYZ text file.

        Expected format: x y z [classification] [intensity] per line
        """
        data = np.loadtxt(
            filepath,
            delimiter=delimiter,
            skiprows=skip_header,
            ndmin=2,
        )

        if data.shape[1] < 3:
            raise ValueError("XYZ file must have at least 3 columns")

        xyz = data[:, :3].astype(np.float64)

        classification = None
        if data.shape[1] >= 4:
            classification = data[:, 3].astype(np.uint8)

        intensity = None
        if data.shape[1] >= 5:
            intensity = data[:, 4].astype(np.uint16)

        return PointCloud(xyz=xyz, classification=classification, intensity=intensity)


def iter_chunks(source, chunk_size: int = 1_000_000) -> Iterator[PointCloud]:
    """
    Normalize any point source into a stream of PointCloud chunks.

    Accepts a PointCloud, a LasPointSource, or an iterable mixing
    PointCloud batches and individual Points (batched to chunk_size).
    """
    if isinstance(source, PointCloud):
        for start in range(0, source.num_points, chunk_size):
            if start == 0 and source.num_points <= chunk_size:
                yield source
            else:
                yield source._apply_mask(slice(start, start + chunk_size))
        return

    pending: List[Point] = []
    for item in source:
        if isinstance(item, PointCloud):
            if pending:
                yield PointCloud.from_points(pending)
                pending = []
            yield item
        elif isinstance(item, Point):
            pending.append(item)
            if len(pending) >= chunk_size:
                yield PointCloud.from_points(pending)
                pending = []
        else:
            raise TypeError(
                f"Point sources must yield Point or PointCloud, got {type(item).__name__}"
            )

    if pending:
        yield PointCloud.from_points(pending)


def generate_sample_surface(
    size: Tuple[float, float] = (100.0, 100.0),
    resolution: float = 1.0,
    base_elevation: float = 100.0,
    noise_scale: float = 0.5,
    hill_height: float = 5.0,
    buildings: Sequence[Tuple[float, float, float, float, float]] = ((30.0, 30.0, 20.0, 15.0, 12.0),),
    seed: int = 42,
) -> PointCloud:
    """
    Generate a synthetic LiDAR surface for testing.

    Creates gently rolling ground classified as 2 and flat-roofed
    buildings classified as 6, which makes both DTM (ground only) and DSM
    (all points) products meaningful.

    Args:
        size: (width, height) in meters
        resolution: Point spacing in meters
        base_elevation: Base ground elevation
        noise_scale: Amount of random noise
        hill_height: Maximum hill height
        buildings: (x, y, width, depth, height) footprints raised above ground
        seed: Random seed for reproducibility

    Returns:
        PointCloud with synthetic surface
    """
    rng = np.random.default_rng(seed)

    width, height = size
    x = np.arange(0, width, resolution)
    y = np.arange(0, height, resolution)
    xx, yy = np.meshgrid(x, y)

    ground = base_elevation + (
        hill_height * np.sin(xx / 20) * np.cos(yy / 25) +
        noise_scale * rng.standard_normal(xx.shape)
    )

    zz = ground.copy()
    classification = np.full(xx.shape, PointCloudLoader.CLASS_GROUND, dtype=np.uint8)
    for bx, by, bw, bd, bh in buildings:
        roof = (xx >= bx) & (xx < bx + bw) & (yy >= by) & (yy < by + bd)
        zz[roof] = ground[roof].max(initial=base_elevation) + bh
        classification[roof] = PointCloudLoader.CLASS_BUILDING

    xyz = np.column_stack([xx.ravel(), yy.ravel(), zz.ravel()])
    intensity = rng.integers(0, 4096, size=len(xyz)).astype(np.uint16)

    return PointCloud(xyz=xyz, classification=classification.ravel(), intensity=intensity)
