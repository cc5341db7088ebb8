"""
Rasterization Configuration

Flat set of named options consumed by the RasterizationEngine.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
import math
from typing import Optional, Sequence, Tuple, Union

from .validation import (
    InvalidConfigurationError,
    validate_bounds,
    validate_cell_size,
    validate_z_range,
)

NODATA = -9999.0

# Height the insertion front must drop below a vertex before its edges freeze
DEFAULT_INSERTION_BUFFER = 0.5

# ASPRS classes dropped by the noise filter: low noise (7), high noise (18)
NOISE_CLASSES = (7, 18)


class Strategy(str, Enum):
    """Elevation estimation strategy."""
    BINNING = "binning"
    TRIANGULATION = "triangulation"


class BinningMethod(str, Enum):
    """Statistic used to collapse the points of a cell."""
    COUNT = "count"      # Point density
    MEAN = "mean"
    MIN = "min"          # Good for ground
    MAX = "max"          # Good for surface models
    MEDIAN = "median"


class Variable(str, Enum):
    """Point attribute written into the raster."""
    X = "x"
    Y = "y"
    Z = "z"
    INTENSITY = "intensity"


@dataclass
class RasterizationConfig:
    """
    Options for one rasterization run.

    Attributes:
        cell_size: Cell size as a scalar or (dx, dy) pair (required)
        strategy: Binning or triangulation
        method: Binning statistic; defaults to mean for binning and must be
            left unset for triangulation
        spike_free: Build the spike-free triangulation and use the minimum
            rule; defaults to True for triangulation and must be left unset
            (or False) for binning
        freeze_distance: Longest edge that may freeze in spike-free mode;
            defaults to a few times the mean point spacing
        insertion_buffer: Height the insertion front must drop below a
            vertex before its edges may freeze (spike-free mode only)
        bounds: Explicit (min_x, min_y, max_x, max_y), else derived from data
        z_range: Optional (min_z, max_z) point filter
        classes: Classification codes to keep (e.g. [2] for a DTM)
        drop_noise: Drop noise classes; defaults to True for triangulation
        variable: Attribute to rasterize
        nodata: Sentinel for cells without an estimate
        workers: Worker threads for binning merge / per-cell interpolation
        chunk_size: Points per streamed chunk
    """
    cell_size: Union[float, Tuple[float, float]]
    strategy: Strategy = Strategy.BINNING
    method: Optional[BinningMethod] = None
    spike_free: Optional[bool] = None
    bounds: Optional[Tuple[float, float, float, float]] = None
    z_range: Optional[Tuple[float, float]] = None
    classes: Optional[Sequence[int]] = None
    drop_noise: Optional[bool] = None
    freeze_distance: Optional[float] = None
    insertion_buffer: Optional[float] = None
    variable: Variable = Variable.Z
    nodata: float = NODATA
    workers: int = 1
    chunk_size: int = 1_000_000

    def __post_init__(self) -> None:
        """Coerce string options to their enums."""
        try:
            self.strategy = Strategy(self.strategy)
            if self.method is not None:
                self.method = BinningMethod(self.method)
            self.variable = Variable(self.variable)
        except ValueError as e:
            raise InvalidConfigurationError(str(e)) from e

        if self.classes is not None:
            self.classes = tuple(int(c) for c in self.classes)

    def validate(self) -> None:
        """
        Check option values and strategy/method consistency.

        Raises:
            InvalidConfigurationError: For inconsistent combinations
            InvalidGeometryError: For bad cell size or bounds
        """
        validate_cell_size(self.cell_size)
        if self.bounds is not None:
            validate_bounds(self.bounds)
        validate_z_range(self.z_range)

        if self.strategy == Strategy.TRIANGULATION and self.method is not None:
            raise InvalidConfigurationError(
                f"Binning method '{self.method.value}' cannot be combined with "
                "the triangulation strategy. Use spike_free to choose the "
                "triangulated mode instead."
            )

        if self.strategy == Strategy.BINNING and self.spike_free:
            raise InvalidConfigurationError(
                "spike_free only applies to the triangulation strategy"
            )

        self._validate_freezing()

        if isinstance(self.workers, bool) or not isinstance(self.workers, int) or self.workers < 1:
            raise InvalidConfigurationError(
                f"workers must be a positive integer, got {self.workers!r}"
            )

        if isinstance(self.chunk_size, bool) or not isinstance(self.chunk_size, int) or self.chunk_size < 1:
            raise InvalidConfigurationError(
                f"chunk_size must be a positive integer, got {self.chunk_size!r}"
            )

    def resolved(self) -> RasterizationConfig:
        """Return a validated copy with every strategy default filled in."""
        self.validate()

        is_binning = self.strategy == Strategy.BINNING
        method = self.method
        if is_binning and method is None:
            method = BinningMethod.MEAN

        spike_free = self.spike_free
        if spike_free is None:
            spike_free = not is_binning

        drop_noise = self.drop_noise
        if drop_noise is None:
            drop_noise = not is_binning

        insertion_buffer = self.insertion_buffer
        if insertion_buffer is None and spike_free:
            insertion_buffer = DEFAULT_INSERTION_BUFFER

        return dataclasses.replace(
            self,
            cell_size=validate_cell_size(self.cell_size),
            bounds=validate_bounds(self.bounds) if self.bounds is not None else None,
            z_range=validate_z_range(self.z_range),
            method=method,
            spike_free=spike_free,
            drop_noise=drop_noise,
            insertion_buffer=insertion_buffer,
        )

    def _validate_freezing(self) -> None:
        options = {
            "freeze_distance": self.freeze_distance,
            "insertion_buffer": self.insertion_buffer,
        }
        given = [name for name, value in options.items() if value is not None]
        if not given:
            return

        if self.strategy != Strategy.TRIANGULATION or self.spike_free is False:
            raise InvalidConfigurationError(
                f"{', '.join(given)} only apply to spike-free triangulation"
            )

        for name in given:
            value = options[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidConfigurationError(f"{name} must be a finite number, got {value!r}")

        if self.freeze_distance is not None and self.freeze_distance <= 0:
            raise InvalidConfigurationError(
                f"freeze_distance must be positive, got {self.freeze_distance}"
            )
        if self.insertion_buffer is not None and self.insertion_buffer < 0:
            raise InvalidConfigurationError(
                f"insertion_buffer must be non-negative, got {self.insertion_buffer}"
            )

    @property
    def method_name(self) -> str:
        """Short label for the estimator, used in summaries."""
        if self.strategy == Strategy.BINNING:
            return (self.method or BinningMethod.MEAN).value
        return "plain" if self.spike_free is False else "spike-free"
