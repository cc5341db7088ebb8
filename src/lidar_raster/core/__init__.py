"""Core data structures and algorithms."""

from .config import RasterizationConfig, Strategy, BinningMethod, Variable
from .grid import Grid
from .aggregate import Aggregator
from .spike_free import SpikeFreeTriangulation
from .mesh import TriangleMesh
from .interpolate import SpikeFreeInterpolator
from .engine import RasterizationEngine, RasterizationResult

__all__ = [
    "RasterizationConfig",
    "Strategy",
    "BinningMethod",
    "Variable",
    "Grid",
    "Aggregator",
    "SpikeFreeTriangulation",
    "TriangleMesh",
    "SpikeFreeInterpolator",
    "RasterizationEngine",
    "RasterizationResult",
]
