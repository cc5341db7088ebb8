"""Utility modules."""

from .logging import setup_logging
from .visualization import plot_grid, save_preview

__all__ = ["setup_logging", "plot_grid", "save_preview"]
