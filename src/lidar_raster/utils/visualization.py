"""
Visualization Utilities

Quick-look plots of finished rasters.
"""

from __future__ import annotations

from typing import Optional, Tuple, TYPE_CHECKING
import numpy as np

try:
    import matplotlib
    import matplotlib.pyplot as plt
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

if TYPE_CHECKING:
    from ..core.grid import Grid


def require_matplotlib():
    if not HAS_MATPLOTLIB:
        raise ImportError("matplotlib is required. Install with: pip install matplotlib")


def plot_grid(
    grid: 'Grid',
    ax=None,
    title: str = "Raster",
    cmap: str = "terrain",
    show_contours: bool = False,
    contour_interval: float = 1.0,
    figsize: Tuple[int, int] = (10, 8),
):
    """
    Plot a grid as a 2D heatmap with optional contours.

    Args:
        grid: Grid to plot
        ax: Optional matplotlib axes (creates new figure if None)
        title: Plot title
        cmap: Colormap name
        show_contours: Whether to draw contour lines
        contour_interval: Value interval between contour lines
        figsize: Figure size if creating new figure

    Returns:
        matplotlib Figure
    """
    require_matplotlib()

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    data = np.ma.masked_array(grid.values, mask=grid.nodata_mask())

    min_x, min_y, max_x, max_y = grid.bounds
    extent = [min_x, max_x, min_y, max_y]

    # Row 0 is north, which is imshow's 'upper' origin
    im = ax.imshow(data, extent=extent, origin='upper', cmap=cmap, aspect='equal')
    fig.colorbar(im, ax=ax, label='Value')

    if show_contours:
        valid = data.compressed()
        if valid.size > 0:
            low = np.floor(valid.min() / contour_interval) * contour_interval
            high = np.ceil(valid.max() / contour_interval) * contour_interval
            levels = np.arange(low, high + contour_interval, contour_interval)

            if len(levels) > 1:
                cs = ax.contour(
                    data,
                    levels=levels,
                    extent=extent,
                    origin='upper',
                    colors='black',
                    linewidths=0.5,
                    alpha=0.5,
                )
                ax.clabel(cs, inline=True, fontsize=8, fmt='%.1f')

    ax.set_xlabel('X')
    ax.set_ylabel('Y')
    ax.set_title(title)

    return fig


def save_preview(
    grid: 'Grid',
    filepath: str,
    title: Optional[str] = None,
    dpi: int = 150,
) -> None:
    """Render a grid to an image file without opening a window."""
    require_matplotlib()
    matplotlib.use("Agg")

    fig = plot_grid(grid, title=title or "Raster")
    fig.savefig(filepath, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
