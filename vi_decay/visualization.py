"""
Visualization helpers: colour-ramp quicklooks and Earth Engine map layers.
"""
import os
import logging
from typing import Sequence, Tuple

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
from matplotlib.colors import LinearSegmentedColormap

from .config import VIS_BAND, VIS_PALETTE, VIS_RANGE
from .scene import Scene


def palette_colormap(palette: Sequence[str] = VIS_PALETTE) -> LinearSegmentedColormap:
    """Continuous colormap through the palette colours, no-data drawn transparent."""
    cmap = LinearSegmentedColormap.from_list("vi_decay_" + "_".join(palette), list(palette))
    cmap.set_bad(alpha=0.0)
    return cmap


def render_quicklook(scene: Scene, out_path: str, band: str = VIS_BAND,
                     palette: Sequence[str] = VIS_PALETTE,
                     value_range: Tuple[float, float] = VIS_RANGE) -> str:
    """
    Save a PNG of one scene band stretched over ``value_range``.

    Returns:
        str: Path of the written PNG (the display handle for local runs)
    """
    if band not in scene.bands:
        raise KeyError(f"Scene {scene.year} has no band {band!r}; available: {list(scene.bands)}")
    vmin, vmax = value_range
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    fig, ax = plt.subplots(figsize=(6, 6))
    try:
        im = ax.imshow(scene.bands[band].data, cmap=palette_colormap(palette), vmin=vmin, vmax=vmax)
        ax.set_title(f"{band} {scene.year}")
        ax.set_axis_off()
        fig.colorbar(im, ax=ax, shrink=0.7)
        fig.savefig(out_path, dpi=100, bbox_inches="tight")
    finally:
        plt.close(fig)
    logging.info(f"Quicklook for {band} {scene.year} saved to {out_path}")
    return out_path


def ee_map_layer(image, band: str = VIS_BAND, palette: Sequence[str] = VIS_PALETTE,
                 value_range: Tuple[float, float] = VIS_RANGE) -> dict:
    """
    Register an Earth Engine image band for display.

    Returns:
        dict with the band, visualization parameters and the XYZ tile URL
    """
    vis_params = {"min": value_range[0], "max": value_range[1], "palette": list(palette)}
    map_id = image.select(band).getMapId(vis_params)
    return {
        "band": band,
        "vis_params": vis_params,
        "tile_url": map_id["tile_fetcher"].url_format,
    }
