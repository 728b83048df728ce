from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest

from vi_decay.compositor import YearComposite
from vi_decay.raster import Raster
from vi_decay.registry import BandSet
from vi_decay.scene import SceneBuilder
from vi_decay.visualization import ee_map_layer, palette_colormap, render_quicklook


def _scene():
    bands = BandSet(("ndvi_median",))
    composite = YearComposite(2010)
    values = np.ma.MaskedArray(np.arange(16, dtype=np.uint8).reshape(4, 4) * 6)
    values[0, 0] = np.ma.masked
    composite.bands["ndvi_median"] = Raster(values)
    return SceneBuilder(bands).build(composite)


def test_quicklook_png_is_written(tmp_path) -> None:
    out = tmp_path / "looks" / "2010.png"
    assert render_quicklook(_scene(), str(out)) == str(out)
    assert out.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_quicklook_unknown_band(tmp_path) -> None:
    with pytest.raises(KeyError):
        render_quicklook(_scene(), str(tmp_path / "x.png"), band="mb_savi_median")


def test_palette_runs_red_to_green() -> None:
    cmap = palette_colormap()
    assert cmap(0.0)[:3] == pytest.approx((1.0, 0.0, 0.0))
    assert cmap(1.0)[:3] == pytest.approx((0.0, 128 / 255, 0.0))


def test_ee_map_layer_uses_vis_params() -> None:
    image = MagicMock()
    image.select.return_value.getMapId.return_value = {"tile_fetcher": MagicMock(url_format="https://tiles/{z}/{x}/{y}")}

    layer = ee_map_layer(image)

    image.select.assert_called_once_with("mb_ndvi_median")
    assert layer["vis_params"] == {"min": 0, "max": 100, "palette": ["red", "yellow", "green"]}
    assert layer["tile_url"] == "https://tiles/{z}/{x}/{y}"
