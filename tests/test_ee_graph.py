from __future__ import annotations

import pytest

from tests.fakes import small_config
from vi_decay import ee_graph
from vi_decay.errors import BlendGapUnresolved, UnmappedYear


class FakeImage:
    """Records the Earth Engine calls applied to it as a nested expression."""

    def __init__(self, expr):
        self.expr = expr
        self.properties = {}

    def _op(self, name, *args):
        return FakeImage((name, self.expr) + tuple(a.expr if isinstance(a, FakeImage) else a for a in args))

    def blend(self, other):
        return self._op("blend", other)

    def multiply(self, value):
        return self._op("multiply", value)

    def add(self, other):
        return self._op("add", other)

    def divide(self, value):
        return self._op("divide", value)

    def byte(self):
        return self._op("byte")

    def rename(self, name):
        return self._op("rename", name)

    def addBands(self, other):
        return self._op("addBands", other)

    def set(self, props):
        out = FakeImage(self.expr)
        out.properties = dict(props)
        return out


@pytest.fixture
def fake_mosaics(monkeypatch):
    requested = []

    def year_sensor_mosaic(year, sensor, band, collection=None):
        requested.append((year, sensor, band))
        return FakeImage(("mosaic", year, band)), None

    monkeypatch.setattr(ee_graph, "year_sensor_mosaic", year_sensor_mosaic)
    monkeypatch.setattr(ee_graph, "mosaic_collection", lambda: "collection")
    return requested


def test_blend_puts_target_on_top(fake_mosaics) -> None:
    image = ee_graph.blended_band(2001, "ndvi_median", 2000, 2002, small_config(), "collection")
    assert image.expr == ("blend", ("blend", ("mosaic", 2002, "ndvi_median"), ("mosaic", 2000, "ndvi_median")),
                          ("mosaic", 2001, "ndvi_median"))


def test_decay_image_sums_weighted_lags(fake_mosaics) -> None:
    config = small_config()
    image = ee_graph.build_decay_image(2002, config)

    name, expr, new_name = image.expr
    assert (name, new_name) == ("rename", "mb_ndvi_median")
    # byte() truncates; there is no round() before it
    assert expr[0] == "byte"
    divide = expr[1]
    assert divide[0] == "divide" and divide[2] == 100.0

    # lags 0..2 added in order, each multiplied by its weight
    summed = divide[1]
    assert summed[0] == "add"
    assert summed[1][0] == "add"
    weights = [summed[1][1][2], summed[1][2][2], summed[2][2]]
    assert weights == [0.5, 0.3, 0.2]

    assert image.properties == {
        "year": 2002,
        "system:time_start": 1009843200000,
        "system:time_end": 1041379200000,
    }
    # 2002 is the last year: its neighbours are 2001 and 2000 (requested post, prev, target)
    assert fake_mosaics[:3] == [(2000, "l5", "ndvi_median"), (2001, "l5", "ndvi_median"),
                                (2002, "l5", "ndvi_median")]


def test_decay_image_has_one_band_per_index(fake_mosaics) -> None:
    config = small_config(bands=("ndvi_median", "evi2_median", "savi_median"))
    image = ee_graph.build_decay_image(2001, config, collection="collection")

    renamed = []
    expr = image.expr
    while expr[0] == "addBands":
        renamed.append(expr[2][2])
        expr = expr[1]
    renamed.append(expr[2])
    assert list(reversed(renamed)) == ["mb_ndvi_median", "mb_evi2_median", "mb_savi_median"]
    assert len(fake_mosaics) == 3 * 3 * 3


def test_decay_image_requires_mapped_output_year(fake_mosaics) -> None:
    config = small_config(table={2000: "l5", 2001: "l5"})
    with pytest.raises(UnmappedYear) as exc:
        ee_graph.build_decay_image(2002, config)
    assert exc.value.output_year == 2002
    assert fake_mosaics == []


def test_unmapped_neighbour_is_left_out_of_the_blend(fake_mosaics) -> None:
    config = small_config(table={2000: "l5", 2001: "l5"})
    image = ee_graph.blended_band(2001, "ndvi_median", 2000, 2002, config, "collection")
    assert image.expr == ("blend", ("mosaic", 2000, "ndvi_median"), ("mosaic", 2001, "ndvi_median"))

    ee_graph.build_decay_image(2001, config)
    assert 2002 not in {year for year, _, _ in fake_mosaics}


def test_blend_with_no_mapped_year_is_unresolved(fake_mosaics) -> None:
    config = small_config(table={2000: "l5"})
    with pytest.raises(BlendGapUnresolved):
        ee_graph.blended_band(2005, "ndvi_median", 2004, 2006, config, "collection")
