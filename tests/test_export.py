from __future__ import annotations

import json
from unittest.mock import MagicMock

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from tests.fakes import small_config
from vi_decay import export
from vi_decay.compositor import YearComposite
from vi_decay.errors import ExportFailure
from vi_decay.export import EarthEngineAssetSink, ExportParams, GeoTiffSink
from vi_decay.manifest import manifest_read
from vi_decay.raster import Raster
from vi_decay.registry import BandSet
from vi_decay.scene import SceneBuilder

REGION = {"type": "Polygon", "coordinates": [[[-50, -10], [-49, -10], [-49, -9], [-50, -9], [-50, -10]]]}


def _scene(year=2005, bands=("ndvi_median", "evi2_median")):
    bandset = BandSet(bands)
    composite = YearComposite(year)
    for i, band in enumerate(bandset):
        values = np.ma.MaskedArray(np.full((3, 4), 10 * (i + 1), dtype=np.uint8))
        values[0, 0] = np.ma.masked
        composite.bands[band] = Raster(values, from_origin(-50, -9, 0.25, 0.25), "EPSG:4326")
    return SceneBuilder(bandset).build(composite)


def test_geotiff_sink_writes_bands_and_metadata(tmp_path) -> None:
    manifest = tmp_path / "manifest.csv"
    sink = GeoTiffSink(manifest_path=str(manifest))

    path = sink.export(_scene(), ExportParams(prefix=str(tmp_path), region=REGION))

    assert path == str(tmp_path / "2005.tif")
    with rasterio.open(path) as src:
        assert src.count == 2
        assert src.dtypes == ("uint8", "uint8")
        assert src.nodata == 255
        assert src.descriptions == ("mb_ndvi_median", "mb_evi2_median")
        tags = src.tags()
        assert tags["year"] == "2005"
        assert tags["time_start"] == "1104537600000"
        assert json.loads(tags["region"]) == REGION
        data = src.read()
    assert data[0, 0, 0] == 255
    assert data[0, 1, 1] == 10
    assert data[1, 2, 3] == 20

    [row] = manifest_read(str(manifest))
    assert row["year"] == "2005"
    assert row["destination"] == path
    assert json.loads(row["bands"]) == ["mb_ndvi_median", "mb_evi2_median"]


def test_geotiff_sink_rejects_oversized_scene(tmp_path) -> None:
    with pytest.raises(ExportFailure) as exc:
        GeoTiffSink().export(_scene(), ExportParams(prefix=str(tmp_path), max_pixels=11))
    assert exc.value.year == 2005
    assert not (tmp_path / "2005.tif").exists()


def test_unknown_pyramiding_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        ExportParams(pyramiding_policy="bilinear")


def test_destination_is_prefix_and_year() -> None:
    assert ExportParams(prefix="projects/x/assets/decay/").destination(1999) == "projects/x/assets/decay/1999"


@pytest.fixture
def fake_ee(monkeypatch):
    fake = MagicMock()
    fake.EEException = RuntimeError
    monkeypatch.setattr(export, "ee", fake)
    monkeypatch.setattr(export, "build_decay_image", lambda year, config, collection=None: f"image-{year}")
    return fake


def test_asset_sink_starts_export_task(fake_ee, tmp_path) -> None:
    manifest = tmp_path / "manifest.csv"
    sink = EarthEngineAssetSink(small_config(), manifest_path=str(manifest))

    asset_id = sink.export_year(2001, ExportParams(prefix="projects/p/assets/decay", region=REGION))

    assert asset_id == "projects/p/assets/decay/2001"
    kwargs = fake_ee.batch.Export.image.toAsset.call_args.kwargs
    assert kwargs["image"] == "image-2001"
    assert kwargs["description"] == "GT_MC_SOLO-LANDSAT_MB_INDICES_DECAY-2001"
    assert kwargs["pyramidingPolicy"] == {".default": "median"}
    assert kwargs["scale"] == 30
    assert kwargs["maxPixels"] == int(1e13)
    fake_ee.batch.Export.image.toAsset.return_value.start.assert_called_once()
    assert manifest_read(str(manifest))[0]["destination"] == asset_id


def test_asset_sink_reports_failed_task(fake_ee, monkeypatch) -> None:
    monkeypatch.setattr(export, "wait_for_task_done",
                        lambda task, timeout_s: {"state": "FAILED", "error_message": "quota exceeded"})
    sink = EarthEngineAssetSink(small_config(), wait=True)

    with pytest.raises(ExportFailure) as exc:
        sink.export_year(2002, ExportParams(prefix="projects/p/assets/decay", region=REGION))

    assert exc.value.year == 2002
    assert "FAILED" in exc.value.reason
    assert "quota exceeded" in exc.value.reason


def test_asset_sink_requires_region(fake_ee) -> None:
    with pytest.raises(ExportFailure):
        EarthEngineAssetSink(small_config()).export_year(2000, ExportParams(prefix="projects/p/assets/decay"))
    fake_ee.batch.Export.image.toAsset.assert_not_called()
