"""
Output sinks: persist finished scenes locally or as Earth Engine assets.
"""
import os
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import ee
import rasterio
from rasterio.enums import Resampling

from .config import (
    OUTDIR_DEFAULT, ASSET_ROOT, EXPORT_SCALE, EXPORT_MAX_PIXELS, PYRAMIDING_POLICY,
    GEOTIFF_OVERVIEWS, OUTPUT_NODATA, EXPORT_DESCRIPTION_PREFIX, EXPORT_POLL_TIMEOUT
)
from .download import wait_for_task_done
from .ee_graph import build_decay_image
from .errors import ExportFailure
from .manifest import manifest_append
from .registry import RunConfig
from .scene import Scene

# Earth Engine pyramiding policies and the closest resampling GDAL overviews support
# (overviews have no median, min or max)
PYRAMIDING_RESAMPLING = {
    "mean": Resampling.average,
    "median": Resampling.average,
    "mode": Resampling.mode,
    "min": Resampling.nearest,
    "max": Resampling.nearest,
    "sample": Resampling.nearest,
}


@dataclass(frozen=True)
class ExportParams:
    """
    Where and how a scene is persisted.

    Attributes:
        prefix: Output folder (GeoTIFF) or asset folder (Earth Engine)
        pyramiding_policy: One of PYRAMIDING_RESAMPLING's keys
        scale: Output resolution in meters
        region: Optional GeoJSON geometry to export
        max_pixels: Largest pixel count the sink accepts
    """
    prefix: str = OUTDIR_DEFAULT
    pyramiding_policy: str = PYRAMIDING_POLICY
    scale: float = EXPORT_SCALE
    region: Optional[dict] = None
    max_pixels: int = EXPORT_MAX_PIXELS

    def __post_init__(self):
        if self.pyramiding_policy not in PYRAMIDING_RESAMPLING:
            raise ValueError(f"Unknown pyramiding policy: {self.pyramiding_policy!r}")

    def destination(self, year: int) -> str:
        """Deterministic identifier of a year's scene: the year under the prefix."""
        return f"{self.prefix.rstrip('/')}/{year}"


class OutputSink(Protocol):
    """Interface for persisting a finished scene."""

    def export(self, scene: Scene, params: ExportParams) -> str:
        """Persist ``scene`` and return where it went. Raises ExportFailure."""


class GeoTiffSink:
    """Write each scene as a multi-band uint8 GeoTIFF with internal overviews."""

    def __init__(self, manifest_path: Optional[str] = None, nodata: int = OUTPUT_NODATA):
        self.manifest_path = manifest_path
        self.nodata = nodata

    def export(self, scene: Scene, params: ExportParams) -> str:
        rows, cols = scene.shape
        if rows * cols > params.max_pixels:
            raise ExportFailure(scene.year, f"{rows}x{cols} pixels exceeds max_pixels={params.max_pixels}")

        os.makedirs(params.prefix, exist_ok=True)
        out_path = os.path.join(params.prefix, f"{scene.year}.tif")
        profile = {
            "driver": "GTiff",
            "dtype": "uint8",
            "count": len(scene.bands),
            "height": rows,
            "width": cols,
            "nodata": self.nodata,
            "compress": "LZW",
        }
        if rows >= 512 and cols >= 512:
            profile.update(tiled=True, blockxsize=512, blockysize=512)
        if scene.crs is not None:
            profile["crs"] = scene.crs
        if scene.transform is not None:
            profile["transform"] = scene.transform

        resampling = PYRAMIDING_RESAMPLING[params.pyramiding_policy]
        factors = [f for f in GEOTIFF_OVERVIEWS if rows // f >= 1 and cols // f >= 1]
        try:
            with rasterio.open(out_path, "w", **profile) as dst:
                dst.write(scene.stack(self.nodata))
                for idx, name in enumerate(scene.band_names, start=1):
                    dst.set_band_description(idx, name)
                dst.update_tags(**{k.replace("system:", ""): v for k, v in scene.properties.items()})
                if params.region is not None:
                    dst.update_tags(region=json.dumps(params.region))
                if factors:
                    dst.build_overviews(factors, resampling)
                    dst.update_tags(ns="rio_overview", resampling=resampling.name)
        except rasterio.errors.RasterioError as e:
            raise ExportFailure(scene.year, str(e)) from e

        logging.info(f"Scene {scene.year} written to {out_path}")
        if self.manifest_path:
            manifest_append(scene.year, out_path, list(scene.band_names), scene.properties, self.manifest_path)
        return out_path


class EarthEngineAssetSink:
    """
    Export the server-side decay image of a scene's year to an Earth Engine asset.

    The asset id is ``<prefix>/<year>``; with ``wait=True`` the call blocks
    until the task finishes and raises ExportFailure if it did not complete.
    """

    def __init__(self, config: RunConfig, wait: bool = False, timeout_s: int = EXPORT_POLL_TIMEOUT,
                 manifest_path: Optional[str] = None, collection=None):
        self.config = config
        self.wait = wait
        self.timeout_s = timeout_s
        self.manifest_path = manifest_path
        self.collection = collection

    def export(self, scene: Scene, params: ExportParams) -> str:
        return self.export_year(scene.year, params)

    def export_year(self, year: int, params: ExportParams) -> str:
        if params.region is None:
            raise ExportFailure(year, "an export region is required for asset exports")

        image = build_decay_image(year, self.config, self.collection)
        asset_id = params.destination(year)
        description = f"{EXPORT_DESCRIPTION_PREFIX}{year}"
        try:
            task = ee.batch.Export.image.toAsset(
                image=image,
                description=description,
                assetId=asset_id,
                pyramidingPolicy={".default": params.pyramiding_policy},
                region=params.region,
                scale=params.scale,
                maxPixels=params.max_pixels,
            )
            task.start()
        except ee.EEException as e:
            raise ExportFailure(year, str(e)) from e
        logging.info(f"Started export task {description} -> {asset_id}")

        if self.wait:
            status = wait_for_task_done(task, timeout_s=self.timeout_s)
            state = status.get("state")
            if state != "COMPLETED":
                reason = f"task {description} ended in state {state}"
                if status.get("error_message"):
                    reason += f": {status['error_message']}"
                raise ExportFailure(year, reason)

        if self.manifest_path:
            manifest_append(year, asset_id, list(self.config.bands.output_names),
                            {"description": description}, self.manifest_path)
        return asset_id


def default_asset_params(region: dict, asset_root: str = ASSET_ROOT) -> ExportParams:
    return ExportParams(prefix=asset_root, region=region)
