"""
In-memory rasters with explicit no-data, plus local GeoTIFF reading.

No-data is carried by the mask of a ``numpy.ma.MaskedArray``; arithmetic on
masked pixels keeps them masked, so a missing pixel never turns into a zero.
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import rasterio


@dataclass(frozen=True)
class Raster:
    """
    A single-band grid on a fixed spatial reference.

    Attributes:
        data: 2-D masked array; masked pixels are no-data
        transform: Optional affine geotransform (rasterio ``Affine``)
        crs: Optional coordinate reference system
    """
    data: np.ma.MaskedArray
    transform: Optional[object] = None
    crs: Optional[object] = None

    def __post_init__(self):
        data = np.ma.asarray(self.data)
        if data.ndim != 2:
            raise ValueError(f"Raster data must be 2-D, got shape {data.shape}")
        # Always carry a full boolean mask so overlays can index it directly
        data = np.ma.MaskedArray(data.data, mask=np.ma.getmaskarray(data), copy=True)
        object.__setattr__(self, "data", data)

    @classmethod
    def from_array(cls, values, nodata=None, transform=None, crs=None) -> "Raster":
        """Wrap a plain array, masking NaN and (if given) the nodata value."""
        arr = np.asarray(values)
        mask = np.zeros(arr.shape, dtype=bool)
        if np.issubdtype(arr.dtype, np.floating):
            mask |= np.isnan(arr)
        if nodata is not None:
            mask |= arr == nodata
        return cls(np.ma.MaskedArray(arr, mask=mask), transform=transform, crs=crs)

    @classmethod
    def empty(cls, shape: Tuple[int, int], transform=None, crs=None) -> "Raster":
        """All-no-data raster of the given shape."""
        return cls(np.ma.masked_all(shape, dtype=np.float64), transform=transform, crs=crs)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def valid_count(self) -> int:
        return int(np.ma.count(self.data))

    @property
    def is_empty(self) -> bool:
        return self.valid_count == 0

    def scaled(self, factor: float) -> "Raster":
        """Multiply every valid pixel by ``factor``; masked pixels stay masked."""
        return Raster(self.data.astype(np.float64) * factor, self.transform, self.crs)

    def filled(self, nodata) -> np.ndarray:
        return self.data.filled(nodata)


def overlay(layers, shape: Optional[Tuple[int, int]] = None) -> Raster:
    """
    Priority overlay of rasters, highest priority first.

    Each output pixel takes the value of the first layer that has data there.
    Values are never averaged. ``None`` layers are skipped. If every layer is
    ``None`` an all-no-data raster of ``shape`` is returned.
    """
    present = [layer for layer in layers if layer is not None]
    if not present:
        if shape is None:
            raise ValueError("overlay needs a shape when no layer is present")
        return Raster.empty(shape)

    base = present[0]
    for layer in present[1:]:
        if layer.shape != base.shape:
            raise ValueError(f"Raster shapes differ: {base.shape} vs {layer.shape}")

    values = np.zeros(base.shape, dtype=np.float64)
    mask = np.ones(base.shape, dtype=bool)
    # paint from lowest priority upward so higher priority overwrites
    for layer in reversed(present):
        valid = ~np.ma.getmaskarray(layer.data)
        values[valid] = layer.data.data[valid]
        mask[valid] = False
    return Raster(np.ma.MaskedArray(values, mask=mask), base.transform, base.crs)


def read_geotiff(path: str, band: int = 1) -> Raster:
    """Read one band of a GeoTIFF as a masked Raster (nodata and NaN masked)."""
    with rasterio.open(path) as src:
        arr = src.read(band, masked=True).astype(np.float64)
        transform = src.transform
        crs = src.crs
    arr = np.ma.masked_invalid(arr)
    logging.debug(f"Read {path} band {band}: {arr.shape}, {np.ma.count(arr)} valid pixels")
    return Raster(arr, transform=transform, crs=crs)


def validate_geotiff_local(path: str) -> Tuple[bool, str]:
    """Validate GeoTIFF file is readable and has valid dimensions."""
    try:
        if not os.path.exists(path):
            return False, "file_not_found"
        if os.path.getsize(path) == 0:
            return False, "empty_file"
        with rasterio.open(path) as src:
            if src.width == 0 or src.height == 0:
                return False, "zero-dim"
            if src.count == 0:
                return False, "no_bands"
            if src.crs is None:
                logging.warning("GeoTIFF has no CRS information: %s", path)
        return True, ""
    except rasterio.errors.RasterioIOError as e:
        return False, f"io_error: {str(e)}"
