"""
Mosaic sources: where per-year, per-sensor index rasters come from.

Every source implements ``query(year, sensor, band) -> Raster`` and raises
``MissingMosaic`` when it has nothing for that key.
"""
import os
import logging
import tempfile
import threading
import concurrent.futures
from collections import OrderedDict
from typing import Dict, Optional, Protocol, Tuple, Union

from shapely.geometry import box, mapping

from .config import EXPORT_SCALE, MAX_CONCURRENT_QUERIES, MOSAIC_CACHE_ENTRIES
from .download import generate_download_url, download_geotiff
from .ee_collections import year_sensor_mosaic
from .errors import MissingMosaic
from .raster import Raster, read_geotiff, validate_geotiff_local

MosaicKey = Tuple[int, str, str]


class MosaicSource(Protocol):
    """Interface for anything that serves index mosaics."""

    def query(self, year: int, sensor: str, band: str) -> Raster:
        """Return the raster for (year, sensor, band) or raise MissingMosaic."""


class InMemoryMosaicSource:
    """Mosaics held in a dict keyed by (year, sensor, band)."""

    def __init__(self, rasters: Dict[MosaicKey, Raster]):
        self._rasters = dict(rasters)

    def query(self, year: int, sensor: str, band: str) -> Raster:
        try:
            return self._rasters[(year, sensor, band)]
        except KeyError:
            raise MissingMosaic(year, sensor, band) from None


class GeoTiffMosaicSource:
    """
    Mosaics stored as single-band GeoTIFFs on disk.

    Layout: ``<root>/<year>/<sensor>/<band>.tif``.
    """

    def __init__(self, root: str):
        self.root = root

    def path_for(self, year: int, sensor: str, band: str) -> str:
        return os.path.join(self.root, str(year), sensor, f"{band}.tif")

    def query(self, year: int, sensor: str, band: str) -> Raster:
        path = self.path_for(year, sensor, band)
        if not os.path.exists(path):
            raise MissingMosaic(year, sensor, band, "file_not_found")
        return read_geotiff(path)


class EarthEngineMosaicSource:
    """
    Pull MapBiomas mosaics from Earth Engine for a fixed region and scale.

    The selected band is mosaicked server-side, downloaded as a GeoTIFF through
    ``getDownloadURL`` and read back into memory.
    """

    def __init__(self, region: dict, scale: float = EXPORT_SCALE, collection=None,
                 temp_dir: Optional[str] = None):
        self.region = region
        self.scale = scale
        self.collection = collection
        self.temp_dir = temp_dir

    @classmethod
    def from_bbox(cls, bbox: Tuple[float, float, float, float], **kwargs) -> "EarthEngineMosaicSource":
        """Build a source for a (lon_min, lat_min, lon_max, lat_max) box."""
        lon_min, lat_min, lon_max, lat_max = bbox
        return cls(mapping(box(lon_min, lat_min, lon_max, lat_max)), **kwargs)

    def query(self, year: int, sensor: str, band: str) -> Raster:
        image, filtered = year_sensor_mosaic(year, sensor, band, self.collection)
        if filtered.size().getInfo() == 0:
            raise MissingMosaic(year, sensor, band, "no_images")

        url, error = generate_download_url(image, self.region, self.scale, [band])
        if error:
            raise RuntimeError(f"Could not request {band} for {year}/{sensor}: {error}")

        fd, out_tif = tempfile.mkstemp(prefix=f"vi_decay_{year}_{sensor}_{band}_", suffix=".tif",
                                       dir=self.temp_dir)
        os.close(fd)
        try:
            ok, error = download_geotiff(url, out_tif, label=f"{band} {year}/{sensor}")
            if not ok:
                raise RuntimeError(f"Download of {band} for {year}/{sensor} failed: {error}")
            valid, reason = validate_geotiff_local(out_tif)
            if not valid:
                raise RuntimeError(f"Downloaded {band} for {year}/{sensor} is not a valid GeoTIFF: {reason}")
            return read_geotiff(out_tif)
        finally:
            if os.path.exists(out_tif):
                os.remove(out_tif)


class CachedMosaicSource:
    """
    Memoize another source's answers, including absences.

    The same (year, band) is requested by several lags and neighbouring output
    years. At most ``max_entries`` answers are kept, least recently used first
    out, and concurrent misses on one key share a single backend query.
    """

    def __init__(self, inner: MosaicSource, max_entries: int = MOSAIC_CACHE_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.inner = inner
        self.max_entries = max_entries
        self._cache: "OrderedDict[MosaicKey, Union[Raster, MissingMosaic]]" = OrderedDict()
        self._pending: Dict[MosaicKey, concurrent.futures.Future] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def query(self, year: int, sensor: str, band: str) -> Raster:
        key = (year, sensor, band)
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
                self.hits += 1
                return self._answer(self._cache[key])
            pending = self._pending.get(key)
            owner = pending is None
            if owner:
                pending = concurrent.futures.Future()
                self._pending[key] = pending
                self.misses += 1
            else:
                self.hits += 1

        if not owner:
            # transport errors of the fetching thread are re-raised here too
            return self._answer(pending.result())

        try:
            answer = self.inner.query(year, sensor, band)
        except MissingMosaic as e:
            answer = e
        except BaseException as e:
            with self._lock:
                del self._pending[key]
            pending.set_exception(e)
            raise

        with self._lock:
            del self._pending[key]
            self._cache[key] = answer
            while len(self._cache) > self.max_entries:
                evicted, _ = self._cache.popitem(last=False)
                logging.debug(f"Mosaic cache full, evicted {evicted}")
        pending.set_result(answer)
        return self._answer(answer)

    @staticmethod
    def _answer(cached: Union[Raster, MissingMosaic]) -> Raster:
        if isinstance(cached, MissingMosaic):
            raise MissingMosaic(cached.year, cached.sensor, cached.band, cached.reason)
        return cached

    def clear(self):
        with self._lock:
            self._cache.clear()


class ThrottledMosaicSource:
    """Cap how many queries run against the backend at the same time."""

    def __init__(self, inner: MosaicSource, max_concurrent: int = MAX_CONCURRENT_QUERIES):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.inner = inner
        self.max_concurrent = max_concurrent
        self._slots = threading.BoundedSemaphore(max_concurrent)

    def query(self, year: int, sensor: str, band: str) -> Raster:
        with self._slots:
            logging.debug(f"Querying mosaic {year}/{sensor}/{band}")
            return self.inner.query(year, sensor, band)
