"""
Temporal gap filling: patch a year's missing pixels from its neighbour years.
"""
import logging
from typing import Optional

from .errors import BlendGapUnresolved, MissingMosaic, UnmappedYear
from .raster import Raster, overlay
from .registry import YearSensorRegistry
from .sources import MosaicSource


class GapFillBlender:
    """
    Three-way priority overlay of target, previous and post years.

    Per pixel the target year's value wins; where it is no-data the previous
    year's value is used, then the post year's. Two valid values are never
    averaged. A mosaic missing from the source, or a year with no sensor,
    contributes nothing.
    """

    def __init__(self, source: MosaicSource, registry: YearSensorRegistry):
        self.source = source
        self.registry = registry

    def _fetch(self, year: int, band: str) -> Optional[Raster]:
        try:
            sensor = self.registry.sensor_for(year)
        except UnmappedYear as e:
            logging.info(f"Gap fill: {e}; treating {band} {year} as no-data")
            return None
        try:
            return self.source.query(year, sensor, band)
        except MissingMosaic as e:
            logging.debug(f"Gap fill: {e}; treating as no-data")
            return None

    def blend(self, target_year: int, band: str, prev_year: int, post_year: int) -> Raster:
        """
        Gap-filled raster for (target_year, band).

        Raises:
            BlendGapUnresolved: none of the three mosaics exists
        """
        target = self._fetch(target_year, band)
        prev = self._fetch(prev_year, band)
        post = self._fetch(post_year, band)
        if target is None and prev is None and post is None:
            raise BlendGapUnresolved(target_year, band, prev_year, post_year)
        if target is None:
            logging.info(f"Mosaic {band} {target_year} missing, filled from {prev_year}/{post_year}")
        return overlay([target, prev, post])
