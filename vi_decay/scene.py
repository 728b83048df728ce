"""
Scenes: the finished multi-band composite of one output year.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Tuple

import numpy as np

from .compositor import YearComposite
from .errors import BandFailure, IncompleteScene
from .raster import Raster
from .registry import BandSet


def year_interval(year: int) -> Tuple[datetime, datetime]:
    """Jan 1 00:00 UTC of ``year`` and of the following year."""
    return (datetime(year, 1, 1, tzinfo=timezone.utc),
            datetime(year + 1, 1, 1, tzinfo=timezone.utc))


def to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass(frozen=True)
class Scene:
    """
    Nine output bands plus temporal metadata for one year.

    ``bands`` maps output band name (e.g. ``mb_ndvi_median``) to a uint8
    Raster; the mapping is read-only and the arrays are not writeable.
    """
    year: int
    interval_start: datetime
    interval_end: datetime
    bands: Mapping[str, Raster]

    @property
    def band_names(self) -> Tuple[str, ...]:
        return tuple(self.bands)

    @property
    def time_start(self) -> int:
        """Epoch milliseconds, as Earth Engine's ``system:time_start``."""
        return to_millis(self.interval_start)

    @property
    def time_end(self) -> int:
        return to_millis(self.interval_end)

    @property
    def shape(self) -> Tuple[int, int]:
        return next(iter(self.bands.values())).shape

    @property
    def transform(self):
        return next(iter(self.bands.values())).transform

    @property
    def crs(self):
        return next(iter(self.bands.values())).crs

    @property
    def properties(self) -> dict:
        return {
            "year": self.year,
            "system:time_start": self.time_start,
            "system:time_end": self.time_end,
        }

    def stack(self, nodata) -> np.ndarray:
        """(bands, rows, cols) array with no-data pixels set to ``nodata``."""
        return np.stack([raster.filled(nodata) for raster in self.bands.values()])


class SceneBuilder:
    """Assemble a YearComposite into a Scene, failing if any band is missing."""

    def __init__(self, bands: BandSet):
        self.bands = bands

    def build(self, composite: YearComposite) -> Scene:
        failures = list(composite.failures)
        for band in self.bands:
            if band not in composite.bands and not any(f.band == band for f in failures):
                failures.append(BandFailure(band, None, None, "band not built"))
        if failures:
            raise IncompleteScene(composite.year, failures)

        out = {}
        for band in self.bands:
            raster = composite.bands[band]
            raster.data.flags.writeable = False
            out[self.bands.output_name(band)] = raster

        start, end = year_interval(composite.year)
        logging.debug(f"Scene {composite.year} built with bands {list(out)}")
        return Scene(composite.year, start, end, MappingProxyType(out))
