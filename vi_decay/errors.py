"""
Exception types raised while building decay composites.
"""
from typing import List, NamedTuple, Optional


class DecayError(Exception):
    """Base class for all composite errors."""


class ConfigurationError(DecayError):
    """Invalid weights, band table or year range."""


class UnmappedYear(DecayError):
    """
    A year has no sensor in the registry.

    Fatal only for the output year itself; a contributing or neighbour year
    without a sensor is treated like a missing mosaic. ``output_year``,
    ``band`` and ``lag`` say where the lookup happened, when known.
    """

    def __init__(self, year: int, output_year: Optional[int] = None, band: Optional[str] = None,
                 lag: Optional[int] = None):
        self.year = year
        self.output_year = output_year
        self.band = band
        self.lag = lag
        msg = f"No sensor configured for year {year}"
        context = []
        if output_year is not None:
            context.append(f"output year {output_year}")
        if band is not None:
            context.append(f"band {band}")
        if lag is not None:
            context.append(f"lag {lag}")
        if context:
            msg += f" ({', '.join(context)})"
        super().__init__(msg)


class MissingMosaic(DecayError):
    """The mosaic source has no raster for (year, sensor, band)."""

    def __init__(self, year: int, sensor: str, band: str, reason: Optional[str] = None):
        self.year = year
        self.sensor = sensor
        self.band = band
        self.reason = reason
        msg = f"No mosaic for year={year} sensor={sensor} band={band}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class BlendGapUnresolved(DecayError):
    """Target, previous and post mosaics are all absent for a (year, band)."""

    def __init__(self, year: int, band: str, prev_year: int, post_year: int):
        self.year = year
        self.band = band
        self.prev_year = prev_year
        self.post_year = post_year
        super().__init__(
            f"No mosaic for band {band} in {year} or its neighbours {prev_year}/{post_year}"
        )


class BandFailure(NamedTuple):
    """Why one output band of a year could not be finalized."""
    band: str
    lag: Optional[int]
    contributing_year: Optional[int]
    reason: str

    def describe(self) -> str:
        if self.lag is None:
            return f"{self.band}: {self.reason}"
        return f"{self.band} (lag {self.lag}, year {self.contributing_year}): {self.reason}"


class IncompleteScene(DecayError):
    """One or more bands of a year could not be finalized."""

    def __init__(self, year: int, failures: List[BandFailure]):
        self.year = year
        self.failures = list(failures)
        details = "; ".join(f.describe() for f in self.failures)
        super().__init__(f"Scene {year} is incomplete: {details}")


class ExportFailure(DecayError):
    """An output sink rejected a finished scene."""

    def __init__(self, year: int, reason: str):
        self.year = year
        self.reason = reason
        super().__init__(f"Export of scene {year} failed: {reason}")
