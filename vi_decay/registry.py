"""
Immutable lookup tables: year to sensor, decay weights and the band list.
"""
import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .config import (
    MIN_YEAR, MAX_YEAR, YEAR_SENSOR, DECAY_WEIGHTS, DECAY_LAGS,
    WEIGHT_SUM_TOLERANCE, INDEX_BANDS, OUTPUT_BAND_PREFIX
)
from .errors import ConfigurationError, UnmappedYear


class YearSensorRegistry:
    """Year to sensor lookup, read-only for the lifetime of the process."""

    def __init__(self, table: Mapping[int, str]):
        self._table = MappingProxyType({int(year): str(sensor) for year, sensor in table.items()})

    def sensor_for(self, year: int) -> str:
        try:
            return self._table[year]
        except KeyError:
            raise UnmappedYear(year) from None

    def __contains__(self, year) -> bool:
        return year in self._table

    def __len__(self) -> int:
        return len(self._table)

    @property
    def sensors(self) -> Tuple[str, ...]:
        return tuple(sorted(set(self._table.values())))

    def covers(self, min_year: int, max_year: int):
        """Raise UnmappedYear for the first year in [min_year, max_year] with no sensor."""
        for year in range(min_year, max_year + 1):
            if year not in self._table:
                raise UnmappedYear(year)

    def missing(self, min_year: int, max_year: int) -> Tuple[int, ...]:
        """Years in [min_year, max_year] with no sensor."""
        return tuple(year for year in range(min_year, max_year + 1) if year not in self._table)

    def as_dict(self) -> Dict[int, str]:
        return dict(self._table)


@dataclass(frozen=True)
class DecayWeights:
    """
    Decay weights indexed by lag (0 = output year, 1 = one year before, ...).

    Validated on construction: exactly ``lags`` non-negative values, non-increasing
    with lag, summing to 1.0 within ``tolerance``.
    """
    values: Tuple[float, ...] = DECAY_WEIGHTS
    lags: int = DECAY_LAGS
    tolerance: float = WEIGHT_SUM_TOLERANCE

    def __post_init__(self):
        values = tuple(float(v) for v in self.values)
        object.__setattr__(self, "values", values)
        if len(values) != self.lags:
            raise ConfigurationError(f"Expected {self.lags} decay weights, got {len(values)}")
        if any(v < 0 for v in values):
            raise ConfigurationError(f"Decay weights must be non-negative: {values}")
        for lag in range(1, len(values)):
            if values[lag] > values[lag - 1]:
                raise ConfigurationError(
                    f"Decay weights must not increase with lag (lag {lag}: {values[lag]} > {values[lag - 1]})"
                )
        total = sum(values)
        # small epsilon so a sum of exactly 1 - tolerance is not rejected by float error
        if abs(total - 1.0) > self.tolerance + 1e-9:
            raise ConfigurationError(f"Decay weights sum to {total:.6f}, expected 1.0 +/- {self.tolerance}")

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, lag: int) -> float:
        return self.values[lag]

    def __iter__(self):
        return iter(self.values)

    @property
    def total(self) -> float:
        return sum(self.values)


@dataclass(frozen=True)
class BandSet:
    """Ordered source band names and the output name each one is written under."""
    names: Tuple[str, ...] = INDEX_BANDS
    prefix: str = OUTPUT_BAND_PREFIX

    def __post_init__(self):
        names = tuple(self.names)
        object.__setattr__(self, "names", names)
        if not names:
            raise ConfigurationError("At least one band must be configured")
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate band names: {names}")

    def output_name(self, band: str) -> str:
        return f"{self.prefix}{band}"

    @property
    def output_names(self) -> Tuple[str, ...]:
        return tuple(self.output_name(b) for b in self.names)

    def __iter__(self):
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)


@dataclass(frozen=True)
class RunConfig:
    """Everything a run needs besides the data source and the sink."""
    min_year: int = MIN_YEAR
    max_year: int = MAX_YEAR
    registry: YearSensorRegistry = field(default_factory=lambda: YearSensorRegistry(YEAR_SENSOR))
    weights: DecayWeights = field(default_factory=DecayWeights)
    bands: BandSet = field(default_factory=BandSet)

    def __post_init__(self):
        if self.min_year > self.max_year:
            raise ConfigurationError(f"min_year {self.min_year} is after max_year {self.max_year}")

    @property
    def years(self) -> Tuple[int, ...]:
        return tuple(range(self.min_year, self.max_year + 1))

    def validate(self):
        """Strict check: every output year must have a sensor."""
        self.registry.covers(self.min_year, self.max_year)

    def unmapped_years(self) -> Tuple[int, ...]:
        """Output years that will fail because they have no sensor."""
        return self.registry.missing(self.min_year, self.max_year)


def load_run_config(path: Optional[str] = None) -> RunConfig:
    """
    Build a RunConfig from defaults, optionally overridden by a JSON file.

    Recognised keys: ``min_year``, ``max_year``, ``year_sensor`` (object of
    year -> sensor), ``decay_weights`` (list) and ``bands`` (list).
    """
    if path is None:
        return RunConfig()

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    logging.info(f"Run configuration loaded from {path}")

    table = data.get("year_sensor")
    registry = YearSensorRegistry({int(y): s for y, s in table.items()}) if table else YearSensorRegistry(YEAR_SENSOR)
    weights_values = data.get("decay_weights")
    weights = DecayWeights(tuple(weights_values), lags=len(weights_values)) if weights_values else DecayWeights()
    bands = BandSet(tuple(data["bands"])) if data.get("bands") else BandSet()

    return RunConfig(
        min_year=int(data.get("min_year", MIN_YEAR)),
        max_year=int(data.get("max_year", MAX_YEAR)),
        registry=registry,
        weights=weights,
        bands=bands,
    )


def parse_years(spec: str, min_year: int, max_year: int) -> Sequence[int]:
    """
    Parse a year selection such as ``"1985-2023"`` or ``"1990,1995,2000"``.

    Years outside [min_year, max_year] raise ConfigurationError.
    """
    years = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = (int(p) for p in part.split("-", 1))
            years.extend(range(start, end + 1))
        else:
            years.append(int(part))
    out_of_range = [y for y in years if not min_year <= y <= max_year]
    if out_of_range:
        raise ConfigurationError(f"Years outside {min_year}-{max_year}: {out_of_range}")
    return sorted(set(years))
