"""
Decay-weighted temporal compositing.

For an output year, each lag i (0..6) contributes the gap-filled raster of
year ``output_year - i`` (clamped to the first year of the record) multiplied
by its decay weight. The weighted layers of each band are summed, divided by
``OUTPUT_DIVISOR`` and truncated into the 0-100 byte domain.

Lags that clamp to the first year are not merged: near the start of the record
every clamped lag adds the same first-year raster with its own weight, so the
first year's composite is close to its raw gap-filled mosaic.
"""
import logging
import concurrent.futures
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from .blend import GapFillBlender
from .config import OUTPUT_DIVISOR
from .errors import BandFailure, BlendGapUnresolved, UnmappedYear
from .raster import Raster
from .registry import DecayWeights, RunConfig


class LagStep(NamedTuple):
    """One lag of the decay window and the years it reads."""
    lag: int
    weight: float
    contributing_year: int
    prev_year: int
    post_year: int


def contributing_year(output_year: int, lag: int, min_year: int) -> int:
    """Year read for ``lag``; years before the record start clamp to ``min_year``."""
    year = output_year - lag
    if year < min_year:
        year = min_year
    return year


def neighbour_years(year: int, min_year: int, max_year: int) -> Tuple[int, int]:
    """
    Previous and post years used to gap-fill ``year``.

    At the record start both neighbours come from after the year, at the end
    both come from before it. The end rule is checked last and wins when the
    record is a single year long.
    """
    prev_year, post_year = year - 1, year + 1
    if year == min_year:
        prev_year, post_year = year + 1, year + 2
    if year == max_year:
        prev_year, post_year = year - 1, year - 2
    return prev_year, post_year


def lag_plan(output_year: int, weights: DecayWeights, min_year: int, max_year: int) -> List[LagStep]:
    """All lags of the decay window for ``output_year``, in lag order."""
    plan = []
    for lag, weight in enumerate(weights):
        year = contributing_year(output_year, lag, min_year)
        prev_year, post_year = neighbour_years(year, min_year, max_year)
        plan.append(LagStep(lag, weight, year, prev_year, post_year))
    return plan


def to_output_domain(total: np.ma.MaskedArray, divisor: float = OUTPUT_DIVISOR) -> np.ma.MaskedArray:
    """Divide a weighted sum, clip to 0-255 and truncate to uint8, keeping the mask."""
    scaled = np.ma.clip(total / divisor, 0, 255)
    # byte cast truncates, as Earth Engine's Image.byte() does
    scaled = np.ma.floor(scaled)
    return np.ma.MaskedArray(scaled.filled(0).astype(np.uint8), mask=np.ma.getmaskarray(scaled))


@dataclass
class YearComposite:
    """Finalized bands of one output year and the bands that could not be built."""
    year: int
    bands: Dict[str, Raster] = field(default_factory=dict)
    failures: List[BandFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


class DecayCompositor:
    """Accumulate decay-weighted, gap-filled contributions for each output year."""

    def __init__(self, blender: GapFillBlender, config: RunConfig,
                 divisor: float = OUTPUT_DIVISOR, band_workers: int = 1):
        self.blender = blender
        self.config = config
        self.divisor = divisor
        self.band_workers = max(1, band_workers)

    def plan(self, output_year: int) -> List[LagStep]:
        """
        Lag plan of an output year.

        Raises:
            ValueError: the year is outside the record
            UnmappedYear: the output year itself has no sensor
        """
        if not self.config.min_year <= output_year <= self.config.max_year:
            raise ValueError(
                f"Output year {output_year} outside {self.config.min_year}-{self.config.max_year}"
            )
        if output_year not in self.config.registry:
            logging.error(f"Year {output_year}: no sensor configured, scene cannot be built")
            raise UnmappedYear(output_year, output_year=output_year, lag=0)
        return lag_plan(output_year, self.config.weights, self.config.min_year, self.config.max_year)

    def accumulate_band(self, output_year: int, band: str,
                        plan: List[LagStep]) -> Tuple[Optional[Raster], Optional[BandFailure]]:
        """
        Weighted sum of one band over every lag, before normalization.

        Returns:
            (sum_raster, None) on success, (None, failure) when the band has no usable value
        """
        total = None
        template = None
        for step in plan:
            try:
                filled = self.blender.blend(step.contributing_year, band, step.prev_year, step.post_year)
            except BlendGapUnresolved as e:
                logging.warning(f"Year {output_year} band {band} lag {step.lag}: {e}")
                return None, BandFailure(band, step.lag, step.contributing_year, "blend gap unresolved")

            contribution = filled.scaled(step.weight)
            if total is None:
                total = contribution.data
                template = contribution
            else:
                if contribution.shape != template.shape:
                    raise ValueError(
                        f"Year {output_year} band {band} lag {step.lag}: raster shape "
                        f"{contribution.shape} does not match {template.shape}"
                    )
                total = total + contribution.data

        summed = Raster(total, template.transform, template.crs)
        if summed.is_empty:
            logging.warning(f"Year {output_year} band {band}: no valid pixel after accumulation")
            return None, BandFailure(band, None, None, "no valid pixels after accumulation")
        return summed, None

    def _finalize_band(self, output_year: int, band: str,
                       plan: List[LagStep]) -> Tuple[Optional[Raster], Optional[BandFailure]]:
        summed, failure = self.accumulate_band(output_year, band, plan)
        if failure is not None:
            return None, failure
        return Raster(to_output_domain(summed.data, self.divisor), summed.transform, summed.crs), None

    def composite(self, output_year: int) -> YearComposite:
        """Build every configured band for ``output_year``."""
        plan = self.plan(output_year)
        logging.debug(
            f"Year {output_year} lag plan: "
            + ", ".join(f"{s.lag}->{s.contributing_year}({s.prev_year},{s.post_year})" for s in plan)
        )
        bands = list(self.config.bands)
        result = YearComposite(output_year)

        if self.band_workers == 1:
            outcomes = [self._finalize_band(output_year, band, plan) for band in bands]
        else:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.band_workers) as ex:
                futures = [ex.submit(self._finalize_band, output_year, band, plan) for band in bands]
                outcomes = [fut.result() for fut in futures]

        # bands are recorded in configured order regardless of completion order
        for band, (raster, failure) in zip(bands, outcomes):
            if failure is not None:
                result.failures.append(failure)
            else:
                result.bands[band] = raster
        return result
