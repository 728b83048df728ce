"""
Server-side decay composites as lazy Earth Engine images.

Uses the same lag plan as the local compositor, so both backends read the
same years with the same weights and neighbours.
"""
import functools
import logging

from .compositor import lag_plan
from .config import OUTPUT_DIVISOR
from .ee_collections import mosaic_collection, year_sensor_mosaic
from .errors import BlendGapUnresolved, UnmappedYear
from .registry import RunConfig
from .scene import year_interval, to_millis


def _mosaic_or_none(year: int, band: str, config: RunConfig, collection):
    if year not in config.registry:
        logging.info(f"Year {year} has no sensor; left out of the {band} blend")
        return None
    image, _ = year_sensor_mosaic(year, config.registry.sensor_for(year), band, collection)
    return image


def blended_band(year: int, band: str, prev_year: int, post_year: int, config: RunConfig, collection):
    """
    Priority overlay on the server: post, then prev, then target on top.

    Years without a sensor are left out of the chain.
    """
    layers = [_mosaic_or_none(y, band, config, collection) for y in (post_year, prev_year, year)]
    layers = [layer for layer in layers if layer is not None]
    if not layers:
        raise BlendGapUnresolved(year, band, prev_year, post_year)
    return functools.reduce(lambda below, above: below.blend(above), layers)


def build_decay_image(year: int, config: RunConfig, collection=None, divisor: float = OUTPUT_DIVISOR):
    """
    Decay-weighted composite of every configured band for ``year``.

    Returns an ee.Image with one byte band per index (``mb_<band>``) and the
    ``year``, ``system:time_start`` and ``system:time_end`` properties set.
    ``byte()`` truncates, matching the local compositor.
    """
    if year not in config.registry:
        raise UnmappedYear(year, output_year=year, lag=0)
    collection = collection if collection is not None else mosaic_collection()
    plan = lag_plan(year, config.weights, config.min_year, config.max_year)

    composite = None
    for band in config.bands:
        layers = [
            blended_band(step.contributing_year, band, step.prev_year, step.post_year, config, collection)
            .multiply(step.weight)
            for step in plan
        ]
        # Image.add masks a pixel when either operand is masked, like the local sum
        summed = (functools.reduce(lambda a, b: a.add(b), layers)
                  .divide(divisor).byte().rename(config.bands.output_name(band)))
        composite = summed if composite is None else composite.addBands(summed)

    start, end = year_interval(year)
    logging.debug(f"Built server-side decay image for {year} ({len(config.bands)} bands, {len(plan)} lags)")
    return composite.set({
        "year": year,
        "system:time_start": to_millis(start),
        "system:time_end": to_millis(end),
    })
