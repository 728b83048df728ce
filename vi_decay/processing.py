"""
Main processing functions: process_year and process_years.
"""
import time
import logging
import concurrent.futures
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from tqdm import tqdm

from .blend import GapFillBlender
from .compositor import DecayCompositor
from .config import DEFAULT_WORKERS, MAX_CONCURRENT_QUERIES, MOSAIC_CACHE_ENTRIES
from .errors import DecayError
from .export import ExportParams, OutputSink
from .registry import RunConfig
from .scene import Scene, SceneBuilder
from .sources import CachedMosaicSource, MosaicSource, ThrottledMosaicSource


@dataclass
class YearResult:
    """Outcome of one output year."""
    year: int
    scene: Optional[Scene] = None
    destination: Optional[str] = None
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    """Per-year outcomes of a run, in year order."""
    results: Dict[int, YearResult] = field(default_factory=dict)

    @property
    def scenes(self) -> Dict[int, Scene]:
        return {y: r.scene for y, r in sorted(self.results.items()) if r.scene is not None}

    @property
    def failures(self) -> Dict[int, BaseException]:
        return {y: r.error for y, r in sorted(self.results.items()) if r.error is not None}

    @property
    def succeeded(self) -> List[int]:
        return [y for y, r in sorted(self.results.items()) if r.ok]


@dataclass
class Pipeline:
    """The wired-up components for one run."""
    config: RunConfig
    source: MosaicSource
    compositor: DecayCompositor
    builder: SceneBuilder


def build_pipeline(config: RunConfig, source: MosaicSource, band_workers: int = 1,
                   max_concurrent_queries: Optional[int] = MAX_CONCURRENT_QUERIES,
                   cache: bool = True, cache_entries: int = MOSAIC_CACHE_ENTRIES,
                   validate: bool = True) -> Pipeline:
    """
    Wire source, blender, compositor and scene builder for ``config``.

    The source is throttled to ``max_concurrent_queries`` (None disables it)
    and, with ``cache``, memoized in an LRU of ``cache_entries`` mosaics. With
    ``validate`` output years without a sensor are reported up front; they
    fail on their own when processed and the other years still run.
    """
    if validate:
        report_unmapped_years(config)
    if max_concurrent_queries:
        source = ThrottledMosaicSource(source, max_concurrent_queries)
    if cache:
        source = CachedMosaicSource(source, cache_entries)
    blender = GapFillBlender(source, config.registry)
    compositor = DecayCompositor(blender, config, band_workers=band_workers)
    return Pipeline(config, source, compositor, SceneBuilder(config.bands))


def report_unmapped_years(config: RunConfig) -> List[int]:
    """Log the output years that have no sensor and return them."""
    missing = list(config.unmapped_years())
    if missing:
        logging.warning(f"No sensor configured for output years {missing}; these scenes will fail "
                        f"and neighbouring years are gap-filled without them")
    return missing


def process_year(year: int, pipeline: Pipeline, sink: Optional[OutputSink] = None,
                 params: Optional[ExportParams] = None) -> YearResult:
    """
    Build (and optionally export) the scene of one output year.

    Errors are captured in the returned YearResult rather than raised, so a
    failing year never stops the others.
    """
    t0 = time.time()
    result = YearResult(year)
    try:
        composite = pipeline.compositor.composite(year)
        result.scene = pipeline.builder.build(composite)
        if sink is not None:
            result.destination = sink.export(result.scene, params or ExportParams())
    except DecayError as e:
        logging.error(f"Year {year} failed: {e}")
        result.error = e
    except Exception as e:
        # backend/transport errors (network, GDAL) fail this year only
        logging.exception(f"Year {year} failed with unexpected error")
        result.error = e
    result.elapsed = time.time() - t0
    if result.ok:
        logging.info(f"Year {year} done in {result.elapsed:.1f}s")
    return result


def process_years(years: Iterable[int], pipeline: Pipeline, sink: Optional[OutputSink] = None,
                  params: Optional[ExportParams] = None, workers: int = DEFAULT_WORKERS,
                  show_progress: bool = True) -> RunSummary:
    """
    Process output years concurrently on a thread pool.

    Years are independent; each one's accumulation state lives in its own task.
    """
    years = sorted(set(years))
    summary = RunSummary()
    if not years:
        return summary

    effective_workers = max(1, min(workers, len(years)))
    logging.info(f"Processing {len(years)} years ({years[0]}-{years[-1]}) with {effective_workers} workers")

    pbar = tqdm(total=len(years), desc="Decay composites", unit="year", ncols=100, disable=not show_progress)
    try:
        with concurrent.futures.ThreadPoolExecutor(max_workers=effective_workers) as ex:
            futures = {ex.submit(process_year, year, pipeline, sink, params): year for year in years}
            for fut in concurrent.futures.as_completed(futures):
                res = fut.result()
                summary.results[res.year] = res
                pbar.update(1)
                pbar.set_postfix(ok=len(summary.succeeded), failed=len(summary.failures))
    finally:
        pbar.close()

    summary.results = dict(sorted(summary.results.items()))
    if summary.failures:
        logging.warning(f"{len(summary.failures)} of {len(years)} years failed: {sorted(summary.failures)}")
    else:
        logging.info(f"All {len(years)} years processed successfully")
    return summary


def export_years(years: Iterable[int], sink, params: ExportParams,
                 workers: int = DEFAULT_WORKERS) -> RunSummary:
    """
    Start server-side exports (EarthEngineAssetSink.export_year) for each year.

    Nothing is computed locally; failures are isolated per year as in process_years.
    """
    years = sorted(set(years))
    summary = RunSummary()

    def _export(year):
        result = YearResult(year)
        t0 = time.time()
        try:
            result.destination = sink.export_year(year, params)
        except DecayError as e:
            logging.error(f"Export of year {year} failed: {e}")
            result.error = e
        except Exception as e:
            logging.exception(f"Export of year {year} failed with unexpected error")
            result.error = e
        result.elapsed = time.time() - t0
        return result

    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, min(workers, len(years) or 1))) as ex:
        for res in ex.map(_export, years):
            summary.results[res.year] = res
    return summary
