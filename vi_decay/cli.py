"""
Command line entry point: logging setup, Earth Engine initialization and the run itself.
"""
import os
import sys
import json
import logging
import argparse
from datetime import datetime

from .config import (
    GEE_SERVICE_ACCOUNT_KEY, GEE_PROJECT, OUTDIR_DEFAULT, ASSET_ROOT, EXPORT_SCALE,
    MANIFEST_CSV, MAX_CONCURRENT_QUERIES, MOSAIC_CACHE_ENTRIES, resolve_workers
)
from .errors import DecayError
from .registry import load_run_config, parse_years
from .settings import load_settings, get_service_account_key, get_project_id


def setup_logging(log_dir: str = "logs", console_level: int = logging.INFO) -> str:
    """
    Log INFO to the console and DEBUG to a timestamped file in ``log_dir``.

    Returns:
        str: Path of the log file
    """
    os.makedirs(log_dir, exist_ok=True)
    log_filepath = os.path.join(log_dir, f"vi_decay_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Suppress verbose DEBUG messages from third-party libraries
    logging.getLogger('rasterio').setLevel(logging.WARNING)
    logging.getLogger('rasterio._env').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('urllib3.connectionpool').setLevel(logging.WARNING)
    logging.getLogger('matplotlib').setLevel(logging.WARNING)
    logging.getLogger('googleapiclient').setLevel(logging.ERROR)
    logging.getLogger('googleapiclient.discovery').setLevel(logging.ERROR)
    logging.getLogger('google.auth').setLevel(logging.WARNING)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(message)s"))

    file_handler = logging.FileHandler(log_filepath, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] [%(filename)s:%(lineno)d] %(message)s"))

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    logging.info(f"Logging initialized. Log file: {log_filepath}")
    return log_filepath


def find_service_account_key():
    """Find service account key file: saved settings, config, then environment."""
    settings_key = get_service_account_key()
    if settings_key:
        return settings_key
    if GEE_SERVICE_ACCOUNT_KEY and os.path.exists(GEE_SERVICE_ACCOUNT_KEY):
        return GEE_SERVICE_ACCOUNT_KEY
    env_key = os.environ.get('GEE_SERVICE_ACCOUNT_KEY')
    if env_key and os.path.exists(env_key):
        return env_key
    return None


def initialize_earth_engine():
    """Initialize Earth Engine with a service account key if one is configured, else user credentials."""
    import ee

    project_id = get_project_id() or GEE_PROJECT or os.environ.get('GEE_PROJECT') or os.environ.get('GOOGLE_CLOUD_PROJECT')
    key_file = find_service_account_key()
    if key_file:
        if not project_id:
            with open(key_file, 'r') as f:
                project_id = json.load(f).get('project_id')
        credentials = ee.ServiceAccountCredentials(None, key_file)
        ee.Initialize(credentials, project=project_id)
        logging.info(f"Initialized Earth Engine with service account from {key_file} (project: {project_id})")
        return

    if not project_id:
        raise DecayError(
            "Earth Engine requires a project ID. Set GEE_PROJECT or GOOGLE_CLOUD_PROJECT, "
            "or save project_id in the settings file."
        )
    ee.Initialize(project=project_id)
    logging.info(f"Initialized Earth Engine with project: {project_id}")


def parse_bbox(text: str):
    parts = [float(p) for p in text.split(",")]
    if len(parts) != 4:
        raise argparse.ArgumentTypeError("bbox must be lon_min,lat_min,lon_max,lat_max")
    return tuple(parts)


def build_parser() -> argparse.ArgumentParser:
    settings = load_settings()
    parser = argparse.ArgumentParser(
        prog="vi-decay",
        description="Decay-weighted, gap-filled annual vegetation index composites.",
    )
    parser.add_argument("--years", help="Output years, e.g. 1985-2023 or 1990,2000 (default: whole record)")
    parser.add_argument("--config", help="JSON file overriding years, sensor table, weights or bands")
    parser.add_argument("--backend", choices=("geotiff", "ee"), default="geotiff",
                        help="Where source mosaics come from")
    parser.add_argument("--source-dir", help="Root of <year>/<sensor>/<band>.tif mosaics (geotiff backend)")
    parser.add_argument("--bbox", type=parse_bbox, help="lon_min,lat_min,lon_max,lat_max region (default: AOI bounds)")
    parser.add_argument("--scale", type=float, default=EXPORT_SCALE, help="Resolution in meters")
    parser.add_argument("--out", default=settings.get("output_folder", OUTDIR_DEFAULT), help="Output folder")
    parser.add_argument("--manifest", default=None, help=f"Manifest CSV (default: <out>/{MANIFEST_CSV})")
    parser.add_argument("--workers", type=int, default=settings.get("workers"), help="Years processed in parallel")
    parser.add_argument("--band-workers", type=int, default=1, help="Bands processed in parallel within a year")
    parser.add_argument("--max-queries", type=int, default=MAX_CONCURRENT_QUERIES,
                        help="Concurrent mosaic queries allowed")
    parser.add_argument("--cache-size", type=int, default=MOSAIC_CACHE_ENTRIES,
                        help="Mosaics kept in memory between lags and years")
    parser.add_argument("--export-ee", action="store_true",
                        help="Export server-side composites to Earth Engine assets instead of computing locally")
    parser.add_argument("--asset-root", default=settings.get("asset_root", ASSET_ROOT), help="Asset folder for --export-ee")
    parser.add_argument("--wait", action="store_true", help="Wait for Earth Engine export tasks to finish")
    parser.add_argument("--quicklook", action="store_true", help="Write a PNG quicklook per scene")
    parser.add_argument("--log-dir", default="logs", help="Folder for log files")
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    return parser


def _region(args):
    from shapely.geometry import box, mapping
    from .ee_collections import aoi_bounds_geojson

    if args.bbox:
        return mapping(box(*args.bbox))
    return aoi_bounds_geojson()


def run(args) -> int:
    from .export import ExportParams, GeoTiffSink, EarthEngineAssetSink
    from .processing import build_pipeline, process_years, export_years, report_unmapped_years
    from .sources import GeoTiffMosaicSource, EarthEngineMosaicSource

    config = load_run_config(args.config)
    years = parse_years(args.years, config.min_year, config.max_year) if args.years else config.years
    workers = resolve_workers(args.workers)
    manifest = args.manifest or os.path.join(args.out, MANIFEST_CSV)

    if args.export_ee:
        initialize_earth_engine()
        report_unmapped_years(config)
        params = ExportParams(prefix=args.asset_root, scale=args.scale, region=_region(args))
        sink = EarthEngineAssetSink(config, wait=args.wait, manifest_path=manifest)
        os.makedirs(args.out, exist_ok=True)
        summary = export_years(years, sink, params, workers=workers)
    else:
        region = None
        if args.backend == "ee":
            initialize_earth_engine()
            region = _region(args)
            source = EarthEngineMosaicSource(region, scale=args.scale)
        else:
            if not args.source_dir:
                raise DecayError("--source-dir is required with the geotiff backend")
            source = GeoTiffMosaicSource(args.source_dir)
        pipeline = build_pipeline(config, source, band_workers=args.band_workers,
                                  max_concurrent_queries=args.max_queries, cache_entries=args.cache_size)
        params = ExportParams(prefix=args.out, scale=args.scale, region=region)
        summary = process_years(years, pipeline, GeoTiffSink(manifest_path=manifest), params,
                                workers=workers, show_progress=not args.no_progress)
        if args.quicklook:
            from .visualization import render_quicklook
            for year, scene in summary.scenes.items():
                render_quicklook(scene, os.path.join(args.out, "quicklooks", f"{year}.png"))

    for year, error in summary.failures.items():
        print(f"{year}: FAILED - {error}", file=sys.stderr)
    print(f"{len(summary.succeeded)} of {len(years)} years completed.")
    return 1 if summary.failures else 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_dir)
    try:
        return run(args)
    except DecayError as e:
        logging.error(str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nProgram interrupted by user.")
        return 130
