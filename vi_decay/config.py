"""
Configuration constants and default values.
"""
import multiprocessing
import logging
import os

# Earth Engine authentication
# Set to None to use user authentication, or provide a path to a service account JSON key file
# Checked after saved settings and before the GEE_SERVICE_ACCOUNT_KEY environment variable
GEE_SERVICE_ACCOUNT_KEY = None
GEE_PROJECT = None  # Google Cloud project ID (extracted from key file if not set)

# Record range (MapBiomas Landsat collection)
MIN_YEAR = 1985
MAX_YEAR = 2023

# Landsat satellite used for each year's mosaic
YEAR_SENSOR = {
    1985: "l5", 1986: "l5", 1987: "l5", 1988: "l5", 1989: "l5",
    1990: "l5", 1991: "l5", 1992: "l5", 1993: "l5", 1994: "l5",
    1995: "l5", 1996: "l5", 1997: "l5", 1998: "l5", 1999: "l5",
    2000: "l5", 2001: "l7", 2002: "l7", 2003: "l5", 2004: "l5",
    2005: "l5", 2006: "l5", 2007: "l5", 2008: "l5", 2009: "l5",
    2010: "l5", 2011: "l7", 2012: "l7", 2013: "l8", 2014: "l8",
    2015: "l8", 2016: "l8", 2017: "l8", 2018: "l8", 2019: "l8",
    2020: "l8", 2021: "l8", 2022: "l8", 2023: "l8",
}

# Exponential decay factors (alpha=0.7), lag 0 (current year) to lag 6
DECAY_WEIGHTS = (0.327, 0.229, 0.160, 0.112, 0.078, 0.055, 0.038)
DECAY_LAGS = 7
WEIGHT_SUM_TOLERANCE = 1e-3

# Vegetation indices to process: {ndvi, evi2, savi} x {full year, wet season, dry season}
INDICES = ("ndvi", "evi2", "savi")
SEASON_SUFFIXES = ("median", "median_wet", "median_dry")
INDEX_BANDS = tuple(f"{index}_{season}" for index in INDICES for season in SEASON_SUFFIXES)

# Output encoding
OUTPUT_BAND_PREFIX = "mb_"
OUTPUT_DIVISOR = 100.0  # mosaics store indices on a 0-10000 scale, output is 0-100
OUTPUT_NODATA = 255

# Earth Engine sources
MOSAIC_COLLECTION = "projects/nexgenmap/MapBiomas2/LANDSAT/BRAZIL/mosaics-2"
AOI_COLLECTION = "projects/mapbiomas-workspace/AUXILIAR/biomas_IBGE_250mil"
ASSET_ROOT = "projects/mapbiomas-workspace/SOLOS/COVARIAVEIS/LANDSAT_MB_INDICES_DECAY"
EXPORT_DESCRIPTION_PREFIX = "GT_MC_SOLO-LANDSAT_MB_INDICES_DECAY-"

# Export defaults
EXPORT_SCALE = 30  # meters
EXPORT_MAX_PIXELS = int(1e13)
PYRAMIDING_POLICY = "median"
GEOTIFF_OVERVIEWS = [2, 4, 8, 16, 32]
OUTDIR_DEFAULT = "decay_outputs"
MANIFEST_CSV = "decay_manifest.csv"

# Retry configuration
EXPORT_POLL_INTERVAL = 8
EXPORT_POLL_TIMEOUT = 60 * 30
DOWNLOAD_RETRIES = 3
DOWNLOAD_RETRY_DELAY = 2  # seconds, with exponential backoff

# Concurrency
DEFAULT_WORKERS = min(multiprocessing.cpu_count(), 8)  # Auto-detect CPU count, cap at 8
MAX_WORKERS = 16
MAX_CONCURRENT_QUERIES = 10  # Simultaneous mosaic queries allowed against the backend
MOSAIC_CACHE_ENTRIES = 128  # Mosaics kept in memory (least recently used are evicted)

# Visualization
VIS_BAND = "mb_ndvi_median"
VIS_PALETTE = ["red", "yellow", "green"]
VIS_RANGE = (0, 100)


def resolve_workers(requested=None) -> int:
    """
    Clamp a requested worker count to [1, MAX_WORKERS].

    Args:
        requested: Worker count from the command line, settings or None

    Returns:
        int: Number of workers to use (DEFAULT_WORKERS when nothing was requested)
    """
    if requested is None:
        env_workers = os.environ.get("VI_DECAY_WORKERS")
        if env_workers:
            try:
                requested = int(env_workers)
            except ValueError:
                logging.warning(f"Ignoring invalid VI_DECAY_WORKERS value: {env_workers!r}")
    if requested is None:
        return DEFAULT_WORKERS
    return max(1, min(int(requested), MAX_WORKERS))
