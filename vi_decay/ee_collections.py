"""
Earth Engine collection helpers for the MapBiomas Landsat mosaics.
"""
import logging
import ee

from .config import MOSAIC_COLLECTION, AOI_COLLECTION


def mosaic_collection(collection_id: str = MOSAIC_COLLECTION):
    """MapBiomas Landsat mosaics (one image per chart/year/satellite)."""
    return ee.ImageCollection(collection_id)


def year_sensor_mosaic(year: int, sensor: str, band: str, collection=None):
    """
    Mosaic of one index band for a (year, satellite) pair.

    Returns:
        (image, filtered_collection): the collection is returned so callers can
        check whether any chart matched before pulling pixels.
    """
    col = collection if collection is not None else mosaic_collection()
    filtered = (col.filter(ee.Filter.eq('year', year))
                   .filter(ee.Filter.eq('satellite', sensor))
                   .select([band]))
    return filtered.mosaic(), filtered


def aoi_features(collection_id: str = AOI_COLLECTION):
    """Area of interest (Brazilian biomes by default)."""
    return ee.FeatureCollection(collection_id)


def aoi_bounds(features=None):
    """Rectangular bounds of the area of interest as an ee.Geometry."""
    features = features if features is not None else aoi_features()
    return features.geometry().bounds()


def aoi_bounds_geojson(features=None) -> dict:
    """Bounds of the area of interest as a GeoJSON dict (client side)."""
    geojson = aoi_bounds(features).getInfo()
    logging.debug(f"AOI bounds: {geojson}")
    return geojson
