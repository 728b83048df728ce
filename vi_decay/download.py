"""
Download and task helpers for Earth Engine imagery.
"""
import json
import time
import logging
import requests
from typing import Tuple, Optional

from .config import (
    EXPORT_POLL_TIMEOUT, EXPORT_POLL_INTERVAL,
    DOWNLOAD_RETRIES, DOWNLOAD_RETRY_DELAY
)


def wait_for_task_done(task, timeout_s: int = EXPORT_POLL_TIMEOUT, poll_interval: int = EXPORT_POLL_INTERVAL):
    """Wait for Earth Engine task to complete."""
    t0 = time.time()
    last_state = None
    while True:
        try:
            status = task.status()
        except Exception as e:
            # status polling goes over the network; transient errors are retried until timeout
            logging.warning("Error checking task status: %s", str(e))
            if time.time() - t0 > timeout_s:
                return {"state": "TIMEOUT"}
            time.sleep(poll_interval)
            continue
        state = status.get("state")
        if state != last_state:
            logging.debug("Task state: %s", state)
            last_state = state
        if state in ("COMPLETED", "FAILED", "CANCELLED"):
            if state == "FAILED":
                logging.warning("Task failed: %s", status.get("error_message", "Unknown error"))
            return status
        if time.time() - t0 > timeout_s:
            logging.warning("Task timeout after %d seconds", timeout_s)
            return {"state": "TIMEOUT"}
        time.sleep(poll_interval)


def _looks_like_tiff(chunk: bytes) -> bool:
    # TIFF magic bytes: "II" (little-endian) or "MM" (big-endian) followed by 42 (0x2a)
    if len(chunk) < 4:
        return False
    return (chunk[:2] == b'II' and chunk[2] == 0x2a) or (chunk[:2] == b'MM' and chunk[3] == 0x2a)


def download_geotiff(url: str, out_tif: str, label: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """
    Download a GeoTIFF from an Earth Engine getDownloadURL with retry logic.

    Args:
        url: Download URL
        out_tif: Destination file
        label: Optional text identifying the request in log messages

    Returns:
        (success: bool, error_message: Optional[str])
    """
    label = label or out_tif
    for attempt in range(DOWNLOAD_RETRIES):
        wait_time = DOWNLOAD_RETRY_DELAY * (2 ** attempt)
        last_attempt = attempt == DOWNLOAD_RETRIES - 1
        try:
            logging.debug("Downloading %s (attempt %d/%d)", label, attempt + 1, DOWNLOAD_RETRIES)
            r = requests.get(url, stream=True, timeout=900)
            if r.status_code != 200:
                error_msg = r.text[:200]
                if not last_attempt:
                    logging.warning("HTTP error %d for %s%s, retrying in %d seconds...",
                                    r.status_code, label, f": {error_msg}" if error_msg else "", wait_time)
                    time.sleep(wait_time)
                    continue
                logging.warning("HTTP error %d for %s after %d attempts", r.status_code, label, DOWNLOAD_RETRIES)
                return False, f"http_{r.status_code}: {error_msg or 'HTTP ' + str(r.status_code)}"

            content_chunks = []
            for chunk in r.iter_content(chunk_size=32768):
                if not chunk:
                    continue
                if not content_chunks and not _looks_like_tiff(chunk):
                    return False, "invalid_file_format"
                content_chunks.append(chunk)

            if not content_chunks:
                return False, "empty_file"

            with open(out_tif, 'wb') as f:
                for chunk in content_chunks:
                    f.write(chunk)
            return True, None

        except requests.exceptions.Timeout:
            if not last_attempt:
                logging.warning("Download timeout for %s, retrying in %d seconds...", label, wait_time)
                time.sleep(wait_time)
                continue
            return False, "download_timeout"
        except requests.exceptions.RequestException as e:
            if not last_attempt:
                logging.warning("Download error for %s: %s, retrying in %d seconds...", label, str(e), wait_time)
                time.sleep(wait_time)
                continue
            return False, f"download_error: {str(e)}"

    return False, "max_retries_exceeded"


def generate_download_url(image, region: dict, scale: float, select_bands: list):
    """
    Generate download URL for an Earth Engine image.

    Returns:
        (url: str, error: Optional[str])
    """
    try:
        params = {
            "scale": scale,
            "region": json.dumps(region),
            "fileFormat": "GEO_TIFF"
        }
        url = image.select(select_bands).getDownloadURL(params)
        return url, None
    except Exception as e:
        # ee raises EEException for every server-side failure
        error_str = str(e)
        if "must be less than or equal to" in error_str:
            return None, "request_too_large"
        return None, f"url_generation_error: {error_str}"
