"""
Manifest management for tracking exported scenes.
"""
import os
import csv
import json
from datetime import datetime, timezone
from typing import List

from .config import MANIFEST_CSV

MANIFEST_HEADER = ["year", "destination", "bands", "properties_json", "timestamp"]


def manifest_init(path: str = MANIFEST_CSV):
    """Initialize manifest CSV file with headers."""
    if not os.path.exists(path):
        with open(path, "w", newline="") as f:
            w = csv.writer(f)
            w.writerow(MANIFEST_HEADER)


def manifest_append(year: int, destination: str, bands: List[str], properties: dict,
                    path: str = MANIFEST_CSV):
    """Append entry to manifest CSV."""
    manifest_init(path)
    with open(path, "a", newline="") as f:
        w = csv.writer(f)
        w.writerow([year, destination, json.dumps(list(bands)), json.dumps(properties, sort_keys=True),
                    datetime.now(timezone.utc).isoformat()])


def manifest_read(path: str = MANIFEST_CSV) -> List[dict]:
    """Rows of the manifest as dicts (empty if the file does not exist)."""
    if not os.path.exists(path):
        return []
    with open(path, "r", newline="") as f:
        return list(csv.DictReader(f))
