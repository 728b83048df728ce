"""
Settings management for Earth Engine authentication and run defaults.
Stores settings persistently in the user's home directory.
"""
import os
import json
import logging
from pathlib import Path

# Settings file location - use AppData\Local on Windows, a dot directory elsewhere
if os.environ.get('VI_DECAY_SETTINGS_DIR'):
    SETTINGS_DIR = Path(os.environ['VI_DECAY_SETTINGS_DIR'])
elif os.name == 'nt':  # Windows
    SETTINGS_DIR = Path(os.environ.get('LOCALAPPDATA', os.path.expanduser('~'))) / 'VI_Decay'
else:
    SETTINGS_DIR = Path.home() / '.vi_decay'

SETTINGS_FILE = SETTINGS_DIR / 'settings.json'

SETTING_KEYS = ('service_account_key', 'project_id', 'asset_root', 'output_folder', 'workers')


def load_settings(path: Path = None) -> dict:
    """Load settings from persistent storage."""
    path = Path(path) if path else SETTINGS_FILE
    if not path.exists():
        return {}

    try:
        with open(path, 'r') as f:
            settings = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logging.warning(f"Failed to load settings: {e}")
        return {}
    logging.debug(f"Settings loaded from {path}")
    return settings


def save_settings(path: Path = None, **values) -> bool:
    """
    Save settings to persistent storage.

    Keyword arguments must be in SETTING_KEYS. ``None`` leaves a value
    untouched, an empty string removes it.
    """
    path = Path(path) if path else SETTINGS_FILE
    unknown = set(values) - set(SETTING_KEYS)
    if unknown:
        raise ValueError(f"Unknown settings: {sorted(unknown)}")

    settings = load_settings(path)
    for key, value in values.items():
        if value is None:
            continue
        if value == "":
            settings.pop(key, None)
        elif key in ('service_account_key', 'output_folder') and os.path.exists(str(value)):
            # Store absolute path
            settings[key] = os.path.abspath(str(value))
        else:
            settings[key] = value

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(settings, f, indent=2)
    except OSError as e:
        logging.error(f"Failed to save settings: {e}")
        return False
    logging.info(f"Settings saved to {path}")
    return True


def get_service_account_key(path: Path = None):
    """Get service account key path from settings."""
    key_path = load_settings(path).get('service_account_key')
    if key_path and os.path.exists(key_path):
        return key_path
    return None


def get_project_id(path: Path = None):
    """Get project ID from settings."""
    return load_settings(path).get('project_id')


def clear_settings(path: Path = None) -> bool:
    """Clear all settings."""
    path = Path(path) if path else SETTINGS_FILE
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        logging.error(f"Failed to clear settings: {e}")
        return False
    logging.info("Settings cleared")
    return True
