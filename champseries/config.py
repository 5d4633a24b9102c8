"""Settings file and environment helpers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# Data directory lives at the project root under ``data``.
DATA_DIR = Path(__file__).resolve().parent.parent / "data"
SETTINGS_FILE = "settings.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": 0,
    "points_by_place": [
        *({"place": place, "points": 11 - place} for place in range(1, 11)),
        {"place": "default_or_higher", "points": 0},
    ],
    "age_group_distance_caps": [
        {"max_age": 14, "max_distance_miles": 6.21},
        {"max_age": 19, "max_distance_miles": 10.0},
    ],
}


def build_lookup(entries: List[Dict], key_field: str, value_field: str) -> Tuple[Dict[int, float], float]:
    """Build lookup dict and default value from settings entries."""
    lookup: Dict[int, float] = {}
    default = 0.0
    for item in entries:
        key = item[key_field]
        value = item[value_field]
        if isinstance(key, int):
            lookup[int(key)] = value
        elif key == "default_or_higher":
            default = value
    return lookup, default


def load_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """Return scoring settings from ``data/settings.json``.

    Sections missing from the file keep their default value.
    """
    path = path or DATA_DIR / SETTINGS_FILE
    settings = dict(DEFAULT_SETTINGS)
    if path.exists():
        with path.open() as f:
            settings.update(json.load(f))
    return settings


def env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


SETTINGS = load_settings()
