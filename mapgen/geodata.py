"""
Static boundary files.

Boundaries for the region, its departments, EPCI and communes are shipped
as GeoJSON FeatureCollections or as GeoJSONL (one Feature per line, the
files are named *.geojsonl.json). Loaded collections are cached per path.
"""

import json
import logging
from pathlib import Path

from shapely.geometry import shape

from .constants import BOUNDARY_FILES, DATA_LEVEL_ALIASES
from .settings import get_data_dir

logger = logging.getLogger("mapgen")

# Cache for loaded collections
_collection_cache = {}  # resolved path -> FeatureCollection


def normalize_level(level) -> str:
    level = str(level or "").strip().lower()
    return DATA_LEVEL_ALIASES.get(level, level)


def is_geojsonl(path: Path) -> bool:
    name = path.name.lower()
    return name.endswith(".geojsonl") or name.endswith(".geojsonl.json")


def _read_geojsonl(path: Path) -> list:
    features = []
    with open(path, encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed line {line_no} in {path.name}: {e}")
                continue
            # A GeoJSONL line is usually a Feature; tolerate bare collections too
            if item.get("type") == "FeatureCollection":
                features.extend(item.get("features") or [])
            else:
                features.append(item)
    return features


def load_feature_collection(path) -> dict:
    """
    Load a FeatureCollection from a GeoJSON or GeoJSONL file.

    Raises:
        FileNotFoundError: when the file does not exist
    """
    path = Path(path)
    key = str(path.resolve())
    if key in _collection_cache:
        return _collection_cache[key]

    if not path.exists():
        raise FileNotFoundError(f"Boundary file not found: {path}")

    if is_geojsonl(path):
        features = _read_geojsonl(path)
    else:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        if data.get("type") == "FeatureCollection":
            features = data.get("features") or []
        elif data.get("type") == "Feature":
            features = [data]
        else:
            features = []

    collection = {"type": "FeatureCollection", "features": features}
    _collection_cache[key] = collection
    logger.info(f"Loaded {len(features)} features from {path.name}")
    return collection


def get_boundary_path(level: str) -> Path:
    level = normalize_level(level)
    if level not in BOUNDARY_FILES:
        raise ValueError(f"Unknown geographic level: {level}")
    return get_data_dir() / BOUNDARY_FILES[level]


def load_boundaries(level: str) -> dict:
    """FeatureCollection of the boundaries for a level (region, departements, epci, communes)."""
    return load_feature_collection(get_boundary_path(level))


def clear_cache() -> int:
    """Empty the boundary cache. Returns the number of entries dropped."""
    count = len(_collection_cache)
    _collection_cache.clear()
    logger.info(f"Boundary cache cleared ({count} entries)")
    return count


def validate_feature_collection(geojson) -> tuple:
    """
    Check a FeatureCollection is well-formed: every feature is a Feature
    whose geometry (when present) can be built by shapely.

    Returns:
        (True, None) or (False, reason)
    """
    if not isinstance(geojson, dict) or geojson.get("type") != "FeatureCollection":
        return False, "not a FeatureCollection"
    features = geojson.get("features")
    if not isinstance(features, list):
        return False, "features is not a list"

    for i, feature in enumerate(features):
        if not isinstance(feature, dict) or feature.get("type") != "Feature":
            return False, f"feature {i} is not a Feature"
        geometry = feature.get("geometry")
        if geometry is None:
            continue
        try:
            shape(geometry)
        except Exception as e:
            return False, f"feature {i} has invalid geometry: {e}"

    return True, None
