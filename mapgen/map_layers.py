"""
Layer catalog and choropleth styling used by the map client.
"""

import copy
import logging

from .constants import BASE_LAYERS, DEFAULT_COLORS, LAYERS_BY_DATA_LEVEL
from .geodata import normalize_level

logger = logging.getLogger("mapgen")

# Fill for features whose value cannot be classified
NO_DATA_COLOR = "#cccccc"


def get_base_layers() -> list:
    return [dict(layer) for layer in BASE_LAYERS]


def layers_for_data_level(data_level: str) -> list:
    """
    Base layers enabled for a data level, each with a "visible" flag.
    departements -> departments; epci -> + EPCI; communes -> all three.
    """
    enabled = LAYERS_BY_DATA_LEVEL.get(normalize_level(data_level), [])
    layers = get_base_layers()
    for layer in layers:
        layer["visible"] = layer["id"] in enabled
    return layers


def _as_number(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", ".").replace(" ", ""))
        except ValueError:
            return None
    return None


def gradient_color(value: float, min_value: float, max_value: float, colors: list) -> str:
    """Color of the equal-width bin holding value."""
    if max_value <= min_value:
        return colors[0]
    width = (max_value - min_value) / len(colors)
    index = int((value - min_value) / width)
    # max_value falls in the last bin
    return colors[min(index, len(colors) - 1)]


def apply_color_scheme(features, data_property: str, colors=None, scheme: str = "gradient") -> list:
    """
    Return copies of features with properties.fill set.

    gradient: numeric values split into len(colors) equal-width bins
    categorical: distinct values (in order of appearance) cycle through colors
    Features without a usable value get NO_DATA_COLOR.
    """
    if not isinstance(colors, (list, tuple)) or not colors:
        colors = DEFAULT_COLORS
    colors = list(colors)
    styled = [copy.deepcopy(f) for f in features or []]
    if not isinstance(data_property, str) or not data_property:
        return styled

    if scheme == "categorical":
        palette = {}
        for feature in styled:
            props = feature.setdefault("properties", {})
            value = props.get(data_property)
            if value is None or value == "":
                props["fill"] = NO_DATA_COLOR
                continue
            key = str(value)
            if key not in palette:
                palette[key] = colors[len(palette) % len(colors)]
            props["fill"] = palette[key]
        return styled

    values = [_as_number((f.get("properties") or {}).get(data_property)) for f in styled]
    numeric = [v for v in values if v is not None]
    if not numeric:
        logger.warning(f"No numeric values for '{data_property}', gradient not applied")
    min_value = min(numeric) if numeric else 0.0
    max_value = max(numeric) if numeric else 0.0

    for feature, value in zip(styled, values):
        props = feature.setdefault("properties", {})
        if value is None:
            props["fill"] = NO_DATA_COLOR
        else:
            props["fill"] = gradient_color(value, min_value, max_value, colors)
    return styled
