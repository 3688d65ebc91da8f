"""Tests for boundary files and layer styling."""
import json

import pytest

from mapgen import settings
from mapgen.geodata import (
    clear_cache,
    load_boundaries,
    load_feature_collection,
    normalize_level,
    validate_feature_collection,
)
from mapgen.map_layers import NO_DATA_COLOR, apply_color_scheme, get_base_layers, layers_for_data_level

POINT = {"type": "Point", "coordinates": [5.0, 47.0]}


@pytest.fixture(autouse=True)
def empty_cache():
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    settings_file = tmp_path / "settings.json"
    settings_file.write_text(json.dumps({"data_dir": str(tmp_path)}), encoding="utf-8")
    monkeypatch.setattr(settings, "SETTINGS_FILE", settings_file)
    return tmp_path


def feature(code):
    return {"type": "Feature", "geometry": POINT, "properties": {"code": code}}


def test_load_geojson_feature_collection(tmp_path):
    path = tmp_path / "dpt.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": [feature("21")]}), encoding="utf-8")

    collection = load_feature_collection(path)

    assert collection["type"] == "FeatureCollection"
    assert collection["features"][0]["properties"]["code"] == "21"


def test_load_geojsonl_skips_blank_and_bad_lines(tmp_path):
    path = tmp_path / "communes.geojsonl.json"
    lines = [json.dumps(feature("21231")), "", "{broken", json.dumps(feature("25056"))]
    path.write_text("\n".join(lines), encoding="utf-8")

    collection = load_feature_collection(path)

    assert [f["properties"]["code"] for f in collection["features"]] == ["21231", "25056"]


def test_collections_are_cached_until_cleared(tmp_path):
    path = tmp_path / "region.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": [feature("27")]}), encoding="utf-8")

    first = load_feature_collection(path)
    path.write_text(json.dumps({"type": "FeatureCollection", "features": []}), encoding="utf-8")

    assert load_feature_collection(path) is first
    assert clear_cache() == 1
    assert load_feature_collection(path)["features"] == []


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_feature_collection(tmp_path / "absent.geojson")


def test_load_boundaries_uses_data_dir(data_dir):
    (data_dir / "dpt_bfc.geojsonl.json").write_text(json.dumps(feature("21")) + "\n", encoding="utf-8")

    assert len(load_boundaries("departments")["features"]) == 1


def test_unknown_level_rejected(data_dir):
    with pytest.raises(ValueError):
        load_boundaries("cantons")


def test_normalize_level():
    assert normalize_level("Départements") == "departements"
    assert normalize_level("commune") == "communes"
    assert normalize_level("epci") == "epci"


def test_validate_feature_collection():
    assert validate_feature_collection({"type": "FeatureCollection", "features": [feature("1")]}) == (True, None)
    assert validate_feature_collection({"type": "FeatureCollection", "features": []})[0] is True
    assert validate_feature_collection({"type": "Feature"})[0] is False
    assert validate_feature_collection({"type": "FeatureCollection", "features": [{"type": "Point"}]})[0] is False
    bad_geometry = {"type": "Feature", "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]}, "properties": {}}
    assert validate_feature_collection({"type": "FeatureCollection", "features": [bad_geometry]})[0] is False


def test_base_layers_catalog():
    assert [layer["id"] for layer in get_base_layers()] == ["base_departments", "base_epci", "base_communes"]


@pytest.mark.parametrize("level, visible", [
    ("departements", ["base_departments"]),
    ("epci", ["base_departments", "base_epci"]),
    ("communes", ["base_departments", "base_epci", "base_communes"]),
    ("inconnu", []),
])
def test_layers_for_data_level(level, visible):
    layers = layers_for_data_level(level)
    assert [layer["id"] for layer in layers if layer["visible"]] == visible


def test_gradient_uses_equal_width_bins():
    features = [{"type": "Feature", "geometry": POINT, "properties": {"v": v}} for v in (0, 49, 50, 100, "n/a")]

    styled = apply_color_scheme(features, "v", ["#a", "#b"], "gradient")

    assert [f["properties"]["fill"] for f in styled] == ["#a", "#a", "#b", "#b", NO_DATA_COLOR]
    assert "fill" not in features[0]["properties"]


def test_gradient_accepts_french_decimal_strings():
    features = [{"properties": {"v": "1,5"}}, {"properties": {"v": "3"}}]
    styled = apply_color_scheme(features, "v", ["#a", "#b"])
    assert [f["properties"]["fill"] for f in styled] == ["#a", "#b"]


def test_categorical_cycles_colors():
    features = [{"properties": {"c": c}} for c in ("x", "y", "x", "z", None)]

    styled = apply_color_scheme(features, "c", ["#1", "#2"], "categorical")

    assert [f["properties"]["fill"] for f in styled] == ["#1", "#2", "#1", "#1", NO_DATA_COLOR]
