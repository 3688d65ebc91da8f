"""Tests for the prompt-to-map pipeline."""
import json

import pytest

from mapgen.errors import UpstreamError
from mapgen.constants import REGION_LOCK_RULES

USER = {"id": "user-1", "is_admin": False}


def geocodage_response(locations):
    return "```json\n" + json.dumps({"type": "geocodage", "title": "Lieux", "locations": locations}) + "\n```"


def test_geocodage_locations_become_points_in_order(make_pipeline, fake_geocoder, stores):
    pipeline, _ = make_pipeline(geocodage_response([
        {"name": "CHU Dijon", "address": "14 rue Paul Gaffarel", "context": "Dijon", "latitude": 47.0, "longitude": 4.0},
        {"latitude": 47.2305, "longitude": 6.0318, "properties": {"type": "monument"}},
        {"name": "Tour Eiffel", "latitude": 48.8584, "longitude": 2.2945},
        {"latitude": 48.86, "longitude": 2.35},
    ]))

    result = pipeline.generate("lieux remarquables", user=USER)

    assert result["kind"] == "geocodage"
    features = result["geojson"]["features"]
    assert [f["properties"]["name"] for f in features] == ["CHU Dijon", "Lieu", "Tour Eiffel"]
    assert fake_geocoder.queries == [("14 rue Paul Gaffarel", "Dijon"), ("Tour Eiffel", None)]

    # LLM coordinates are replaced by the geocoder's
    assert features[0]["geometry"]["coordinates"] == [5.0415, 47.3220]
    assert features[0]["properties"]["geocoded"] is True
    assert features[0]["properties"]["originalAddress"] == "14 rue Paul Gaffarel"
    assert features[0]["properties"]["source"] == "api-adresse.data.gouv.fr"

    # nothing to query: in-region coordinates are kept
    assert features[1]["geometry"]["coordinates"] == [6.0318, 47.2305]
    assert features[1]["properties"]["geocoded"] is False
    assert features[1]["properties"]["source"] is None
    assert features[1]["properties"]["type"] == "monument"

    assert features[2]["geometry"]["coordinates"] == [5.0415, 47.3220]


def test_successful_generation_persists_map_and_log(make_pipeline, stores):
    pipeline, llm = make_pipeline(geocodage_response([{"name": "Beaune"}]))

    result = pipeline.generate("  Beaune  ", user=USER, data_level="communes")

    assert result["mapId"] is not None
    saved = stores.generated_maps.get(result["mapId"])
    assert saved["ai_prompt"] == "Beaune"
    assert saved["created_by"] == "user-1"
    assert saved["geojson_data"] == result["geojson"]

    (log,) = stores.generation_logs.list_logs()
    assert log["success"] is True
    assert log["user_prompt"] == "Beaune"
    assert log["raw_ai_response"] == llm.response
    assert log["ai_response"]["ragEnhanced"] is True
    assert log["system_prompt"].endswith(REGION_LOCK_RULES)
    assert log["model_name"] == "mistral-large-latest"


def test_active_ai_config_drives_model_and_prompt(make_pipeline, stores, fake_db):
    fake_db.seed("ai_config", {"model_name": "mistral-small-latest", "system_prompt": "Préambule BFC",
                               "api_key_name": "MISTRAL_KEY_2", "is_active": True})
    fake_db.seed("documents", {"name": "Santé", "description": "Hôpitaux", "prompt": "Localiser",
                               "metadata": {"tags": ["santé"]}, "is_active": True, "embedding_processed": True})
    pipeline, llm = make_pipeline('{"type": "geocodage", "locations": []}')

    result = pipeline.generate("hôpitaux")

    assert llm.calls[0]["model"] == "mistral-small-latest"
    assert llm.calls[0]["system"].startswith("Préambule BFC")
    assert "DOCUMENT: Santé" in llm.calls[0]["system"]
    assert result["documentsUsed"] == 1


def test_choropleth_styles_boundaries(make_pipeline):
    payload = {
        "type": "choroplèthe",
        "title": "Population",
        "dataLevel": "communes",
        "dataProperty": "population",
        "colors": ["#eee", "#111"],
        "data": [{"code": "21231", "population": 156920}, {"code": "25056", "population": 116466}],
    }
    pipeline, _ = make_pipeline(json.dumps(payload))

    result = pipeline.generate("population des communes")

    assert result["kind"] == "choroplèthe"
    features = result["geojson"]["features"]
    assert [f["properties"]["nom"] for f in features] == ["Dijon", "Besançon"]
    assert [f["properties"]["fill"] for f in features] == ["#111", "#eee"]
    assert [l["id"] for l in result["layers"] if l["visible"]] == ["base_departments", "base_epci", "base_communes"]


def test_choropleth_without_boundaries_is_empty(make_pipeline):
    pipeline, _ = make_pipeline('{"type": "choroplèthe", "dataLevel": "departements", "colors": ["#fff"]}')

    result = pipeline.generate("départements")

    assert result["geojson"]["features"] == []
    assert result["parseError"] is False


def test_epci_rows_feed_epci_choropleth(make_pipeline, fake_db):
    fake_db.seed("epci", {
        "name": "Dijon Métropole", "code": "242100410", "is_active": True, "population": 250000,
        "geojson_data": {"type": "Feature", "geometry": {"type": "Point", "coordinates": [5.04, 47.32]}},
    })
    pipeline, _ = make_pipeline('{"type": "choroplèthe", "dataLevel": "epci", "dataProperty": "population"}')

    features = pipeline.generate("EPCI")["geojson"]["features"]

    assert features[0]["properties"]["name"] == "Dijon Métropole"
    assert "fill" in features[0]["properties"]


def test_complex_payload_merges_layers(make_pipeline):
    payload = {
        "type": "complexe",
        "layers": [
            {"type": "geocodage", "title": "Gares", "locations": [{"name": "Dijon-Ville"}]},
            {"type": "FeatureCollection", "features": [
                {"type": "Feature", "geometry": {"type": "Point", "coordinates": [6.0, 47.2]}, "properties": {}},
            ]},
        ],
    }
    pipeline, _ = make_pipeline(json.dumps(payload))

    features = pipeline.generate("gares et points")["geojson"]["features"]

    assert [f["properties"]["layer"] for f in features] == ["Gares", "Couche 2"]


def test_direct_feature_collection(make_pipeline):
    collection = {"type": "FeatureCollection", "features": [
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": [5.0, 47.0]}, "properties": {"a": 1}},
    ]}
    pipeline, _ = make_pipeline(json.dumps(collection))

    result = pipeline.generate("points")

    assert result["kind"] == "geojson"
    assert result["geojson"]["features"] == collection["features"]


def test_unparseable_response_is_logged_as_failure(make_pipeline, stores):
    pipeline, _ = make_pipeline("Désolé, je ne peux pas.")

    result = pipeline.generate("n'importe quoi", user=USER)

    assert result["kind"] == "fallback"
    assert result["parseError"] is True
    assert result["geojson"] == {"type": "FeatureCollection", "features": []}
    assert result["mapId"] is None
    assert stores.generated_maps.list_all() == []
    (log,) = stores.generation_logs.list_logs()
    assert log["success"] is False
    assert log["error_message"]


def test_upstream_failure_is_logged_and_raised(make_pipeline, stores):
    pipeline, _ = make_pipeline(error=UpstreamError("Mistral API error: 500", status_code=500))

    with pytest.raises(UpstreamError):
        pipeline.generate("gares", user=USER)

    (log,) = stores.generation_logs.list_logs()
    assert log["success"] is False
    assert log["error_message"] == "Mistral API error: 500"
    assert log["raw_ai_response"] is None
    assert stores.generated_maps.list_all() == []


def test_empty_prompt_rejected(make_pipeline):
    pipeline, llm = make_pipeline()
    with pytest.raises(ValueError):
        pipeline.generate("   ")
    assert llm.calls == []


def test_analytics_line_written(make_pipeline, tmp_path):
    pipeline, _ = make_pipeline('{"type": "geocodage", "locations": []}')

    pipeline.generate("analytics")

    lines = (tmp_path / "generations.jsonl").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["prompt"] == "analytics"
    assert entry["kind"] == "geocodage"
    assert entry["success"] is True


@pytest.mark.parametrize("payload", [
    {"type": "geocodage", "locations": 5},
    {"type": "choroplèthe", "dataLevel": 2, "dataProperty": "population"},
    {"type": "choroplèthe", "dataLevel": "communes", "dataProperty": "population", "colors": 3},
    {"type": "choroplèthe", "dataLevel": "communes", "joinKey": ["code"], "data": [{"code": "21231"}]},
])
def test_malformed_payload_shapes_are_logged_not_raised(make_pipeline, stores, payload):
    pipeline, _ = make_pipeline(json.dumps(payload))

    result = pipeline.generate("forme inattendue")

    assert result["geojson"]["type"] == "FeatureCollection"
    (log,) = stores.generation_logs.list_logs()
    assert "Invalid" in log["error_message"]


def test_unrenderable_payload_is_a_logged_failure(make_pipeline, stores):
    payload = {"type": "complexe", "layers": [{"type": "FeatureCollection", "features": [5]}]}
    pipeline, _ = make_pipeline(json.dumps(payload))

    result = pipeline.generate("couches")

    assert result["geojson"] == {"type": "FeatureCollection", "features": []}
    assert result["mapId"] is None
    (log,) = stores.generation_logs.list_logs()
    assert log["success"] is False
    assert log["error_message"].startswith("Could not render complexe payload")
