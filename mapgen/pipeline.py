"""
Prompt-to-map generation.

prompt -> system prompt from reference documents -> Mistral -> repair ->
geocode locations / style boundaries -> GeneratedMap + GenerationLog.
"""

import logging
import time
import traceback

from pydantic import ValidationError

from .constants import (
    GEOCODING_SOURCE,
    KIND_CHOROPLETH,
    KIND_COMPLEX,
    KIND_GEOCODAGE,
    KIND_GEOJSON,
)
from .context_builder import build_system_prompt, build_user_prompt, select_context_documents
from .errors import ConfigurationError, UpstreamError
from .geocoding import get_geocoder, in_region
from .geodata import load_boundaries, normalize_level
from .join_engine import epci_to_feature, join
from .llm import get_llm_client
from .logging_analytics import log_error_to_cloud, log_generation
from .map_layers import apply_color_scheme, layers_for_data_level
from .payloads import GeocodageLocation, classify_payload, validate_payload
from .response_repair import repair
from .settings import MISTRAL_API_KEY_NAME, MISTRAL_MODEL

logger = logging.getLogger("mapgen")

# Nesting allowed for "complexe" layers
MAX_LAYER_DEPTH = 3


def empty_collection() -> dict:
    return {"type": "FeatureCollection", "features": []}


class MapGenerationPipeline:
    """
    Runs one generation per call. Every collaborator is injectable:

    stores: object with documents, ai_config, generation_logs,
            generated_maps and epci stores
    llm_factory: callable(api_key_name) -> client with complete()
    geocoder: object with geocode_many()
    boundary_loader: callable(level) -> FeatureCollection
    """

    def __init__(self, stores, llm_factory=get_llm_client, geocoder=None,
                 boundary_loader=load_boundaries, max_workers: int = None):
        self.stores = stores
        self.llm_factory = llm_factory
        self.geocoder = geocoder
        self.boundary_loader = boundary_loader
        self.max_workers = max_workers

    def get_geocoder(self):
        if self.geocoder is None:
            self.geocoder = get_geocoder()
        return self.geocoder

    # --- Geography ---

    def load_geo_features(self, level: str) -> list:
        """
        Features for a data level. EPCI come from the epci table when it has
        active rows, other levels from the static boundary files.
        """
        level = normalize_level(level)
        if level == "epci":
            rows = self.stores.epci.list_active()
            features = [epci_to_feature(row) for row in rows]
            features = [f for f in features if f["geometry"]]
            if features:
                return features
        return list(self.boundary_loader(level).get("features") or [])

    def locations_to_features(self, locations) -> list:
        """
        Point features for geocodage locations, in input order. Every
        location with an address or name is geocoded; coordinates from the
        LLM are used only for in-region locations with nothing to query.
        """
        if not isinstance(locations, list):
            logger.warning(f"Ignoring locations of type {type(locations).__name__}")
            return []

        parsed = []
        for i, raw in enumerate(locations):
            try:
                loc = GeocodageLocation.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping invalid location {i}: {e.error_count()} error(s)")
                continue
            if not loc.query and not (
                loc.latitude is not None and loc.longitude is not None
                and in_region(loc.latitude, loc.longitude)
            ):
                logger.warning(f"Skipping location {i}: no address, name or in-region coordinates")
                continue
            parsed.append(loc)

        to_geocode = [loc for loc in parsed if loc.query]
        resolved = {}
        if to_geocode:
            results = self.get_geocoder().geocode_many(
                [(loc.query, loc.context) for loc in to_geocode],
                max_workers=self.max_workers,
            )
            resolved = {id(loc): result for loc, result in zip(to_geocode, results)}

        features = []
        for loc in parsed:
            geocoded = id(loc) in resolved
            if geocoded:
                point = resolved[id(loc)]
            else:
                point = {
                    "latitude": loc.latitude,
                    "longitude": loc.longitude,
                    "address": loc.label,
                    "approximate": False,
                }

            properties = {
                **loc.properties,
                "name": loc.label,
                "description": loc.description,
                "category": loc.category,
                "codeINSEE": loc.codeINSEE,
                "address": point["address"],
                "originalAddress": loc.query or None,
                "approximate": point["approximate"],
                "geocoded": geocoded,
                "source": GEOCODING_SOURCE if geocoded else None,
            }
            features.append({
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [point["longitude"], point["latitude"]]},
                "properties": properties,
            })
        return features

    def choropleth_features(self, payload: dict) -> list:
        level = normalize_level(payload.get("dataLevel") or "communes")
        try:
            features = self.load_geo_features(level)
        except (FileNotFoundError, ValueError) as e:
            logger.warning(f"No boundaries for choropleth level '{level}': {e}")
            return []

        join_key = payload.get("joinKey")
        if not isinstance(join_key, str) or not join_key.strip():
            join_key = "code"
        rows = payload.get("data")
        if isinstance(rows, list) and rows:
            features = join(features, [r for r in rows if isinstance(r, dict)], join_key, join_key)["features"]

        return apply_color_scheme(
            features,
            payload.get("dataProperty"),
            payload.get("colors"),
            payload.get("colorScheme") or "gradient",
        )

    def render(self, kind: str, payload: dict, depth: int = 0) -> dict:
        """FeatureCollection for a classified payload."""
        if kind == KIND_GEOJSON:
            features = payload.get("features")
            return {"type": "FeatureCollection", "features": features if isinstance(features, list) else []}

        if kind == KIND_GEOCODAGE:
            return {"type": "FeatureCollection",
                    "features": self.locations_to_features(payload.get("locations"))}

        if kind == KIND_CHOROPLETH:
            return {"type": "FeatureCollection", "features": self.choropleth_features(payload)}

        if kind == KIND_COMPLEX and depth < MAX_LAYER_DEPTH:
            layers = payload.get("layers")
            features = []
            for index, layer in enumerate(layers if isinstance(layers, list) else []):
                if not isinstance(layer, dict):
                    continue
                layer_kind = classify_payload(layer)
                layer_name = layer.get("title") or f"Couche {index + 1}"
                for feature in self.render(layer_kind, layer, depth + 1)["features"]:
                    feature.setdefault("properties", {})["layer"] = layer_name
                    features.append(feature)
            return {"type": "FeatureCollection", "features": features}

        return empty_collection()

    # --- Generation ---

    def generate(self, prompt: str, user=None, data_level: str = None, map_type: str = None) -> dict:
        """
        Generate a map for a prompt.

        Returns:
            dict with kind, payload (the repaired LLM object), geojson,
            layers, documentsUsed, parseError, mapId, executionTimeMs

        Raises:
            ValueError: empty prompt
            UpstreamError: Mistral unreachable or non-2xx (logged first)
            ConfigurationError: Mistral API key missing (logged first)
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("Prompt is required")

        started = time.perf_counter()
        user_id = user.get("id") if user else None

        config = self.stores.ai_config.get_active() or {}
        model_name = config.get("model_name") or MISTRAL_MODEL
        api_key_name = config.get("api_key_name") or MISTRAL_API_KEY_NAME

        documents = select_context_documents(self.stores.documents.list_context_documents())
        system_prompt = build_system_prompt(documents, config.get("system_prompt"))
        user_prompt = build_user_prompt(prompt, data_level, map_type)

        try:
            llm = self.llm_factory(api_key_name)
            raw_response = llm.complete(system_prompt, user_prompt, model=model_name)
        except (UpstreamError, ConfigurationError) as e:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.error(f"Generation failed for '{prompt[:80]}': {e}")
            self.stores.generation_logs.insert({
                "user_prompt": prompt,
                "raw_ai_response": None,
                "ai_response": None,
                "success": False,
                "error_message": str(e),
                "model_name": model_name,
                "system_prompt": system_prompt,
                "execution_time_ms": elapsed_ms,
                "created_by": user_id,
            })
            log_generation(prompt, None, False, documents_used=len(documents),
                           model_name=model_name, execution_time_ms=elapsed_ms, error=str(e))
            log_error_to_cloud(type(e).__name__, str(e), query=prompt,
                               tb=traceback.format_exc(), metadata={"model": model_name})
            raise

        payload = repair(raw_response, prompt, documents)
        kind = classify_payload(payload)
        _, validation_error = validate_payload(kind, payload)
        if validation_error:
            logger.warning(validation_error)

        render_error = None
        try:
            geojson = self.render(kind, payload)
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            render_error = f"Could not render {kind} payload: {e}"
            logger.warning(render_error)
            geojson = empty_collection()

        parse_error = bool(payload.get("parseError"))
        success = not parse_error and render_error is None

        level = payload.get("dataLevel") if kind == KIND_CHOROPLETH else None
        layers = layers_for_data_level(level or data_level or "departements")

        saved_map = None
        if success:
            title = payload.get("title")
            saved_map = self.stores.generated_maps.save(
                name=(title if isinstance(title, str) and title.strip() else prompt)[:200],
                description=payload.get("description"),
                geojson_data=geojson,
                ai_prompt=prompt,
                created_by=user_id,
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if parse_error:
            error_message = "Could not parse AI response"
        else:
            error_message = render_error or validation_error

        self.stores.generation_logs.insert({
            "user_prompt": prompt,
            "raw_ai_response": raw_response,
            "ai_response": payload,
            "success": success,
            "error_message": error_message,
            "model_name": model_name,
            "system_prompt": system_prompt,
            "execution_time_ms": elapsed_ms,
            "created_by": user_id,
        })

        feature_count = len(geojson["features"])
        log_generation(prompt, kind, success, feature_count=feature_count,
                       documents_used=len(documents), model_name=model_name,
                       execution_time_ms=elapsed_ms, error=error_message)
        logger.info(f"Generated '{kind}' map with {feature_count} features in {elapsed_ms} ms")

        return {
            "kind": kind,
            "payload": payload,
            "geojson": geojson,
            "layers": layers,
            "documentsUsed": len(documents),
            "parseError": parse_error,
            "mapId": saved_map.get("id") if saved_map else None,
            "executionTimeMs": elapsed_ms,
        }
