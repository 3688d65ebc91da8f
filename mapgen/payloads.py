"""
Typed views of the JSON objects the LLM is asked to produce.

The raw dict stays the source of truth (it is logged and returned as-is);
these models validate the documented shapes at the repair boundary and give
the pipeline typed access to the fields it needs.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    DEFAULT_COLORS,
    KIND_CHOROPLETH,
    KIND_COMPLEX,
    KIND_FALLBACK,
    KIND_GEOCODAGE,
    KIND_GEOJSON,
    MAP_TYPE_ALIASES,
)


class GeocodageLocation(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    codeINSEE: Optional[str] = None
    context: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("codeINSEE", mode="before")
    @classmethod
    def _code_as_text(cls, value):
        # INSEE codes keep their leading zeros only as text
        return None if value is None else str(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _properties_default(cls, value):
        return value or {}

    @property
    def label(self) -> str:
        return self.name or self.address or self.codeINSEE or "Lieu"

    @property
    def query(self) -> str:
        return self.address or self.name or self.codeINSEE or ""


class GeocodagePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    locations: List[GeocodageLocation] = Field(default_factory=list)


class ChoroplethPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    dataLevel: str = "communes"
    dataProperty: Optional[str] = None
    colorScheme: str = "gradient"
    colors: List[str] = Field(default_factory=lambda: list(DEFAULT_COLORS))
    joinKey: str = "code"


class ComplexPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    layers: List[Dict[str, Any]] = Field(default_factory=list)


PAYLOAD_MODELS = {
    KIND_GEOCODAGE: GeocodagePayload,
    KIND_CHOROPLETH: ChoroplethPayload,
    KIND_COMPLEX: ComplexPayload,
}


def classify_payload(obj) -> str:
    """
    Decide which of the documented shapes a parsed LLM object is.
    An explicit "type"/"mapType" wins; otherwise the keys present decide.
    """
    if not isinstance(obj, dict) or obj.get("parseError"):
        return KIND_FALLBACK

    declared = obj.get("type") or obj.get("mapType")
    if declared == "FeatureCollection":
        return KIND_GEOJSON
    if isinstance(declared, str) and declared.strip().lower() in MAP_TYPE_ALIASES:
        return MAP_TYPE_ALIASES[declared.strip().lower()]

    if isinstance(obj.get("features"), list):
        return KIND_GEOJSON
    if isinstance(obj.get("locations"), list):
        return KIND_GEOCODAGE
    if isinstance(obj.get("layers"), list):
        return KIND_COMPLEX
    if obj.get("dataLevel") and any(k in obj for k in ("colors", "joinKey", "dataProperty")):
        return KIND_CHOROPLETH

    return KIND_FALLBACK


def validate_payload(kind: str, obj: dict):
    """
    Returns (model, None) on success, (None, error_message) when the
    object does not match its shape, (None, None) for kinds without a model.
    """
    model_cls = PAYLOAD_MODELS.get(kind)
    if model_cls is None:
        return None, None
    try:
        return model_cls.model_validate(obj), None
    except ValidationError as e:
        return None, f"Invalid {kind} payload: {e.error_count()} error(s): {e.errors()[0].get('msg')}"
