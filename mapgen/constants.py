"""
Constants and static data used across the mapgen application.
"""

REGION_NAME = "Bourgogne-Franche-Comté"
REGION_ABBREV = "BFC"
COUNTRY_NAME = "France"

# Approximate bounding box of the region (degrees)
REGION_BOUNDS = {
    "min_lat": 46.0,
    "max_lat": 48.5,
    "min_lon": 2.5,
    "max_lon": 7.5,
}

# Reference points used when geocoding fails or lands outside the region
FALLBACK_CITIES = [
    {"name": "Dijon", "lat": 47.3220, "lng": 5.0415},
    {"name": "Besançon", "lat": 47.2378, "lng": 6.0241},
    {"name": "Belfort", "lat": 47.6380, "lng": 6.8629},
    {"name": "Chalon-sur-Saône", "lat": 46.7833, "lng": 4.8333},
    {"name": "Nevers", "lat": 46.9896, "lng": 3.1622},
    {"name": "Mâcon", "lat": 46.3064, "lng": 4.8286},
    {"name": "Auxerre", "lat": 47.7982, "lng": 3.5731},
    {"name": "Montbéliard", "lat": 47.5167, "lng": 6.8},
]

# Max offset (degrees) applied to fallback coordinates
FALLBACK_JITTER = 0.05

GEOCODING_SOURCE = "api-adresse.data.gouv.fr"

# Department codes of the region
DEPARTMENTS = {
    "21": "Côte-d'Or",
    "25": "Doubs",
    "39": "Jura",
    "58": "Nièvre",
    "70": "Haute-Saône",
    "71": "Saône-et-Loire",
    "89": "Yonne",
    "90": "Territoire de Belfort",
}

# Payload kinds returned by the repair step
KIND_GEOCODAGE = "geocodage"
KIND_CHOROPLETH = "choroplèthe"
KIND_COMPLEX = "complexe"
KIND_GEOJSON = "geojson"
KIND_FALLBACK = "fallback"

# Accepted spellings for the map type discriminator
MAP_TYPE_ALIASES = {
    "geocodage": KIND_GEOCODAGE,
    "géocodage": KIND_GEOCODAGE,
    "geocoding": KIND_GEOCODAGE,
    "choroplèthe": KIND_CHOROPLETH,
    "choroplethe": KIND_CHOROPLETH,
    "choropleth": KIND_CHOROPLETH,
    "complexe": KIND_COMPLEX,
    "complex": KIND_COMPLEX,
}

DEFAULT_SYSTEM_PROMPT = (
    "Tu es un expert en cartographie et données géographiques de la région "
    "Bourgogne-Franche-Comté. Tu utilises les documents fournis pour créer "
    "des cartes GeoJSON précises."
)

# Appended verbatim to every system prompt
REGION_LOCK_RULES = """RÈGLES STRICTES:
- Limite-toi EXCLUSIVEMENT à la région Bourgogne-Franche-Comté (départements 21, 25, 39, 58, 70, 71, 89, 90).
- Toute coordonnée doit respecter latitude 46.0 à 48.5 et longitude 2.5 à 7.5.
- Les coordonnées GeoJSON sont au format [longitude, latitude].
- Réponds UNIQUEMENT avec un objet JSON valide, sans texte autour.
- L'objet JSON doit contenir un champ "type" parmi: "geocodage", "choroplèthe", "complexe", ou être une FeatureCollection GeoJSON.
- geocodage: {"type": "geocodage", "title": "...", "description": "...", "locations": [{"name": "...", "address": "...", "latitude": 0.0, "longitude": 0.0, "codeINSEE": "...", "properties": {}}]}
- choroplèthe: {"type": "choroplèthe", "title": "...", "dataLevel": "communes|epci|departements", "dataProperty": "...", "colors": ["#..."], "joinKey": "code"}
- complexe: {"type": "complexe", "title": "...", "layers": [ ...objets geocodage ou choroplèthe... ]}
- N'invente pas de codes INSEE: laisse le champ vide si tu ne le connais pas."""

TECHNICAL_SPECS = {
    "projection": "WGS84 (EPSG:4326)",
    "format": "GeoJSON FeatureCollection",
    "region": REGION_NAME,
    "geocoding": GEOCODING_SOURCE,
}

# Base layers shown under AI-generated content
BASE_LAYERS = [
    {
        "id": "base_departments",
        "name": "Limites départementales",
        "description": "Contours des départements",
        "level": "departements",
        "type": "base",
        "color": "#6366f1",
        "opacity": 0.7,
    },
    {
        "id": "base_epci",
        "name": "EPCI",
        "description": "Établissements publics de coopération intercommunale",
        "level": "epci",
        "type": "base",
        "color": "#8b5cf6",
        "opacity": 0.7,
    },
    {
        "id": "base_communes",
        "name": "Communes",
        "description": "Contours des communes",
        "level": "communes",
        "type": "base",
        "color": "#10b981",
        "opacity": 0.7,
    },
]

# Which base layers to enable for a given data level
LAYERS_BY_DATA_LEVEL = {
    "departements": ["base_departments"],
    "epci": ["base_departments", "base_epci"],
    "communes": ["base_departments", "base_epci", "base_communes"],
}

# Static boundary files, relative to the data directory
BOUNDARY_FILES = {
    "region": "bfc.geojsonl.json",
    "departements": "dpt_bfc.geojsonl.json",
    "communes": "communes_bfc.geojsonl.json",
    "epci": "epci_bfc.geojsonl.json",
}

DATA_LEVEL_ALIASES = {
    "departments": "departements",
    "départements": "departements",
    "department": "departements",
    "commune": "communes",
}

DEFAULT_COLORS = ["#fee5d9", "#fcae91", "#fb6a4a", "#de2d26", "#a50f15"]
