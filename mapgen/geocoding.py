"""
Geocoding adapter for the French government address API.

Every lookup is validated against the region bounding box. When all
candidate queries fail (or only return out-of-region matches) the location
is placed near one of the region's main cities, with the address suffixed
"(approx. <city>)" so operators can spot degraded results.

geocode() never raises.
"""

import logging
import random
from concurrent.futures import ThreadPoolExecutor

import requests

from .constants import (
    COUNTRY_NAME,
    FALLBACK_CITIES,
    FALLBACK_JITTER,
    REGION_ABBREV,
    REGION_BOUNDS,
    REGION_NAME,
)
from .settings import GEOCODING_URL, load_settings

logger = logging.getLogger("mapgen")


def in_region(latitude, longitude) -> bool:
    """True when the coordinate lies inside the region bounding box."""
    return (REGION_BOUNDS["min_lat"] <= latitude <= REGION_BOUNDS["max_lat"]
            and REGION_BOUNDS["min_lon"] <= longitude <= REGION_BOUNDS["max_lon"])


def build_candidate_queries(location: str, context: str = None) -> list:
    """
    Query strings tried in order, most specific first:
    region name, region abbreviation, country, then the bare location.
    """
    full_address = f"{location}, {context}" if context else location
    return [
        f"{full_address}, {REGION_NAME}",
        f"{full_address}, {REGION_ABBREV}",
        f"{full_address}, {COUNTRY_NAME}",
        full_address,
    ]


class Geocoder:
    """
    Wraps the address API. The HTTP session and the random source are
    injectable so tests can stub the network and pin the fallback city.
    """

    def __init__(self, url: str = None, session=None, timeout: float = None, rng=None):
        self.url = url or GEOCODING_URL
        self.session = session or requests.Session()
        self.timeout = timeout or load_settings()["geocode_timeout"]
        self.rng = rng or random.Random()

    def lookup(self, address: str):
        """
        Single API call. Returns {latitude, longitude, formatted_address}
        or None when the API errors or has no match.
        """
        try:
            response = self.session.get(
                self.url,
                params={"q": address, "limit": 1},
                timeout=self.timeout,
            )
            if response.status_code != 200:
                logger.warning(f"Geocoding API error {response.status_code} for '{address}'")
                return None

            data = response.json()
            if not isinstance(data, dict):
                logger.warning(f"Unexpected geocoding response for '{address}'")
                return None
            features = data.get("features") or []
            if not features:
                logger.debug(f"No geocoding result for '{address}'")
                return None

            feature = features[0]
            longitude, latitude = feature["geometry"]["coordinates"][:2]
            label = (feature.get("properties") or {}).get("label") or address
            return {
                "latitude": float(latitude),
                "longitude": float(longitude),
                "formatted_address": label,
            }
        except (requests.RequestException, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Geocoding failed for '{address}': {e}")
            return None

    def fallback(self, location: str) -> dict:
        """Random reference city with a small random offset."""
        city = self.rng.choice(FALLBACK_CITIES)
        logger.info(f"Using fallback coordinates for {location}: {city['name']}")
        return {
            "latitude": city["lat"] + self.rng.uniform(-FALLBACK_JITTER, FALLBACK_JITTER),
            "longitude": city["lng"] + self.rng.uniform(-FALLBACK_JITTER, FALLBACK_JITTER),
            "address": f"{location} (approx. {city['name']})",
            "approximate": True,
        }

    def geocode(self, location: str, context: str = None) -> dict:
        """
        Resolve a location to in-region coordinates.

        Returns:
            {"latitude", "longitude", "address", "approximate"}
        """
        for query in build_candidate_queries(location, context):
            result = self.lookup(query)
            if result and in_region(result["latitude"], result["longitude"]):
                return {
                    "latitude": result["latitude"],
                    "longitude": result["longitude"],
                    "address": result["formatted_address"],
                    "approximate": False,
                }
            if result:
                logger.debug(
                    f"Result for '{query}' outside region: "
                    f"{result['latitude']}, {result['longitude']}"
                )

        return self.fallback(location)

    def geocode_many(self, locations: list, max_workers: int = None) -> list:
        """
        Geocode (location, context) pairs. Calls fan out over a bounded
        thread pool; results keep the input order. max_workers=1 runs the
        lookups one after another.
        """
        if max_workers is None:
            max_workers = load_settings()["geocode_max_workers"]
        max_workers = max(1, int(max_workers))

        if max_workers == 1 or len(locations) <= 1:
            return [self.geocode(loc, ctx) for loc, ctx in locations]

        with ThreadPoolExecutor(max_workers=min(max_workers, len(locations))) as pool:
            return list(pool.map(lambda pair: self.geocode(*pair), locations))


_default_geocoder = None


def get_geocoder() -> Geocoder:
    """Shared geocoder with a pooled HTTP session."""
    global _default_geocoder
    if _default_geocoder is None:
        _default_geocoder = Geocoder()
    return _default_geocoder


def geocode(location: str, context: str = None) -> dict:
    """Module-level shortcut using the shared geocoder."""
    return get_geocoder().geocode(location, context)


def geocode_locations(locations: list, max_workers: int = None) -> list:
    return get_geocoder().geocode_many(locations, max_workers)
