"""OpenStreetMap Overpass API client."""

import logging
from typing import Any, Dict, List

import requests

from opennow.core.errors import ProviderUnavailable

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

_QUERY_TEMPLATE = """
[out:json][timeout:25];
(
  node["shop"](around:{radius},{lat},{lng});
  node["amenity"="pharmacy"](around:{radius},{lat},{lng});
  node["amenity"="bank"](around:{radius},{lat},{lng});
  node["amenity"="atm"](around:{radius},{lat},{lng});
  node["amenity"="fuel"](around:{radius},{lat},{lng});
);
out body;
"""


class OverpassError(ProviderUnavailable):
    """Raised when the Overpass interpreter is unreachable or rejects the query."""


def build_query(latitude: float, longitude: float, radius_meters: float) -> str:
    return _QUERY_TEMPLATE.format(radius=int(radius_meters), lat=float(latitude), lng=float(longitude))


def search_nearby(latitude: float, longitude: float, radius_meters: float, url: str) -> List[Dict[str, Any]]:
    """Return raw Overpass ``elements`` for shops and selected amenities around a point."""
    query = build_query(latitude, longitude, radius_meters)
    try:
        response = _SESSION.post(url, data=query, timeout=30)
    except requests.RequestException as exc:
        logger.error("Overpass request failed: %s", exc)
        raise OverpassError(str(exc)) from exc

    if response.status_code >= 400:
        logger.error("Overpass returned status=%s", response.status_code)
        raise OverpassError(f"Overpass API error: {response.status_code} {response.reason}")

    try:
        payload = response.json()
    except ValueError as exc:
        raise OverpassError("Overpass returned a non-JSON body") from exc
    return payload.get("elements", [])
