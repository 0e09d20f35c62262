"""Client utilities for the Google Places (New) API."""

import logging
from typing import Any, Dict, List

import requests

from opennow.core.errors import ProviderUnavailable

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_NEARBY_URL = "https://places.googleapis.com/v1/places:searchNearby"

INCLUDED_TYPES = ["restaurant", "cafe", "pharmacy", "bank", "atm", "supermarket", "store"]
FIELD_MASK = ",".join(
    [
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.types",
        "places.regularOpeningHours",
        "places.businessStatus",
    ]
)
MAX_RESULTS = 20


class GooglePlacesError(ProviderUnavailable):
    """Raised when the Places API cannot be used or returns a non-successful response."""


def search_nearby(latitude: float, longitude: float, radius_meters: float, api_key: str) -> List[Dict[str, Any]]:
    """Return the raw ``places`` list around a point."""
    if not api_key:
        raise GooglePlacesError("GOOGLE_MAPS_API_KEY is not configured")

    body = {
        "includedTypes": INCLUDED_TYPES,
        "maxResultCount": MAX_RESULTS,
        "locationRestriction": {
            "circle": {
                "center": {"latitude": float(latitude), "longitude": float(longitude)},
                "radius": float(radius_meters),
            }
        },
    }
    headers = {
        "Content-Type": "application/json",
        "X-Goog-Api-Key": api_key,
        "X-Goog-FieldMask": FIELD_MASK,
    }
    try:
        response = _SESSION.post(_NEARBY_URL, json=body, headers=headers, timeout=10)
    except requests.RequestException as exc:
        logger.error("search_nearby request failed: %s", exc)
        raise GooglePlacesError(str(exc)) from exc

    if response.status_code >= 400:
        logger.error("search_nearby failed: status=%s, body=%s", response.status_code, response.text[:300])
        raise GooglePlacesError(f"Google API {response.status_code}: {response.text[:200]}")

    payload = response.json() or {}
    return payload.get("places", [])
