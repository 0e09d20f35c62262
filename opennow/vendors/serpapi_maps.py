"""SerpAPI Google Maps helpers used as a secondary nearby-place provider."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, Iterable, List

from serpapi import GoogleSearch

from opennow.core.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

RETRY_LIMIT = 1
RETRY_DELAY_SECONDS = 1.2
DEFAULT_QUERY = "shops"


class SerpApiError(ProviderUnavailable):
    """Raised when SerpAPI is not configured or keeps failing."""


def zoom_for_radius(radius_meters: float) -> int:
    """Pick a Google Maps zoom level whose viewport roughly covers the radius."""
    for limit, zoom in ((500, 17), (1000, 16), (2500, 15), (5000, 14)):
        if radius_meters <= limit:
            return zoom
    return 13


def build_serpapi_params(
    latitude: float,
    longitude: float,
    radius_meters: float,
    api_key: str,
    query: str = DEFAULT_QUERY,
) -> Dict[str, Any]:
    """Construct SerpAPI request parameters for the Google Maps engine."""
    if not api_key:
        raise SerpApiError("SERPAPI_API_KEY is not configured")
    if not query or not query.strip():
        raise ValueError("Query must be provided for SerpAPI lookups.")

    return {
        "engine": "google_maps",
        "q": query.strip(),
        "api_key": api_key,
        "type": "search",
        "ll": f"@{float(latitude)},{float(longitude)},{zoom_for_radius(radius_meters)}z",
    }


def search_nearby(latitude: float, longitude: float, radius_meters: float, api_key: str) -> List[Dict[str, Any]]:
    """Call SerpAPI Google Maps and return the raw local results, retrying transient failures."""
    params = build_serpapi_params(latitude, longitude, radius_meters, api_key)

    attempt = 0
    while True:
        attempt += 1
        try:
            logger.info("Calling SerpAPI (attempt %s) ll=%s", attempt, params["ll"])
            data = GoogleSearch(params).get_dict()
            if not data:
                raise SerpApiError("SerpAPI returned an empty payload.")
            if "error" in data:
                raise SerpApiError(f"SerpAPI returned an error response: {data.get('error') or data}")
            return list(extract_items(data))
        except Exception as exc:  # noqa: BLE001 - network client raises assorted errors
            logger.warning("SerpAPI request failed (attempt %s/%s): %s", attempt, RETRY_LIMIT + 1, exc)
            if attempt > RETRY_LIMIT:
                if isinstance(exc, SerpApiError):
                    raise
                raise SerpApiError(str(exc)) from exc
            time.sleep(RETRY_DELAY_SECONDS + random.uniform(0, 0.8))


def extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    """SerpAPI sometimes returns local_results as a list or nested dict."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        logger.debug("local_results is dict with keys: %s", list(local_results.keys())[:10])
        for maybe in (local_results.get("places"), local_results.get("results")):
            if isinstance(maybe, list):
                return maybe

    place_results = data.get("place_results")
    if isinstance(place_results, list):
        return place_results
    if isinstance(place_results, dict):
        return [place_results]
    return []
