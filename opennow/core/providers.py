"""Nearby places from external providers, tried in a fixed fallback order.

Each provider attempt yields a ProviderResult. The first successful attempt
wins; when every real provider fails, generated demo shops are served so the
caller always gets a list.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from opennow.core.config import Settings, get_settings
from opennow.etl import transform
from opennow.models import ExternalShop, ProviderResult, ShopStatus
from opennow.vendors import google_places, overpass, serpapi_maps

logger = logging.getLogger(__name__)

SOURCE_DEMO = "MOCK_DATA"

_DEMO_CATEGORIES = ["Pharmacy", "General Store", "Cafe", "Bank"]
_DEMO_NAMES = ["City Pharmacy", "Daily Needs", "Sunrise Cafe", "SBI ATM"]


@dataclass(frozen=True)
class Provider:
    name: str
    fetch: Callable[[float, float, float], List[ExternalShop]]


def google_provider(settings: Settings) -> Provider:
    def fetch(latitude: float, longitude: float, radius: float) -> List[ExternalShop]:
        places = google_places.search_nearby(latitude, longitude, radius, settings.google_maps_api_key)
        return transform.normalize_all(places, transform.google_place_to_shop)

    return Provider(transform.SOURCE_GOOGLE, fetch)


def serpapi_provider(settings: Settings) -> Provider:
    def fetch(latitude: float, longitude: float, radius: float) -> List[ExternalShop]:
        results = serpapi_maps.search_nearby(latitude, longitude, radius, settings.serpapi_api_key)
        return transform.normalize_all(results, transform.serp_result_to_shop)

    return Provider(transform.SOURCE_SERPAPI, fetch)


def osm_provider(settings: Settings) -> Provider:
    def fetch(latitude: float, longitude: float, radius: float) -> List[ExternalShop]:
        elements = overpass.search_nearby(latitude, longitude, radius, settings.overpass_url)
        return transform.normalize_all(elements, transform.osm_element_to_shop)

    return Provider(transform.SOURCE_OSM, fetch)


def default_providers(settings: Optional[Settings] = None) -> List[Provider]:
    settings = settings or get_settings()
    providers = [google_provider(settings)]
    if settings.serpapi_api_key:
        providers.append(serpapi_provider(settings))
    providers.append(osm_provider(settings))
    return providers


def attempt(provider: Provider, latitude: float, longitude: float, radius: float) -> ProviderResult:
    try:
        shops = provider.fetch(latitude, longitude, radius)
    except Exception as exc:  # noqa: BLE001 - a broken provider must not break the chain
        logger.warning("%s lookup failed: %s", provider.name, exc)
        return ProviderResult(source=provider.name, error=str(exc) or exc.__class__.__name__)
    return ProviderResult(source=provider.name, shops=shops)


def generate_demo_shops(
    latitude: float,
    longitude: float,
    count: int = 5,
    rng: Optional[random.Random] = None,
) -> List[ExternalShop]:
    """Placeholder shops scattered within roughly half a kilometre of the point."""
    rng = rng or random.Random()
    stamp = int(time.time() * 1000)
    shops = []
    for i in range(count):
        shops.append(
            ExternalShop(
                id=f"mock_{stamp}_{i}",
                name=f"{_DEMO_NAMES[i % len(_DEMO_NAMES)]} (Demo)",
                category=_DEMO_CATEGORIES[i % len(_DEMO_CATEGORIES)],
                location="Demo Location Data",
                longitude=float(longitude) + rng.uniform(-0.005, 0.005),
                latitude=float(latitude) + rng.uniform(-0.005, 0.005),
                status=ShopStatus.OPEN if rng.random() > 0.3 else ShopStatus.CLOSED,
                static_hours="9:00 AM - 10:00 PM",
                source=SOURCE_DEMO,
            )
        )
    return shops


def fetch_nearby(
    latitude: float,
    longitude: float,
    radius: Optional[float] = None,
    providers: Optional[List[Provider]] = None,
) -> ProviderResult:
    """Return the first successful provider result, or demo data when all fail."""
    if radius is None:
        radius = get_settings().default_radius_meters
    if providers is None:
        providers = default_providers()

    for provider in providers:
        result = attempt(provider, latitude, longitude, radius)
        if result.ok:
            logger.info("Fetched %d places from %s", len(result.shops), result.source)
            return result

    logger.warning("All place providers failed; serving demo data")
    return ProviderResult(source=SOURCE_DEMO, shops=generate_demo_shops(latitude, longitude))
