"""Utilities for transforming provider responses into external shop projections."""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from opennow.models import ExternalShop, ShopStatus

logger = logging.getLogger(__name__)

SOURCE_GOOGLE = "Google"
SOURCE_SERPAPI = "SerpAPI"
SOURCE_OSM = "OSM"

_CLOSED_BUSINESS_STATUSES = {"CLOSED_PERMANENTLY", "CLOSED_TEMPORARILY"}


def strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def category_from_types(types: Iterable[str]) -> str:
    types = list(types or [])
    if "pharmacy" in types:
        return "Pharmacy"
    if "bank" in types or "atm" in types:
        return "Bank"
    if "cafe" in types or "restaurant" in types:
        return "Cafe"
    if "supermarket" in types or "convenience_store" in types:
        return "General Store"
    if types:
        return types[0].replace("_", " ").title()
    return "Other"


def category_from_osm_tags(tags: Dict[str, Any]) -> str:
    category = "Other"
    if tags.get("shop") in {"supermarket", "convenience"}:
        category = "General Store"
    amenity = tags.get("amenity")
    if amenity == "pharmacy":
        category = "Pharmacy"
    elif amenity in {"bank", "atm"}:
        category = "Bank"
    elif amenity == "fuel":
        category = "Gas Station"
    return category


def google_status(item: Dict[str, Any]) -> Tuple[ShopStatus, str]:
    """Derive (status, hours hint) from businessStatus and regularOpeningHours.openNow."""
    business_status = item.get("businessStatus")
    open_now = (item.get("regularOpeningHours") or {}).get("openNow")

    if business_status in _CLOSED_BUSINESS_STATUSES:
        status = ShopStatus.CLOSED
    elif open_now is True:
        status = ShopStatus.OPEN
    elif open_now is False:
        status = ShopStatus.CLOSED
    else:
        status = ShopStatus.UNCERTAIN

    if open_now is not None:
        hint = "Open Now" if open_now else "Closed Now"
    elif business_status == "OPERATIONAL":
        hint = "Hours not listed"
    else:
        hint = "Closed"
    return status, hint


def google_place_to_shop(item: Dict[str, Any]) -> ExternalShop:
    location = item.get("location") or {}
    status, hint = google_status(item)
    return ExternalShop(
        id=f"google_{item['id']}",
        name=(item.get("displayName") or {}).get("text") or "Unknown Place",
        category=category_from_types(item.get("types", [])),
        location=item.get("formattedAddress") or "Google Maps Data",
        longitude=float(location["longitude"]),
        latitude=float(location["latitude"]),
        status=status,
        static_hours=hint,
        source=SOURCE_GOOGLE,
    )


def serp_status(open_state: Optional[str]) -> ShopStatus:
    text = (open_state or "").strip().lower()
    if not text:
        return ShopStatus.UNCERTAIN
    if text.startswith("open"):
        return ShopStatus.OPEN
    if "closed" in text:
        return ShopStatus.CLOSED
    return ShopStatus.UNCERTAIN


def serp_result_to_shop(raw: Dict[str, Any]) -> ExternalShop:
    gps = raw.get("gps_coordinates") or {}
    latitude = safe_float(gps.get("latitude"))
    longitude = safe_float(gps.get("longitude"))
    if latitude is None or longitude is None:
        raise ValueError("SerpAPI result without gps_coordinates")

    place_id = strip_or_none(raw.get("place_id")) or strip_or_none(raw.get("data_id"))
    if not place_id:
        raise ValueError("SerpAPI result without place_id")

    open_state = strip_or_none(raw.get("open_state"))
    types = raw.get("types") or ([raw["type"]] if raw.get("type") else [])
    return ExternalShop(
        id=f"serp_{place_id}",
        name=strip_or_none(raw.get("title") or raw.get("name")) or "",
        category=category_from_types([str(t).lower().replace(" ", "_") for t in types]),
        location=strip_or_none(raw.get("address")) or "Google Maps Data",
        longitude=longitude,
        latitude=latitude,
        status=serp_status(open_state),
        static_hours=open_state or strip_or_none(raw.get("hours")) or "Hours not listed",
        source=SOURCE_SERPAPI,
    )


def osm_element_to_shop(element: Dict[str, Any]) -> ExternalShop:
    tags = element.get("tags") or {}
    if not tags:
        raise ValueError("OSM element without tags")
    category = category_from_osm_tags(tags)
    return ExternalShop(
        id=f"osm_{element['id']}",
        name=tags.get("name") or f"{category} (Unnamed)",
        category=category,
        location="OpenStreetMap Data",
        longitude=float(element["lon"]),
        latitude=float(element["lat"]),
        status=ShopStatus.UNCERTAIN,
        static_hours=tags.get("opening_hours") or "Not Specified",
        source=SOURCE_OSM,
    )


def normalize_all(items: Iterable[Any], converter: Callable[[Dict[str, Any]], ExternalShop]) -> List[ExternalShop]:
    """Convert provider items, skipping the ones that do not form a valid projection."""
    shops: List[ExternalShop] = []
    for raw in items or []:
        if not isinstance(raw, dict):
            continue
        try:
            shops.append(converter(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.debug("Skipping provider item %s: %s", raw.get("id") or raw.get("place_id"), exc)
    return shops
