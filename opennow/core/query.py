"""Shop listings for clients: local records, optionally merged with provider places."""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from opennow.core import db, providers
from opennow.core.errors import ValidationError
from opennow.core.status import derive_display, is_open_now, utcnow
from opennow.models import ExternalShop, Shop

logger = logging.getLogger(__name__)

MODE_NEARBY = "nearby"
MODE_ALL = "all"
MODE_RECENT = "recent"
MODES = (MODE_NEARBY, MODE_ALL, MODE_RECENT)

PAGE_SIZE = 50
ALL_PAGE_SIZE = 100
FEED_LIMIT = 100

STATUS_FILTERS = ("ALL", "OPEN", "CLOSED")

EARTH_RADIUS_KM = 6371.0


def resolve_mode(mode: Optional[str], near: Optional[Tuple[float, float]]) -> str:
    """Pick the retrieval mode; "nearby" needs a point and degrades to "recent" without one."""
    if mode is not None and mode not in MODES:
        raise ValidationError(f"mode must be one of {', '.join(MODES)}")
    if mode == MODE_ALL:
        return MODE_ALL
    if mode == MODE_RECENT:
        return MODE_RECENT
    return MODE_NEARBY if near is not None else MODE_RECENT


def parse_point(lat: Any, lng: Any) -> Optional[Tuple[float, float]]:
    """Parse query-string coordinates; missing or "null" values mean no point."""
    if lat in (None, "", "null") or lng in (None, "", "null"):
        return None
    try:
        latitude, longitude = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError("lat and lng must be numeric") from None
    if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
        raise ValidationError("lat/lng out of range")
    return latitude, longitude


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance, rounded to one decimal."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return round(2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a)), 1)


def matches_search(shop: Any, search: Optional[str]) -> bool:
    if not search:
        return True
    needle = search.lower()
    return needle in (shop.name or "").lower() or needle in (shop.category or "").lower()


def filter_by_status(shops: Sequence[Any], status_filter: str, now: Optional[datetime] = None) -> List[Any]:
    """OPEN keeps shops displayed as open (including declared-hours OPEN_NOW); CLOSED keeps the rest."""
    status_filter = (status_filter or "ALL").upper()
    if status_filter not in STATUS_FILTERS:
        raise ValidationError("status must be ALL, OPEN or CLOSED")
    if status_filter == "ALL":
        return list(shops)
    now = now or utcnow()
    want_open = status_filter == "OPEN"
    return [shop for shop in shops if is_open_now(shop, now) == want_open]


def shop_payload(
    shop: Any,
    now: Optional[datetime] = None,
    origin: Optional[Tuple[float, float]] = None,
) -> Dict[str, Any]:
    """Serialize a local or external shop with its displayed status."""
    payload = shop.to_payload()
    payload["display"] = derive_display(shop, now or utcnow()).to_payload()
    if origin is not None:
        payload["distanceKm"] = distance_km(origin[0], origin[1], shop.latitude, shop.longitude)
    return payload


def list_shops(
    search: Optional[str] = None,
    near: Optional[Tuple[float, float]] = None,
    mode: Optional[str] = None,
    status_filter: str = "ALL",
    now: Optional[datetime] = None,
) -> List[Shop]:
    """Return local shops for a client listing.

    ``nearby`` orders by proximity to ``near`` (lat, lng); ``recent`` and ``all``
    order by last status update, newest first.
    """
    mode = resolve_mode(mode, near)
    search = (search or "").strip() or None
    limit = ALL_PAGE_SIZE if mode == MODE_ALL else PAGE_SIZE

    with db.storage_errors("listing shops"):
        with db.transaction() as cur:
            shops = db.query_shops(
                cur,
                search=search,
                near=near if mode == MODE_NEARBY else None,
                limit=limit,
            )

    logger.debug("Listed %d shops (mode=%s search=%r)", len(shops), mode, search)
    return filter_by_status(shops, status_filter, now)


def _drop_migrated(external: List[ExternalShop], local: List[Shop]) -> List[ExternalShop]:
    known = {shop.external_id for shop in local if shop.external_id}
    unknown_ids = [shop.id for shop in external if shop.id not in known]
    if unknown_ids:
        with db.storage_errors("matching provider ids"):
            with db.transaction() as cur:
                known.update(db.fetch_external_ids(cur, unknown_ids))
    return [shop for shop in external if shop.id not in known]


def nearby_feed(
    latitude: float,
    longitude: float,
    radius: Optional[float] = None,
    search: Optional[str] = None,
    status_filter: str = "ALL",
    now: Optional[datetime] = None,
    provider_chain: Optional[List[providers.Provider]] = None,
) -> Dict[str, Any]:
    """Community shops near a point followed by provider places not yet migrated locally."""
    now = now or utcnow()
    origin = (latitude, longitude)
    local = list_shops(search=search, near=origin, mode=MODE_NEARBY, now=now)

    result = providers.fetch_nearby(latitude, longitude, radius, provider_chain)
    external = [shop for shop in _drop_migrated(result.shops, local) if matches_search(shop, search)]

    combined = filter_by_status([*local, *external], status_filter, now)[:FEED_LIMIT]
    return {
        "source": result.source,
        "shops": [shop_payload(shop, now, origin) for shop in combined],
    }
