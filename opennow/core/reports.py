"""Shop creation and community status reports.

The id in a status report may be a local shop id, the provider id of a shop
that has already been migrated, or a provider id that has never been seen.
Resolution tries them in that order and, for the last case, promotes the
provider record into a local shop using the details sent with the report.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from opennow.core import db
from opennow.core.errors import NotFoundError, ValidationError
from opennow.core.status import parse_clock, utcnow
from opennow.models import (
    REPORTABLE_STATUSES,
    ReportSource,
    Shop,
    ShopDetails,
    ShopStatus,
    StatusLogEntry,
    parse_status,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_CATEGORY = "Unknown"
PLACEHOLDER_LOCATION = "Unknown Location"


def as_internal_id(value: Any) -> Optional[str]:
    """Return the canonical form of ``value`` if it is a local shop id (a UUID)."""
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        return None


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _as_float(value: Any, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be numeric") from None


def parse_coordinates(details: Dict[str, Any]) -> Tuple[float, float]:
    """Return (longitude, latitude) from a GeoJSON point or latitude/longitude keys."""
    coordinates = details.get("coordinates")
    if isinstance(coordinates, dict):
        if coordinates.get("type", "Point") != "Point":
            raise ValidationError("coordinates must be a GeoJSON Point")
        coordinates = coordinates.get("coordinates")

    if isinstance(coordinates, (list, tuple)):
        if len(coordinates) != 2:
            raise ValidationError("coordinates must be [longitude, latitude]")
        longitude = _as_float(coordinates[0], "longitude")
        latitude = _as_float(coordinates[1], "latitude")
    elif details.get("latitude") is not None and details.get("longitude") is not None:
        longitude = _as_float(details["longitude"], "longitude")
        latitude = _as_float(details["latitude"], "latitude")
    else:
        raise ValidationError("coordinates are required")

    if not -180.0 <= longitude <= 180.0:
        raise ValidationError("longitude must be between -180 and 180")
    if not -90.0 <= latitude <= 90.0:
        raise ValidationError("latitude must be between -90 and 90")
    return longitude, latitude


def _parse_hours(details: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    open_time = _clean_str(details.get("openTime"))
    close_time = _clean_str(details.get("closeTime"))
    if not open_time or not close_time:
        # A lone opening or closing time is not a usable window.
        return None, None
    for label, value in (("openTime", open_time), ("closeTime", close_time)):
        if parse_clock(value) is None:
            raise ValidationError(f"{label} must use HH:MM")
    return open_time, close_time


def validate_shop_details(details: Any, *, for_migration: bool = False) -> ShopDetails:
    """Check user supplied shop fields.

    Migrations come from provider data that may lack a category or address, so
    those fall back to placeholders; direct creation requires them.
    """
    if not isinstance(details, dict):
        raise ValidationError("shop details must be an object")

    name = _clean_str(details.get("name"))
    category = _clean_str(details.get("category"))
    location = _clean_str(details.get("location"))

    if not name:
        raise ValidationError("name is required")
    if for_migration:
        category = category or PLACEHOLDER_CATEGORY
        location = location or PLACEHOLDER_LOCATION
    else:
        missing = [label for label, value in (("category", category), ("location", location)) if not value]
        if missing:
            raise ValidationError(f"missing fields: {', '.join(missing)}")

    longitude, latitude = parse_coordinates(details)
    open_time, close_time = _parse_hours(details)

    return ShopDetails(
        name=name,
        category=category,
        location=location,
        longitude=longitude,
        latitude=latitude,
        open_time=open_time,
        close_time=close_time,
    )


def parse_source(value: Any) -> ReportSource:
    if value is None or value == "":
        return ReportSource.COMMUNITY
    if isinstance(value, ReportSource):
        return value
    try:
        return ReportSource(str(value).strip().upper())
    except ValueError:
        raise ValidationError("source must be OWNER or COMMUNITY") from None


def record_report(shop: Shop, status: ShopStatus, now: datetime) -> Shop:
    """Apply one report to an in-memory shop."""
    shop.status = status
    shop.last_status_update = now
    shop.report_count = (shop.report_count or 0) + 1
    return shop


def _new_shop(details: ShopDetails, *, status: ShopStatus, now: datetime, external_id: Optional[str] = None) -> Shop:
    return Shop(
        id=str(uuid.uuid4()),
        external_id=external_id,
        name=details.name,
        category=details.category,
        location=details.location,
        longitude=details.longitude,
        latitude=details.latitude,
        open_time=details.open_time,
        close_time=details.close_time,
        status=status,
        last_status_update=now,
        report_count=0,
    )


def _resolve_and_apply(
    cur,
    shop_id: str,
    status: ShopStatus,
    shop_details: Any,
    now: datetime,
) -> Shop:
    shop = None
    internal_id = as_internal_id(shop_id)
    if internal_id:
        shop = db.apply_status_by_id(cur, internal_id, status, now)
    if shop is None:
        shop = db.apply_status_by_external_id(cur, shop_id, status, now)
    if shop is not None:
        return shop

    if not shop_details:
        raise NotFoundError("Shop not found and no details provided for creation")

    details = validate_shop_details(shop_details, for_migration=True)
    logger.info("Migrating external shop %s to local DB", shop_id)
    candidate = _new_shop(details, status=status, now=now, external_id=shop_id)
    record_report(candidate, status, now)
    return db.insert_migrated_shop(cur, candidate)


def report_status(
    shop_id: Any,
    status: Any,
    shop_details: Optional[Dict[str, Any]] = None,
    *,
    source: Any = ReportSource.COMMUNITY,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Shop:
    """Record an OPEN/CLOSED report against a local or provider shop id.

    The shop update and its status log entry are committed together. On any
    failure nothing is written and the error is raised to the caller.
    """
    new_status = parse_status(status)
    if new_status not in REPORTABLE_STATUSES:
        raise ValidationError("status must be OPEN or CLOSED")
    report_source = parse_source(source)
    key = _clean_str(shop_id)
    if not key:
        raise ValidationError("shop id is required")
    now = now or utcnow()

    with db.storage_errors("recording status report"):
        with db.transaction() as cur:
            shop = _resolve_and_apply(cur, key, new_status, shop_details, now)
            db.insert_status_log(cur, StatusLogEntry(shop.id, new_status, report_source, now, ip_address))

    logger.debug("Shop %s reported %s by %s (reports=%d)", shop.id, new_status.value, report_source.value, shop.report_count)
    return shop


def create_shop(
    details: Any,
    *,
    source: Any = ReportSource.OWNER,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Shop:
    """Create a local shop. The creator's submission counts as its first report."""
    shop_details = validate_shop_details(details)
    raw_status = details.get("status")
    status = parse_status(raw_status) if raw_status else ShopStatus.OPEN
    if status is None:
        raise ValidationError("status must be OPEN, CLOSED or UNCERTAIN")
    report_source = parse_source(source)
    now = now or utcnow()

    shop = record_report(_new_shop(shop_details, status=status, now=now), status, now)

    with db.storage_errors("creating shop"):
        with db.transaction() as cur:
            saved = db.insert_shop(cur, shop)
            if saved.status in REPORTABLE_STATUSES:
                db.insert_status_log(cur, StatusLogEntry(saved.id, saved.status, report_source, now, ip_address))

    logger.info("Created shop %s (%s)", saved.id, saved.name)
    return saved


def get_shop(shop_id: Any) -> Shop:
    """Resolve a local id or a migrated provider id to a stored shop."""
    key = _clean_str(shop_id)
    if not key:
        raise ValidationError("shop id is required")

    with db.storage_errors("loading shop"):
        with db.transaction() as cur:
            shop = None
            internal_id = as_internal_id(key)
            if internal_id:
                shop = db.fetch_shop_by_id(cur, internal_id)
            if shop is None:
                shop = db.fetch_shop_by_external_id(cur, key)

    if shop is None:
        raise NotFoundError(f"Shop {key} not found")
    return shop
