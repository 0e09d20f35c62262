"""Core data models shared by the shop status service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ShopStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    UNCERTAIN = "UNCERTAIN"


class ReportSource(str, Enum):
    OWNER = "OWNER"
    COMMUNITY = "COMMUNITY"


class DisplayState(str, Enum):
    """What a client shows for a shop once declared hours are applied."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"
    UNCERTAIN = "UNCERTAIN"
    OPEN_NOW = "OPEN_NOW"
    CLOSED_NOW = "CLOSED_NOW"


REPORTABLE_STATUSES = frozenset({ShopStatus.OPEN, ShopStatus.CLOSED})


def parse_status(value: Any) -> Optional[ShopStatus]:
    """Return the matching ShopStatus for a loosely typed value, or None."""
    if isinstance(value, ShopStatus):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ShopStatus(value.strip().upper())
    except ValueError:
        return None


def geojson_point(longitude: float, latitude: float) -> Dict[str, Any]:
    # GeoJSON ordering is [longitude, latitude].
    return {"type": "Point", "coordinates": [longitude, latitude]}


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class Shop:
    """A persisted shop, either created locally or migrated from a provider."""

    id: str
    name: str
    category: str
    location: str
    longitude: float
    latitude: float
    status: ShopStatus = ShopStatus.OPEN
    last_status_update: Optional[datetime] = None
    report_count: int = 0
    external_id: Optional[str] = None
    open_time: Optional[str] = None
    close_time: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Shop":
        """Build a Shop from a database row selected with the shop column list."""
        return cls(
            id=str(row["id"]),
            external_id=row.get("external_id"),
            name=row["name"],
            category=row["category"],
            location=row["location"],
            status=ShopStatus(row["status"]),
            last_status_update=row.get("last_status_update"),
            report_count=int(row.get("report_count") or 0),
            open_time=row.get("open_time"),
            close_time=row.get("close_time"),
            longitude=float(row["lng"]),
            latitude=float(row["lat"]),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "_id": self.id,
            "externalId": self.external_id,
            "name": self.name,
            "category": self.category,
            "location": self.location,
            "status": self.status.value,
            "lastStatusUpdate": _isoformat(self.last_status_update),
            "reportCount": self.report_count,
            "openTime": self.open_time,
            "closeTime": self.close_time,
            "coordinates": geojson_point(self.longitude, self.latitude),
            "source": "COMMUNITY",
        }


@dataclass(slots=True)
class StatusLogEntry:
    """Append-only record of one explicit OPEN/CLOSED report."""

    shop_id: str
    status: ShopStatus
    source: ReportSource
    reported_at: Optional[datetime] = None
    ip_address: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.status not in REPORTABLE_STATUSES:
            raise ValueError(f"status log only records OPEN/CLOSED, got {self.status}")


@dataclass(slots=True)
class ExternalShop:
    """Normalized, non-persisted projection of a provider place."""

    id: str
    name: str
    category: str
    location: str
    longitude: float
    latitude: float
    status: ShopStatus
    static_hours: str
    source: str

    def __post_init__(self) -> None:
        if not self.id or not self.name:
            raise ValueError("external shops need an id and a name")
        if not isinstance(self.status, ShopStatus):
            raise ValueError(f"unknown status {self.status!r}")
        if not -180.0 <= float(self.longitude) <= 180.0 or not -90.0 <= float(self.latitude) <= 90.0:
            raise ValueError(f"coordinates out of range: {self.longitude}, {self.latitude}")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "_id": self.id,
            "name": self.name,
            "category": self.category,
            "location": self.location,
            "coordinates": geojson_point(self.longitude, self.latitude),
            "status": self.status.value,
            "staticHours": self.static_hours,
            "source": self.source,
        }


@dataclass(slots=True)
class ShopDetails:
    """Validated user-supplied fields for creating or migrating a shop."""

    name: str
    category: str
    location: str
    longitude: float
    latitude: float
    open_time: Optional[str] = None
    close_time: Optional[str] = None


@dataclass(slots=True)
class ProviderResult:
    """Outcome of one attempt in the external provider fallback chain."""

    source: str
    shops: List[ExternalShop] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
