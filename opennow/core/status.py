"""Displayed status derivation and expiry of stale community reports.

A shop's stored ``status`` is what the community last reported. Once a report
is older than the staleness threshold the sweep demotes it to ``UNCERTAIN``,
and an uncertain shop with declared hours is displayed as open or closed
according to the local clock.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from opennow.core import db
from opennow.core.config import get_settings
from opennow.models import DisplayState, ShopStatus

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(hours=1)

_CLOCK_RE = re.compile(r"(\d{1,2}):(\d{2})")


@dataclass(frozen=True)
class Display:
    state: DisplayState
    label: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state in (DisplayState.OPEN, DisplayState.OPEN_NOW)

    def to_payload(self) -> dict:
        return {"state": self.state.value, "label": self.label, "isOpen": self.is_open}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_clock(value: Any) -> Optional[int]:
    """Convert "HH:MM" to minutes since midnight, or None when malformed."""
    if not isinstance(value, str):
        return None
    match = _CLOCK_RE.fullmatch(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def format_clock(value: Optional[str]) -> str:
    """Render "22:00" as "10:00 PM"; malformed values are returned untouched."""
    minutes = parse_clock(value)
    if minutes is None:
        return value or ""
    hour, minute = divmod(minutes, 60)
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def is_within_hours(open_minutes: int, close_minutes: int, current_minutes: int) -> bool:
    """Half-open window check ``[open, close)``, wrapping past midnight when close < open."""
    if close_minutes < open_minutes:
        return current_minutes >= open_minutes or current_minutes < close_minutes
    return open_minutes <= current_minutes < close_minutes


@lru_cache(maxsize=8)
def _zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown SHOP_TIMEZONE %r; falling back to UTC", name)
        return timezone.utc


def local_minutes(now: datetime, tz_name: Optional[str] = None) -> int:
    """Minutes since local midnight. Naive datetimes are taken as local already."""
    if now.tzinfo is not None:
        now = now.astimezone(_zone(tz_name or get_settings().shop_timezone))
    return now.hour * 60 + now.minute


def derive_display(shop: Any, now: Optional[datetime] = None, tz_name: Optional[str] = None) -> Display:
    """Work out what to show for a shop at ``now``.

    Explicit OPEN/CLOSED reports are shown as they are. An UNCERTAIN shop with
    a full, parsable pair of declared hours becomes OPEN_NOW or CLOSED_NOW;
    anything else stays UNCERTAIN without a label.
    """
    status = ShopStatus(shop.status)
    if status is ShopStatus.OPEN:
        return Display(DisplayState.OPEN)
    if status is ShopStatus.CLOSED:
        return Display(DisplayState.CLOSED)

    open_time = getattr(shop, "open_time", None)
    close_time = getattr(shop, "close_time", None)
    open_minutes = parse_clock(open_time)
    close_minutes = parse_clock(close_time)
    if open_minutes is None or close_minutes is None:
        return Display(DisplayState.UNCERTAIN)

    current = local_minutes(now or utcnow(), tz_name)
    if is_within_hours(open_minutes, close_minutes, current):
        return Display(DisplayState.OPEN_NOW, f"Open (Closes {format_clock(close_time)})")
    return Display(DisplayState.CLOSED_NOW, f"Closed (Opens {format_clock(open_time)})")


def is_open_now(shop: Any, now: Optional[datetime] = None, tz_name: Optional[str] = None) -> bool:
    return derive_display(shop, now, tz_name).is_open


def stale_cutoff(now: datetime, max_age: timedelta = STALE_AFTER) -> datetime:
    return now - max_age


def expire_stale_statuses(now: Optional[datetime] = None, max_age: Optional[timedelta] = None) -> int:
    """Run one expiry sweep and return how many shops were demoted to UNCERTAIN.

    ``last_status_update`` is left alone so only explicit reports move it.
    """
    now = now or utcnow()
    if max_age is None:
        max_age = timedelta(minutes=get_settings().stale_after_minutes)

    with db.storage_errors("expiring stale statuses"):
        with db.transaction() as cur:
            changed = db.expire_statuses(cur, stale_cutoff(now, max_age))

    if changed:
        logger.info("Auto-expired %d shops to UNCERTAIN status.", changed)
    return changed
