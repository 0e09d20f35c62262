"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_OVERPASS_URL = "https://overpass-api.de/api/interpreter"


@dataclass(frozen=True)
class Settings:
    database_url: str
    google_maps_api_key: str = ""
    serpapi_api_key: str = ""
    overpass_url: str = DEFAULT_OVERPASS_URL
    api_port: int = 5000
    expiry_interval_seconds: int = 60
    stale_after_minutes: int = 60
    default_radius_meters: int = 2000
    shop_timezone: str = "UTC"
    enable_status_expiry: bool = True
    db_pool_min: int = 1
    db_pool_max: int = 20


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    google_maps_api_key = os.getenv("GOOGLE_MAPS_API_KEY", "")
    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    overpass_url = os.getenv("OVERPASS_URL") or DEFAULT_OVERPASS_URL
    api_port = int(os.getenv("PORT", "5000"))
    expiry_interval_seconds = int(os.getenv("STATUS_EXPIRY_INTERVAL_SECONDS", "60"))
    stale_after_minutes = int(os.getenv("STATUS_STALE_AFTER_MINUTES", "60"))
    default_radius_meters = int(os.getenv("DEFAULT_SEARCH_RADIUS_METERS", "2000"))
    shop_timezone = (os.getenv("SHOP_TIMEZONE") or "UTC").strip()
    enable_status_expiry = os.getenv("ENABLE_STATUS_EXPIRY", "true").lower() in {"1", "true", "yes"}
    db_pool_min = int(os.getenv("DB_POOL_MIN", "1"))
    db_pool_max = int(os.getenv("DB_POOL_MAX", "20"))

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY is not configured; Google Places lookups will be skipped.")

    return Settings(
        database_url=database_url,
        google_maps_api_key=google_maps_api_key,
        serpapi_api_key=serpapi_api_key,
        overpass_url=overpass_url,
        api_port=api_port,
        expiry_interval_seconds=expiry_interval_seconds,
        stale_after_minutes=stale_after_minutes,
        default_radius_meters=default_radius_meters,
        shop_timezone=shop_timezone,
        enable_status_expiry=enable_status_expiry,
        db_pool_min=db_pool_min,
        db_pool_max=db_pool_max,
    )
