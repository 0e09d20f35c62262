"""HTTP entrypoint for shop listings, creation and community status reports."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from opennow.core import providers, query, reports, status
from opennow.core.config import get_settings
from opennow.core.errors import OpenNowError, ValidationError
from opennow.jobs.expire_status import StatusExpiryTask

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)
_expiry_task: Optional[StatusExpiryTask] = None


@app.errorhandler(OpenNowError)
def handle_service_error(exc: OpenNowError) -> Any:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.path, exc)
    return jsonify({"error": str(exc)}), exc.http_status


def _point_from_args(required: bool = False):
    point = query.parse_point(request.args.get("lat"), request.args.get("lng"))
    if required and point is None:
        raise ValidationError("Latitude and Longitude are required")
    return point


def _radius_from_args() -> Optional[float]:
    radius_raw = request.args.get("radius")
    if radius_raw in (None, ""):
        return None
    try:
        radius = float(radius_raw)
    except (TypeError, ValueError):
        raise ValidationError("radius must be numeric") from None
    if radius <= 0:
        raise ValidationError("radius must be positive")
    return radius


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "OpenNow API Running", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; does not touch the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "port_config": settings.api_port,
                "status_expiry": _expiry_task is not None and _expiry_task.running,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.get("/api/shops")
def list_shops() -> Any:
    """
    List local shops.
    Query params: search, lat, lng, all=true, mode (nearby|all|recent), status (ALL|OPEN|CLOSED)
    """
    mode = query.MODE_ALL if request.args.get("all") == "true" else request.args.get("mode") or None
    shops = query.list_shops(
        search=request.args.get("search"),
        near=_point_from_args(),
        mode=mode,
        status_filter=request.args.get("status", "ALL"),
    )
    now = status.utcnow()
    return jsonify({"data": [query.shop_payload(shop, now) for shop in shops]}), 200


@app.post("/api/shops")
def create_shop() -> Any:
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    shop = reports.create_shop(payload, source=payload.get("source") or "OWNER", ip_address=request.remote_addr)
    return jsonify({"data": query.shop_payload(shop)}), 201


@app.get("/api/shops/<shop_id>")
def get_shop(shop_id: str) -> Any:
    shop = reports.get_shop(shop_id)
    return jsonify({"data": query.shop_payload(shop)}), 200


@app.post("/api/shops/<shop_id>/status")
def report_status(shop_id: str) -> Any:
    """
    Report a shop as OPEN or CLOSED.
    JSON fields: status (required), shopDetails (needed the first time a provider place is reported),
    source (OWNER|COMMUNITY, default COMMUNITY)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    shop = reports.report_status(
        shop_id,
        payload.get("status"),
        payload.get("shopDetails"),
        source=payload.get("source"),
        ip_address=request.remote_addr,
    )
    return jsonify({"data": query.shop_payload(shop)}), 200


@app.get("/api/external/nearby")
@app.get("/api/external/google")
def external_nearby() -> Any:
    """Provider places around lat/lng, falling back Google -> SerpAPI -> OSM -> demo data."""
    latitude, longitude = _point_from_args(required=True)
    result = providers.fetch_nearby(latitude, longitude, _radius_from_args())
    now = status.utcnow()
    return (
        jsonify(
            {
                "source": result.source,
                "data": [query.shop_payload(shop, now) for shop in result.shops],
            }
        ),
        200,
    )


@app.get("/api/feed")
def nearby_feed() -> Any:
    latitude, longitude = _point_from_args(required=True)
    feed = query.nearby_feed(
        latitude,
        longitude,
        radius=_radius_from_args(),
        search=request.args.get("search"),
        status_filter=request.args.get("status", "ALL"),
    )
    return jsonify({"source": feed["source"], "data": feed["shops"]}), 200


@app.post("/api/admin/expire")
def expire_now() -> Any:
    """Run one status expiry sweep on demand."""
    changed = status.expire_stale_statuses()
    return jsonify({"data": {"modified": changed}}), 200


# ---------- Internals ----------


def start_status_expiry() -> Optional[StatusExpiryTask]:
    global _expiry_task
    settings = get_settings()
    if not settings.enable_status_expiry:
        logger.info("Status expiry disabled by ENABLE_STATUS_EXPIRY")
        return None
    if _expiry_task is None:
        _expiry_task = StatusExpiryTask()
    _expiry_task.start()
    return _expiry_task


def main() -> None:
    port = get_settings().api_port
    start_status_expiry()
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
