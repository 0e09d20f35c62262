from datetime import datetime, timezone

import pytest

from opennow.models import (
    ExternalShop,
    ProviderResult,
    ReportSource,
    Shop,
    ShopStatus,
    StatusLogEntry,
    parse_status,
)


def test_parse_status():
    assert parse_status(" open ") is ShopStatus.OPEN
    assert parse_status(ShopStatus.CLOSED) is ShopStatus.CLOSED
    assert parse_status("maybe") is None
    assert parse_status(1) is None


def test_shop_from_row_and_payload():
    updated = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)
    row = {
        "id": "00000000-0000-4000-8000-000000000001",
        "external_id": "osm_1",
        "name": "Kiosk",
        "category": "Other",
        "location": "Main St",
        "status": "CLOSED",
        "last_status_update": updated,
        "report_count": 3,
        "open_time": "09:00",
        "close_time": "21:00",
        "lng": 80.05,
        "lat": 15.5,
    }

    shop = Shop.from_row(row)
    payload = shop.to_payload()

    assert shop.status is ShopStatus.CLOSED
    assert (shop.external_id, shop.open_time, shop.close_time) == ("osm_1", "09:00", "21:00")
    assert payload["coordinates"] == {"type": "Point", "coordinates": [80.05, 15.5]}
    assert payload["_id"] == payload["id"]
    assert payload["externalId"] == "osm_1"
    assert payload["lastStatusUpdate"] == updated.isoformat()
    assert payload["reportCount"] == 3


def test_status_log_entry_rejects_uncertain():
    StatusLogEntry("id", ShopStatus.OPEN, ReportSource.OWNER)
    with pytest.raises(ValueError):
        StatusLogEntry("id", ShopStatus.UNCERTAIN, ReportSource.COMMUNITY)


@pytest.mark.parametrize(
    "overrides",
    [{"id": ""}, {"name": ""}, {"status": "OPEN"}, {"latitude": 91.0}, {"longitude": -181.0}],
)
def test_external_shop_validation(overrides):
    fields = {
        "id": "osm_1",
        "name": "Kiosk",
        "category": "Other",
        "location": "OpenStreetMap Data",
        "longitude": 80.05,
        "latitude": 15.5,
        "status": ShopStatus.UNCERTAIN,
        "static_hours": "Not Specified",
        "source": "OSM",
    }
    fields.update(overrides)
    with pytest.raises(ValueError):
        ExternalShop(**fields)


def test_provider_result_ok():
    assert ProviderResult("OSM").ok
    assert not ProviderResult("Google", error="quota").ok
