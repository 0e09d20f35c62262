from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import psycopg2
import pytest

from opennow.core import reports
from opennow.core.errors import InternalError, NotFoundError, ValidationError
from opennow.models import ReportSource, ShopStatus

from conftest import NOW

DETAILS = {
    "name": "Sai Medicals",
    "category": "Pharmacy",
    "location": "Trunk Road",
    "coordinates": {"type": "Point", "coordinates": [80.0499, 15.5057]},
    "openTime": "08:00",
    "closeTime": "23:00",
}


def test_as_internal_id():
    assert reports.as_internal_id("7D6F3C1E-0D4C-4F6E-9A43-2B0C9D1E5F00") == "7d6f3c1e-0d4c-4f6e-9a43-2b0c9d1e5f00"
    assert reports.as_internal_id("google_ChIJ123") is None
    assert reports.as_internal_id("") is None
    assert reports.as_internal_id(None) is None


def test_report_on_local_shop_updates_status(store):
    shop = store.add(status=ShopStatus.UNCERTAIN, report_count=1, last_status_update=NOW - timedelta(hours=3))

    updated = reports.report_status(shop.id, "closed", now=NOW, ip_address="10.0.0.7")

    assert updated.id == shop.id
    assert updated.status is ShopStatus.CLOSED
    assert updated.last_status_update == NOW
    assert updated.report_count == 2
    entry = store.logs[-1]
    assert (entry.shop_id, entry.status, entry.source) == (shop.id, ShopStatus.CLOSED, ReportSource.COMMUNITY)
    assert entry.ip_address == "10.0.0.7"


def test_unknown_external_id_with_details_is_migrated_once(store):
    created = reports.report_status("google_ChIJ123", "OPEN", DETAILS, now=NOW)

    assert len(store.shops) == 1
    assert created.external_id == "google_ChIJ123"
    assert created.report_count == 1
    assert created.status is ShopStatus.OPEN
    assert reports.as_internal_id(created.id) == created.id
    assert (created.longitude, created.latitude) == (80.0499, 15.5057)
    assert (created.open_time, created.close_time) == ("08:00", "23:00")

    again = reports.report_status("google_ChIJ123", "CLOSED", DETAILS, now=NOW + timedelta(minutes=5))

    assert len(store.shops) == 1
    assert again.id == created.id
    assert again.report_count == 2
    assert again.status is ShopStatus.CLOSED
    assert len(store.logs) == 2


def test_migrated_shop_resolves_by_internal_id_too(store):
    created = reports.report_status("osm_991", "OPEN", DETAILS, now=NOW)
    updated = reports.report_status(created.id, "CLOSED", now=NOW)
    assert updated.id == created.id
    assert updated.report_count == 2


def test_uuid_shaped_external_id_falls_back_to_external_lookup(store):
    shop = store.add(id="11111111-1111-4111-8111-111111111111", external_id="22222222-2222-4222-8222-222222222222")

    updated = reports.report_status("22222222-2222-4222-8222-222222222222", "CLOSED", now=NOW)

    assert updated.id == shop.id
    assert len(store.shops) == 1


def test_unknown_id_without_details_is_not_found(store):
    with pytest.raises(NotFoundError):
        reports.report_status("google_missing", "OPEN", now=NOW)

    assert store.shops == {}
    assert store.logs == []


def test_migration_uses_placeholders(store):
    shop = reports.report_status("osm_7", "OPEN", {"name": "Kiosk", "latitude": 15.5, "longitude": 80.0}, now=NOW)

    assert shop.category == reports.PLACEHOLDER_CATEGORY
    assert shop.location == reports.PLACEHOLDER_LOCATION
    assert shop.open_time is None and shop.close_time is None


def test_migration_without_name_is_rejected(store):
    with pytest.raises(ValidationError):
        reports.report_status("osm_7", "OPEN", {"coordinates": [80.0, 15.5]}, now=NOW)
    assert store.shops == {}


@pytest.mark.parametrize("bad_status", ["UNCERTAIN", "maybe", None, ""])
def test_only_open_or_closed_can_be_reported(store, bad_status):
    shop = store.add()
    with pytest.raises(ValidationError):
        reports.report_status(shop.id, bad_status, now=NOW)
    assert store.shops[shop.id].report_count == 1


def test_report_source_is_validated(store):
    shop = store.add()
    reports.report_status(shop.id, "OPEN", source="owner", now=NOW)
    assert store.logs[-1].source is ReportSource.OWNER

    with pytest.raises(ValidationError):
        reports.report_status(shop.id, "OPEN", source="robot", now=NOW)


def test_storage_failure_leaves_shop_unchanged(store):
    shop = store.add(status=ShopStatus.OPEN, report_count=4)
    store.fail_on = "log"

    with pytest.raises(InternalError):
        reports.report_status(shop.id, "CLOSED", now=NOW + timedelta(minutes=1))

    assert store.shops[shop.id].status is ShopStatus.OPEN
    assert store.shops[shop.id].report_count == 4
    assert store.shops[shop.id].last_status_update == NOW
    assert store.logs == []


def test_constraint_failure_on_migration_is_a_validation_error(store):
    store.fail_on = "insert"
    store.fail_with = psycopg2.IntegrityError

    with pytest.raises(ValidationError):
        reports.report_status("osm_7", "OPEN", DETAILS, now=NOW)
    assert store.shops == {}


def test_concurrent_reports_each_count_once(store):
    shop = store.add(report_count=5)

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda i: reports.report_status(shop.id, "OPEN" if i % 2 else "CLOSED"), range(40)))

    assert store.shops[shop.id].report_count == 45
    assert len(store.logs) == 40


def test_concurrent_first_reports_do_not_duplicate_migration(store):
    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda _: reports.report_status("google_race", "OPEN", DETAILS), range(12)))

    assert len(store.shops) == 1
    assert store.by_external_id("google_race").report_count == 12


def test_create_shop_defaults(store):
    shop = reports.create_shop(
        {
            "name": "Daily Needs",
            "category": "General Store",
            "location": "Market Road",
            "coordinates": {"type": "Point", "coordinates": [80.04, 15.50]},
        },
        ip_address="10.0.0.1",
        now=NOW,
    )

    assert shop.status is ShopStatus.OPEN
    assert shop.report_count == 1
    assert shop.external_id is None
    assert shop.last_status_update == NOW
    assert store.logs[-1].source is ReportSource.OWNER


def test_create_shop_accepts_uncertain_without_log(store):
    details = dict(DETAILS, status="UNCERTAIN")
    shop = reports.create_shop(details, now=NOW)
    assert shop.status is ShopStatus.UNCERTAIN
    assert store.logs == []


def test_create_shop_drops_partial_hours(store):
    details = dict(DETAILS)
    details.pop("closeTime")
    shop = reports.create_shop(details, now=NOW)
    assert shop.open_time is None and shop.close_time is None


@pytest.mark.parametrize(
    "override",
    [
        {"name": ""},
        {"category": None},
        {"location": "  "},
        {"coordinates": None},
        {"coordinates": [200, 10]},
        {"coordinates": {"type": "Polygon", "coordinates": [1, 2]}},
        {"coordinates": ["east", "north"]},
        {"openTime": "8 am"},
        {"status": "SOMETIMES"},
    ],
)
def test_create_shop_validation(store, override):
    with pytest.raises(ValidationError):
        reports.create_shop(dict(DETAILS, **override), now=NOW)
    assert store.shops == {}


def test_create_shop_rejects_non_object(store):
    with pytest.raises(ValidationError):
        reports.create_shop(["not", "a", "dict"])


def test_parse_coordinates_keeps_longitude_first():
    assert reports.parse_coordinates({"coordinates": [80.1, 15.2]}) == (80.1, 15.2)
    assert reports.parse_coordinates({"latitude": "15.2", "longitude": "80.1"}) == (80.1, 15.2)


def test_get_shop_by_internal_and_external_id(store):
    shop = store.add(external_id="osm_55")

    assert reports.get_shop(shop.id).id == shop.id
    assert reports.get_shop("osm_55").id == shop.id
    with pytest.raises(NotFoundError):
        reports.get_shop("osm_56")
