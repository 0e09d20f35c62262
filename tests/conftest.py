import dataclasses
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import psycopg2
import pytest

# Ensure `opennow` is importable when running pytest from the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from opennow.core import config, db  # noqa: E402
from opennow.core.query import distance_km, matches_search  # noqa: E402
from opennow.models import REPORTABLE_STATUSES, Shop, ShopStatus  # noqa: E402

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


class FakeStore:
    """In-memory stand-in for the psycopg2 store functions.

    Every mutation happens under one lock, like a single UPDATE statement, and is
    undone when the surrounding transaction raises.
    """

    def __init__(self):
        self.shops = {}
        self.logs = []
        self.lock = threading.RLock()
        self.fail_on = None
        self.fail_with = psycopg2.OperationalError
        self._local = threading.local()

    # -- helpers -----------------------------------------------------------------
    def add(self, **overrides):
        fields = {
            "id": f"00000000-0000-4000-8000-{len(self.shops):012d}",
            "name": "Corner Store",
            "category": "General Store",
            "location": "Main St",
            "longitude": 80.05,
            "latitude": 15.50,
            "status": ShopStatus.OPEN,
            "last_status_update": NOW,
            "report_count": 1,
        }
        fields.update(overrides)
        shop = Shop(**fields)
        self.shops[shop.id] = shop
        return shop

    def by_external_id(self, external_id):
        for shop in self.shops.values():
            if shop.external_id == external_id:
                return shop
        return None

    def _maybe_fail(self, operation):
        if self.fail_on == operation:
            raise self.fail_with(f"{operation} failed")

    def _remember(self, shop_id):
        previous = self.shops.get(shop_id)
        snapshot = dataclasses.replace(previous) if previous else None

        def undo():
            if snapshot is None:
                self.shops.pop(shop_id, None)
            else:
                self.shops[shop_id] = snapshot

        self._local.undo.append(undo)

    def _bump(self, shop, status, now):
        self._remember(shop.id)
        shop.status = status
        shop.last_status_update = now
        shop.report_count += 1
        return dataclasses.replace(shop)

    # -- store api ---------------------------------------------------------------
    @contextmanager
    def transaction(self):
        self._local.undo = []
        try:
            yield self
        except Exception:
            with self.lock:
                for undo in reversed(self._local.undo):
                    undo()
            raise

    def apply_status_by_id(self, cur, shop_id, status, now):
        self._maybe_fail("apply")
        with self.lock:
            shop = self.shops.get(shop_id)
            return self._bump(shop, status, now) if shop else None

    def apply_status_by_external_id(self, cur, external_id, status, now):
        self._maybe_fail("apply")
        with self.lock:
            shop = self.by_external_id(external_id)
            return self._bump(shop, status, now) if shop else None

    def insert_shop(self, cur, shop):
        self._maybe_fail("insert")
        with self.lock:
            self._remember(shop.id)
            self.shops[shop.id] = dataclasses.replace(shop)
            return dataclasses.replace(shop)

    def insert_migrated_shop(self, cur, shop):
        self._maybe_fail("insert")
        with self.lock:
            existing = self.by_external_id(shop.external_id)
            if existing is not None:
                return self._bump(existing, shop.status, shop.last_status_update)
            self._remember(shop.id)
            self.shops[shop.id] = dataclasses.replace(shop)
            return dataclasses.replace(shop)

    def fetch_shop_by_id(self, cur, shop_id):
        shop = self.shops.get(shop_id)
        return dataclasses.replace(shop) if shop else None

    def fetch_shop_by_external_id(self, cur, external_id):
        shop = self.by_external_id(external_id)
        return dataclasses.replace(shop) if shop else None

    def insert_status_log(self, cur, entry):
        self._maybe_fail("log")
        with self.lock:
            self.logs.append(entry)
            self._local.undo.append(lambda: self.logs.remove(entry))

    def expire_statuses(self, cur, cutoff):
        self._maybe_fail("expire")
        changed = 0
        with self.lock:
            for shop in self.shops.values():
                if shop.status in REPORTABLE_STATUSES and shop.last_status_update < cutoff:
                    shop.status = ShopStatus.UNCERTAIN
                    changed += 1
        return changed

    def query_shops(self, cur, *, search=None, near=None, limit=50):
        self._maybe_fail("query")
        shops = [dataclasses.replace(s) for s in self.shops.values() if matches_search(s, search)]
        if near is not None:
            shops.sort(key=lambda s: distance_km(near[0], near[1], s.latitude, s.longitude))
        else:
            shops.sort(key=lambda s: s.last_status_update, reverse=True)
        return shops[:limit]

    def fetch_external_ids(self, cur, external_ids):
        return [s.external_id for s in self.shops.values() if s.external_id in set(external_ids)]

    def fetch_all_shops(self, cur):
        return sorted(self.shops.values(), key=lambda s: s.name)

    def install(self, monkeypatch):
        for name in (
            "transaction",
            "apply_status_by_id",
            "apply_status_by_external_id",
            "insert_shop",
            "insert_migrated_shop",
            "fetch_shop_by_id",
            "fetch_shop_by_external_id",
            "insert_status_log",
            "expire_statuses",
            "query_shops",
            "fetch_external_ids",
            "fetch_all_shops",
        ):
            monkeypatch.setattr(db, name, getattr(self, name))
        return self


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch):
    monkeypatch.setenv("SHOP_TIMEZONE", "UTC")
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


@pytest.fixture
def store(monkeypatch):
    return FakeStore().install(monkeypatch)
