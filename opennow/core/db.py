"""Database helpers for the shop and status log stores."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import extras, pool

from opennow.core.config import get_settings
from opennow.core.errors import InternalError, OpenNowError, ValidationError
from opennow.models import Shop, ShopStatus, StatusLogEntry

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None
_pool_lock = threading.Lock()

SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS postgis;

CREATE TABLE IF NOT EXISTS shops (
    id uuid PRIMARY KEY,
    external_id text,
    name text NOT NULL CHECK (name <> ''),
    category text NOT NULL,
    location text NOT NULL,
    status text NOT NULL DEFAULT 'OPEN' CHECK (status IN ('OPEN', 'CLOSED', 'UNCERTAIN')),
    last_status_update timestamptz NOT NULL DEFAULT NOW(),
    report_count integer NOT NULL DEFAULT 0 CHECK (report_count >= 0),
    open_time text,
    close_time text,
    coordinates geography(Point, 4326) NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS shops_external_id_key
    ON shops (external_id) WHERE external_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS shops_coordinates_idx ON shops USING GIST (coordinates);
CREATE INDEX IF NOT EXISTS shops_status_update_idx ON shops (status, last_status_update);

CREATE TABLE IF NOT EXISTS status_logs (
    id bigserial PRIMARY KEY,
    shop_id uuid NOT NULL REFERENCES shops (id),
    status text NOT NULL CHECK (status IN ('OPEN', 'CLOSED')),
    source text NOT NULL CHECK (source IN ('OWNER', 'COMMUNITY')),
    reported_at timestamptz NOT NULL DEFAULT NOW(),
    ip_address text
);

CREATE INDEX IF NOT EXISTS status_logs_shop_idx ON status_logs (shop_id, reported_at DESC);
"""

_SHOP_COLUMNS = """
    id,
    external_id,
    name,
    category,
    location,
    status,
    last_status_update,
    report_count,
    open_time,
    close_time,
    ST_X(coordinates::geometry) AS lng,
    ST_Y(coordinates::geometry) AS lat
"""


def init_pool(minconn: Optional[int] = None, maxconn: Optional[int] = None) -> pool.ThreadedConnectionPool:
    """Initialise and return the connection pool shared by request and sweep threads."""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is None:
            settings = get_settings()
            if not settings.database_url:
                raise RuntimeError("DATABASE_URL is required for database connections")
            _connection_pool = pool.ThreadedConnectionPool(
                minconn if minconn is not None else settings.db_pool_min,
                maxconn if maxconn is not None else settings.db_pool_max,
                dsn=settings.database_url,
                connect_timeout=10,
            )
            logger.info("Database connection pool initialised")
        return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


@contextmanager
def transaction():
    """Yield a dict cursor; commit when the block succeeds, roll back otherwise."""
    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def ensure_schema() -> None:
    with transaction() as cur:
        cur.execute(SCHEMA_SQL)
    logger.info("Database schema ensured")


def _shop_params(shop: Shop) -> Dict[str, Any]:
    return {
        "id": shop.id,
        "external_id": shop.external_id,
        "name": shop.name,
        "category": shop.category,
        "location": shop.location,
        "status": shop.status.value,
        "last_status_update": shop.last_status_update,
        "report_count": shop.report_count,
        "open_time": shop.open_time,
        "close_time": shop.close_time,
        "lng": shop.longitude,
        "lat": shop.latitude,
    }


def _to_shop(row: Optional[Dict[str, Any]]) -> Optional[Shop]:
    return Shop.from_row(row) if row else None


_INSERT_SHOP = f"""
INSERT INTO shops (
    id,
    external_id,
    name,
    category,
    location,
    status,
    last_status_update,
    report_count,
    open_time,
    close_time,
    coordinates
) VALUES (
    %(id)s,
    %(external_id)s,
    %(name)s,
    %(category)s,
    %(location)s,
    %(status)s,
    %(last_status_update)s,
    %(report_count)s,
    %(open_time)s,
    %(close_time)s,
    ST_SetSRID(ST_MakePoint(%(lng)s, %(lat)s), 4326)::geography
)
RETURNING {_SHOP_COLUMNS};
"""

# A concurrent migration of the same external id lands on the existing row.
_INSERT_MIGRATED_SHOP = _INSERT_SHOP.replace(
    "RETURNING",
    """ON CONFLICT (external_id) WHERE external_id IS NOT NULL DO UPDATE SET
    status = EXCLUDED.status,
    last_status_update = EXCLUDED.last_status_update,
    report_count = shops.report_count + 1
RETURNING""",
)

_APPLY_STATUS_BY_ID = f"""
UPDATE shops SET
    status = %(status)s,
    last_status_update = %(now)s,
    report_count = report_count + 1
WHERE id = %(key)s
RETURNING {_SHOP_COLUMNS};
"""

_APPLY_STATUS_BY_EXTERNAL_ID = _APPLY_STATUS_BY_ID.replace("WHERE id =", "WHERE external_id =")

_SELECT_BY_ID = f"SELECT {_SHOP_COLUMNS} FROM shops WHERE id = %(key)s;"
_SELECT_BY_EXTERNAL_ID = f"SELECT {_SHOP_COLUMNS} FROM shops WHERE external_id = %(key)s;"

_INSERT_STATUS_LOG = """
INSERT INTO status_logs (shop_id, status, source, reported_at, ip_address)
VALUES (%(shop_id)s, %(status)s, %(source)s, %(reported_at)s, %(ip_address)s);
"""

_EXPIRE_STATUSES = """
UPDATE shops SET status = 'UNCERTAIN'
WHERE status IN ('OPEN', 'CLOSED') AND last_status_update < %(cutoff)s;
"""


def insert_shop(cur, shop: Shop) -> Shop:
    cur.execute(_INSERT_SHOP, _shop_params(shop))
    return _to_shop(cur.fetchone())


def insert_migrated_shop(cur, shop: Shop) -> Shop:
    """Insert a shop promoted from a provider, or bump the row already holding its external id."""
    if not shop.external_id:
        raise ValueError("migrated shops require an external_id")
    cur.execute(_INSERT_MIGRATED_SHOP, _shop_params(shop))
    return _to_shop(cur.fetchone())


def fetch_shop_by_id(cur, shop_id: str) -> Optional[Shop]:
    cur.execute(_SELECT_BY_ID, {"key": shop_id})
    return _to_shop(cur.fetchone())


def fetch_shop_by_external_id(cur, external_id: str) -> Optional[Shop]:
    cur.execute(_SELECT_BY_EXTERNAL_ID, {"key": external_id})
    return _to_shop(cur.fetchone())


def apply_status_by_id(cur, shop_id: str, status: ShopStatus, now: datetime) -> Optional[Shop]:
    """Set status and bump report_count in one statement; None when no row matches."""
    cur.execute(_APPLY_STATUS_BY_ID, {"key": shop_id, "status": status.value, "now": now})
    return _to_shop(cur.fetchone())


def apply_status_by_external_id(cur, external_id: str, status: ShopStatus, now: datetime) -> Optional[Shop]:
    cur.execute(_APPLY_STATUS_BY_EXTERNAL_ID, {"key": external_id, "status": status.value, "now": now})
    return _to_shop(cur.fetchone())


def insert_status_log(cur, entry: StatusLogEntry) -> None:
    cur.execute(
        _INSERT_STATUS_LOG,
        {
            "shop_id": entry.shop_id,
            "status": entry.status.value,
            "source": entry.source.value,
            "reported_at": entry.reported_at,
            "ip_address": entry.ip_address,
        },
    )


def expire_statuses(cur, cutoff: datetime) -> int:
    """Demote OPEN/CLOSED shops last updated before ``cutoff``. Returns the row count."""
    cur.execute(_EXPIRE_STATUSES, {"cutoff": cutoff})
    return cur.rowcount


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def query_shops(
    cur,
    *,
    search: Optional[str] = None,
    near: Optional[Tuple[float, float]] = None,
    limit: int = 50,
) -> List[Shop]:
    """Select shops matching ``search``, nearest first when ``near`` is a (lat, lng) pair,
    otherwise most recently updated first."""
    clauses = []
    params: Dict[str, Any] = {"limit": limit}
    if search:
        clauses.append("(name ILIKE %(pattern)s OR category ILIKE %(pattern)s)")
        params["pattern"] = _like_pattern(search)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    if near is not None:
        params["lat"], params["lng"] = near
        order = "coordinates <-> ST_SetSRID(ST_MakePoint(%(lng)s, %(lat)s), 4326)::geography"
    else:
        order = "last_status_update DESC"

    cur.execute(f"SELECT {_SHOP_COLUMNS} FROM shops {where} ORDER BY {order} LIMIT %(limit)s;", params)
    return [Shop.from_row(row) for row in cur.fetchall()]


def fetch_external_ids(cur, external_ids: List[str]) -> List[str]:
    """Return the subset of ``external_ids`` already migrated into local shops."""
    if not external_ids:
        return []
    cur.execute(
        "SELECT external_id FROM shops WHERE external_id = ANY(%(ids)s);",
        {"ids": list(external_ids)},
    )
    return [row["external_id"] for row in cur.fetchall()]


def fetch_all_shops(cur) -> List[Shop]:
    cur.execute(f"SELECT {_SHOP_COLUMNS} FROM shops ORDER BY name;")
    return [Shop.from_row(row) for row in cur.fetchall()]


@contextmanager
def storage_errors(action: str):
    """Translate storage failures into the service error taxonomy.

    Constraint and bad-data errors become ValidationError; any other database
    or pool failure becomes InternalError, which callers may retry.
    """
    try:
        yield
    except OpenNowError:
        raise
    except (psycopg2.IntegrityError, psycopg2.DataError) as exc:
        logger.warning("Rejected while %s: %s", action, exc)
        raise ValidationError(str(exc).strip() or "invalid shop data") from exc
    except psycopg2.Error as exc:
        logger.exception("Storage failure while %s", action)
        raise InternalError(f"storage failure while {action}") from exc
    except RuntimeError as exc:
        logger.exception("Storage unavailable while %s", action)
        raise InternalError(f"storage unavailable while {action}") from exc
