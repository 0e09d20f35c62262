"""List every stored shop with its coordinates, for a quick look at the database."""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from opennow.core import db  # noqa: E402

logger = logging.getLogger("check_db")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    try:
        with db.transaction() as cur:
            shops = db.fetch_all_shops(cur)
    except Exception as exc:  # noqa: BLE001
        logger.error("Database check failed: %s", exc)
        return 1

    print(f"Found {len(shops)} shops.")
    for shop in shops:
        print(f"- {shop.name}: [{shop.longitude},{shop.latitude}] ({shop.location})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
