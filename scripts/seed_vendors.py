"""Seed the two default GPU vendors. Existing vendors are left untouched."""

import argparse
import logging
from decimal import Decimal

from gpu_agent.config import settings
from gpu_agent.database import Database
from gpu_agent.models.vendor import Vendor

logger = logging.getLogger(__name__)

DEFAULT_VENDORS = [
    {
        "id": "gpu_vendor_1",
        "name": "FastGPU",
        "base_price_per_hour": Decimal("1.4"),
        "reliability_score": 0.9,
        "supported_gpu_types": ["A10", "A100"],
    },
    {
        "id": "gpu_vendor_2",
        "name": "ReliableGPU",
        "base_price_per_hour": Decimal("1.8"),
        "reliability_score": 0.95,
        "supported_gpu_types": ["A10", "A100"],
    },
]


def seed_vendors(database: Database, endpoint: str) -> int:
    """Insert missing default vendors. Returns how many were created."""
    db = database.session()
    created = 0
    try:
        for fields in DEFAULT_VENDORS:
            if db.get(Vendor, fields["id"]) is not None:
                logger.info(f"Vendor {fields['id']} already exists")
                continue
            db.add(Vendor(endpoint=endpoint, **fields))
            created += 1
        db.commit()
    finally:
        db.close()
    return created


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--endpoint", default="http://localhost:4001", help="Vendor mock base URL")
    args = parser.parse_args()

    database = Database(settings.DATABASE_URL, connect_timeout=settings.DB_CONNECT_TIMEOUT_SECONDS)
    try:
        created = seed_vendors(database, args.endpoint)
    finally:
        database.dispose()
    logger.info(f"Seeded {created} vendor(s)")


if __name__ == "__main__":
    main()
