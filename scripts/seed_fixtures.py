"""
Seed the built-in solar sites and visits.

Usage:
  python scripts/seed_fixtures.py [--technician USER_ID]

This script is idempotent: rows that already exist are skipped.
"""

import argparse
import asyncio
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

from solyield.config import settings
from solyield.db import Base, make_engine, make_session_factory
from solyield.fixtures import SITES, SCHEDULE
from solyield.logging import setup_logging
from solyield.models.models import RecordOrigin
from solyield.services.schedule_store import ScheduleStore


async def seed_fixtures(technician=None):
    """Insert fixture sites and visits, optionally assigning every visit to one technician."""
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    session_factory = make_session_factory(engine)

    store = ScheduleStore(session_factory)
    sites = store.sites

    created_sites = 0
    for site in SITES:
        if sites.get(site["id"]) is not None:
            continue
        await store.create_site(
            site["name"],
            latitude=site["latitude"],
            longitude=site["longitude"],
            capacity=site["capacity"],
            site_id=site["id"],
            origin=RecordOrigin.seeded,
        )
        created_sites += 1

    records = [dict(visit, assigned_user_id=technician) if technician else visit for visit in SCHEDULE]
    created_visits = await store.seed(records)

    print(f"Sites created: {created_sites} (skipped {len(SITES) - created_sites})")
    print(f"Visits created: {created_visits} (skipped {len(SCHEDULE) - created_visits})")
    return created_sites, created_visits


def main():
    parser = argparse.ArgumentParser(description="Seed built-in sites and visits")
    parser.add_argument("--technician", help="Assign every seeded visit to this user id")
    args = parser.parse_args()

    setup_logging(settings.log_level, settings.log_json)
    print("Seeding fixtures...")
    asyncio.run(seed_fixtures(args.technician))
    print("Done.")


if __name__ == "__main__":
    main()
