#!/usr/bin/env python3
"""Join demo players to every court, one claim at a time, in claim order.

Capacity-limited courts fill their slots first and waitlist the rest;
unbounded courts record everyone as going. Existing claims are skipped,
so the script can be re-run safely.

    python scripts/seed_demo_courts.py --limit 20
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from courtslots.repository.data_repository import DataRepository
from courtslots.services.allocation_service import CourtAllocationService, DuplicateClaimError
from courtslots.utils.config import get_settings
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database", type=Path, default=None, help="SQLite file to seed")
    parser.add_argument("--limit", type=int, default=20, help="number of players to join")
    return parser.parse_args()


def seed_courts(repository: DataRepository, service: CourtAllocationService, limit: int) -> dict[str, int]:
    """Join the first ``limit`` non-administrator users to every court."""
    with repository.unit_of_work(write=False) as store:
        courts = store.list_courts()
        players = store.list_users()[:limit]

    counts = {"created": 0, "skipped": 0}
    for court in courts:
        for player in players:
            try:
                booking = service.join(court.court_id, player.user_id)
            except DuplicateClaimError:
                counts["skipped"] += 1
                continue
            counts["created"] += 1
            logger.info(
                "Seeded claim | court=%s | user=%s | state=%s | slot=%s",
                court.name,
                player.display_name,
                booking.admission_state.value,
                booking.slot,
            )
    return counts


def main() -> int:
    args = _parse_args()
    settings = get_settings()
    if args.database is not None:
        settings = replace(settings, database_path=args.database)

    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_catalog()
    service = CourtAllocationService(repository=repository, settings=settings)

    counts = seed_courts(repository, service, args.limit)
    print(f"Created {counts['created']} claims, skipped {counts['skipped']} existing")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
