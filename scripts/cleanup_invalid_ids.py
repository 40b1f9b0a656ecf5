"""Delete stored identifiers that are not real profiles (reserved paths, numerics, too short)."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))

from collabstr_scraper.config import create_store_engine
from collabstr_scraper.crawl.identifiers import is_valid_identifier
from collabstr_scraper.data.profile_store import ProfileStore, get_profile_store
from collabstr_scraper.logging_utils import setup_crawl_logging

LOGGER = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove invalid profile identifiers from the database")
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="SQLite database path (default: PROFILE_DB_PATH or data/collabstr_profiles.db)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List invalid identifiers without deleting them",
    )
    return parser.parse_args()


def find_invalid_identifiers(store: ProfileStore) -> list[str]:
    return [identifier for identifier in store.all_identifiers() if not is_valid_identifier(identifier)]


def cleanup(store: ProfileStore, *, dry_run: bool = False) -> int:
    invalid = find_invalid_identifiers(store)
    if not invalid:
        LOGGER.info("No invalid profile identifiers found")
        return 0

    LOGGER.warning("Found %s invalid profile identifiers", len(invalid))
    for identifier in invalid:
        LOGGER.info('  - "%s"', identifier)

    if dry_run:
        LOGGER.info("Dry run; nothing deleted")
        return 0

    deleted = store.purge_identifiers(invalid)
    LOGGER.info("Deleted %s invalid profiles", deleted)
    return deleted


def main() -> None:
    args = parse_args()
    setup_crawl_logging()
    store = get_profile_store(create_store_engine(args.db_path))
    cleanup(store, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
