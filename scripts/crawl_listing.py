"""CLI entrypoint for the listing crawl: reserve every profile identifier in a search."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))

from collabstr_scraper.config import create_store_engine, get_api_settings, get_crawl_settings
from collabstr_scraper.crawl.checkpoint import CheckpointStore
from collabstr_scraper.crawl.list_crawler import ListCrawler
from collabstr_scraper.crawl.remote_store import ProfileApiClient
from collabstr_scraper.crawl.selenium_automation import SeleniumAutomation, SeleniumConfig
from collabstr_scraper.crawl.session import CrawlSessionTracker
from collabstr_scraper.data.profile_store import get_profile_store
from collabstr_scraper.errors import CoordinationError, ListCrawlError
from collabstr_scraper.logging_utils import setup_crawl_logging

LOGGER = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl Collabstr listing pages and store profile identifiers")
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Listing URL to start from (e.g. https://collabstr.com/influencers?p=instagram&pg=1)",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue from the last stored listing page when a checkpoint exists",
    )
    parser.add_argument(
        "--checkpoint",
        type=Path,
        default=None,
        help="Checkpoint file (default: CHECKPOINT_PATH or data/list_checkpoint.json)",
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Store through the REST API (COLLABSTR_API_URL) instead of the local database",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="SQLite database path when not using --api",
    )
    parser.add_argument(
        "--show-browser",
        action="store_true",
        help="Run Chrome with a visible window",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only write to logs/crawl.log",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the JSON summary here instead of stdout",
    )
    return parser.parse_args()


def _build_store(args: argparse.Namespace):
    if args.api:
        base_url = get_api_settings().base_url
        LOGGER.info("Storing through API at %s", base_url)
        return ProfileApiClient(base_url)
    return get_profile_store(create_store_engine(args.db_path))


async def _run(args: argparse.Namespace, start_url: str) -> dict:
    settings = get_crawl_settings()
    store = _build_store(args)
    automation = SeleniumAutomation(
        SeleniumConfig(headless=not args.show_browser),
        site_base_url=settings.site_base_url,
    )
    checkpoints = CheckpointStore(args.checkpoint or settings.checkpoint_path)
    crawler = ListCrawler(store, automation, checkpoints)
    tracker = CrawlSessionTracker(store)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, crawler.request_stop)
    except NotImplementedError:
        LOGGER.debug("Signal handlers unavailable; Ctrl+C will interrupt immediately")

    try:
        report = await tracker.run_list_crawl(crawler, start_url, resume=args.resume)
        summary = {"status": report.state.value, **asdict(report)}
        summary["state"] = report.state.value
    except ListCrawlError as err:
        LOGGER.error("List crawl stopped on page %s: %s", err.page_number, err)
        summary = {"status": "aborted", "reason": str(err), "page": err.page_number, "url": err.url}
    except CoordinationError as err:
        LOGGER.error(str(err))
        summary = {"status": "aborted", "reason": str(err)}
    finally:
        await automation.close()

    summary["progress"] = store.progress_summary().as_dict()
    return summary


def main() -> None:
    args = parse_args()
    console_log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    setup_crawl_logging(console_level=console_log_level, quiet=args.quiet)

    start_url = args.url or f"{get_crawl_settings().site_base_url}/influencers"
    try:
        summary = asyncio.run(_run(args, start_url))
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted by user; listing crawl aborted")
        summary = {"status": "interrupted"}

    payload = json.dumps(summary, indent=2, default=str)
    if args.output:
        args.output.write_text(payload)
    else:
        print(payload)


if __name__ == "__main__":
    main()
