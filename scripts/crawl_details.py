"""CLI entrypoint for the detail crawl: enrich every identity-only profile."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))

from collabstr_scraper.config import create_store_engine, get_api_settings, get_crawl_settings
from collabstr_scraper.crawl.detail_crawler import BatchReport, DetailCrawlConfig, DetailCrawler
from collabstr_scraper.crawl.remote_store import ProfileApiClient
from collabstr_scraper.crawl.selenium_automation import SeleniumAutomation, SeleniumConfig
from collabstr_scraper.data.models import ProgressSummary
from collabstr_scraper.data.profile_store import get_profile_store
from collabstr_scraper.logging_utils import setup_crawl_logging

LOGGER = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    settings = get_crawl_settings()
    parser = argparse.ArgumentParser(description="Visit stored profiles and capture their details")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.batch_size,
        help=f"Profiles fetched per batch (default: {settings.batch_size})",
    )
    parser.add_argument(
        "--max-parallel",
        type=int,
        default=settings.max_parallel,
        help=f"Browser windows open at once (default: {settings.max_parallel})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.item_timeout_seconds,
        help=f"Seconds allowed per profile (default: {settings.item_timeout_seconds:g})",
    )
    parser.add_argument(
        "--session-id",
        default=None,
        help="Only enrich profiles first seen by this listing session",
    )
    parser.add_argument(
        "--retry-failed",
        action="store_true",
        help="Revisit profiles previously marked failed instead of pending ones",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=3,
        help="Retryable failures per profile before it is marked failed (0 = unlimited)",
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Read and write through the REST API (COLLABSTR_API_URL) instead of the local database",
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
        help="Run Chrome with visible windows",
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


def _report_progress(batch: BatchReport, progress: ProgressSummary) -> None:
    LOGGER.info(
        "BATCH %s progress: %s/%s scraped (%s%%), %s pending, %s invalid, %s failed",
        batch.batch_number,
        progress.scraped,
        progress.total,
        progress.percentage,
        progress.id_only,
        progress.invalid,
        progress.failed,
    )


async def _run(args: argparse.Namespace) -> dict:
    settings = get_crawl_settings()
    if args.api:
        store = ProfileApiClient(get_api_settings().base_url)
    else:
        store = get_profile_store(create_store_engine(args.db_path))

    config = DetailCrawlConfig(
        batch_size=args.batch_size,
        max_parallel=args.max_parallel,
        item_timeout_seconds=args.timeout,
        settle_delay_seconds=settings.settle_delay_seconds,
        stop_grace_seconds=settings.stop_grace_seconds,
        name_only_is_invalid=settings.name_only_is_invalid,
        max_attempts_per_run=args.max_attempts or None,
        session_id=args.session_id,
        retry_failed=args.retry_failed,
    )
    automation = SeleniumAutomation(
        SeleniumConfig(headless=not args.show_browser),
        site_base_url=settings.site_base_url,
    )
    crawler = DetailCrawler(store, automation, config, on_batch_complete=_report_progress)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, crawler.request_stop)
    except NotImplementedError:
        LOGGER.debug("Signal handlers unavailable; Ctrl+C will interrupt immediately")

    try:
        report = await crawler.run()
    finally:
        await automation.close()

    summary = {"status": "stopped" if report.stopped else "completed", **report.as_dict()}
    summary["progress"] = store.progress_summary(args.session_id).as_dict()
    return summary


def main() -> None:
    args = parse_args()
    console_log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    setup_crawl_logging(console_level=console_log_level, quiet=args.quiet)

    try:
        summary = asyncio.run(_run(args))
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted by user; detail crawl aborted")
        summary = {"status": "interrupted"}
    except ValueError as err:
        LOGGER.error(str(err))
        summary = {"status": "aborted", "reason": str(err)}

    payload = json.dumps(summary, indent=2)
    if args.output:
        args.output.write_text(payload)
    else:
        print(payload)


if __name__ == "__main__":
    main()
