"""Tests for crawl console filtering and logging setup."""
from __future__ import annotations

import logging
import logging.handlers

import pytest

from collabstr_scraper.logging_utils import ColoredFormatter, Colors, ConsoleFilter, setup_crawl_logging


def _record(name: str, level: int, message: str) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, message, None, None)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in root.handlers[:]:
        ours = isinstance(handler, logging.handlers.RotatingFileHandler) or any(
            isinstance(item, ConsoleFilter) for item in handler.filters
        )
        if ours:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.mark.unit
@pytest.mark.parametrize(
    "name, level, message, expected",
    [
        ("collabstr_scraper.crawl.list_crawler", logging.INFO, "PAGE 3: 20 profiles", True),
        ("collabstr_scraper.crawl.detail_crawler", logging.INFO, "BATCH 2 done", True),
        ("collabstr_scraper.crawl.detail_crawler", logging.INFO, "Scraped alpha", False),
        ("collabstr_scraper.data.profile_store", logging.INFO, "PAGE looks like a marker", False),
        ("collabstr_scraper.data.profile_store", logging.WARNING, "Deleted 3 profiles", True),
        ("scripts.crawl_details", logging.INFO, "anything", True),
        ("__main__", logging.INFO, "anything", True),
        ("collabstr_scraper.crawl.list_crawler", logging.DEBUG, "PAGE 1", False),
    ],
)
def test_console_filter(name, level, message, expected):
    assert ConsoleFilter().filter(_record(name, level, message)) is expected


@pytest.mark.unit
def test_colored_formatter_wraps_by_level():
    formatter = ColoredFormatter("%(message)s")

    assert formatter.format(_record("x", logging.ERROR, "boom")) == f"{Colors.RED}boom{Colors.RESET}"


@pytest.mark.integration
def test_setup_writes_file_log_and_filters_console(tmp_path, restore_root_logger):
    setup_crawl_logging(log_dir=tmp_path)

    root = restore_root_logger
    assert len(root.handlers) == 2
    logging.getLogger("collabstr_scraper.crawl.detail_crawler").debug("detail line for file only")
    for handler in root.handlers:
        handler.flush()

    contents = (tmp_path / "crawl.log").read_text(encoding="utf-8")
    assert "detail line for file only" in contents
    assert logging.getLogger("selenium").level == logging.WARNING


@pytest.mark.integration
def test_quiet_setup_has_only_file_handler(tmp_path, restore_root_logger):
    setup_crawl_logging(quiet=True, log_dir=tmp_path)

    handlers = restore_root_logger.handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.handlers.RotatingFileHandler)
