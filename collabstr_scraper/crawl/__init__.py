"""Listing and detail crawlers plus the session tracker."""

from __future__ import annotations

from .detail_crawler import DetailCrawlConfig, DetailCrawler, DetailCrawlReport, classify_extraction
from .list_crawler import ListCrawler, ListCrawlReport, ListCrawlState
from .session import CrawlSessionTracker, SessionEndResult

__all__ = [
    "CrawlSessionTracker",
    "DetailCrawlConfig",
    "DetailCrawlReport",
    "DetailCrawler",
    "ListCrawlReport",
    "ListCrawlState",
    "ListCrawler",
    "SessionEndResult",
    "classify_extraction",
]
