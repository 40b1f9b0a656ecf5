"""Tests for the paginated listing crawl."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from collabstr_scraper.crawl.checkpoint import CheckpointStore
from collabstr_scraper.crawl.list_crawler import ListCrawler, ListCrawlState
from collabstr_scraper.errors import ListCrawlError
from tests.helpers.fake_automation import FakeAutomation

BASE = "https://collabstr.com/influencers?p=instagram"
PAGE_1 = f"{BASE}&pg=1"
PAGE_2 = f"{BASE}&pg=2"
PAGE_3 = f"{BASE}&pg=3"


@pytest.fixture
def checkpoints(tmp_path):
    return CheckpointStore(tmp_path / "checkpoint.json")


def _pages():
    return [
        (PAGE_1, ["alpha", "beta", "-10271", None]),
        (PAGE_2, ["gamma", "alpha", "influencers"]),
    ]


@pytest.mark.integration
def test_crawl_walks_all_pages_and_completes(profile_store, checkpoints):
    automation = FakeAutomation(listing_pages=_pages())
    crawler = ListCrawler(profile_store, automation, checkpoints)

    report = asyncio.run(crawler.run(PAGE_1))

    assert report.state is ListCrawlState.COMPLETED
    assert crawler.state is ListCrawlState.COMPLETED
    assert report.pages_processed == 2
    assert report.identifiers_seen == 4
    assert report.identifiers_inserted == 3
    assert report.last_page == 2
    assert profile_store.all_identifiers() == ["alpha", "beta", "gamma"]
    assert profile_store.get_profile("gamma")["first_page"] == 2
    assert checkpoints.load() is None


@pytest.mark.integration
def test_page_without_valid_identifiers_ends_crawl(profile_store, checkpoints):
    pages = [
        (PAGE_1, ["alpha"]),
        (PAGE_2, ["-5", None, "faq"]),
        (PAGE_3, ["zulu"]),
    ]
    crawler = ListCrawler(profile_store, FakeAutomation(listing_pages=pages), checkpoints)

    report = asyncio.run(crawler.run(PAGE_1))

    assert report.state is ListCrawlState.COMPLETED
    assert report.pages_processed == 1
    assert profile_store.all_identifiers() == ["alpha"]


@pytest.mark.integration
def test_page_repeating_previous_identifiers_ends_crawl(profile_store, checkpoints):
    pages = [
        (PAGE_1, ["alpha", "beta"]),
        (PAGE_2, ["beta", "alpha"]),
        (PAGE_3, ["zulu"]),
    ]
    crawler = ListCrawler(profile_store, FakeAutomation(listing_pages=pages), checkpoints)

    report = asyncio.run(crawler.run(PAGE_1))

    assert report.state is ListCrawlState.COMPLETED
    assert report.pages_processed == 1
    assert report.last_page == 1
    assert profile_store.all_identifiers() == ["alpha", "beta"]
    assert checkpoints.load() is None


@pytest.mark.integration
def test_stop_request_keeps_checkpoint_and_resume_continues(profile_store, checkpoints):
    pages = _pages() + [(PAGE_3, ["delta"])]
    crawler_holder = {}

    def stop_on_second_page(index):
        if index == 1:
            crawler_holder["crawler"].request_stop()

    automation = FakeAutomation(listing_pages=pages, on_extract=stop_on_second_page)
    crawler = ListCrawler(profile_store, automation, checkpoints)
    crawler_holder["crawler"] = crawler

    report = asyncio.run(crawler.run(PAGE_1))

    assert report.state is ListCrawlState.STOPPED
    assert report.last_page == 2
    saved = checkpoints.load()
    assert saved is not None
    assert (saved.page, saved.url) == (2, PAGE_2)

    resumed_automation = FakeAutomation(listing_pages=pages)
    resumed = ListCrawler(profile_store, resumed_automation, checkpoints)
    resumed_report = asyncio.run(resumed.run(PAGE_1, resume=True))

    assert resumed_automation.opened_listings == [PAGE_2]
    assert resumed_report.state is ListCrawlState.COMPLETED
    assert resumed_report.identifiers_inserted == 1
    assert profile_store.all_identifiers() == ["alpha", "beta", "gamma", "delta"]
    assert checkpoints.load() is None


@pytest.mark.integration
def test_resume_without_checkpoint_starts_from_given_url(profile_store, checkpoints):
    automation = FakeAutomation(listing_pages=_pages())

    asyncio.run(ListCrawler(profile_store, automation, checkpoints).run(PAGE_1, resume=True))

    assert automation.opened_listings == [PAGE_1]


@pytest.mark.integration
def test_navigation_failure_raises_with_page_context(profile_store, checkpoints):
    automation = FakeAutomation(listing_pages=_pages(), fail_on_page=1)
    crawler = ListCrawler(profile_store, automation, checkpoints)

    with pytest.raises(ListCrawlError) as excinfo:
        asyncio.run(crawler.run(PAGE_1))

    assert excinfo.value.page_number == 2
    assert excinfo.value.url == PAGE_2
    assert crawler.state is ListCrawlState.STOPPED
    assert profile_store.all_identifiers() == ["alpha", "beta"]
    assert checkpoints.load().page == 1


@pytest.mark.unit
def test_open_failure_raises_list_crawl_error():
    automation = FakeAutomation()
    automation.open_listing = AsyncMock(side_effect=RuntimeError("browser gone"))
    store = Mock()
    crawler = ListCrawler(store, automation)

    with pytest.raises(ListCrawlError) as excinfo:
        asyncio.run(crawler.run(PAGE_3))

    assert excinfo.value.page_number == 3
    assert crawler.state is ListCrawlState.STOPPED


@pytest.mark.integration
def test_identifiers_are_attributed_to_session(profile_store):
    session = profile_store.start_session({"platform": "instagram"})
    crawler = ListCrawler(profile_store, FakeAutomation(listing_pages=_pages()))

    asyncio.run(crawler.run(PAGE_1, session_id=session.session_id))

    stored = profile_store.get_session(session.session_id)
    assert stored.total_profiles == 4
    assert stored.new_profiles == 3
    assert stored.total_pages == 2
    assert profile_store.progress_summary(session.session_id).id_only == 3


@pytest.mark.unit
def test_unreadable_checkpoint_is_ignored(checkpoints):
    checkpoints.path.write_text("{not json", encoding="utf-8")

    assert checkpoints.load() is None
