"""Tests for crawl session bookkeeping."""
from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from collabstr_scraper.crawl.list_crawler import ListCrawler, ListCrawlState
from collabstr_scraper.crawl.session import CrawlSessionTracker
from collabstr_scraper.errors import ListCrawlError, SessionStateError
from tests.helpers.fake_automation import FakeAutomation

START_URL = "https://collabstr.com/influencers?p=tiktok&ph_id=42&pg=1"


@pytest.mark.integration
def test_start_and_end_round_trip(profile_store):
    tracker = CrawlSessionTracker(profile_store)

    session = tracker.start({"platform": "tiktok"})
    assert tracker.active_session == session
    assert session.session_id.startswith("session_")

    result = tracker.end()

    assert result.ok
    assert result.session.session_id == session.session_id
    assert result.session.ended_at is not None
    assert tracker.active_session is None
    assert profile_store.get_session(session.session_id).is_active is False


@pytest.mark.integration
def test_second_start_while_active_is_rejected(profile_store):
    tracker = CrawlSessionTracker(profile_store)
    tracker.start()

    with pytest.raises(SessionStateError):
        tracker.start()

    assert len(profile_store.list_sessions()) == 1


@pytest.mark.unit
def test_end_without_active_session_reports_error():
    store = Mock()
    tracker = CrawlSessionTracker(store)

    result = tracker.end()

    assert not result.ok
    assert "no active session" in result.error
    store.end_session.assert_not_called()


@pytest.mark.unit
def test_end_swallows_store_failures():
    store = Mock()
    store.start_session.return_value = Mock(session_id="session_1", filters={})
    store.end_session.side_effect = SessionStateError("session 'session_1' already ended")
    tracker = CrawlSessionTracker(store)
    tracker.start()

    result = tracker.end()

    assert not result.ok
    assert "already ended" in result.error
    assert tracker.active_session is None


@pytest.mark.integration
def test_run_list_crawl_records_filters_and_counters(profile_store):
    automation = FakeAutomation(listing_pages=[(START_URL, ["alpha", "bravo"])])
    tracker = CrawlSessionTracker(profile_store)

    report = asyncio.run(tracker.run_list_crawl(ListCrawler(profile_store, automation), START_URL))

    assert report.state is ListCrawlState.COMPLETED
    [session] = profile_store.list_sessions()
    assert session.filters == {"platform": "tiktok", "ph_id": "42"}
    assert session.total_profiles == 2
    assert session.new_profiles == 2
    assert session.total_pages == 1
    assert session.ended_at is not None
    assert tracker.progress(session.session_id).id_only == 2


@pytest.mark.integration
def test_run_list_crawl_ends_session_on_failure(profile_store):
    automation = FakeAutomation(listing_pages=[(START_URL, ["alpha"])], fail_on_page=0)
    tracker = CrawlSessionTracker(profile_store)

    with pytest.raises(ListCrawlError):
        asyncio.run(tracker.run_list_crawl(ListCrawler(profile_store, automation), START_URL))

    [session] = profile_store.list_sessions()
    assert session.ended_at is not None
    assert tracker.active_session is None


class _FlakyEndStore:
    """Delegates to a real store but fails the first ``end_session`` call."""

    def __init__(self, store):
        self._store = store
        self.end_attempts = 0

    def __getattr__(self, name):
        return getattr(self._store, name)

    def end_session(self, session_id):
        self.end_attempts += 1
        if self.end_attempts == 1:
            raise RuntimeError("connection reset")
        return self._store.end_session(session_id)


@pytest.mark.integration
def test_transient_end_failure_keeps_session_for_retry(profile_store):
    store = _FlakyEndStore(profile_store)
    tracker = CrawlSessionTracker(store)
    session = tracker.start()

    first = tracker.end()

    assert first.error == "connection reset"
    assert tracker.active_session == session
    assert profile_store.get_session(session.session_id).is_active is True
    with pytest.raises(SessionStateError):
        tracker.start()

    second = tracker.end()

    assert second.ok
    assert tracker.active_session is None
    assert profile_store.get_session(session.session_id).ended_at is not None
    assert len(profile_store.list_sessions()) == 1
