"""Listing crawl: walk paginated search results and reserve profile identifiers."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import FrozenSet, Optional

from ..errors import ListCrawlError
from .automation import PageAutomation, ProfileStoreContract
from .checkpoint import CheckpointStore
from .identifiers import filter_identifiers, page_number_from_url

LOGGER = logging.getLogger(__name__)


class ListCrawlState(str, Enum):
    IDLE = "idle"
    FETCHING_PAGE = "fetching_page"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    ADVANCING_PAGE = "advancing_page"
    STOPPED = "stopped"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ListCrawlReport:
    state: ListCrawlState = ListCrawlState.IDLE
    pages_processed: int = 0
    identifiers_seen: int = 0
    identifiers_inserted: int = 0
    last_page: Optional[int] = None
    last_url: Optional[str] = None


class ListCrawler:
    """Single-tab pagination loop that stores every identifier at most once.

    Each page goes through FETCHING_PAGE, EXTRACTING, PERSISTING and
    ADVANCING_PAGE. A page yielding no valid identifiers, or a page without a
    next link, completes the crawl. ``request_stop`` is honoured at the next
    step boundary and keeps the resume checkpoint.
    """

    def __init__(
        self,
        store: ProfileStoreContract,
        automation: PageAutomation,
        checkpoints: Optional[CheckpointStore] = None,
    ) -> None:
        self._store = store
        self._automation = automation
        self._checkpoints = checkpoints
        self._report = ListCrawlReport()
        self._stop_requested = False

    @property
    def state(self) -> ListCrawlState:
        return self._report.state

    @property
    def report(self) -> ListCrawlReport:
        return self._report

    def request_stop(self) -> None:
        if not self._stop_requested:
            LOGGER.info("STOP requested for list crawl (state=%s)", self.state.value)
        self._stop_requested = True

    def _set_state(self, state: ListCrawlState) -> None:
        self._report = replace(self._report, state=state)

    def _finish(self, state: ListCrawlState) -> ListCrawlReport:
        self._set_state(state)
        if state is ListCrawlState.COMPLETED and self._checkpoints is not None:
            self._checkpoints.clear()
        LOGGER.info(
            "=== List crawl %s: %s pages, %s identifiers seen, %s new ===",
            "COMPLETE" if state is ListCrawlState.COMPLETED else "STOPPED",
            self._report.pages_processed,
            self._report.identifiers_seen,
            self._report.identifiers_inserted,
        )
        return self._report

    async def run(
        self,
        start_url: str,
        *,
        session_id: Optional[str] = None,
        resume: bool = False,
    ) -> ListCrawlReport:
        self._stop_requested = False
        self._report = ListCrawlReport()

        url = start_url
        if resume and self._checkpoints is not None:
            checkpoint = self._checkpoints.load()
            if checkpoint is not None:
                LOGGER.info("Resuming list crawl from PAGE %s (%s)", checkpoint.page, checkpoint.url)
                url = checkpoint.url

        page_number = page_number_from_url(url)
        self._set_state(ListCrawlState.FETCHING_PAGE)
        try:
            page = await self._automation.open_listing(url)
        except Exception as exc:
            self._set_state(ListCrawlState.STOPPED)
            raise ListCrawlError(
                f"could not open listing {url}: {exc}", page_number=page_number, url=url
            ) from exc

        previous_identifiers: Optional[FrozenSet[str]] = None
        while True:
            if self._stop_requested:
                return self._finish(ListCrawlState.STOPPED)

            current_url = page.url
            try:
                self._set_state(ListCrawlState.FETCHING_PAGE)
                await page.load_all_content()

                if self._stop_requested:
                    return self._finish(ListCrawlState.STOPPED)

                self._set_state(ListCrawlState.EXTRACTING)
                raw_ids = await page.extract_identifiers()
                identifiers = filter_identifiers(raw_ids)
                if not identifiers:
                    LOGGER.info("PAGE %s yielded no profiles; end of results", page_number)
                    return self._finish(ListCrawlState.COMPLETED)
                if previous_identifiers is not None and frozenset(identifiers) == previous_identifiers:
                    LOGGER.info("PAGE %s repeats the previous page; end of results", page_number)
                    return self._finish(ListCrawlState.COMPLETED)
                previous_identifiers = frozenset(identifiers)

                self._set_state(ListCrawlState.PERSISTING)
                inserted = self._store.upsert_identity_batch(
                    identifiers, session_id=session_id, page=page_number
                )
                if self._checkpoints is not None:
                    self._checkpoints.save(page_number, current_url)
            except Exception as exc:
                self._set_state(ListCrawlState.STOPPED)
                LOGGER.error("List crawl failed on page %s (%s): %s", page_number, current_url, exc)
                raise ListCrawlError(
                    f"page {page_number} failed: {exc}", page_number=page_number, url=current_url
                ) from exc

            self._report = replace(
                self._report,
                pages_processed=self._report.pages_processed + 1,
                identifiers_seen=self._report.identifiers_seen + len(identifiers),
                identifiers_inserted=self._report.identifiers_inserted + inserted,
                last_page=page_number,
                last_url=current_url,
            )
            LOGGER.info(
                "PAGE %s: %s profiles (%s new, %s filtered out)",
                page_number,
                len(identifiers),
                inserted,
                len(raw_ids) - len(identifiers),
            )

            if self._stop_requested:
                return self._finish(ListCrawlState.STOPPED)

            self._set_state(ListCrawlState.ADVANCING_PAGE)
            try:
                has_next = await page.go_to_next_page()
            except Exception as exc:
                self._set_state(ListCrawlState.STOPPED)
                LOGGER.error("Could not advance past page %s: %s", page_number, exc)
                raise ListCrawlError(
                    f"could not advance past page {page_number}: {exc}",
                    page_number=page_number,
                    url=current_url,
                ) from exc

            if not has_next:
                LOGGER.info("No next page after PAGE %s", page_number)
                return self._finish(ListCrawlState.COMPLETED)

            next_number = page_number_from_url(page.url, default=page_number + 1)
            page_number = next_number if next_number > page_number else page_number + 1
