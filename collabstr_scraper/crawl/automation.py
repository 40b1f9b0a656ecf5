"""Page-automation contracts the crawlers are written against.

Crawlers never touch the DOM; they drive these structural interfaces, which
the Selenium implementation and the in-memory test doubles both satisfy.
"""
from __future__ import annotations

from typing import AsyncContextManager, List, Optional, Protocol, Sequence, runtime_checkable

from ..data.models import CrawlSession, DetailExtraction, DetailOutcome, ProgressSummary


@runtime_checkable
class ListingPage(Protocol):
    """One open listing tab; ``url`` tracks the page currently displayed."""

    @property
    def url(self) -> str:
        ...

    async def load_all_content(self) -> None:
        """Scroll until lazy-loaded cards stop appearing."""
        ...

    async def extract_identifiers(self) -> List[Optional[str]]:
        """Raw identifiers in page order; filtering is the caller's job."""
        ...

    async def go_to_next_page(self) -> bool:
        """Navigate to the next listing page; False when there is none."""
        ...


@runtime_checkable
class DetailPage(Protocol):
    async def extract_details(self) -> DetailExtraction:
        ...


@runtime_checkable
class PageAutomation(Protocol):
    async def open_listing(self, url: str) -> ListingPage:
        ...

    def detail_page(self, identifier: str) -> AsyncContextManager[DetailPage]:
        """Open the profile page for ``identifier``; released on context exit."""
        ...

    async def force_release(self) -> None:
        """Close every browser context still held, in-flight or pooled."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ProfileStoreContract(Protocol):
    """Store operations the crawlers and session tracker rely on."""

    def upsert_identity_batch(
        self,
        ids: Sequence[str],
        *,
        session_id: Optional[str] = None,
        page: Optional[int] = None,
    ) -> int:
        ...

    def fetch_pending_identities(self, limit: int, session_id: Optional[str] = None) -> List[str]:
        ...

    def fetch_failed_identities(self, limit: int) -> List[str]:
        ...

    def apply_detail_result(self, identifier: str, outcome: DetailOutcome) -> bool:
        ...

    def progress_summary(self, session_id: Optional[str] = None) -> ProgressSummary:
        ...

    def start_session(self, filters: Optional[dict] = None) -> CrawlSession:
        ...

    def end_session(self, session_id: str) -> CrawlSession:
        ...
