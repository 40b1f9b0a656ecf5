"""Session bookkeeping around listing crawls."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..data.models import CrawlSession, ProgressSummary
from ..errors import SessionStateError
from .automation import ProfileStoreContract
from .identifiers import filters_from_url
from .list_crawler import ListCrawler, ListCrawlReport

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEndResult:
    session: Optional[CrawlSession] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CrawlSessionTracker:
    """Keeps at most one list-crawl session open and reports progress."""

    def __init__(self, store: ProfileStoreContract) -> None:
        self._store = store
        self._active: Optional[CrawlSession] = None

    @property
    def active_session(self) -> Optional[CrawlSession]:
        return self._active

    def start(self, filters: Optional[Dict[str, Any]] = None) -> CrawlSession:
        if self._active is not None:
            raise SessionStateError(f"session '{self._active.session_id}' is still active")
        session = self._store.start_session(filters or {})
        self._active = session
        LOGGER.info("SESSION %s started (filters=%s)", session.session_id, session.filters)
        return session

    def end(self) -> SessionEndResult:
        """Close the active session; problems are logged and returned, never raised."""
        if self._active is None:
            message = "no active session to end"
            LOGGER.warning("SESSION end ignored: %s", message)
            return SessionEndResult(error=message)

        session_id = self._active.session_id
        try:
            session = self._store.end_session(session_id)
        except SessionStateError as exc:
            # Already ended or unknown to the store; nothing left to retry.
            self._active = None
            LOGGER.warning("SESSION %s end rejected: %s", session_id, exc)
            return SessionEndResult(error=str(exc))
        except Exception as exc:
            LOGGER.error("SESSION %s end failed, session kept for retry: %s", session_id, exc)
            return SessionEndResult(error=str(exc))

        self._active = None
        LOGGER.info(
            "SESSION %s ended: %s profiles (%s new) across %s pages",
            session.session_id,
            session.total_profiles,
            session.new_profiles,
            session.total_pages,
        )
        return SessionEndResult(session=session)

    def progress(self, session_id: Optional[str] = None) -> ProgressSummary:
        return self._store.progress_summary(session_id)

    async def run_list_crawl(
        self,
        crawler: ListCrawler,
        start_url: str,
        *,
        resume: bool = False,
    ) -> ListCrawlReport:
        """Run ``crawler`` inside a session that is closed whatever the outcome."""
        session = self.start(filters_from_url(start_url))
        try:
            return await crawler.run(start_url, session_id=session.session_id, resume=resume)
        finally:
            self.end()
