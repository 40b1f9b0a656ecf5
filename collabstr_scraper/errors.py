"""Exception types shared by the store, crawlers and API."""
from __future__ import annotations

from typing import Optional


class PageTransportError(RuntimeError):
    """Navigation or driver failure while loading a page (retryable)."""


class CoordinationError(RuntimeError):
    """Crawl bookkeeping conflict reported to the caller without aborting a crawl."""


class SessionStateError(CoordinationError):
    """Session started twice, ended twice, or ended without being started."""


class StatusTransitionError(CoordinationError):
    """A profile status change that would move a record backwards."""

    def __init__(self, identifier: str, current: Optional[str], requested: str) -> None:
        super().__init__(
            f"cannot move profile '{identifier}' from {current or 'id_only'} to {requested}"
        )
        self.identifier = identifier
        self.current = current
        self.requested = requested


class ListCrawlError(RuntimeError):
    """A listing page could not be fetched, extracted or persisted."""

    def __init__(self, message: str, *, page_number: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.page_number = page_number
        self.url = url


class ApiRequestError(RuntimeError):
    """The profile REST API could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
