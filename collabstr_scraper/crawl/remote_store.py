"""HTTP client exposing the profile store contract over the REST API."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from ..data.models import (
    CrawlSession,
    DetailOutcome,
    Failed,
    Invalid,
    ProfileStatus,
    ProgressSummary,
    RetryableFailure,
    Scraped,
)
from ..errors import ApiRequestError, SessionStateError, StatusTransitionError

LOGGER = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _session_from_payload(payload: Dict[str, Any]) -> CrawlSession:
    return CrawlSession(
        session_id=payload["sessionId"],
        started_at=_parse_timestamp(payload.get("startedAt")),
        ended_at=_parse_timestamp(payload.get("endedAt")),
        filters=payload.get("filters") or {},
        total_profiles=int(payload.get("totalProfiles") or 0),
        new_profiles=int(payload.get("newProfiles") or 0),
        total_pages=int(payload.get("totalPages") or 0),
    )


class ProfileApiClient:
    """Talks to ``collabstr_scraper.api`` so crawlers can run against a remote store."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Content-Type": "application/json",
                "User-Agent": "CollabstrScraper/1.0",
            }
        )

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            return self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            LOGGER.error("Profile API %s %s failed: %s", method, path, exc)
            raise ApiRequestError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
        return f"HTTP {response.status_code}"

    def _json(self, response: requests.Response, path: str) -> Dict[str, Any]:
        if response.status_code >= 400:
            message = self._error_message(response)
            LOGGER.error("Profile API %s returned %s: %s", path, response.status_code, message)
            raise ApiRequestError(message, status_code=response.status_code)
        return response.json()

    # ------------------------------------------------------------------
    # Store contract
    # ------------------------------------------------------------------
    def health(self) -> Dict[str, Any]:
        return self._json(self._request("GET", "/health"), "/health")

    def upsert_identity_batch(
        self,
        ids: Sequence[str],
        *,
        session_id: Optional[str] = None,
        page: Optional[int] = None,
    ) -> int:
        if not ids:
            return 0
        body: Dict[str, Any] = {"profiles": [{"id": identifier} for identifier in ids]}
        if session_id:
            body["sessionId"] = session_id
        if page is not None:
            body["page"] = page
        payload = self._json(self._request("POST", "/profiles", json=body), "/profiles")
        return int(payload.get("inserted") or 0)

    def fetch_pending_identities(self, limit: int, session_id: Optional[str] = None) -> List[str]:
        if limit <= 0:
            return []
        params: Dict[str, Any] = {"limit": limit}
        if session_id:
            params["sessionId"] = session_id
        payload = self._json(self._request("GET", "/profiles/unscraped", params=params), "/profiles/unscraped")
        return [item["id"] for item in payload.get("profiles", [])]

    def fetch_failed_identities(self, limit: int) -> List[str]:
        if limit <= 0:
            return []
        payload = self._json(
            self._request("GET", "/profiles/failed", params={"limit": limit}), "/profiles/failed"
        )
        return [item["id"] for item in payload.get("profiles", [])]

    def apply_detail_result(self, identifier: str, outcome: DetailOutcome) -> bool:
        if isinstance(outcome, RetryableFailure):
            return False
        if isinstance(outcome, Scraped):
            body = outcome.details.as_payload()
            body["status"] = ProfileStatus.SCRAPED.value
        elif isinstance(outcome, Invalid):
            body = {"status": ProfileStatus.INVALID.value, "reason": outcome.reason}
        elif isinstance(outcome, Failed):
            body = {"status": ProfileStatus.FAILED.value, "reason": outcome.reason}
        else:
            raise TypeError(f"unsupported detail outcome {type(outcome)!r}")

        path = f"/profiles/{quote(identifier, safe='')}"
        response = self._request("PUT", path, json=body)
        if response.status_code == 409:
            raise StatusTransitionError(identifier, None, body["status"])
        payload = self._json(response, path)
        return bool(payload.get("updated", True))

    def progress_summary(self, session_id: Optional[str] = None) -> ProgressSummary:
        params = {"sessionId": session_id} if session_id else None
        payload = self._json(self._request("GET", "/profiles/progress", params=params), "/profiles/progress")
        return ProgressSummary.from_dict(payload.get("progress") or {})

    def start_session(self, filters: Optional[Dict[str, Any]] = None) -> CrawlSession:
        payload = self._json(
            self._request("POST", "/session/start", json={"filters": dict(filters or {})}),
            "/session/start",
        )
        return _session_from_payload(payload["session"])

    def end_session(self, session_id: str) -> CrawlSession:
        response = self._request("POST", "/session/end", json={"sessionId": session_id})
        if response.status_code in (404, 409):
            raise SessionStateError(self._error_message(response))
        self._json(response, "/session/end")
        session = self.get_session(session_id)
        if session is None:
            raise SessionStateError(f"session '{session_id}' vanished after ending")
        return session

    def get_session(self, session_id: str) -> Optional[CrawlSession]:
        path = f"/sessions/{quote(session_id, safe='')}"
        response = self._request("GET", path)
        if response.status_code == 404:
            return None
        return _session_from_payload(self._json(response, path)["session"])
