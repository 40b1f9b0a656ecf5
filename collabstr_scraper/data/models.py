"""Typed records exchanged between the crawlers, the store and the API."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


PLATFORMS: Tuple[str, ...] = ("instagram", "tiktok", "youtube", "twitter", "twitch", "amazon")


class ProfileStatus(str, Enum):
    ID_ONLY = "id_only"
    SCRAPED = "scraped"
    INVALID = "invalid"
    FAILED = "failed"


class InvalidReason(str, Enum):
    NOT_FOUND = "not_found"
    INSUFFICIENT_DATA = "insufficient_data"


# Statuses a write may start from, keyed by the status being written.
ALLOWED_SOURCE_STATUSES: Dict[ProfileStatus, Tuple[Optional[str], ...]] = {
    ProfileStatus.SCRAPED: (None, ProfileStatus.ID_ONLY.value, ProfileStatus.FAILED.value),
    ProfileStatus.INVALID: (None, ProfileStatus.ID_ONLY.value, ProfileStatus.FAILED.value),
    ProfileStatus.FAILED: (None, ProfileStatus.ID_ONLY.value),
}


@dataclass(frozen=True)
class SocialPlatformEntry:
    platform: Optional[str]
    link: Optional[str]
    followers: Optional[int] = None


@dataclass(frozen=True)
class ProfileDetails:
    """Fields read off a profile detail page."""

    name: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    review_rating: Optional[float] = None
    review_count: Optional[int] = None
    social_platforms: Tuple[SocialPlatformEntry, ...] = ()

    def has_secondary_data(self) -> bool:
        """True when anything beyond the name was captured."""
        return bool(self.location or self.bio or self.social_platforms)

    def platform_columns(self) -> Dict[str, Any]:
        """Flatten social entries into ``<platform>_link`` / ``<platform>_followers`` columns.

        The first entry per platform wins; entries for unknown platforms are dropped.
        """
        columns: Dict[str, Any] = {}
        for entry in self.social_platforms:
            platform = (entry.platform or "").strip().lower()
            if platform not in PLATFORMS or f"{platform}_link" in columns:
                continue
            columns[f"{platform}_link"] = entry.link
            columns[f"{platform}_followers"] = entry.followers
        return columns

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProfileDetails":
        """Build details from the JSON body shape used by ``PUT /api/profiles/<id>``."""
        raw_platforms = payload.get("social_platforms") or []
        if not isinstance(raw_platforms, list):
            raise ValueError("social_platforms must be an array")
        entries: List[SocialPlatformEntry] = []
        for item in raw_platforms:
            if not isinstance(item, dict):
                raise ValueError("social_platforms entries must be objects")
            entries.append(
                SocialPlatformEntry(
                    platform=item.get("platform"),
                    link=item.get("link"),
                    followers=_optional_int("followers", item.get("followers")),
                )
            )
        return cls(
            name=_optional_text(payload.get("name")),
            location=_optional_text(payload.get("location")),
            bio=_optional_text(payload.get("bio")),
            review_rating=_optional_float("review_rating", payload.get("review_rating")),
            review_count=_optional_int("review_count", payload.get("review_count")),
            social_platforms=tuple(entries),
        )

    def as_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "location": self.location,
            "bio": self.bio,
            "review_rating": self.review_rating,
            "review_count": self.review_count,
            "social_platforms": [
                {"platform": entry.platform, "link": entry.link, "followers": entry.followers}
                for entry in self.social_platforms
            ],
        }


@dataclass(frozen=True)
class DetailExtraction:
    """Raw result of reading one detail page, before classification."""

    details: ProfileDetails
    not_found: bool = False


# ----------------------------------------------------------------------
# Detail outcomes
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Scraped:
    details: ProfileDetails


@dataclass(frozen=True)
class Invalid:
    reason: str = InvalidReason.INSUFFICIENT_DATA.value


@dataclass(frozen=True)
class Failed:
    reason: str = ""


@dataclass(frozen=True)
class RetryableFailure:
    reason: str = ""


DetailOutcome = Union[Scraped, Invalid, Failed, RetryableFailure]


@dataclass(frozen=True)
class CrawlSession:
    session_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    filters: Dict[str, Any] = field(default_factory=dict)
    total_profiles: int = 0
    new_profiles: int = 0
    total_pages: int = 0

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "filters": dict(self.filters),
            "totalProfiles": self.total_profiles,
            "newProfiles": self.new_profiles,
            "totalPages": self.total_pages,
        }


@dataclass(frozen=True)
class ProgressSummary:
    total: int = 0
    scraped: int = 0
    id_only: int = 0
    failed: int = 0
    invalid: int = 0

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        # Halves round up (12.5 -> 13).
        return (self.scraped * 200 + self.total) // (self.total * 2)

    def as_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "scraped": self.scraped,
            "idOnly": self.id_only,
            "failed": self.failed,
            "invalid": self.invalid,
            "percentage": self.percentage,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProgressSummary":
        return cls(
            total=int(payload.get("total") or 0),
            scraped=int(payload.get("scraped") or 0),
            id_only=int(payload.get("idOnly") or 0),
            failed=int(payload.get("failed") or 0),
            invalid=int(payload.get("invalid") or 0),
        )


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(name: str, value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number; received '{value}'") from exc


def _optional_float(name: str, value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number; received '{value}'") from exc
