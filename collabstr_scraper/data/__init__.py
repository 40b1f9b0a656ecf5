"""Profile records and their SQLite store."""

from __future__ import annotations

from .models import ProfileDetails, ProfileStatus, ProgressSummary
from .profile_store import ProfileStore, get_profile_store

__all__ = [
    "ProfileDetails",
    "ProfileStatus",
    "ProfileStore",
    "ProgressSummary",
    "get_profile_store",
]
