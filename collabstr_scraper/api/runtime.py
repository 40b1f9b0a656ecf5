"""Shared runtime dependencies for API routes."""
from __future__ import annotations

from typing import Optional

from flask import current_app

from collabstr_scraper.config import create_store_engine
from collabstr_scraper.data.profile_store import ProfileStore

_profile_store: Optional[ProfileStore] = None


def get_default_store() -> ProfileStore:
    global _profile_store
    if _profile_store is None:
        _profile_store = ProfileStore(create_store_engine())
    return _profile_store


def get_profile_store() -> ProfileStore:
    """Store bound to the current app, falling back to the process-wide default."""
    store = current_app.config.get("PROFILE_STORE")
    if store is None:
        store = get_default_store()
        current_app.config["PROFILE_STORE"] = store
    return store


def reset_api_runtime() -> None:
    """Test helper: drop the cached default store so each fixture gets fresh state."""
    global _profile_store
    _profile_store = None
