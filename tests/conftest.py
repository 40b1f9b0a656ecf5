"""Shared pytest configuration and fixtures for the test suite.

This module centralizes:
- Path setup so ``collabstr_scraper`` and ``scripts`` import without installation
- Pytest markers for test categorization (unit, integration, property)
- Store fixtures backed by a temporary SQLite file
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine


# ==============================================================================
# Path Setup
# ==============================================================================

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from collabstr_scraper.data.profile_store import ProfileStore  # noqa: E402


# ==============================================================================
# Pytest Configuration
# ==============================================================================

def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers",
        "unit: Fast tests with no I/O (mocked dependencies)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Tests hitting SQLite, the file system, or the Flask app",
    )
    config.addinivalue_line(
        "markers",
        "property: Hypothesis property-based tests",
    )


# ==============================================================================
# Store Fixtures
# ==============================================================================

@pytest.fixture
def profile_store(tmp_path: Path) -> ProfileStore:
    """File-backed SQLite profile store, fresh for every test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'profiles.db'}", future=True)
    return ProfileStore(engine)
