"""Profile identifier extraction and validation for listing pages."""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

PROFILE_HOST_MARKER = "collabstr.com/"
PAGE_PARAM = "pg"
MIN_IDENTIFIER_LENGTH = 3

# Site paths that share the profile URL shape but are not profiles.
RESERVED_PATHS = frozenset(
    {
        "influencers",
        "brands",
        "login",
        "signup",
        "search",
        "how-it-works",
        "pricing",
        "about",
        "contact",
        "terms",
        "privacy",
        "faq",
    }
)

_NUMERIC_RE = re.compile(r"^-?\d+$")


def profile_id_from_href(href: Optional[str]) -> Optional[str]:
    """Return the path segment after ``collabstr.com/`` with any query string removed."""
    if not href or PROFILE_HOST_MARKER not in href:
        return None
    tail = href.split(PROFILE_HOST_MARKER, 1)[1]
    identifier = tail.split("?", 1)[0].split("#", 1)[0].strip().strip("/")
    if not identifier or "/" in identifier:
        return None
    return identifier


def is_valid_identifier(identifier: Optional[str]) -> bool:
    if not identifier:
        return False
    candidate = identifier.strip()
    if len(candidate) < MIN_IDENTIFIER_LENGTH:
        return False
    if _NUMERIC_RE.match(candidate):
        return False
    return candidate.lower() not in RESERVED_PATHS


def filter_identifiers(raw: Iterable[Optional[str]]) -> List[str]:
    """Drop invalid identifiers and de-duplicate, keeping first-seen order."""
    seen: set[str] = set()
    kept: List[str] = []
    for value in raw:
        if not is_valid_identifier(value):
            continue
        identifier = value.strip()
        if identifier in seen:
            continue
        seen.add(identifier)
        kept.append(identifier)
    return kept


def page_number_from_url(url: Optional[str], default: int = 1) -> int:
    """Listing page number from the ``pg`` query parameter."""
    if not url:
        return default
    values = parse_qs(urlparse(url).query).get(PAGE_PARAM)
    if not values:
        return default
    try:
        page = int(values[0])
    except ValueError:
        return default
    return page if page >= 1 else default


def filters_from_url(url: Optional[str]) -> Dict[str, str]:
    """Session filters encoded in a listing URL (``p`` platform, ``ph_id``)."""
    if not url:
        return {}
    query = parse_qs(urlparse(url).query)
    filters: Dict[str, str] = {}
    if query.get("p"):
        filters["platform"] = query["p"][0]
    if query.get("ph_id"):
        filters["ph_id"] = query["ph_id"][0]
    return filters


def next_page_url(url: str) -> str:
    """Same listing URL with the ``pg`` parameter advanced by one."""
    parsed = urlparse(url)
    query = parse_qs(parsed.query, keep_blank_values=True)
    query[PAGE_PARAM] = [str(page_number_from_url(url) + 1)]
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))
