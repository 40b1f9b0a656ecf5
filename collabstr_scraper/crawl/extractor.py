"""DOM extraction for Collabstr listing and profile pages.

The functions taking a ``driver`` operate on a Selenium WebDriver already
pointed at the right page; the remaining helpers are pure string parsing.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from selenium.common.exceptions import NoSuchElementException, StaleElementReferenceException
from selenium.webdriver.common.by import By

from ..data.models import PLATFORMS, DetailExtraction, ProfileDetails, SocialPlatformEntry
from .identifiers import profile_id_from_href

LOGGER = logging.getLogger(__name__)

LISTING_LINK_SELECTOR = "a.profile-listing-link"
NAME_SELECTORS = (".profile-name-desktop", "h1.listing-title .profile-name-desktop")
LOCATION_SELECTOR = ".profile-name-location"
BIO_SELECTOR = ".listing-description"
REVIEW_SELECTOR = ".section-title.top-review-desktop, .section-title.top-review-mobile"
PLATFORM_SELECTOR = ".platform-img-holder.platform-img-holder-creator .platform-img"

NOT_FOUND_TITLE_MARKERS = ("not found", "404")
NOT_FOUND_BODY_MARKERS = ("Page not found", "doesn't exist")

_FOLLOWER_LABEL_RE = re.compile(r"\s*(Followers|Subscribers|Views?)\s*", re.IGNORECASE)
_RATING_RE = re.compile(r"([\d\.]+)")
_REVIEW_COUNT_RE = re.compile(r"(\d+)\s*Review", re.IGNORECASE)


# ----------------------------------------------------------------------
# Text parsing
# ----------------------------------------------------------------------
def parse_follower_count(raw: Optional[str]) -> Optional[int]:
    """Parse follower labels such as ``"29.8k Followers"`` or ``"1.2M"``.

    ``"View"`` (shown when the count is hidden) and unparseable text give None.
    """
    if not raw:
        return None
    text = raw.strip()
    if not text or text.lower() == "view":
        return None

    cleaned = _FOLLOWER_LABEL_RE.sub("", text).replace(",", "").strip()
    multiplier = 1
    if cleaned[-1:].lower() == "k":
        multiplier = 1_000
        cleaned = cleaned[:-1]
    elif cleaned[-1:].lower() == "m":
        multiplier = 1_000_000
        cleaned = cleaned[:-1]

    match = re.match(r"^\s*([0-9]*\.?[0-9]+)", cleaned)
    if not match:
        return None
    return int(round(float(match.group(1)) * multiplier))


def parse_review_summary(raw: Optional[str]) -> tuple[Optional[float], Optional[int]]:
    """Split ``"5.0 · 3 Reviews"`` into ``(5.0, 3)``."""
    if not raw:
        return None, None
    rating: Optional[float] = None
    count: Optional[int] = None
    rating_match = _RATING_RE.search(raw)
    if rating_match:
        try:
            rating = float(rating_match.group(1))
        except ValueError:
            rating = None
    count_match = _REVIEW_COUNT_RE.search(raw)
    if count_match:
        count = int(count_match.group(1))
    return rating, count


def clean_location(raw: Optional[str]) -> Optional[str]:
    """Drop the mobile name prefix (``"Name | City, Country"``)."""
    if raw is None:
        return None
    text = raw.strip()
    if "|" in text:
        text = text.split("|", 1)[1].strip()
    return text or None


def platform_from_image_src(src: Optional[str]) -> Optional[str]:
    if not src:
        return None
    lowered = src.lower()
    for platform in PLATFORMS:
        if platform in lowered:
            return platform
    return None


def is_not_found_page(title: Optional[str], body_text: Optional[str]) -> bool:
    lowered_title = (title or "").lower()
    if any(marker in lowered_title for marker in NOT_FOUND_TITLE_MARKERS):
        return True
    body = (body_text or "").replace("’", "'")
    return any(marker in body for marker in NOT_FOUND_BODY_MARKERS)


# ----------------------------------------------------------------------
# Driver-backed extraction
# ----------------------------------------------------------------------
def extract_list_identifiers(driver) -> List[Optional[str]]:
    """Raw identifiers from every listing card link, unfiltered and in page order."""
    identifiers: List[Optional[str]] = []
    for link in driver.find_elements(By.CSS_SELECTOR, LISTING_LINK_SELECTOR):
        try:
            href = link.get_attribute("href")
        except StaleElementReferenceException:
            LOGGER.debug("Stale listing link encountered, skipping")
            continue
        identifiers.append(profile_id_from_href(href))
    return identifiers


def _first_text(driver, selector: str) -> Optional[str]:
    try:
        element = driver.find_element(By.CSS_SELECTOR, selector)
    except NoSuchElementException:
        return None
    try:
        text = (element.text or element.get_attribute("textContent") or "").strip()
    except StaleElementReferenceException:
        return None
    return text or None


def _extract_platforms(driver) -> List[SocialPlatformEntry]:
    entries: List[SocialPlatformEntry] = []
    for container in driver.find_elements(By.CSS_SELECTOR, PLATFORM_SELECTOR):
        try:
            anchors = container.find_elements(By.TAG_NAME, "a")
            if not anchors:
                continue
            anchor = anchors[0]
            platform = anchor.get_attribute("data-platform")
            if not platform:
                images = container.find_elements(By.TAG_NAME, "img")
                if images:
                    platform = platform_from_image_src(images[0].get_attribute("src"))
            entries.append(
                SocialPlatformEntry(
                    platform=platform.lower() if platform else None,
                    link=anchor.get_attribute("href"),
                    followers=parse_follower_count(anchor.text),
                )
            )
        except StaleElementReferenceException:
            LOGGER.debug("Stale platform container encountered, skipping")
            continue
    return entries


def extract_detail(driver) -> DetailExtraction:
    """Read one profile page into a ``DetailExtraction``."""
    name = None
    for selector in NAME_SELECTORS:
        name = _first_text(driver, selector)
        if name:
            break

    rating, count = parse_review_summary(_first_text(driver, REVIEW_SELECTOR))
    details = ProfileDetails(
        name=name,
        location=clean_location(_first_text(driver, LOCATION_SELECTOR)),
        bio=_first_text(driver, BIO_SELECTOR),
        review_rating=rating,
        review_count=count,
        social_platforms=tuple(_extract_platforms(driver)),
    )

    not_found = False
    if not name:
        body_text = _first_text(driver, "body")
        not_found = is_not_found_page(driver.title, body_text)
    return DetailExtraction(details=details, not_found=not_found)
