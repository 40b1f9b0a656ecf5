"""Selenium-backed page automation.

Blocking WebDriver calls run in worker threads via ``asyncio.to_thread``,
except browser startup, which stays on the loop thread so SIGINT can be
ignored while chromedriver is spawned.
Drivers are not thread-safe, so every concurrent detail slot owns its own
driver; a small pool keeps healthy drivers warm between profiles.
"""
from __future__ import annotations

import asyncio
import logging
import signal
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Set

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.support.ui import WebDriverWait
from urllib3.exceptions import MaxRetryError, NewConnectionError

from ..config import DEFAULT_SITE_BASE_URL
from ..data.models import DetailExtraction
from ..errors import PageTransportError
from .extractor import extract_detail, extract_list_identifiers
from .identifiers import next_page_url, page_number_from_url

LOGGER = logging.getLogger(__name__)

_CONNECTION_ERRORS = (WebDriverException, ConnectionRefusedError, MaxRetryError, NewConnectionError)


@dataclass(frozen=True)
class SeleniumConfig:
    headless: bool = True
    window_size: str = "1280,1600"
    chrome_binary: Optional[Path] = None
    page_load_timeout: float = 30.0
    ready_wait_seconds: float = 15.0
    scroll_delay_seconds: float = 1.5
    max_no_change_scrolls: int = 3
    max_scroll_rounds: int = 60


def build_chrome_driver(config: SeleniumConfig) -> webdriver.Chrome:
    options = webdriver.ChromeOptions()
    if config.chrome_binary:
        options.binary_location = str(config.chrome_binary)
    if config.headless:
        options.add_argument("--headless=new")
    options.add_argument(f"--window-size={config.window_size}")
    options.add_argument("--disable-blink-features=AutomationControlled")
    options.add_experimental_option("excludeSwitches", ["enable-automation"])
    options.add_experimental_option("useAutomationExtension", False)

    # Keep Ctrl+C away from chromedriver so the crawl can shut down cleanly.
    restore_sigint = threading.current_thread() is threading.main_thread()
    old_sigint_handler = signal.signal(signal.SIGINT, signal.SIG_IGN) if restore_sigint else None
    try:
        driver = webdriver.Chrome(options=options)
    finally:
        if restore_sigint:
            signal.signal(signal.SIGINT, old_sigint_handler)

    driver.set_page_load_timeout(config.page_load_timeout)
    driver.execute_script("Object.defineProperty(navigator, 'webdriver', {get: () => undefined})")
    return driver


def _quit_quietly(driver) -> None:
    try:
        driver.quit()
    except _CONNECTION_ERRORS as exc:
        LOGGER.debug("Driver quit raised %s", exc)


def _navigate(driver, url: str, ready_wait_seconds: float) -> None:
    try:
        driver.get(url)
    except TimeoutException as exc:
        raise PageTransportError(f"timed out loading {url}") from exc
    except _CONNECTION_ERRORS as exc:
        raise PageTransportError(f"could not load {url}: {exc}") from exc
    try:
        WebDriverWait(driver, ready_wait_seconds).until(
            lambda d: d.execute_script("return document.readyState") == "complete"
        )
    except TimeoutException:
        LOGGER.debug("Document not ready after %.0fs: %s", ready_wait_seconds, url)


class SeleniumListingPage:
    def __init__(self, driver, config: SeleniumConfig) -> None:
        self._driver = driver
        self._config = config

    @property
    def url(self) -> str:
        return self._driver.current_url

    async def load_all_content(self) -> None:
        await asyncio.to_thread(self._scroll_until_stable)

    async def extract_identifiers(self) -> List[Optional[str]]:
        try:
            return await asyncio.to_thread(extract_list_identifiers, self._driver)
        except _CONNECTION_ERRORS as exc:
            raise PageTransportError(f"listing extraction failed: {exc}") from exc

    async def go_to_next_page(self) -> bool:
        target = next_page_url(self.url)
        await asyncio.to_thread(_navigate, self._driver, target, self._config.ready_wait_seconds)
        landed = self.url
        if page_number_from_url(landed) != page_number_from_url(target):
            # Out-of-range pages redirect back to an earlier one.
            LOGGER.info("Requested %s but landed on %s; no further pages", target, landed)
            return False
        return True

    def _scroll_until_stable(self) -> None:
        driver = self._driver
        try:
            last_height = driver.execute_script("return document.body.scrollHeight")
            stagnant_scrolls = 0
            scroll_round = 0
            while stagnant_scrolls < self._config.max_no_change_scrolls and scroll_round < self._config.max_scroll_rounds:
                scroll_round += 1
                driver.execute_script("window.scrollTo(0, document.body.scrollHeight);")
                time.sleep(self._config.scroll_delay_seconds)
                new_height = driver.execute_script("return document.body.scrollHeight")
                if new_height == last_height:
                    stagnant_scrolls += 1
                    LOGGER.debug(
                        "scroll %s no height change (%s/%s)",
                        scroll_round,
                        stagnant_scrolls,
                        self._config.max_no_change_scrolls,
                    )
                else:
                    stagnant_scrolls = 0
                last_height = new_height
        except _CONNECTION_ERRORS as exc:
            raise PageTransportError(f"scrolling failed: {exc}") from exc


class SeleniumDetailPage:
    def __init__(self, driver) -> None:
        self._driver = driver

    async def extract_details(self) -> DetailExtraction:
        try:
            return await asyncio.to_thread(extract_detail, self._driver)
        except _CONNECTION_ERRORS as exc:
            raise PageTransportError(f"detail extraction failed: {exc}") from exc


class SeleniumAutomation:
    """One listing driver plus a pool of detail drivers."""

    def __init__(
        self,
        config: Optional[SeleniumConfig] = None,
        *,
        site_base_url: str = DEFAULT_SITE_BASE_URL,
        driver_factory: Optional[Callable[[], object]] = None,
    ) -> None:
        self._config = config or SeleniumConfig()
        self._site_base_url = site_base_url.rstrip("/")
        self._driver_factory = driver_factory or (lambda: build_chrome_driver(self._config))
        self._listing_driver = None
        self._idle: List[object] = []
        self._in_use: Set[object] = set()

    @property
    def in_use_count(self) -> int:
        return len(self._in_use)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    async def _new_driver(self):
        # Signal handlers can only be swapped from the main thread.
        try:
            return self._driver_factory()
        except _CONNECTION_ERRORS as exc:
            raise PageTransportError(f"could not start browser: {exc}") from exc

    async def open_listing(self, url: str) -> SeleniumListingPage:
        if self._listing_driver is None:
            self._listing_driver = await self._new_driver()
        await asyncio.to_thread(_navigate, self._listing_driver, url, self._config.ready_wait_seconds)
        LOGGER.debug("Listing opened: %s", url)
        return SeleniumListingPage(self._listing_driver, self._config)

    @asynccontextmanager
    async def detail_page(self, identifier: str) -> AsyncIterator[SeleniumDetailPage]:
        driver = self._idle.pop() if self._idle else await self._new_driver()
        self._in_use.add(driver)
        healthy = False
        try:
            await asyncio.to_thread(
                _navigate, driver, f"{self._site_base_url}/{identifier}", self._config.ready_wait_seconds
            )
            yield SeleniumDetailPage(driver)
            healthy = True
        finally:
            was_tracked = driver in self._in_use
            self._in_use.discard(driver)
            if healthy and was_tracked:
                self._idle.append(driver)
            else:
                # The worker thread may still be using this driver.
                self._quit_in_background(driver)

    def _quit_in_background(self, driver) -> None:
        threading.Thread(target=_quit_quietly, args=(driver,), daemon=True).start()

    async def force_release(self) -> None:
        """Quit every detail driver, including ones held by cancelled items."""
        drivers = list(self._in_use) + self._idle
        self._in_use.clear()
        self._idle = []
        if drivers:
            LOGGER.warning("Force-closing %s browser windows", len(drivers))
        await asyncio.gather(*(asyncio.to_thread(_quit_quietly, driver) for driver in drivers))

    async def close(self) -> None:
        await self.force_release()
        if self._listing_driver is not None:
            await asyncio.to_thread(_quit_quietly, self._listing_driver)
            self._listing_driver = None
