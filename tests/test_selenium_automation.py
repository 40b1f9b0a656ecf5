"""Tests for the Selenium automation layer using mocked WebDrivers."""
from __future__ import annotations

import asyncio
import signal
from unittest.mock import Mock

import pytest
from selenium.common.exceptions import TimeoutException, WebDriverException

from collabstr_scraper.crawl import selenium_automation
from collabstr_scraper.crawl.selenium_automation import SeleniumAutomation, SeleniumConfig
from collabstr_scraper.errors import PageTransportError

FAST = SeleniumConfig(ready_wait_seconds=0.5, scroll_delay_seconds=0, max_no_change_scrolls=2)


def _driver() -> Mock:
    driver = Mock()
    driver.execute_script.return_value = "complete"
    driver.current_url = "https://collabstr.com/influencers?p=instagram&pg=1"

    def load(url):
        driver.current_url = url

    driver.get.side_effect = load
    return driver


@pytest.mark.unit
def test_detail_drivers_are_pooled_between_profiles():
    drivers = [_driver(), _driver()]
    factory = Mock(side_effect=drivers)
    automation = SeleniumAutomation(FAST, driver_factory=factory)

    async def visit_twice():
        async with automation.detail_page("alpha"):
            assert automation.in_use_count == 1
        async with automation.detail_page("bravo"):
            pass

    asyncio.run(visit_twice())

    assert factory.call_count == 1
    assert automation.idle_count == 1
    assert [call.args[0] for call in drivers[0].get.call_args_list] == [
        "https://collabstr.com/alpha",
        "https://collabstr.com/bravo",
    ]


@pytest.mark.unit
def test_concurrent_slots_get_their_own_driver():
    factory = Mock(side_effect=[_driver(), _driver()])
    automation = SeleniumAutomation(FAST, driver_factory=factory)

    async def visit_together():
        async with automation.detail_page("alpha"):
            async with automation.detail_page("bravo"):
                assert automation.in_use_count == 2

    asyncio.run(visit_together())

    assert factory.call_count == 2
    assert automation.idle_count == 2


@pytest.mark.unit
def test_navigation_timeout_discards_driver():
    driver = _driver()
    driver.get.side_effect = TimeoutException("slow")
    automation = SeleniumAutomation(FAST, driver_factory=lambda: driver)
    automation._quit_in_background = Mock()

    async def visit():
        async with automation.detail_page("alpha"):
            pass

    with pytest.raises(PageTransportError):
        asyncio.run(visit())

    automation._quit_in_background.assert_called_once_with(driver)
    assert automation.idle_count == 0
    assert automation.in_use_count == 0


@pytest.mark.unit
def test_force_release_and_close_quit_every_driver():
    detail_driver = _driver()
    listing_driver = _driver()
    automation = SeleniumAutomation(FAST, driver_factory=Mock(side_effect=[listing_driver, detail_driver]))

    async def scenario():
        await automation.open_listing("https://collabstr.com/influencers")
        async with automation.detail_page("alpha"):
            pass
        await automation.close()

    asyncio.run(scenario())

    detail_driver.quit.assert_called_once()
    listing_driver.quit.assert_called_once()
    assert automation.idle_count == 0


@pytest.mark.unit
def test_listing_page_advances_by_page_parameter():
    driver = _driver()
    automation = SeleniumAutomation(FAST, driver_factory=lambda: driver)

    async def scenario():
        page = await automation.open_listing(driver.current_url)
        await page.load_all_content()
        return await page.go_to_next_page()

    assert asyncio.run(scenario()) is True
    assert driver.get.call_args_list[-1].args[0] == "https://collabstr.com/influencers?p=instagram&pg=2"


@pytest.mark.unit
def test_clamped_page_number_ends_pagination():
    driver = _driver()
    last_page = "https://collabstr.com/influencers?p=instagram&pg=7"
    driver.current_url = last_page
    automation = SeleniumAutomation(FAST, driver_factory=lambda: driver)

    async def scenario():
        page = await automation.open_listing(last_page)
        driver.get.side_effect = lambda url: None  # site keeps the browser on pg=7
        return await page.go_to_next_page()

    assert asyncio.run(scenario()) is False
    assert driver.get.call_args_list[-1].args[0] == "https://collabstr.com/influencers?p=instagram&pg=8"


@pytest.mark.unit
def test_chromedriver_is_spawned_with_sigint_ignored(monkeypatch):
    handlers_seen = []

    def fake_chrome(options):
        handlers_seen.append(signal.getsignal(signal.SIGINT))
        return _driver()

    monkeypatch.setattr(selenium_automation.webdriver, "Chrome", fake_chrome)
    automation = SeleniumAutomation(SeleniumConfig())

    async def start_browser():
        await automation._new_driver()
        return signal.getsignal(signal.SIGINT)

    handler_after = asyncio.run(start_browser())

    assert handlers_seen == [signal.SIG_IGN]
    assert handler_after is not signal.SIG_IGN


@pytest.mark.unit
def test_browser_start_failure_is_a_transport_error():
    automation = SeleniumAutomation(FAST, driver_factory=Mock(side_effect=WebDriverException("no chrome")))

    with pytest.raises(PageTransportError, match="could not start browser"):
        asyncio.run(automation.open_listing("https://collabstr.com/influencers"))
