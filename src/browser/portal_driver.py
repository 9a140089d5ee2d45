"""Playwright browser session used by the portal adapters.

This module is portal-agnostic. It offers the small set of interactions the
adapters need (navigate, locate, fill, click, wait, screenshot) and turns
Playwright failures into driver errors the adapters can reason about:

- element lookups that run out of time raise ElementNotFoundError
- wait conditions that run out of time raise WaitTimeoutError

There is no silent None return for a missing element.
"""

import base64
import asyncio
from enum import Enum
from typing import Optional
from loguru import logger

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    ElementHandle,
    Page,
    Playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

DEFAULT_TIMEOUT_MS = 30000


class PortalDriverError(Exception):
    """Base error for browser driver failures"""


class DriverNotStartedError(PortalDriverError):
    def __init__(self):
        super().__init__("Browser not started")


class ElementNotFoundError(PortalDriverError):
    def __init__(self, by: str, value: str, timeout_ms: int):
        super().__init__(f"Element not found: {by}={value} (waited {timeout_ms} ms)")
        self.by = by
        self.value = value
        self.timeout_ms = timeout_ms


class WaitTimeoutError(PortalDriverError):
    def __init__(self, condition: str, timeout_ms: int):
        super().__init__(f"Timeout after {timeout_ms} ms waiting for {condition}")
        self.condition = condition
        self.timeout_ms = timeout_ms


class By(str, Enum):
    """Element lookup strategies"""
    ID = 'id'
    NAME = 'name'
    CSS = 'css'
    XPATH = 'xpath'


def _quote(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def build_selector(by: By, value: str) -> str:
    """Translate a lookup strategy into a Playwright selector"""
    by = By(by)
    if by is By.ID:
        return f'[id="{_quote(value)}"]'
    if by is By.NAME:
        return f'[name="{_quote(value)}"]'
    if by is By.XPATH:
        return f'xpath={value}'
    return value


class PortalDriver:
    """One live browser session for a single submission attempt"""

    def __init__(
        self,
        browser_type: str = 'chrome',
        headless: bool = True,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        correlation_id: str = "N/A",
    ):
        self.browser_type = browser_type.lower()
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.correlation_id = correlation_id

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    @property
    def is_started(self) -> bool:
        return self.page is not None

    @property
    def current_url(self) -> str:
        return self._require_page().url

    def _require_page(self) -> Page:
        if not self.page:
            raise DriverNotStartedError()
        return self.page

    async def _launch_browser(self) -> Browser:
        if self.browser_type in ('chrome', 'chromium'):
            return await self._playwright.chromium.launch(headless=self.headless)
        if self.browser_type == 'edge':
            return await self._playwright.chromium.launch(headless=self.headless, channel='msedge')
        if self.browser_type == 'firefox':
            return await self._playwright.firefox.launch(headless=self.headless)
        if self.browser_type == 'webkit':
            return await self._playwright.webkit.launch(headless=self.headless)
        raise ValueError(f"Unsupported browser type: {self.browser_type}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(PlaywrightError),
        reraise=True
    )
    async def start(self):
        """Launch the browser and open a fresh page"""
        try:
            self._playwright = await async_playwright().start()
            self.browser = await self._launch_browser()
            self.context = await self.browser.new_context(viewport={"width": 1280, "height": 900})
            self.page = await self.context.new_page()
            self.page.set_default_timeout(self.timeout_ms)
            self.page.set_default_navigation_timeout(self.timeout_ms)
        except Exception:
            await self.close()
            raise

        mode = "headless" if self.headless else "headed"
        logger.info(f"[{self.correlation_id}] {self.browser_type} browser started in {mode} mode")

    async def close(self):
        """Release page, context, browser and Playwright. Safe to call twice."""
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
            if self._playwright:
                await self._playwright.stop()
            logger.info(f"[{self.correlation_id}] Browser closed")
        except Exception as e:
            logger.debug(f"[{self.correlation_id}] Error closing browser: {e}")
        finally:
            self.page = None
            self.context = None
            self.browser = None
            self._playwright = None

    async def navigate(self, url: str):
        page = self._require_page()
        logger.debug(f"[{self.correlation_id}] Navigating to {url}")
        try:
            await page.goto(url)
        except PlaywrightTimeoutError:
            raise WaitTimeoutError(f"navigation to {url}", self.timeout_ms)
        except PlaywrightError as e:
            raise PortalDriverError(f"Navigation to {url} failed: {e}") from e

    async def find_element(self, by: By, value: str, timeout: Optional[int] = None) -> ElementHandle:
        """Wait for an element to be attached to the DOM and return it"""
        page = self._require_page()
        timeout = self.timeout_ms if timeout is None else timeout
        by = By(by)
        try:
            element = await page.wait_for_selector(build_selector(by, value), state='attached', timeout=timeout)
        except PlaywrightTimeoutError:
            raise ElementNotFoundError(by.value, value, timeout)
        except PlaywrightError as e:
            raise PortalDriverError(f"Lookup of {by.value}={value} failed: {e}") from e
        if element is None:
            raise ElementNotFoundError(by.value, value, timeout)
        return element

    async def find_by_id(self, element_id: str, timeout: Optional[int] = None) -> ElementHandle:
        return await self.find_element(By.ID, element_id, timeout)

    async def find_by_name(self, name: str, timeout: Optional[int] = None) -> ElementHandle:
        return await self.find_element(By.NAME, name, timeout)

    async def find_by_selector(self, selector: str, timeout: Optional[int] = None) -> ElementHandle:
        return await self.find_element(By.CSS, selector, timeout)

    async def find_by_xpath(self, xpath: str, timeout: Optional[int] = None) -> ElementHandle:
        return await self.find_element(By.XPATH, xpath, timeout)

    async def fill_input(self, element: ElementHandle, value: str):
        """Clear the input, then type the value"""
        try:
            await element.fill("")
            await element.fill(str(value))
        except PlaywrightError as e:
            raise PortalDriverError(f"Could not fill input: {e}") from e

    async def click(self, element: ElementHandle):
        try:
            await element.click()
        except PlaywrightError as e:
            raise PortalDriverError(f"Could not click element: {e}") from e

    async def select_option_by_value(self, element: ElementHandle, value: str):
        try:
            await element.select_option(value=str(value))
        except PlaywrightError as e:
            raise PortalDriverError(f"Option with value '{value}' not selectable: {e}") from e

    async def select_option_by_text(self, element: ElementHandle, text: str):
        try:
            await element.select_option(label=str(text))
        except PlaywrightError as e:
            raise PortalDriverError(f"Option with text '{text}' not selectable: {e}") from e

    async def upload_file(self, element: ElementHandle, path: str):
        try:
            await element.set_input_files(path)
        except PlaywrightError as e:
            raise PortalDriverError(f"Could not upload {path}: {e}") from e

    async def get_text(self, element: ElementHandle) -> str:
        try:
            return (await element.inner_text()).strip()
        except PlaywrightError as e:
            raise PortalDriverError(f"Could not read element text: {e}") from e

    async def wait_for_url_contains(self, text: str, timeout: Optional[int] = None):
        page = self._require_page()
        timeout = self.timeout_ms if timeout is None else timeout
        try:
            await page.wait_for_url(lambda url: text in url, timeout=timeout)
        except PlaywrightTimeoutError:
            raise WaitTimeoutError(f"URL to contain '{text}'", timeout)

    async def wait_for_title_contains(self, text: str, timeout: Optional[int] = None):
        page = self._require_page()
        timeout = self.timeout_ms if timeout is None else timeout
        try:
            await page.wait_for_function("text => document.title.includes(text)", arg=text, timeout=timeout)
        except PlaywrightTimeoutError:
            raise WaitTimeoutError(f"title to contain '{text}'", timeout)

    async def wait_for_visible(self, by: By, value: str, timeout: Optional[int] = None) -> ElementHandle:
        """Wait until any element matching the lookup is visible; hidden matches are ignored"""
        page = self._require_page()
        timeout = self.timeout_ms if timeout is None else timeout
        selector = f"{build_selector(by, value)} >> visible=true"
        try:
            element = await page.wait_for_selector(selector, state='visible', timeout=timeout)
        except PlaywrightTimeoutError:
            raise WaitTimeoutError(f"{By(by).value}={value} to be visible", timeout)
        if element is None:
            raise WaitTimeoutError(f"{By(by).value}={value} to be visible", timeout)
        return element

    async def wait_for_enabled(self, by: By, value: str, timeout: Optional[int] = None) -> ElementHandle:
        timeout = self.timeout_ms if timeout is None else timeout
        element = await self.find_element(by, value, timeout)
        try:
            await element.wait_for_element_state('enabled', timeout=timeout)
        except PlaywrightTimeoutError:
            raise WaitTimeoutError(f"{By(by).value}={value} to be enabled", timeout)
        return element

    async def pause(self, seconds: float):
        """Give the portal time to settle after an AJAX-driven action"""
        await asyncio.sleep(seconds)

    async def take_screenshot(self) -> bytes:
        page = self._require_page()
        return await page.screenshot(full_page=True)

    def screenshot_to_base64(self, screenshot: bytes) -> str:
        return base64.b64encode(screenshot).decode('utf-8')
