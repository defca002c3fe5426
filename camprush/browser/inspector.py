"""
Live page inspection through a real browser

Loads a provider page in Chromium and records what a registration
flow is likely to demand: CAPTCHAs, forms, file uploads, logins.
The snapshot feeds the vision analyzer.
"""
import base64
import logging
from typing import Optional, Dict, Any, List

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeout,
)

from ..common.config import BrowserConfig

logger = logging.getLogger(__name__)


CAPTCHA_SELECTORS = [
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    '.g-recaptcha',
    '.h-captcha',
    '#captcha',
    '[data-sitekey]',
]

LOGIN_SELECTORS = [
    'input[type="password"]',
    'form[action*="login"]',
    'a[href*="login"]',
    'a[href*="signin"]',
]

FILE_INPUT_SELECTOR = 'input[type="file"]'
FORM_SELECTOR = 'form'
REQUIRED_FIELD_SELECTOR = 'input[required], select[required], textarea[required]'


class InspectionError(Exception):
    """Raised when a page cannot be loaded for inspection"""
    pass


class PageInspector:
    """
    Headless Chromium session for one or more page snapshots.

    Use as an async context manager; the browser is launched on enter
    and torn down on exit.
    """

    def __init__(self, config: BrowserConfig):
        self.config = config
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def start(self):
        """Start the browser"""
        logger.info("Starting browser...")

        self.playwright = await async_playwright().start()

        self.browser = await self.playwright.chromium.launch(
            headless=self.config.headless,
            slow_mo=self.config.slow_mo,
        )

        self.context = await self.browser.new_context(
            user_agent=self.config.user_agent,
            viewport={"width": 1920, "height": 1080},
            locale="en-US",
        )

        self.page = await self.context.new_page()
        self.page.set_default_navigation_timeout(self.config.navigation_timeout_ms)
        logger.info("Browser started")

    async def stop(self):
        """Stop the browser"""
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        logger.info("Browser stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    async def _any_present(self, selectors: List[str]) -> bool:
        for selector in selectors:
            if await self.page.query_selector(selector):
                return True
        return False

    async def _required_fields(self) -> List[str]:
        fields = []
        for element in await self.page.query_selector_all(REQUIRED_FIELD_SELECTOR):
            name = await element.get_attribute("name") or await element.get_attribute("id")
            if name and name not in fields:
                fields.append(name)
        return fields

    async def inspect(self, url: str, capture_screenshot: bool = True) -> Dict[str, Any]:
        """
        Load `url` and describe the page.

        Returns a JSON-serializable dict with the page title, barrier
        indicators, required field names and, optionally, a base64 PNG
        screenshot.
        """
        if not self.page:
            raise InspectionError("Inspector not started")

        try:
            response = await self.page.goto(url, wait_until="domcontentloaded")
        except (PlaywrightTimeout, PlaywrightError) as e:
            raise InspectionError(f"Failed to load {url}: {e}") from e

        snapshot: Dict[str, Any] = {
            "url": self.page.url,
            "status": response.status if response else None,
            "title": await self.page.title(),
            "has_captcha": await self._any_present(CAPTCHA_SELECTORS),
            "has_login": await self._any_present(LOGIN_SELECTORS),
            "form_count": len(await self.page.query_selector_all(FORM_SELECTOR)),
            "file_inputs": len(await self.page.query_selector_all(FILE_INPUT_SELECTOR)),
            "required_fields": await self._required_fields(),
        }

        if capture_screenshot:
            png = await self.page.screenshot(full_page=True)
            snapshot["screenshot"] = base64.b64encode(png).decode("ascii")

        logger.info(
            f"Inspected {url}: captcha={snapshot['has_captcha']}, "
            f"login={snapshot['has_login']}, forms={snapshot['form_count']}"
        )
        return snapshot
