"""
Browser automation for page fetches.

Runs Playwright's Chromium, WebKit and Firefox engines, headless or
visible, and hands back PageSnapshot objects the classifier and site
adapters work from. Each navigation gets a fresh browser context with a
per-engine user agent and stealth init script; browsers themselves are
launched lazily and reused for the whole session.

Usage:
    async with BrowserSession() as browser:
        snapshot = await browser.navigate(url, engine="webkit", headless=True)
        html = await browser.page_html(snapshot)
        await browser.release(snapshot)
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from portal_crawler.constants import DEFAULT_USER_AGENTS, DEFAULT_VIEWPORT
from portal_crawler.errors import TransientFetchError
from portal_crawler.models import PageSnapshot

logger = logging.getLogger(__name__)


class BrowserEngine(str, Enum):
    """Supported browser engines."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


# Evasion scripts injected before any page script runs
STEALTH_SCRIPTS = {
    "webdriver": """
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined,
            configurable: true
        });
    """,
    "languages": """
        Object.defineProperty(navigator, 'languages', {
            get: () => ['en-US', 'en'],
            configurable: true
        });
    """,
    "hardware_concurrency": """
        Object.defineProperty(navigator, 'hardwareConcurrency', {
            get: () => 8,
            configurable: true
        });
    """,
    "chrome_runtime": """
        if (!window.chrome) {
            window.chrome = {};
        }
        if (!window.chrome.runtime) {
            window.chrome.runtime = {
                connect: function() {},
                sendMessage: function() {},
                onMessage: { addListener: function() {} }
            };
        }
    """,
    "plugins": """
        Object.defineProperty(navigator, 'plugins', {
            get: () => [
                { name: 'PDF Viewer', filename: 'internal-pdf-viewer' },
                { name: 'Chrome PDF Viewer', filename: 'internal-pdf-viewer' }
            ],
            configurable: true
        });
    """,
}

# Chromium-only fakes would give WebKit/Firefox away
ENGINE_STEALTH = {
    BrowserEngine.CHROMIUM: ["webdriver", "languages", "hardware_concurrency", "chrome_runtime", "plugins"],
    BrowserEngine.WEBKIT: ["webdriver", "languages", "hardware_concurrency"],
    BrowserEngine.FIREFOX: ["webdriver", "languages"],
}

LAUNCH_ARGS = {
    BrowserEngine.CHROMIUM: [
        "--disable-blink-features=AutomationControlled",
        "--no-sandbox",
        "--disable-dev-shm-usage",
    ],
}

SCROLL_SCRIPT = "() => window.scrollBy(0, document.body ? document.body.scrollHeight : 0)"


def stealth_script_for(engine: BrowserEngine) -> str:
    return "\n".join(STEALTH_SCRIPTS[name] for name in ENGINE_STEALTH[engine])


class BrowserSession:
    """
    Owns the Playwright driver and launched browsers for one crawl run.

    Navigation and page access failures surface as TransientFetchError so
    the fetch escalator can count them as failed steps.
    """

    def __init__(
        self,
        navigation_timeout: float = 60.0,
        content_prefix_chars: int = 20000,
        viewport: Optional[Dict[str, int]] = None,
        user_agents: Optional[Dict[str, str]] = None,
    ):
        self.navigation_timeout = navigation_timeout
        self.content_prefix_chars = content_prefix_chars
        self.viewport = viewport or dict(DEFAULT_VIEWPORT)
        self.user_agents = user_agents or dict(DEFAULT_USER_AGENTS)

        self._playwright: Optional[Playwright] = None
        self._browsers: Dict[Tuple[BrowserEngine, bool], Browser] = {}

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

    async def close(self) -> None:
        """Close every launched browser and stop the driver."""
        for (engine, headless), browser in list(self._browsers.items()):
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing {engine.value} (headless={headless}): {e}")
        self._browsers.clear()

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _get_browser(self, engine: BrowserEngine, headless: bool) -> Browser:
        key = (engine, headless)
        browser = self._browsers.get(key)
        if browser is not None and browser.is_connected():
            return browser

        await self.start()
        launcher = getattr(self._playwright, engine.value)
        logger.info(f"Launching {engine.value} (headless={headless})")
        browser = await launcher.launch(headless=headless, args=LAUNCH_ARGS.get(engine, []))
        self._browsers[key] = browser
        return browser

    async def navigate(
        self,
        url: str,
        engine: str = "chromium",
        headless: bool = True,
        timeout: Optional[float] = None,
    ) -> PageSnapshot:
        """
        Open ``url`` in a fresh context and snapshot the result.

        Args:
            url: Page to load
            engine: chromium, webkit or firefox
            headless: Run without a visible window
            timeout: Navigation timeout in seconds

        Returns:
            PageSnapshot holding the live page; pass it to ``release`` when done

        Raises:
            TransientFetchError: If the browser could not load the page
        """
        engine = BrowserEngine(engine)
        timeout_ms = int((timeout or self.navigation_timeout) * 1000)

        try:
            browser = await self._get_browser(engine, headless)
            context = await browser.new_context(
                user_agent=self.user_agents.get(engine.value),
                viewport=self.viewport,
                locale="en-US",
            )
        except PlaywrightError as e:
            raise TransientFetchError(f"{engine.value} unavailable: {e}", url=url) from e

        try:
            try:
                await context.add_init_script(stealth_script_for(engine))
                page = await context.new_page()
                await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                return await self._snapshot(page, engine, headless)
            except PlaywrightTimeoutError as e:
                raise TransientFetchError(f"Navigation timeout for {url}", url=url) from e
            except PlaywrightError as e:
                raise TransientFetchError(f"Navigation failed for {url}: {e}", url=url) from e
        except BaseException:
            # No snapshot reaches the caller, so nobody else can release the
            # context. Covers cancellation by a step timeout too.
            await self._close_context(context)
            raise

    async def _snapshot(self, page: Any, engine: BrowserEngine, headless: bool) -> PageSnapshot:
        title = await page.title()
        content = await page.content()
        cookies = await page.context.cookies()
        return PageSnapshot(
            url=page.url,
            title=title or "",
            content=content[: self.content_prefix_chars],
            cookie_names=[cookie["name"] for cookie in cookies],
            engine=engine.value,
            headless=headless,
            page=page,
        )

    async def refresh(self, snapshot: PageSnapshot) -> PageSnapshot:
        """Re-read the live page, e.g. after waiting out a challenge."""
        try:
            return await self._snapshot(
                snapshot.page, BrowserEngine(snapshot.engine), snapshot.headless
            )
        except PlaywrightError as e:
            # The page may be mid-navigation after a challenge redirect
            raise TransientFetchError(f"Could not read {snapshot.url}: {e}", url=snapshot.url) from e

    async def page_html(self, snapshot: PageSnapshot) -> str:
        """Full document HTML of the live page."""
        try:
            return await snapshot.page.content()
        except PlaywrightError as e:
            raise TransientFetchError(f"Could not read {snapshot.url}: {e}", url=snapshot.url) from e

    async def scroll_to_bottom(self, snapshot: PageSnapshot, steps: int = 3, pause: float = 1.0) -> None:
        """Scroll repeatedly so lazily loaded listing entries render."""
        try:
            for _ in range(steps):
                await snapshot.page.evaluate(SCROLL_SCRIPT)
                await asyncio.sleep(pause)
        except PlaywrightError as e:
            raise TransientFetchError(f"Scroll failed on {snapshot.url}: {e}", url=snapshot.url) from e

    async def evaluate(self, snapshot: PageSnapshot, script: str, arg: Any = None) -> Any:
        try:
            if arg is None:
                return await snapshot.page.evaluate(script)
            return await snapshot.page.evaluate(script, arg)
        except PlaywrightError as e:
            raise TransientFetchError(f"Script failed on {snapshot.url}: {e}", url=snapshot.url) from e

    async def screenshot(self, snapshot: PageSnapshot, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        await snapshot.page.screenshot(path=str(path), full_page=True)

    async def release(self, snapshot: PageSnapshot) -> None:
        """Close the context behind a snapshot's page."""
        if snapshot.page is None:
            return
        await self._close_context(snapshot.page.context)
        snapshot.page = None

    async def _close_context(self, context: Any) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            logger.debug(f"Error closing context: {e}")
