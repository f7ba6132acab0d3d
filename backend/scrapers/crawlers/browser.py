"""
Browser session for JavaScript-rendered portfolio pages.

Owns one Playwright Chromium instance for the lifetime of a crawl. Every
page gets its own browser context so that user agent, proxy and cookies
stay isolated between pages.
"""

import asyncio
import logging
import os
from typing import Dict, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

from ..utils.user_agents import get_random_user_agent

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-accelerated-2d-canvas',
    '--disable-gpu',
    '--window-size=1920,1080',
    '--disable-blink-features=AutomationControlled',
    '--disable-web-security',
    '--disable-features=IsolateOrigins,site-per-process',
    '--allow-running-insecure-content',
    '--disable-extensions',
    '--disable-plugins',
    '--disable-default-apps',
    '--ignore-certificate-errors',
]

VIEWPORT = {'width': 1920, 'height': 1080}

# Hides the usual automation fingerprints before any page script runs
STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });

    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5]
    });

    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });

    const originalQuery = window.navigator.permissions.query;
    window.navigator.permissions.query = (parameters) => (
        parameters.name === 'notifications' ?
            Promise.resolve({ state: Notification.permission }) :
            originalQuery(parameters)
    );
"""


class BrowserSession:
    """
    Lazily launched, shared Chromium browser.

    Features:
    - Relaunch when the browser has disconnected
    - Page creation serialized through a lock
    - One isolated context per page (user agent, viewport, proxy)
    - Close operations that never raise
    """

    def __init__(self, headless: bool = True, timeout: float = 30.0):
        """
        Args:
            headless: Run Chromium without a window
            timeout: Default navigation/operation timeout in seconds
        """
        self.headless = headless
        self.timeout = timeout
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._contexts: Dict[int, BrowserContext] = {}
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def get_browser(self) -> Browser:
        """Return the live browser, launching (or relaunching) it if needed."""
        if self.is_connected:
            return self._browser

        if self._browser is not None:
            logger.warning("Browser disconnected, relaunching...")
            await self.close_browser()

        if self._playwright is None:
            self._playwright = await async_playwright().start()

            chromium_path = self._playwright.chromium.executable_path
            if not chromium_path or not os.path.exists(chromium_path):
                await self._stop_playwright()
                raise RuntimeError("Chromium browser not found. Run: playwright install chromium")

        logger.debug("Launching Chromium browser...")
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=LAUNCH_ARGS,
            handle_sigint=False,
            handle_sigterm=False,
            handle_sighup=False,
        )
        logger.info("Browser instance created")
        return self._browser

    async def create_page(
        self,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        proxy: Optional[str] = None,
    ) -> Page:
        """
        Open a page in a fresh context.

        Args:
            user_agent: Explicit user agent; a random one from the pool otherwise
            timeout: Default timeout in seconds for this page
            proxy: Optional 'ip:port' to route the context through

        Returns:
            Configured Playwright page
        """
        async with self._lock:
            browser = await self.get_browser()

            user_agent = user_agent or get_random_user_agent()
            context_options = {
                'viewport': VIEWPORT,
                'user_agent': user_agent,
                'locale': 'en-US',
                'ignore_https_errors': True,
                'extra_http_headers': {'Accept-Language': 'en-US,en;q=0.9'},
            }
            if proxy:
                context_options['proxy'] = {'server': f"http://{proxy}"}

            context = await browser.new_context(**context_options)
            await context.add_init_script(STEALTH_INIT_SCRIPT)

            page_timeout = int((timeout or self.timeout) * 1000)
            context.set_default_navigation_timeout(page_timeout)
            context.set_default_timeout(page_timeout)

            page = await context.new_page()
            self._contexts[id(page)] = context

        logger.debug(f"Created page with User-Agent: {user_agent[:80]}...")
        return page

    async def close_page(self, page: Optional[Page]):
        """Close a page and its context. Safe to call on closed pages."""
        if page is None:
            return
        context = self._contexts.pop(id(page), None)
        try:
            await asyncio.wait_for(page.close(), timeout=2.0)
        except Exception as e:
            logger.warning(f"Error closing page: {e}")
        if context is not None:
            try:
                await asyncio.wait_for(context.close(), timeout=2.0)
            except Exception as e:
                logger.warning(f"Error closing context: {e}")

    async def close_browser(self):
        """Close the browser and stop Playwright. Safe to call repeatedly."""
        self._contexts.clear()
        if self._browser is not None:
            try:
                await asyncio.wait_for(self._browser.close(), timeout=5.0)
                logger.info("Browser instance closed")
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None
        await self._stop_playwright()

    async def _stop_playwright(self):
        if self._playwright is not None:
            try:
                await asyncio.wait_for(self._playwright.stop(), timeout=2.0)
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    async def cleanup(self, page: Optional[Page] = None):
        """Close the page (if given) and then the browser."""
        await self.close_page(page)
        await self.close_browser()

    async def __aenter__(self):
        await self.get_browser()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_browser()
