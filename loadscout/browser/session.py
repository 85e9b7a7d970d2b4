"""Provider session capture using patchright.

Hard rules:
  - headless=False always; the user logs in by hand
  - Single browser context per capture
  - Only the session and CSRF cookies are read; nothing else is kept
"""

import asyncio
import logging
from types import TracebackType
from typing import Any

from patchright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from loadscout.platforms.cloudtrucks.payload import CSRF_COOKIE_NAME, SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
POLL_INTERVAL_S = 2.0


def extract_session_tokens(cookies: list[Any]) -> tuple[str, str] | None:
    """Return (session cookie, CSRF token) from a browser cookie list, if both exist."""
    values = {
        c.get("name"): c.get("value")
        for c in cookies
        if isinstance(c, dict) and c.get("value")
    }
    session = values.get(SESSION_COOKIE_NAME)
    csrf = values.get(CSRF_COOKIE_NAME)
    if session and csrf:
        return session, csrf
    return None


class BrowserSession:
    """Async context manager that owns one patchright browser + context + page.

    Usage::

        async with BrowserSession(base_url) as session:
            tokens = await session.wait_for_login(timeout_s=300)
    """

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        """The single page for this session. Raises if not entered."""
        if self._page is None:
            msg = "BrowserSession not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._page

    async def __aenter__(self) -> "BrowserSession":
        pw = await async_playwright().start()
        self._playwright = pw
        self._browser = await pw.chromium.launch(headless=False)
        self._context = await self._browser.new_context()
        self._page = await self._context.new_page()
        await self._page.goto(f"{self._base_url}{LOGIN_PATH}")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    async def wait_for_login(self, timeout_s: float = 300.0) -> tuple[str, str] | None:
        """Poll the context's cookies until both session tokens appear."""
        if self._context is None:
            msg = "BrowserSession not entered, use 'async with'"
            raise RuntimeError(msg)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        logger.info("Waiting up to %.0fs for login to complete", timeout_s)
        while loop.time() < deadline:
            cookies = await self._context.cookies(self._base_url)
            tokens = extract_session_tokens(list(cookies))
            if tokens is not None:
                logger.info("Session cookies captured")
                return tokens
            await asyncio.sleep(POLL_INTERVAL_S)
        logger.warning("Login not detected within %.0fs", timeout_s)
        return None
