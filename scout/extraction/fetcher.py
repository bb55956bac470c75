"""
Page fetching for venue extraction.

A BrowserSession is the opaque open/clear/close capability. PlaywrightSession
implements it with a headless Chromium; tests pass in fakes.

PageFetcher guarantees two things for every fetch:
- Only one page is open per session at a time (asyncio.Lock)
- Session state (cookies, cache, storage) is cleared before each venue, so
  content from one venue can never leak into the next
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from django.conf import settings

from scout.exceptions import FetchTimeout

logger = logging.getLogger(__name__)


class BrowserSession(Protocol):
    async def open(self, url: str) -> str:
        """Navigate to url and return the rendered HTML."""

    async def clear_state(self) -> None:
        """Drop cookies, cache and storage."""

    async def close(self) -> None:
        """Release the browser."""


@dataclass
class FetchResult:
    url: str
    content: str = ""
    success: bool = False
    error: Optional[str] = None
    timed_out: bool = False
    duration_ms: int = 0


class PlaywrightSession:
    """
    BrowserSession backed by Playwright.

    clear_state() replaces the browser context, which discards cookies,
    HTTP cache, localStorage and service workers in one step.

    Usage:
        async with PlaywrightSession() as session:
            html = await session.open(url)
    """

    def __init__(self, headless: Optional[bool] = None, navigation_timeout: Optional[float] = None):
        self.headless = (
            headless if headless is not None else getattr(settings, "EXTRACTION_HEADLESS", True)
        )
        self.navigation_timeout = navigation_timeout or getattr(
            settings, "EXTRACTION_PAGE_TIMEOUT_SECONDS", 45
        )
        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        if self._browser is not None:
            return

        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-infobars",
                "--no-sandbox",
                "--disable-dev-shm-usage",
            ],
        )
        self._context = await self._browser.new_context()
        logger.info("Playwright browser initialized for extraction")

    async def clear_state(self) -> None:
        if self._browser is None:
            await self.start()
            return

        if self._context is not None:
            await self._context.clear_cookies()
            await self._context.close()
        self._context = await self._browser.new_context()

    async def open(self, url: str) -> str:
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        if self._context is None:
            await self.start()

        page = await self._context.new_page()
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout * 1000)
            await page.wait_for_load_state("domcontentloaded")
            return await page.content()
        except PlaywrightTimeoutError as e:
            raise FetchTimeout(f"navigation timeout for {url}") from e
        finally:
            await page.close()

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class PageFetcher:
    """Serializes fetches on one session and clears state before each."""

    def __init__(self, session: BrowserSession, timeout: Optional[float] = None):
        self.session = session
        self.timeout = timeout or getattr(settings, "EXTRACTION_PAGE_TIMEOUT_SECONDS", 45)
        self._lock = asyncio.Lock()

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        """
        Fetch one venue page.

        Never raises for navigation errors or timeouts; the FetchResult
        carries the failure instead.
        """
        timeout = timeout or self.timeout
        async with self._lock:
            started = time.monotonic()
            try:
                await self.session.clear_state()
                content = await asyncio.wait_for(self.session.open(url), timeout=timeout)
            except (asyncio.TimeoutError, FetchTimeout):
                logger.warning("Timed out after %ss fetching %s", timeout, url)
                return FetchResult(
                    url=url,
                    error=f"timeout after {timeout}s",
                    timed_out=True,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
            except Exception as e:
                logger.warning("Fetch failed for %s: %s", url, e)
                return FetchResult(
                    url=url,
                    error=str(e),
                    duration_ms=int((time.monotonic() - started) * 1000),
                )

            return FetchResult(
                url=url,
                content=content or "",
                success=bool(content),
                error=None if content else "empty page",
                duration_ms=int((time.monotonic() - started) * 1000),
            )

    async def close(self) -> None:
        await self.session.close()
