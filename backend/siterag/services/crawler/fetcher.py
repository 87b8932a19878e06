"""Plain and rendered page fetching."""

import asyncio
import logging
from typing import List, Optional

import httpx
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from siterag.errors import BrowserUnavailableError, FetchError

from .constants import HTTP_HEADERS
from .models import FetchOutcome
from .spa import is_spa

logger = logging.getLogger(__name__)


class BrowserSession:
    """
    One headless Chromium shared by every fetch in a crawl run.

    Launched lazily on first use. Page operations are serialized through a
    lock so concurrent fetches never drive the browser at the same time.
    """

    def __init__(
        self,
        headless: bool = True,
        executable_path: str = "",
        args: Optional[List[str]] = None,
        timeout_seconds: float = 25.0,
    ):
        self.headless = headless
        self.executable_path = executable_path
        self.args = list(args or [])
        self.timeout_ms = int(timeout_seconds * 1000)
        self.lock = asyncio.Lock()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._closed = False

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_browser(self) -> Browser:
        if self._closed:
            raise BrowserUnavailableError("Browser session already closed")
        if self._browser is not None:
            return self._browser
        launch_kwargs = {"headless": self.headless, "args": self.args}
        if self.executable_path:
            launch_kwargs["executable_path"] = self.executable_path
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
        except PlaywrightError as exc:
            await self._teardown()
            raise BrowserUnavailableError(f"Chromium launch failed: {exc}") from exc
        logger.info("Launched headless browser (headless=%s)", self.headless)
        return self._browser

    async def new_page(self) -> Page:
        """Open a fresh page. Callers must hold ``lock`` and close the page."""
        browser = await self._ensure_browser()
        return await browser.new_page(extra_http_headers={
            "Accept-Language": HTTP_HEADERS["Accept-Language"],
        })

    async def goto(self, page: Page, url: str) -> None:
        await page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
        await page.wait_for_function(
            "document.readyState === 'complete'",
            timeout=self.timeout_ms,
        )

    async def render(self, url: str) -> str:
        """Navigate to url and return the rendered DOM as HTML."""
        async with self.lock:
            page = await self.new_page()
            try:
                await self.goto(page, url)
                return await page.content()
            finally:
                await page.close()

    async def _teardown(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                logger.debug("Browser close failed: %s", exc)
            self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as exc:
                logger.debug("Playwright stop failed: %s", exc)
            self._playwright = None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._teardown()


def build_http_client(timeout_seconds: float = 10.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout_seconds,
        follow_redirects=True,
        headers=HTTP_HEADERS,
    )


class PageFetcher:
    """Fetches a URL statically, re-rendering SPA shells in the browser."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        browser: Optional[BrowserSession] = None,
    ):
        self.client = client
        self.browser = browser

    async def fetch_plain(self, url: str) -> str:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as exc:
            raise FetchError(url, exc.__class__.__name__) from exc
        if response.status_code < 200 or response.status_code >= 300:
            raise FetchError(url, f"HTTP {response.status_code}")
        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type.lower():
            raise FetchError(url, f"non-HTML content ({content_type})")
        return response.text

    async def fetch_rendered(self, url: str) -> str:
        if self.browser is None:
            raise BrowserUnavailableError("No browser session configured")
        return await self.browser.render(url)

    async def fetch(self, url: str) -> FetchOutcome:
        """
        Fetch one page.

        The plain body is tried first. When it looks like an SPA shell the page
        is rendered in the browser; if rendering fails the plain body is used.

        Raises:
            FetchError: the plain fetch failed; no render is attempted.
        """
        html = await self.fetch_plain(url)
        return await self.render_if_spa(FetchOutcome(url=url, html=html))

    async def render_if_spa(self, outcome: FetchOutcome) -> FetchOutcome:
        """Re-render a plainly fetched SPA shell; other documents pass through."""
        if outcome.rendered or not is_spa(outcome.html):
            return outcome
        try:
            rendered = await self.fetch_rendered(outcome.url)
        except (BrowserUnavailableError, PlaywrightError) as exc:
            logger.warning("Render failed for %s, using static HTML: %s", outcome.url, exc)
            return FetchOutcome(url=outcome.url, html=outcome.html, is_spa=True)
        return FetchOutcome(url=outcome.url, html=rendered, rendered=True, is_spa=True)
