"""Browser-driven link discovery for client-rendered sites."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from selectolax.parser import HTMLParser

from siterag.errors import BrowserUnavailableError

from .constants import (
    MAX_NAV_CLICKS,
    NAV_CLICK_SELECTORS,
    NAV_EXCLUDE_KEYWORDS,
    SNAPSHOT_DEDUPE_PREFIX,
)
from .fetcher import BrowserSession
from .spa import visible_text
from .urls import resolve_link

logger = logging.getLogger(__name__)

CLICK_TIMEOUT_MS = 2000
SETTLE_TIMEOUT_MS = 5000


@dataclass
class NavigationResult:
    links: List[str] = field(default_factory=list)
    snapshots: int = 0
    clicks: int = 0


def should_click(text: str, href: Optional[str]) -> bool:
    """Skip auth controls, anchor-only targets and non-page schemes."""
    lowered = (text or "").strip().lower()
    if any(keyword in lowered for keyword in NAV_EXCLUDE_KEYWORDS):
        return False
    if href is None:
        return True
    target = href.strip().lower()
    if target.startswith(("mailto:", "tel:", "javascript:")):
        return False
    if target.startswith("#"):
        return False
    return True


def snapshot_key(html: str) -> str:
    return visible_text(html)[:SNAPSHOT_DEDUPE_PREFIX]


class NavigationExplorer:
    """
    Clicks through the navigation of an SPA and harvests links from each state.

    Each click starts from a fresh load of the root so that menus are in their
    initial state. Snapshots whose leading visible text matches an earlier one
    add no new links and are skipped.
    """

    def __init__(self, browser: BrowserSession, max_clicks: int = MAX_NAV_CLICKS):
        self.browser = browser
        self.max_clicks = max_clicks
        self._selector = ", ".join(NAV_CLICK_SELECTORS)

    async def explore(self, root_url: str) -> NavigationResult:
        result = NavigationResult()
        seen_links: Set[str] = set()
        seen_snapshots: Set[str] = set()

        def _harvest(html: str, page_url: str) -> None:
            key = snapshot_key(html)
            if key in seen_snapshots:
                return
            seen_snapshots.add(key)
            result.snapshots += 1
            tree = HTMLParser(html)
            candidates = [page_url] + [
                anchor.attributes.get("href") or "" for anchor in tree.css("a[href]")
            ]
            for href in candidates:
                resolved = resolve_link(href, root_url)
                if resolved and resolved not in seen_links:
                    seen_links.add(resolved)
                    result.links.append(resolved)

        async with self.browser.lock:
            page = await self.browser.new_page()
            try:
                await self.browser.goto(page, root_url)
                _harvest(await page.content(), page.url)
                total = await page.locator(self._selector).count()
                logger.info("SPA navigation: %d candidate controls on %s", total, root_url)

                for index in range(min(total, self.max_clicks)):
                    try:
                        clicked = await self._click_nth(page, root_url, index)
                    except PlaywrightError as exc:
                        logger.debug("Navigation click %d failed: %s", index, exc)
                        continue
                    if not clicked:
                        continue
                    result.clicks += 1
                    _harvest(await page.content(), page.url)
            finally:
                await page.close()

        return result

    async def _click_nth(self, page: Page, root_url: str, index: int) -> bool:
        if page.url.rstrip("/") != root_url.rstrip("/"):
            await self.browser.goto(page, root_url)
        element = page.locator(self._selector).nth(index)
        if not await element.is_visible():
            return False
        text = await element.inner_text()
        href = await element.get_attribute("href")
        if not should_click(text, href):
            return False
        await element.click(timeout=CLICK_TIMEOUT_MS)
        try:
            await page.wait_for_load_state("networkidle", timeout=SETTLE_TIMEOUT_MS)
        except PlaywrightError:
            # settled enough to snapshot
            pass
        return True


async def discover_spa_links(
    browser: Optional[BrowserSession],
    root_url: str,
    static_links: List[str],
) -> List[str]:
    """Links from browser traversal, or the static links when no browser works."""
    if browser is None:
        return list(static_links)
    try:
        navigation = await NavigationExplorer(browser).explore(root_url)
    except (BrowserUnavailableError, PlaywrightError) as exc:
        logger.warning("SPA navigation unavailable for %s: %s", root_url, exc)
        return list(static_links)
    merged = list(navigation.links)
    for link in static_links:
        if link not in merged:
            merged.append(link)
    return merged
