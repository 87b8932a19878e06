"""Site crawler - schedules fetch, extraction, chunking and indexing for one site."""

import asyncio
import logging
from typing import Callable, Dict, List, Optional
from urllib.parse import urljoin

import httpx
from selectolax.parser import HTMLParser

from siterag.config import Settings, get_settings
from siterag.errors import ConfigurationError, FetchError
from siterag.services.company_profile import CompanyProfile, CompanyProfileExtractor, build_overview_chunks
from siterag.services.embeddings import EmbeddingClient
from siterag.services.indexing import ChunkIndexer
from siterag.services.store import SqlChunkStore

from .chunker import build_page_chunks
from .constants import CATEGORY_ORDER, CRITICAL_PATHS, PRIORITY_PATHS
from .extraction import ContentExtractor
from .fetcher import BrowserSession, PageFetcher, build_http_client
from .frontier import Frontier, classify_tier
from .models import ChunkRecord, CrawlProgress, CrawlResult, CrawlTier, FetchOutcome, PageDocument, PageResult
from .navigation import discover_spa_links
from .spa import is_spa
from .urls import normalize_root_url, origin_of

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CrawlProgress], None]


class SiteCrawler:
    """
    Crawls one website into indexed chunks.

    Flow per run:
    1. Fetch the root once and discover its links (browser traversal for SPAs)
    2. Seed well-known company and business paths into the frontier
    3. Fetch, extract and chunk pages in bounded parallel rounds, tier by tier
    4. Embed and store each round before the next one starts
    5. Extract a company profile from everything collected
    """

    def __init__(
        self,
        indexer: Optional[ChunkIndexer],
        profile_extractor: Optional[CompanyProfileExtractor] = None,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        browser_factory: Optional[Callable[[], BrowserSession]] = None,
    ):
        """
        Initialize the crawler.

        Args:
            indexer: Embeds and stores chunks; required to run a crawl
            profile_extractor: Optional company profile extraction after the crawl
            settings: Defaults to the process settings
            client: Shared HTTP client; one is created per run when omitted
            browser_factory: Builds the per-run browser session; None disables rendering
        """
        self.settings = settings or get_settings()
        self.indexer = indexer
        self.profile_extractor = profile_extractor
        self.client = client
        self.browser_factory = browser_factory
        self.extractor = ContentExtractor()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SiteCrawler":
        """Crawler wired to OpenAI embeddings, the SQL store and headless Chromium."""
        settings = settings or get_settings()
        indexer = ChunkIndexer(EmbeddingClient(settings), SqlChunkStore())

        def _browser() -> BrowserSession:
            return BrowserSession(
                headless=settings.browser_headless,
                executable_path=settings.browser_executable_path,
                args=settings.browser_args(),
                timeout_seconds=settings.rendered_fetch_timeout_seconds,
            )

        return cls(
            indexer,
            profile_extractor=CompanyProfileExtractor(settings=settings),
            settings=settings,
            browser_factory=_browser,
        )

    async def crawl(
        self,
        root_url: str,
        company_id: str,
        agent_id: str,
        page_budget: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CrawlResult:
        """
        Crawl a site and index its content.

        Args:
            root_url: Starting URL (bare domains get https://)
            company_id: Tenant the chunks are stored under
            agent_id: Agent the chunks belong to
            page_budget: Maximum pages to fetch; defaults to settings
            on_progress: Receives a CrawlProgress per phase
            cancel_event: When set, the run stops before its next round

        Returns:
            CrawlResult; success is False when nothing was extracted or the run
            was cancelled

        Raises:
            ConfigurationError: no indexer (embedding credentials) is configured
            ValueError: root_url is not a usable URL
        """
        if self.indexer is None:
            raise ConfigurationError("An embedding indexer is required to crawl")
        root = normalize_root_url(root_url)
        if not root:
            raise ValueError("Invalid starting URL")

        budget = max(1, int(page_budget or self.settings.crawl_page_budget))
        parallelism = max(1, int(self.settings.crawl_parallelism))
        threshold = self.settings.crawl_content_sufficiency_threshold

        def _emit(kind: str, message: str, percent: int, current_url: Optional[str] = None,
                  chunks_found: Optional[int] = None) -> None:
            if on_progress is None:
                return
            on_progress(CrawlProgress(
                type=kind,
                current_page=len(fetched_pages),
                total_pages=budget,
                percent=max(0, min(100, percent)),
                message=message,
                current_url=current_url,
                chunks_found=chunks_found,
            ))

        def _cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        frontier = Frontier()
        fetched_pages: List[PageDocument] = []
        collected: List[ChunkRecord] = []
        stored = 0
        site_is_spa = False
        theme_color = ""
        browser = self.browser_factory() if self.browser_factory is not None else None
        client = self.client or build_http_client(self.settings.plain_fetch_timeout_seconds)
        fetcher = PageFetcher(client, browser)

        try:
            # Phase 1: root fetch and link discovery
            _emit("discovering", f"Analyzing {root}...", 0, current_url=root)
            root_html = ""
            try:
                root_html = await fetcher.fetch_plain(root)
            except FetchError as exc:
                logger.warning("Root fetch failed: %s", exc)

            # the root is fetched once; SPA shells are rendered from this outcome later
            prefetched: Dict[str, FetchOutcome] = {}
            if root_html:
                prefetched[root] = FetchOutcome(url=root, html=root_html)
            static_links = self.extractor.extract_links(HTMLParser(root_html), root) if root_html else []
            if root_html and is_spa(root_html):
                site_is_spa = True
                _emit("discovering", "Client-rendered site detected, exploring navigation...", 2)
                links = await discover_spa_links(browser, root, static_links)
            else:
                links = static_links

            # Phase 2: seed the frontier
            frontier.push(root, CrawlTier.critical)
            origin = origin_of(root)
            for path in CRITICAL_PATHS:
                frontier.push(urljoin(origin, path), CrawlTier.critical)
            frontier.extend(links)
            for path in PRIORITY_PATHS:
                frontier.push(urljoin(origin, path), CrawlTier.priority)
            _emit("discovering", f"Queued {len(frontier)} candidate pages", 5)

            # Phase 3: bounded parallel rounds
            while frontier and frontier.visited_count < budget:
                if _cancelled():
                    break
                batch: List[str] = []
                limit = min(parallelism, budget - frontier.visited_count)
                while len(batch) < limit:
                    task = frontier.pop()
                    if task is None:
                        break
                    frontier.mark_visited(task.url)
                    batch.append(task.url)
                if not batch:
                    break
                if _cancelled():
                    break

                _emit(
                    "crawling",
                    f"Fetching {len(batch)} pages ({frontier.visited_count}/{budget})",
                    5 + int(80 * frontier.visited_count / budget),
                    current_url=batch[0],
                    chunks_found=len(collected),
                )
                results = await asyncio.gather(
                    *[
                        self._process_page(fetcher, url, company_id, agent_id, prefetched.pop(url, None))
                        for url in batch
                    ],
                    return_exceptions=True,
                )

                round_chunks: List[ChunkRecord] = []
                for url, result in zip(batch, results):
                    if isinstance(result, FetchError):
                        logger.info("Skipping %s: %s", url, result.reason)
                        continue
                    if isinstance(result, Exception):
                        logger.warning("Page %s failed: %s", url, result)
                        continue
                    fetched_pages.append(result.page)
                    site_is_spa = site_is_spa or result.is_spa
                    if not theme_color and result.page.theme_color:
                        theme_color = result.page.theme_color
                    round_chunks.extend(result.chunks)
                    for link in result.links:
                        frontier.push(link, classify_tier(link))

                if round_chunks:
                    collected.extend(round_chunks)
                    _emit("embedding", f"Embedding {len(round_chunks)} chunks", 5 + int(80 * frontier.visited_count / budget),
                          chunks_found=len(collected))
                    stored += await self.indexer.index(round_chunks)
                    _emit("saving", f"Saved {stored} chunks", 5 + int(80 * frontier.visited_count / budget),
                          chunks_found=stored)

                if stored >= threshold and not frontier.has_pending(CrawlTier.critical):
                    logger.info("Content sufficient (%d chunks), stopping early", stored)
                    break

            if _cancelled():
                _emit("error", "Crawl cancelled", 100)
                return self._result(False, fetched_pages, stored, collected, site_is_spa, theme_color,
                                    error="cancelled")

            if not collected:
                _emit("error", "No content could be extracted", 100)
                return self._result(False, fetched_pages, 0, collected, site_is_spa, theme_color,
                                    error="no content")

            # Phase 4: company profile
            company_info = {}
            if self.profile_extractor is not None:
                _emit("extracting", "Extracting company information...", 90, chunks_found=stored)
                try:
                    profile = await self.profile_extractor.extract_profile(collected)
                except Exception:
                    logger.exception("Company profile extraction failed for %s", root)
                    profile = CompanyProfile()
                company_info = profile.to_dict()
                overview = build_overview_chunks(
                    profile,
                    company_id,
                    agent_id,
                    url=root,
                    max_size=self.settings.crawl_chunk_size,
                )
                if overview:
                    stored += await self.indexer.index(overview)
                    collected.extend(overview)

            _emit("complete", f"Crawled {len(fetched_pages)} pages, {stored} chunks", 100, chunks_found=stored)
            result = self._result(True, fetched_pages, stored, collected, site_is_spa, theme_color)
            result.company_info = company_info
            return result
        finally:
            if browser is not None:
                await browser.close()
            if self.client is None:
                await client.aclose()

    async def _process_page(
        self,
        fetcher: PageFetcher,
        url: str,
        company_id: str,
        agent_id: str,
        prefetched: Optional[FetchOutcome] = None,
    ) -> PageResult:
        if prefetched is not None:
            outcome = await fetcher.render_if_spa(prefetched)
        else:
            outcome = await fetcher.fetch(url)
        page = self.extractor.extract(outcome.html, url)
        chunks = build_page_chunks(
            page,
            company_id,
            agent_id,
            chunk_size=self.settings.crawl_chunk_size,
            fallback_chunk_size=self.settings.crawl_fallback_chunk_size,
        )
        return PageResult(url=url, page=page, chunks=chunks, links=page.links, is_spa=outcome.is_spa)

    @staticmethod
    def _result(
        success: bool,
        pages: List[PageDocument],
        stored: int,
        chunks: List[ChunkRecord],
        site_is_spa: bool,
        theme_color: str,
        error: Optional[str] = None,
    ) -> CrawlResult:
        # category order for output, discovery order within a category
        ordered = sorted(
            pages,
            key=lambda page: CATEGORY_ORDER.index(page.category) if page.category in CATEGORY_ORDER else len(CATEGORY_ORDER),
        )
        return CrawlResult(
            success=success,
            pages_visited=len(pages),
            total_chunks=stored,
            is_spa=site_is_spa,
            theme_color=theme_color,
            visited_urls=[page.url for page in ordered],
            chunks=list(chunks),
            error=error,
        )
