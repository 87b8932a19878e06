import asyncio

import httpx
import pytest

from siterag.config import Settings
from siterag.errors import ConfigurationError
from siterag.services.crawler.unified import SiteCrawler

HOME = """
<html><head><title>Example Clinic Software</title>
<meta name="description" content="Booking software for clinics in Japan and beyond.">
<meta name="theme-color" content="#123456"></head>
<body>
<nav><a href="/about">About</a><a href="/contact">Contact</a></nav>
<h1>Booking made simple</h1>
<p>Example Inc. builds online booking tools for clinics of every size.</p>
<h2>Features</h2>
<ul><li>Online reservations around the clock</li><li>Automatic reminder messages</li></ul>
</body></html>
"""

ABOUT = """
<html><head><title>About | Example</title></head>
<body>
<h1>About us</h1>
<p>Example Inc. was founded in 2010 by two former clinic managers.</p>
<table><tr><th>Company name</th><td>Example Inc.</td></tr><tr><th>Employees</th><td>42</td></tr></table>
</body></html>
"""

CONTACT = """
<html><head><title>Contact | Example</title></head>
<body>
<h1>Contact</h1>
<p>Reach our support team by phone on weekdays from 9:00 to 18:00.</p>
<h2>Office</h2>
<p>1-2-3 Shibuya, Tokyo, Japan. Five minutes from the station.</p>
</body></html>
"""

SPA_SHELL = '<html><head><title>App</title></head><body><div id="root"></div><a href="/about">About</a></body></html>'


class _FakeIndexer:
    def __init__(self):
        self.batches = []

    async def index(self, chunks):
        self.batches.append(list(chunks))
        return len(chunks)


def _client(pages, requested=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requested is not None:
            requested.append(request.url.path)
        body = pages.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="Not found")
        return httpx.Response(200, html=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


def _settings(**overrides):
    values = dict(crawl_parallelism=5, crawl_content_sufficiency_threshold=200)
    values.update(overrides)
    return Settings(**values)


def _crawl(crawler, *args, **kwargs):
    async def _run():
        try:
            return await crawler.crawl(*args, **kwargs)
        finally:
            await crawler.client.aclose()

    return asyncio.run(_run())


def test_three_page_static_site():
    indexer = _FakeIndexer()
    crawler = SiteCrawler(
        indexer,
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT, "/contact": CONTACT}),
    )
    events = []

    result = _crawl(crawler, "https://example.com", "company-1", "agent-1", on_progress=events.append)

    assert result.success is True
    assert result.pages_visited == 3
    assert set(result.visited_urls) == {
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/contact",
    }
    assert result.visited_urls[0] == "https://example.com/about"
    assert result.total_chunks > 0
    assert result.total_chunks == sum(len(batch) for batch in indexer.batches)
    assert result.is_spa is False
    assert result.theme_color == "#123456"
    assert all(chunk.company_id == "company-1" for chunk in result.chunks)
    assert {"discovering", "crawling", "embedding", "saving", "complete"} <= {event.type for event in events}
    assert events[-1].percent == 100


def test_root_is_fetched_only_once():
    requested = []
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT, "/contact": CONTACT}, requested),
    )

    _crawl(crawler, "https://example.com/", "c", "a")

    assert requested.count("/") == 1
    assert requested.count("/about") == 1


def test_page_budget_bounds_fetches():
    requested = []
    links = "".join(f'<a href="/blog/{i}">Post {i}</a>' for i in range(20))
    home = f"<html><body><h1>Blog</h1><p>Welcome to our company blog.</p>{links}</body></html>"
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(crawl_parallelism=2),
        client=_client({"/": home}, requested),
    )

    result = _crawl(crawler, "https://example.com", "c", "a", page_budget=3)

    assert len(requested) <= 3
    assert len(set(requested)) == len(requested)
    assert result.pages_visited <= 3


def test_early_exit_waits_for_critical_pages():
    requested = []
    news = "<html><body><h1>News</h1><p>We released a new version of the booking tool.</p></body></html>"
    home = HOME.replace('<a href="/contact">Contact</a>', '<a href="/news">News</a>')
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(crawl_parallelism=1, crawl_content_sufficiency_threshold=1),
        client=_client({"/": home, "/about": ABOUT, "/news": news}, requested),
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert "/about" in requested
    assert "/news" not in requested
    assert result.success is True


def test_spa_root_without_browser_uses_static_html():
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(),
        client=_client({"/": SPA_SHELL, "/about": ABOUT}),
        browser_factory=None,
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert result.is_spa is True
    assert result.success is True
    assert "https://example.com/about" in result.visited_urls


def test_site_without_content_reports_failure():
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(),
        client=_client({"/": "<html><body></body></html>"}),
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert result.success is False
    assert result.error == "no content"
    assert result.total_chunks == 0


def test_cancelled_crawl_returns_without_fetching_pages():
    requested = []
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT}, requested),
    )
    cancel_event = asyncio.Event()
    cancel_event.set()

    result = _crawl(crawler, "https://example.com", "c", "a", cancel_event=cancel_event)

    assert result.success is False
    assert result.error == "cancelled"
    assert requested == ["/"]


def test_missing_indexer_raises_before_fetching():
    requested = []
    crawler = SiteCrawler(None, settings=_settings(), client=_client({"/": HOME}, requested))

    with pytest.raises(ConfigurationError):
        _crawl(crawler, "https://example.com", "c", "a")
    assert requested == []


def test_profile_extraction_adds_company_info_and_overview_chunks():
    from siterag.services.company_profile import CompanyProfile

    class _FakeProfileExtractor:
        def __init__(self):
            self.seen = 0

        async def extract_profile(self, chunks):
            self.seen = len(chunks)
            return CompanyProfile(company_name="Example Inc.", employees="42")

    indexer = _FakeIndexer()
    extractor = _FakeProfileExtractor()
    crawler = SiteCrawler(
        indexer,
        profile_extractor=extractor,
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT}),
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert extractor.seen > 0
    assert result.company_info == {"company_name": "Example Inc.", "employees": "42"}
    overview = indexer.batches[-1]
    assert overview[0].section_title == "Company overview"
    assert "Company name: Example Inc." in overview[0].text


class _FakePage:
    def __init__(self, html):
        self.html = html
        self.url = "about:blank"

    async def content(self):
        return self.html

    def locator(self, selector):
        return self

    async def count(self):
        return 0

    async def close(self):
        return None


class _FakeBrowser:
    def __init__(self, rendered=None):
        self.rendered = dict(rendered or {})
        self.render_calls = []
        self.lock = asyncio.Lock()
        self.closed = 0

    async def new_page(self):
        return _FakePage(self.rendered.get("https://example.com/", ""))

    async def goto(self, page, url):
        page.url = url

    async def render(self, url):
        self.render_calls.append(url)
        return self.rendered[url]

    async def close(self):
        self.closed += 1


class _FailingIndexer:
    async def index(self, chunks):
        raise RuntimeError("store went away")


def test_browser_is_closed_after_a_completed_crawl():
    browser = _FakeBrowser()
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT}),
        browser_factory=lambda: browser,
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert result.success is True
    assert browser.closed == 1
    assert browser.render_calls == []


def test_browser_is_closed_when_the_crawl_fails():
    browser = _FakeBrowser()
    crawler = SiteCrawler(
        _FailingIndexer(),
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT}),
        browser_factory=lambda: browser,
    )

    with pytest.raises(RuntimeError):
        _crawl(crawler, "https://example.com", "c", "a")
    assert browser.closed == 1


def test_spa_root_is_fetched_once_and_rendered():
    requested = []
    browser = _FakeBrowser(rendered={"https://example.com/": HOME})
    crawler = SiteCrawler(
        _FakeIndexer(),
        settings=_settings(),
        client=_client({"/": SPA_SHELL, "/about": ABOUT}, requested),
        browser_factory=lambda: browser,
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert requested.count("/") == 1
    assert browser.render_calls == ["https://example.com/"]
    assert result.is_spa is True
    assert "https://example.com/" in result.visited_urls
    assert any("Booking made simple" in chunk.text for chunk in result.chunks)
    assert browser.closed == 1


def test_malformed_profile_reply_does_not_abort_the_crawl():
    from siterag.services.company_profile import CompanyProfileExtractor
    from siterag.services.llm.types import LLMResponse

    class _Orchestrator:
        def run_stage(self, request):
            return LLMResponse(
                text='{"company_name": "Example Inc.", "services": 5, "faq": true}',
                provider="fake",
                model="fake-model",
            )

    crawler = SiteCrawler(
        _FakeIndexer(),
        profile_extractor=CompanyProfileExtractor(orchestrator=_Orchestrator(), settings=_settings()),
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT}),
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert result.success is True
    assert result.company_info == {"company_name": "Example Inc.", "services": ["5"]}


def test_profile_extractor_errors_leave_company_info_empty():
    class _BrokenExtractor:
        async def extract_profile(self, chunks):
            raise TypeError("unexpected reply shape")

    crawler = SiteCrawler(
        _FakeIndexer(),
        profile_extractor=_BrokenExtractor(),
        settings=_settings(),
        client=_client({"/": HOME, "/about": ABOUT}),
    )

    result = _crawl(crawler, "https://example.com", "c", "a")

    assert result.success is True
    assert result.company_info == {}
