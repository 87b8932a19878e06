import asyncio

import httpx
import pytest

from siterag.errors import BrowserUnavailableError, FetchError
from siterag.services.crawler.fetcher import PageFetcher
from siterag.services.crawler.models import FetchOutcome
from siterag.services.crawler.navigation import NavigationExplorer, discover_spa_links

ROOT = "https://example.com/"
SHELL = '<html><head><title>App</title></head><body><div id="root"></div></body></html>'
RENDERED = "<html><body><h1>Welcome</h1><p>Rendered by the client application.</p></body></html>"
PLAIN = "<html><body><h1>Static</h1><p>Server rendered page with plenty of text for readers.</p></body></html>"


class _FakeElement:
    def __init__(self, page, control):
        self.page = page
        self.control = control

    async def is_visible(self):
        return self.control.get("visible", True)

    async def inner_text(self):
        return self.control["text"]

    async def get_attribute(self, name):
        return self.control.get(name)

    async def click(self, timeout=None):
        self.page.clicked.append(self.control["text"])
        self.page.url = self.control["target"]


class _FakeLocator:
    def __init__(self, page):
        self.page = page

    async def count(self):
        return len(self.page.controls)

    def nth(self, index):
        return _FakeElement(self.page, self.page.controls[index])


class _FakePage:
    def __init__(self, site, controls):
        self.site = site
        self.controls = controls
        self.url = "about:blank"
        self.clicked = []
        self.closed = False

    async def content(self):
        return self.site[self.url]

    def locator(self, selector):
        return _FakeLocator(self)

    async def wait_for_load_state(self, state, timeout=None):
        return None

    async def close(self):
        self.closed = True


class _FakeBrowser:
    def __init__(self, site=None, controls=None, fail=False):
        self.site = site or {}
        self.controls = controls or []
        self.fail = fail
        self.lock = asyncio.Lock()
        self.pages = []
        self.rendered = []

    async def new_page(self):
        if self.fail:
            raise BrowserUnavailableError("Chromium launch failed")
        page = _FakePage(self.site, self.controls)
        self.pages.append(page)
        return page

    async def goto(self, page, url):
        page.url = url

    async def render(self, url):
        if self.fail:
            raise BrowserUnavailableError("Chromium launch failed")
        self.rendered.append(url)
        return self.site[url]


def _client(pages, content_type="text/html; charset=utf-8"):
    def handler(request: httpx.Request) -> httpx.Response:
        body = pages.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="Not found")
        return httpx.Response(200, text=body, headers={"content-type": content_type})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _fetch(fetcher, url):
    async def _run():
        try:
            return await fetcher.fetch(url)
        finally:
            await fetcher.client.aclose()

    return asyncio.run(_run())


def test_spa_shell_is_rendered_in_browser():
    browser = _FakeBrowser(site={ROOT: RENDERED})

    outcome = _fetch(PageFetcher(_client({"/": SHELL}), browser), ROOT)

    assert outcome.html == RENDERED
    assert outcome.rendered is True
    assert outcome.is_spa is True
    assert browser.rendered == [ROOT]


def test_render_failure_falls_back_to_plain_html():
    outcome = _fetch(PageFetcher(_client({"/": SHELL}), _FakeBrowser(fail=True)), ROOT)

    assert outcome.html == SHELL
    assert outcome.rendered is False
    assert outcome.is_spa is True


def test_missing_browser_falls_back_to_plain_html():
    outcome = _fetch(PageFetcher(_client({"/": SHELL}), None), ROOT)

    assert outcome.html == SHELL
    assert outcome.is_spa is True


def test_static_page_is_not_rendered():
    browser = _FakeBrowser(site={ROOT: RENDERED})

    outcome = _fetch(PageFetcher(_client({"/": PLAIN}), browser), ROOT)

    assert outcome.html == PLAIN
    assert outcome.is_spa is False
    assert browser.rendered == []


def test_http_errors_raise_fetch_error_without_rendering():
    browser = _FakeBrowser(site={ROOT: RENDERED})

    with pytest.raises(FetchError) as excinfo:
        _fetch(PageFetcher(_client({}), browser), "https://example.com/missing")

    assert excinfo.value.reason == "HTTP 404"
    assert browser.rendered == []


def test_non_html_responses_raise_fetch_error():
    with pytest.raises(FetchError):
        _fetch(PageFetcher(_client({"/data": "{}"}, content_type="application/json"), None), "https://example.com/data")


def test_prefetched_shell_is_rendered_without_refetching():
    browser = _FakeBrowser(site={ROOT: RENDERED})
    fetcher = PageFetcher(client=None, browser=browser)

    outcome = asyncio.run(fetcher.render_if_spa(FetchOutcome(url=ROOT, html=SHELL)))

    assert outcome.html == RENDERED
    assert outcome.rendered is True
    assert browser.rendered == [ROOT]


def _nav_site():
    services = (
        "<html><body><h1>Services</h1><p>Our booking services.</p>"
        '<a href="/services/booking">Booking</a></body></html>'
    )
    # same visible text as the services state, so it is a duplicate snapshot
    services_again = (
        "<html><body><h1>Services</h1><p>Our booking services.</p>"
        '<a href="/hidden">Booking</a></body></html>'
    )
    root = '<html><body><nav><a href="/services">Services</a></nav><div id="root"></div></body></html>'
    return {
        ROOT: root,
        "https://example.com/services": services,
        "https://example.com/services-tab": services_again,
        "https://example.com/login": "<html><body>Login form</body></html>",
    }


def _nav_controls():
    return [
        {"text": "Services", "href": "/services", "target": "https://example.com/services"},
        {"text": "Services tab", "href": None, "target": "https://example.com/services-tab"},
        {"text": "Log in", "href": "/login", "target": "https://example.com/login"},
        {"text": "Hidden", "href": "/x", "target": "https://example.com/x", "visible": False},
    ]


def test_navigation_explorer_harvests_links_from_each_new_state():
    browser = _FakeBrowser(site=_nav_site(), controls=_nav_controls())

    result = asyncio.run(NavigationExplorer(browser).explore(ROOT))

    assert result.links == [
        "https://example.com/",
        "https://example.com/services",
        "https://example.com/services/booking",
    ]
    assert "https://example.com/hidden" not in result.links
    assert result.clicks == 2
    assert result.snapshots == 2
    page = browser.pages[0]
    assert page.clicked == ["Services", "Services tab"]
    assert page.closed is True


def test_navigation_explorer_respects_click_limit():
    browser = _FakeBrowser(site=_nav_site(), controls=_nav_controls())

    result = asyncio.run(NavigationExplorer(browser, max_clicks=1).explore(ROOT))

    assert result.clicks == 1


def test_discover_spa_links_merges_static_links():
    browser = _FakeBrowser(site=_nav_site(), controls=_nav_controls())
    static = ["https://example.com/services", "https://example.com/contact"]

    links = asyncio.run(discover_spa_links(browser, ROOT, static))

    assert links[:3] == [
        "https://example.com/",
        "https://example.com/services",
        "https://example.com/services/booking",
    ]
    assert links.count("https://example.com/services") == 1
    assert links[-1] == "https://example.com/contact"


def test_discover_spa_links_without_working_browser_uses_static_links():
    static = ["https://example.com/about"]

    assert asyncio.run(discover_spa_links(None, ROOT, static)) == static
    assert asyncio.run(discover_spa_links(_FakeBrowser(fail=True), ROOT, static)) == static
