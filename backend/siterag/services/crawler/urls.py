"""URL resolution and normalization shared by the extractor and the frontier."""

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from .constants import ASSET_EXTENSIONS, SKIP_HREF_PREFIXES, STRIP_PARAMS


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def normalize_root_url(raw_url: str) -> str:
    normalized = str(raw_url or "").strip()
    if not normalized:
        return ""
    if not normalized.startswith(("http://", "https://")):
        normalized = f"https://{normalized}"
    parsed = urlparse(normalized)
    if not parsed.netloc:
        return ""
    return normalize_url(normalized)


def normalize_url(url: str) -> str:
    """
    Canonical form used for visited-set membership.

    Drops the fragment and tracking params, lowercases scheme and host, and
    strips the trailing slash from every path except the root.
    """
    parsed = urlparse(url.strip())
    path = parsed.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    query = ""
    if parsed.query:
        params = [
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            if key.lower() not in STRIP_PARAMS
        ]
        query = urlencode(params, doseq=True)
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, "", query, ""))


def is_asset_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(ASSET_EXTENSIONS)


def resolve_link(href: Optional[str], page_url: str) -> Optional[str]:
    """Resolve an href to a normalized same-origin page URL, or None."""
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(SKIP_HREF_PREFIXES):
        return None
    try:
        full_url = urljoin(page_url, href)
    except ValueError:
        return None
    parsed = urlparse(full_url)
    if parsed.scheme not in ("http", "https"):
        return None
    if parsed.netloc.lower() != urlparse(page_url).netloc.lower():
        return None
    if is_asset_url(full_url):
        return None
    return normalize_url(full_url)
