from __future__ import annotations


class SiteRagError(RuntimeError):
    """Base class for errors raised by the crawl and retrieval engine."""


class ConfigurationError(SiteRagError):
    """Required configuration is missing; raised before any work starts."""


class FetchError(SiteRagError):
    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class BrowserUnavailableError(SiteRagError):
    pass


class EmbeddingError(SiteRagError):
    pass


class AnswerSynthesisError(SiteRagError):
    pass
