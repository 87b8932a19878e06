"""Site crawler package: fetch, extract, chunk and schedule pages of one website."""

from .models import (
    CrawlTier,
    CrawlTask,
    PageSection,
    PageDocument,
    ChunkRecord,
    CrawlProgress,
    CrawlResult,
)
from .spa import is_spa
from .extraction import ContentExtractor
from .chunker import split_into_chunks, build_page_chunks
from .frontier import Frontier

__all__ = [
    # Components
    "is_spa",
    "ContentExtractor",
    "split_into_chunks",
    "build_page_chunks",
    "Frontier",

    # Data models
    "CrawlTier",
    "CrawlTask",
    "PageSection",
    "PageDocument",
    "ChunkRecord",
    "CrawlProgress",
    "CrawlResult",
]
