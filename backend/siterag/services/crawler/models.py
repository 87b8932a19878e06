"""Data models for the site crawler."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class CrawlTier(str, Enum):
    critical = "critical"
    priority = "priority"
    normal = "normal"


@dataclass(frozen=True)
class CrawlTask:
    """A URL waiting in the frontier with its discovery tier."""
    url: str
    tier: CrawlTier = CrawlTier.normal
    sequence: int = 0


@dataclass
class PageSection:
    """Heading-delimited slice of a page."""
    section_title: str
    content_lines: List[str] = field(default_factory=list)
    link_lines: List[str] = field(default_factory=list)
    unstructured: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.content_lines and not self.link_lines


@dataclass
class PageDocument:
    """Result of fetching and extracting one URL."""
    url: str
    title: str
    description: str = ""
    category: str = "general"
    sections: List[PageSection] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    theme_color: str = ""


@dataclass
class ChunkRecord:
    """Unit of indexed knowledge before and after embedding."""
    company_id: str
    agent_id: str
    url: str
    title: str
    section_title: str
    text: str
    vector: List[float] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class FetchOutcome:
    url: str
    html: str
    rendered: bool = False
    is_spa: bool = False


@dataclass
class PageResult:
    """Everything one page contributes to a crawl round."""
    url: str
    page: Optional[PageDocument] = None
    chunks: List[ChunkRecord] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    is_spa: bool = False


@dataclass
class CrawlProgress:
    type: str  # discovering, crawling, embedding, saving, extracting, complete, error
    current_page: int
    total_pages: int
    percent: int
    message: str
    current_url: Optional[str] = None
    chunks_found: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type,
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "percent": self.percent,
            "message": self.message,
        }
        if self.current_url is not None:
            payload["currentUrl"] = self.current_url
        if self.chunks_found is not None:
            payload["chunksFound"] = self.chunks_found
        return payload


@dataclass
class CrawlResult:
    success: bool
    pages_visited: int
    total_chunks: int
    is_spa: bool = False
    theme_color: str = ""
    company_info: Dict[str, Any] = field(default_factory=dict)
    visited_urls: List[str] = field(default_factory=list)
    chunks: List[ChunkRecord] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "pagesVisited": self.pages_visited,
            "totalChunks": self.total_chunks,
            "isSPA": self.is_spa,
            "themeColor": self.theme_color,
            "companyInfo": self.company_info,
            "visitedUrls": list(self.visited_urls),
            "error": self.error,
        }
