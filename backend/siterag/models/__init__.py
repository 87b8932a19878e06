from siterag.models.base import Base
from siterag.models.chunk import DocumentChunk, CustomKnowledge
from siterag.models.job import CrawlJob, JobState

__all__ = [
    "Base",
    "DocumentChunk", "CustomKnowledge",
    "CrawlJob", "JobState",
]
