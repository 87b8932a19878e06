"""Crawl job model - state of a background (re)crawl run."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, Enum, Float
from datetime import datetime
import enum

from siterag.models.base import Base


class JobState(enum.Enum):
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"


class CrawlJob(Base):
    """Background crawl of one agent's website."""
    __tablename__ = "crawl_jobs"

    id = Column(Integer, primary_key=True, index=True)
    agent_id = Column(String(64), nullable=False, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    root_url = Column(Text, nullable=False)
    page_budget = Column(Integer, nullable=True)

    state = Column(Enum(JobState), default=JobState.queued)

    # Results
    result_json = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    # Progress tracking (0.0 - 1.0)
    progress = Column(Float, default=0.0)
    progress_message = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
