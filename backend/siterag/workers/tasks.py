import asyncio
import logging
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from siterag.workers.celery_app import celery_app
from siterag.config import get_settings
from siterag.models.job import CrawlJob, JobState
from siterag.services.company_profile import CompanyProfileExtractor
from siterag.services.crawler.fetcher import BrowserSession
from siterag.services.crawler.models import CrawlProgress
from siterag.services.crawler.unified import SiteCrawler
from siterag.services.embeddings import EmbeddingClient
from siterag.services.indexing import ChunkIndexer
from siterag.services.store import SqlChunkStore

logger = logging.getLogger(__name__)

# Sync engine for Celery workers (Celery doesn't support async)
settings = get_settings()
sync_engine = create_engine(settings.database_url_sync, echo=settings.debug)
SessionLocal = sessionmaker(bind=sync_engine)

PROGRESS_SCALE = 100.0


def _record_progress(job_id: int, event: CrawlProgress) -> None:
    db = SessionLocal()
    try:
        job = db.query(CrawlJob).filter(CrawlJob.id == job_id).first()
        if not job:
            return
        job.progress = min(1.0, event.percent / PROGRESS_SCALE)
        job.progress_message = event.message[:255]
        db.commit()
    finally:
        db.close()


async def _run_crawl(job_id: int, root_url: str, company_id: str, agent_id: str, page_budget):
    # Each task runs in its own event loop, so asyncpg connections must not be pooled across runs
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        store = SqlChunkStore(session_maker)
        deleted = await store.delete_company_chunks(company_id)
        logger.info("Re-crawl of %s: removed %d existing chunks", root_url, deleted)

        crawler = SiteCrawler(
            ChunkIndexer(EmbeddingClient(settings), store),
            profile_extractor=CompanyProfileExtractor(settings=settings),
            settings=settings,
            browser_factory=lambda: BrowserSession(
                headless=settings.browser_headless,
                executable_path=settings.browser_executable_path,
                args=settings.browser_args(),
                timeout_seconds=settings.rendered_fetch_timeout_seconds,
            ),
        )
        return await crawler.crawl(
            root_url,
            company_id,
            agent_id,
            page_budget=page_budget,
            on_progress=lambda event: _record_progress(job_id, event),
        )
    finally:
        await engine.dispose()


@celery_app.task(name="siterag.workers.tasks.crawl_site")
def crawl_site(job_id: int):
    """Re-crawl an agent's website: clear its chunks, crawl, index and record the result."""
    db = SessionLocal()
    try:
        job = db.query(CrawlJob).filter(CrawlJob.id == job_id).first()
        if not job:
            return {"error": "Job not found"}

        job.state = JobState.running
        job.started_at = datetime.utcnow()
        job.progress = 0.0
        db.commit()

        try:
            # Run async crawler in sync context
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                result = loop.run_until_complete(
                    _run_crawl(job.id, job.root_url, job.company_id, job.agent_id, job.page_budget)
                )
            finally:
                loop.close()

            payload = result.to_dict()
            db.refresh(job)
            job.result_json = payload
            job.progress = 1.0
            job.finished_at = datetime.utcnow()
            if result.success:
                job.state = JobState.completed
                job.progress_message = f"Indexed {result.total_chunks} chunks from {result.pages_visited} pages"
            else:
                job.state = JobState.failed
                job.error_message = result.error
            db.commit()
            return payload
        except Exception as e:
            logger.exception("Crawl job %s failed", job_id)
            db.rollback()
            job.state = JobState.failed
            job.error_message = str(e)
            job.finished_at = datetime.utcnow()
            db.commit()
            return {"error": str(e)}
    finally:
        db.close()
