"""Agent API routes - crawl, background re-crawl jobs and custom knowledge."""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, AsyncIterator
from datetime import datetime
import asyncio
import json
import logging

from siterag.errors import ConfigurationError
from siterag.models.base import get_db
from siterag.models.job import CrawlJob, JobState
from siterag.services.crawler.models import CrawlProgress
from siterag.services.crawler.unified import SiteCrawler
from siterag.services.embeddings import EmbeddingClient
from siterag.services.store import KnowledgeEntry, SqlChunkStore

logger = logging.getLogger(__name__)

router = APIRouter()

CUSTOM_KNOWLEDGE_MAX_CHARS = 3000


# ============================================================================
# Pydantic Schemas
# ============================================================================

class CrawlRequest(BaseModel):
    root_url: str
    company_id: str
    page_budget: Optional[int] = Field(default=None, ge=1, le=500)
    reset: bool = True


class CrawlJobResponse(BaseModel):
    id: int
    agent_id: str
    company_id: str
    root_url: str
    state: str
    progress: float
    progress_message: Optional[str]
    result_json: Optional[Dict[str, Any]]
    error_message: Optional[str]
    created_at: Optional[datetime]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]


class KnowledgeCreate(BaseModel):
    company_id: str
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1, max_length=CUSTOM_KNOWLEDGE_MAX_CHARS)


class KnowledgeResponse(BaseModel):
    id: str
    company_id: str
    agent_id: str
    title: str


def _job_response(job: CrawlJob) -> CrawlJobResponse:
    return CrawlJobResponse(
        id=job.id,
        agent_id=job.agent_id,
        company_id=job.company_id,
        root_url=job.root_url,
        state=job.state.value,
        progress=job.progress or 0.0,
        progress_message=job.progress_message,
        result_json=job.result_json,
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
    )


def sse_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def stream_crawl(
    crawler: SiteCrawler,
    store: Optional[SqlChunkStore],
    agent_id: str,
    data: CrawlRequest,
) -> AsyncIterator[str]:
    """Run a crawl and yield its progress as server-sent events, ending with complete or error."""
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
    cancel_event = asyncio.Event()

    def _on_progress(event: CrawlProgress) -> None:
        if event.type in ("complete", "error"):
            # the final event carries the result instead
            return
        queue.put_nowait(event.to_dict())

    async def _run() -> None:
        try:
            if store is not None:
                deleted = await store.delete_company_chunks(data.company_id)
                queue.put_nowait({
                    "type": "discovering",
                    "currentPage": 0,
                    "totalPages": data.page_budget or crawler.settings.crawl_page_budget,
                    "percent": 0,
                    "message": f"Removed {deleted} existing chunks",
                })
            result = await crawler.crawl(
                data.root_url,
                data.company_id,
                agent_id,
                page_budget=data.page_budget,
                on_progress=_on_progress,
                cancel_event=cancel_event,
            )
            final = {"type": "complete" if result.success else "error", "percent": 100}
            final.update(result.to_dict())
            queue.put_nowait(final)
        except Exception as exc:
            logger.exception("Crawl for agent %s failed", agent_id)
            queue.put_nowait({"type": "error", "percent": 100, "success": False, "error": str(exc)})

    task = asyncio.create_task(_run())
    try:
        while True:
            payload = await queue.get()
            yield sse_event(payload)
            if payload.get("type") in ("complete", "error") and "success" in payload:
                break
    finally:
        # client went away: let the crawl stop at its next round
        cancel_event.set()
        await task


# ============================================================================
# Crawl
# ============================================================================

@router.post("/{agent_id}/crawl")
async def crawl_agent_site(agent_id: str, data: CrawlRequest):
    """Crawl the agent's website, streaming progress as server-sent events."""
    try:
        crawler = SiteCrawler.from_settings()
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    store = SqlChunkStore() if data.reset else None
    return StreamingResponse(
        stream_crawl(crawler, store, agent_id, data),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{agent_id}/crawl-jobs", response_model=CrawlJobResponse)
async def create_crawl_job(agent_id: str, data: CrawlRequest, db: AsyncSession = Depends(get_db)):
    """Queue a background re-crawl."""
    job = CrawlJob(
        agent_id=agent_id,
        company_id=data.company_id,
        root_url=data.root_url,
        page_budget=data.page_budget,
        state=JobState.queued,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)

    # Trigger async task (Celery)
    from siterag.workers.tasks import crawl_site
    crawl_site.delay(job.id)

    return _job_response(job)


@router.get("/{agent_id}/crawl-jobs/{job_id}", response_model=CrawlJobResponse)
async def get_crawl_job(agent_id: str, job_id: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(CrawlJob).where(CrawlJob.id == job_id, CrawlJob.agent_id == agent_id)
    )
    job = result.scalar_one_or_none()
    if not job:
        raise HTTPException(status_code=404, detail="Crawl job not found")
    return _job_response(job)


# ============================================================================
# Custom knowledge
# ============================================================================

@router.post("/{agent_id}/knowledge", response_model=KnowledgeResponse)
async def add_custom_knowledge(agent_id: str, data: KnowledgeCreate):
    """Store an operator-authored entry, embedded as title and content together."""
    try:
        embedder = EmbeddingClient()
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    vector = await embedder.embed(f"{data.title}\n{data.content}")
    knowledge_id = await SqlChunkStore().insert_custom_knowledge(
        KnowledgeEntry(
            knowledge_id="",
            company_id=data.company_id,
            agent_id=agent_id,
            title=data.title,
            content=data.content,
            vector=vector,
        )
    )
    return KnowledgeResponse(id=knowledge_id, company_id=data.company_id, agent_id=agent_id, title=data.title)
