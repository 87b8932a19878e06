"""Chat API route - answer visitor questions from indexed knowledge."""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import List
import logging

from siterag.config import get_settings
from siterag.errors import AnswerSynthesisError, ConfigurationError, EmbeddingError
from siterag.services.answering import AnswerService
from siterag.services.embeddings import EmbeddingClient
from siterag.services.retrieval import RetrievalEngine, build_query_cache
from siterag.services.store import SqlChunkStore

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    company_id: str
    message: str = Field(min_length=1, max_length=2000)
    language: str = "ja"


class SourceChunk(BaseModel):
    text: str
    url: str
    title: str
    score: float
    is_custom_knowledge: bool


class RelatedLinkResponse(BaseModel):
    url: str
    title: str
    description: str


class ChatResponse(BaseModel):
    reply: str
    found: bool
    source_chunks: List[SourceChunk]
    related_links: List[RelatedLinkResponse]


def build_answer_service() -> AnswerService:
    settings = get_settings()
    retrieval = RetrievalEngine(
        EmbeddingClient(settings),
        SqlChunkStore(),
        settings=settings,
        cache=build_query_cache(settings),
    )
    return AnswerService(retrieval, settings=settings)


@router.post("", response_model=ChatResponse)
async def chat(data: ChatRequest):
    try:
        service = build_answer_service()
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    try:
        answer = await service.answer(data.company_id, data.message, data.language)
    except EmbeddingError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    except AnswerSynthesisError as exc:
        logger.error("Answer synthesis failed for company %s: %s", data.company_id, exc)
        raise HTTPException(status_code=502, detail="Answer generation failed")

    return ChatResponse(
        reply=answer.reply,
        found=answer.found,
        source_chunks=[
            SourceChunk(
                text=chunk.text,
                url=chunk.url,
                title=chunk.title,
                score=chunk.score,
                is_custom_knowledge=chunk.is_custom_knowledge,
            )
            for chunk in answer.source_chunks
        ],
        related_links=[
            RelatedLinkResponse(url=link.url, title=link.title, description=link.description)
            for link in answer.related_links
        ],
    )
