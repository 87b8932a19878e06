"""Document store: persisted chunks and custom knowledge, per company."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import delete, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from siterag.models.base import async_session_maker
from siterag.models.chunk import CustomKnowledge, DocumentChunk
from siterag.services.crawler.models import ChunkRecord

logger = logging.getLogger(__name__)


@dataclass
class ScoredChunk:
    """A stored chunk returned by a similarity query."""
    text: str
    url: str
    title: str
    section_title: str
    score: float


@dataclass
class KnowledgeEntry:
    knowledge_id: str
    company_id: str
    title: str
    content: str
    vector: List[float] = field(default_factory=list)
    agent_id: Optional[str] = None


class ChunkStore(Protocol):
    async def insert_chunks(self, chunks: Sequence[ChunkRecord]) -> int:
        ...

    async def vector_search(
        self,
        company_id: str,
        vector: Sequence[float],
        limit: int,
        num_candidates: int,
    ) -> List[ScoredChunk]:
        ...

    async def load_chunks(self, company_id: str) -> List[ChunkRecord]:
        ...

    async def load_custom_knowledge(self, company_id: str) -> List[KnowledgeEntry]:
        ...

    async def delete_company_chunks(self, company_id: str) -> int:
        ...

    async def insert_custom_knowledge(self, entry: KnowledgeEntry) -> str:
        ...


class SqlChunkStore:
    """ChunkStore over PostgreSQL with pgvector columns."""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self.session_maker = session_maker or async_session_maker

    async def insert_chunks(self, chunks: Sequence[ChunkRecord]) -> int:
        if not chunks:
            return 0
        async with self.session_maker() as session:
            session.add_all([
                DocumentChunk(
                    company_id=chunk.company_id,
                    agent_id=chunk.agent_id,
                    url=chunk.url,
                    title=chunk.title,
                    section_title=chunk.section_title,
                    text=chunk.text,
                    embedding=list(chunk.vector),
                    created_at=chunk.created_at,
                )
                for chunk in chunks
            ])
            await session.commit()
        return len(chunks)

    async def vector_search(
        self,
        company_id: str,
        vector: Sequence[float],
        limit: int,
        num_candidates: int,
    ) -> List[ScoredChunk]:
        """Approximate nearest neighbours by cosine distance via the HNSW index."""
        distance = DocumentChunk.embedding.cosine_distance(list(vector)).label("distance")
        stmt = (
            select(DocumentChunk, distance)
            .where(DocumentChunk.company_id == company_id)
            .order_by(distance)
            .limit(limit)
        )
        async with self.session_maker() as session:
            async with session.begin():
                await _set_ef_search(session, num_candidates)
                rows = (await session.execute(stmt)).all()
        return [
            ScoredChunk(
                text=row.text,
                url=row.url,
                title=row.title or "",
                section_title=row.section_title or "",
                score=1.0 - float(dist),
            )
            for row, dist in rows
        ]

    async def load_chunks(self, company_id: str) -> List[ChunkRecord]:
        stmt = select(DocumentChunk).where(DocumentChunk.company_id == company_id)
        async with self.session_maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            ChunkRecord(
                company_id=row.company_id,
                agent_id=row.agent_id,
                url=row.url,
                title=row.title or "",
                section_title=row.section_title or "",
                text=row.text,
                vector=[float(value) for value in row.embedding],
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def load_custom_knowledge(self, company_id: str) -> List[KnowledgeEntry]:
        stmt = select(CustomKnowledge).where(CustomKnowledge.company_id == company_id)
        async with self.session_maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            KnowledgeEntry(
                knowledge_id=str(row.id),
                company_id=row.company_id,
                agent_id=row.agent_id,
                title=row.title,
                content=row.content,
                vector=[float(value) for value in row.embedding] if row.embedding is not None else [],
            )
            for row in rows
        ]

    async def delete_company_chunks(self, company_id: str) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                delete(DocumentChunk).where(DocumentChunk.company_id == company_id)
            )
            await session.commit()
        deleted = result.rowcount or 0
        logger.info("Deleted %d chunks for company %s", deleted, company_id)
        return deleted

    async def insert_custom_knowledge(self, entry: KnowledgeEntry) -> str:
        async with self.session_maker() as session:
            row = CustomKnowledge(
                company_id=entry.company_id,
                agent_id=entry.agent_id,
                title=entry.title,
                content=entry.content,
                embedding=list(entry.vector) or None,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return str(row.id)


async def _set_ef_search(session: AsyncSession, num_candidates: int) -> None:
    # SET does not accept bind parameters
    await session.execute(text(f"SET LOCAL hnsw.ef_search = {int(num_candidates)}"))
