"""Vector retrieval over crawled chunks and custom knowledge."""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import numpy as np
import redis.asyncio as redis

from siterag.config import Settings, get_settings
from siterag.services.embeddings import EmbeddingClient
from siterag.services.store import ChunkStore, ScoredChunk

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    text: str
    url: str
    title: str
    score: float
    is_custom_knowledge: bool = False


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for empty, zero or mismatched vectors."""
    if len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def top_k_by_cosine(query: Sequence[float], vectors: Sequence[Sequence[float]], k: int) -> List[tuple]:
    """(index, score) pairs of the k most similar vectors, best first."""
    scored = [(index, cosine_similarity(query, vector)) for index, vector in enumerate(vectors)]
    # sorted() is stable, so ties keep store order
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored[:k]


class VectorSearchStrategy(Protocol):
    async def search(self, vector: Sequence[float], company_id: str, limit: int) -> List[ScoredChunk]:
        ...


class IndexedVectorSearch:
    """Approximate search through the store's vector index."""

    def __init__(self, store: ChunkStore, num_candidates: int = 150):
        self.store = store
        self.num_candidates = num_candidates

    async def search(self, vector: Sequence[float], company_id: str, limit: int) -> List[ScoredChunk]:
        return await self.store.vector_search(company_id, vector, limit, self.num_candidates)


class BruteForceVectorSearch:
    """Exact cosine over every stored chunk of the company."""

    def __init__(self, store: ChunkStore):
        self.store = store

    async def search(self, vector: Sequence[float], company_id: str, limit: int) -> List[ScoredChunk]:
        chunks = await self.store.load_chunks(company_id)
        ranked = top_k_by_cosine(vector, [chunk.vector for chunk in chunks], limit)
        return [
            ScoredChunk(
                text=chunks[index].text,
                url=chunks[index].url,
                title=chunks[index].title,
                section_title=chunks[index].section_title,
                score=score,
            )
            for index, score in ranked
        ]


class QueryEmbeddingCache:
    """Redis cache of question embeddings keyed by a digest of model and text."""

    def __init__(self, client: redis.Redis, model: str, ttl_seconds: int = 3600):
        self.client = client
        self.model = model
        self.ttl_seconds = ttl_seconds

    def _key(self, text: str) -> str:
        digest = hashlib.sha256(f"{self.model}:{text}".encode("utf-8")).hexdigest()
        return f"siterag:qemb:{digest}"

    async def get(self, text: str) -> Optional[List[float]]:
        raw = await self.client.get(self._key(text))
        if not raw:
            return None
        return json.loads(raw)

    async def set(self, text: str, vector: Sequence[float]) -> None:
        await self.client.setex(self._key(text), max(1, int(self.ttl_seconds)), json.dumps(list(vector)))


class RetrievalEngine:
    """
    Ranks stored knowledge for a question.

    Crawled chunks come from the primary strategy, or from the fallback when the
    primary raises or returns nothing. Custom knowledge is always scored by exact
    cosine and boosted before both lists are merged.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: ChunkStore,
        settings: Optional[Settings] = None,
        primary: Optional[VectorSearchStrategy] = None,
        fallback: Optional[VectorSearchStrategy] = None,
        cache: Optional[QueryEmbeddingCache] = None,
    ):
        self.settings = settings or get_settings()
        self.embedder = embedder
        self.store = store
        self.primary = primary or IndexedVectorSearch(store, self.settings.retrieval_num_candidates)
        self.fallback = fallback or BruteForceVectorSearch(store)
        self.cache = cache

    async def embed_question(self, question: str) -> List[float]:
        if self.cache is not None:
            try:
                cached = await self.cache.get(question)
            except redis.RedisError as exc:
                logger.warning("Query embedding cache read failed: %s", exc)
                cached = None
            if cached is not None:
                return cached
        vector = await self.embedder.embed(question)
        if self.cache is not None:
            try:
                await self.cache.set(question, vector)
            except redis.RedisError as exc:
                logger.warning("Query embedding cache write failed: %s", exc)
        return vector

    async def search_chunks(self, company_id: str, vector: Sequence[float]) -> List[ScoredChunk]:
        limit = self.settings.retrieval_chunk_limit
        try:
            results = await self.primary.search(vector, company_id, limit)
        except Exception:
            logger.exception("Indexed search failed for company %s, using brute force", company_id)
            results = []
        else:
            if not results:
                logger.info("Indexed search returned nothing for company %s, using brute force", company_id)
        if results:
            return results
        return await self.fallback.search(vector, company_id, limit)

    async def search_custom_knowledge(self, company_id: str, vector: Sequence[float]) -> List[SearchResult]:
        entries = [entry for entry in await self.store.load_custom_knowledge(company_id) if entry.vector]
        ranked = top_k_by_cosine(
            vector,
            [entry.vector for entry in entries],
            self.settings.retrieval_knowledge_limit,
        )
        boost = self.settings.custom_knowledge_boost
        return [
            SearchResult(
                text=f"{entries[index].title}\n{entries[index].content}",
                url="",
                title=entries[index].title,
                score=score * boost,
                is_custom_knowledge=True,
            )
            for index, score in ranked
        ]

    async def search(self, company_id: str, question: str) -> List[SearchResult]:
        """Top results across crawled chunks and custom knowledge, best first."""
        vector = await self.embed_question(question)
        chunk_hits = await self.search_chunks(company_id, vector)
        results = [
            SearchResult(text=hit.text, url=hit.url, title=hit.title, score=hit.score)
            for hit in chunk_hits
        ]
        results.extend(await self.search_custom_knowledge(company_id, vector))
        results.sort(key=lambda result: result.score, reverse=True)
        return results[: self.settings.retrieval_result_limit]


def build_query_cache(settings: Optional[Settings] = None) -> Optional[QueryEmbeddingCache]:
    settings = settings or get_settings()
    if not settings.query_embedding_cache_enabled:
        return None
    return QueryEmbeddingCache(
        redis.from_url(settings.redis_url, decode_responses=True),
        settings.embedding_model,
        settings.query_embedding_cache_ttl_seconds,
    )
