"""Batch embedding and persistence of chunk records."""

import logging
from typing import List, Sequence

from siterag.errors import EmbeddingError
from siterag.services.crawler.models import ChunkRecord
from siterag.services.embeddings import EmbeddingClient
from siterag.services.store import ChunkStore

logger = logging.getLogger(__name__)


class ChunkIndexer:
    """Embeds a crawl round's chunks in one request and stores them."""

    def __init__(self, embedder: EmbeddingClient, store: ChunkStore):
        self.embedder = embedder
        self.store = store

    async def index(self, chunks: Sequence[ChunkRecord]) -> int:
        """
        Embed and persist chunks, returning how many were stored.

        Failures drop the whole batch and are logged; the caller keeps going.
        """
        if not chunks:
            return 0
        texts: List[str] = [chunk.text for chunk in chunks]
        try:
            vectors = await self.embedder.embed_many(texts)
            if len(vectors) != len(chunks):
                raise EmbeddingError(f"Expected {len(chunks)} vectors, got {len(vectors)}")
            for chunk, vector in zip(chunks, vectors):
                chunk.vector = vector
            stored = await self.store.insert_chunks(list(chunks))
        except Exception:
            logger.exception("Indexing batch of %d chunks failed", len(chunks))
            return 0
        logger.info("Indexed %d chunks", stored)
        return stored
