"""OpenAI embeddings client with exponential backoff."""

import asyncio
import logging
import random
from typing import List, Optional, Sequence

from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from siterag.config import Settings, get_settings
from siterag.errors import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RateLimitError, APIConnectionError, APITimeoutError, APIError)


class EmbeddingClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.settings = settings or get_settings()
        if client is None:
            if not self.settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY is required for embeddings")
            client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        self.client = client
        self.model = self.settings.embedding_model
        self.dimension = self.settings.embedding_dimension
        self.max_retries = max(1, self.settings.embedding_max_retries)
        self.base_delay = self.settings.embedding_retry_base_delay
        self.max_delay = self.settings.embedding_retry_max_delay

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed a batch of texts in one request.

        Vectors are returned in input order. Rate-limit, connection and timeout
        errors are retried with exponential backoff plus jitter.

        Raises:
            EmbeddingError: all retries exhausted or the response is malformed
        """
        if not texts:
            return []

        params = {"input": list(texts), "model": self.model}
        # text-embedding-3-small default is 1536
        if self.dimension != 1536:
            params["dimensions"] = self.dimension

        for attempt in range(self.max_retries):
            try:
                response = await self.client.embeddings.create(**params)
                break
            except RETRYABLE_ERRORS as exc:
                if attempt == self.max_retries - 1:
                    raise EmbeddingError(f"Embedding failed after {self.max_retries} attempts: {exc}") from exc
                delay = min(
                    self.base_delay * (2 ** attempt) + random.uniform(0, 1),
                    self.max_delay,
                )
                logger.warning(
                    "Embedding API error (attempt %d/%d): %s. Retrying in %.2f seconds",
                    attempt + 1,
                    self.max_retries,
                    type(exc).__name__,
                    delay,
                )
                await asyncio.sleep(delay)

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(data)}")
        return [list(item.embedding) for item in data]
