import asyncio
import math

import numpy as np
import pytest

from siterag.config import Settings
from siterag.services.retrieval import BruteForceVectorSearch, RetrievalEngine, cosine_similarity, top_k_by_cosine
from siterag.services.store import KnowledgeEntry, ScoredChunk


def test_cosine_similarity_basic_properties():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)
    assert cosine_similarity([3.0, 4.0], [4.0, 3.0]) == pytest.approx(0.96)


def test_cosine_similarity_degenerate_inputs_are_zero():
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_cosine_similarity_is_symmetric_and_bounded():
    a = [0.3, -0.7, 0.2]
    b = [0.9, 0.1, -0.4]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert not math.isnan(cosine_similarity(a, b))


def test_top_k_keeps_store_order_on_ties():
    ranked = top_k_by_cosine([1.0, 0.0], [[0.0, 1.0], [2.0, 0.0], [1.0, 0.0], [1.0, 1.0]], 3)
    assert [index for index, _ in ranked] == [1, 2, 3]


class _FakeEmbedder:
    def __init__(self, vector):
        self.vector = vector
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        return self.vector


class _FakeStore:
    def __init__(self, knowledge=None):
        self.knowledge = knowledge or []

    async def load_custom_knowledge(self, company_id):
        return self.knowledge


class _Strategy:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.calls = 0

    async def search(self, vector, company_id, limit):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.results[:limit]


def _hit(url, score):
    return ScoredChunk(text=f"text for {url}", url=url, title=url, section_title="", score=score)


def _engine(primary, fallback, knowledge=None, **overrides):
    return RetrievalEngine(
        _FakeEmbedder([1.0, 0.0]),
        _FakeStore(knowledge),
        settings=Settings(**overrides),
        primary=primary,
        fallback=fallback,
    )


def test_indexed_results_skip_fallback():
    primary = _Strategy([_hit("https://example.com/a", 0.8)])
    fallback = _Strategy([_hit("https://example.com/b", 0.9)])

    results = asyncio.run(_engine(primary, fallback).search("company-1", "question"))

    assert [result.url for result in results] == ["https://example.com/a"]
    assert fallback.calls == 0


def test_fallback_used_when_index_raises():
    primary = _Strategy(error=RuntimeError("index unavailable"))
    fallback = _Strategy([_hit("https://example.com/b", 0.7)])

    results = asyncio.run(_engine(primary, fallback).search("company-1", "question"))

    assert [result.url for result in results] == ["https://example.com/b"]
    assert fallback.calls == 1


def test_fallback_used_when_index_is_empty():
    fallback = _Strategy([_hit("https://example.com/b", 0.7)])

    results = asyncio.run(_engine(_Strategy([]), fallback).search("company-1", "question"))

    assert len(results) == 1
    assert fallback.calls == 1


def test_custom_knowledge_is_boosted_into_ranking():
    knowledge = [
        KnowledgeEntry(
            knowledge_id="k1",
            company_id="company-1",
            title="Opening hours",
            content="We are open from 9 to 18.",
            vector=[0.8, 0.6],
        ),
        KnowledgeEntry(
            knowledge_id="k2",
            company_id="company-1",
            title="Draft",
            content="Not embedded yet.",
            vector=[],
        ),
    ]
    primary = _Strategy([_hit("https://example.com/a", 0.9), _hit("https://example.com/b", 0.85)])

    results = asyncio.run(
        _engine(primary, _Strategy(), knowledge, custom_knowledge_boost=1.1).search("company-1", "hours")
    )

    # 0.8 * 1.1 = 0.88 lands between the two crawled hits
    assert [result.url for result in results] == ["https://example.com/a", "", "https://example.com/b"]
    custom = results[1]
    assert custom.is_custom_knowledge is True
    assert custom.score == pytest.approx(0.88)
    assert custom.text == "Opening hours\nWe are open from 9 to 18."


def test_results_are_capped():
    primary = _Strategy([_hit(f"https://example.com/{index}", 0.5) for index in range(10)])

    results = asyncio.run(
        _engine(primary, _Strategy(), retrieval_result_limit=4).search("company-1", "question")
    )

    assert len(results) == 4


class _FakeCache:
    def __init__(self, stored=None):
        self.stored = dict(stored or {})

    async def get(self, text):
        return self.stored.get(text)

    async def set(self, text, vector):
        self.stored[text] = list(vector)


def test_question_embedding_is_cached():
    embedder = _FakeEmbedder([0.0, 1.0])
    cache = _FakeCache()
    engine = RetrievalEngine(embedder, _FakeStore(), settings=Settings(), primary=_Strategy(), fallback=_Strategy(), cache=cache)

    first = asyncio.run(engine.embed_question("What do you sell?"))
    second = asyncio.run(engine.embed_question("What do you sell?"))

    assert first == second == [0.0, 1.0]
    assert embedder.calls == 1


class _InMemoryChunkStore:
    def __init__(self, chunks):
        self.chunks = chunks

    async def load_chunks(self, company_id):
        return [chunk for chunk in self.chunks if chunk.company_id == company_id]

    async def load_custom_knowledge(self, company_id):
        return []


def _stored_chunks(count, dimension=8):
    from siterag.services.crawler.models import ChunkRecord

    rng = np.random.default_rng(7)
    return [
        ChunkRecord(
            company_id="company-1",
            agent_id="agent-1",
            url=f"https://example.com/page-{index}",
            title=f"Page {index}",
            section_title="",
            text=f"chunk {index}",
            vector=rng.normal(size=dimension).tolist(),
        )
        for index in range(count)
    ]


def test_brute_force_search_finds_exact_top_result():
    chunks = _stored_chunks(50)
    query = (np.asarray(chunks[37].vector) + 0.01).tolist()
    matrix = np.asarray([chunk.vector for chunk in chunks])
    expected = np.argsort(-(matrix @ query) / (np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)))

    hits = asyncio.run(BruteForceVectorSearch(_InMemoryChunkStore(chunks)).search(query, "company-1", 5))

    assert hits[0].url == "https://example.com/page-37"
    assert [hit.url for hit in hits] == [chunks[index].url for index in expected[:5]]
    assert hits[0].score == pytest.approx(cosine_similarity(query, chunks[37].vector))
    assert all(a.score >= b.score for a, b in zip(hits, hits[1:]))


def test_brute_force_fallback_matches_indexed_top_result():
    chunks = _stored_chunks(30)
    store = _InMemoryChunkStore(chunks)
    query = chunks[12].vector

    class _BrokenIndex:
        async def search(self, vector, company_id, limit):
            raise RuntimeError("hnsw index unavailable")

    engine = RetrievalEngine(
        _FakeEmbedder(query),
        store,
        settings=Settings(),
        primary=_BrokenIndex(),
        fallback=BruteForceVectorSearch(store),
    )

    results = asyncio.run(engine.search("company-1", "question"))

    assert results[0].url == "https://example.com/page-12"
    assert results[0].score == pytest.approx(1.0)


def test_brute_force_search_is_scoped_to_company():
    chunks = _stored_chunks(5)
    chunks[0].company_id = "company-2"

    hits = asyncio.run(BruteForceVectorSearch(_InMemoryChunkStore(chunks)).search(chunks[0].vector, "company-1", 10))

    assert len(hits) == 4
    assert "https://example.com/page-0" not in [hit.url for hit in hits]
