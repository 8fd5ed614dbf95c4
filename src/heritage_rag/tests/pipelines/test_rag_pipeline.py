import asyncio

import pytest
from qdrant_client import QdrantClient

from heritage_rag.common.errors import (
    EmbeddingCancelled,
    ProviderError,
    RateLimitError,
    ValidationError,
)
from heritage_rag.common.schemas import Candidate
from heritage_rag.config.settings import (
    ChunkingConfig,
    ConfigStore,
    RateLimitConfig,
    RetrievalSettings,
)
from heritage_rag.generation.llm_interface import BaseLLM
from heritage_rag.pipelines.rag_pipeline import (
    MODE_GENERAL,
    MODE_NO_RELEVANT_CANDIDATES,
    MODE_RAG,
    RAGPipeline,
)
from heritage_rag.retrieval.embedder import BaseEmbeddingProvider
from heritage_rag.retrieval.embedding_pipeline import EmbeddingPipeline
from heritage_rag.retrieval.reranker import BaseReranker
from heritage_rag.retrieval.vector_store import BaseCandidateSource, QdrantCandidateSource

VOCABULARY = ("temple", "citadel", "pagoda", "weather")

NO_DELAYS = RateLimitConfig(delay_between_requests=0, batch_delay=0, retry_delay=0)


class KeywordEmbeddingProvider(BaseEmbeddingProvider):
    """Embeds text as keyword counts over a tiny vocabulary, plus a bias term."""

    def __init__(self):
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]

    @classmethod
    def from_config_dict(cls, config):
        return cls()


class RateLimitedOnceProvider(KeywordEmbeddingProvider):
    async def embed(self, text):
        if not self.calls:
            self.calls.append(text)
            raise RateLimitError("429")
        return await super().embed(text)


class FailingProvider(KeywordEmbeddingProvider):
    async def embed(self, text):
        raise ProviderError(503, "unavailable")


class RecordingLLM(BaseLLM):
    def __init__(self, answer="Generated answer."):
        self.answer = answer
        self.prompts = []

    def generate(self, system_prompt, user_prompt, **kwargs):
        self.prompts.append((system_prompt, user_prompt))
        return self.answer

    @classmethod
    def from_config_dict(cls, config):
        return cls()


class RecordingCandidateSource(BaseCandidateSource):
    """Returns scripted candidates and records search arguments."""

    def __init__(self, candidates):
        self.candidates = candidates
        self.searches = []

    def ensure_collection(self, vector_size, collection_name=None):
        return False

    def upsert(self, points, batch_size=100, collection_name=None):
        return len(points)

    def search(self, vector, limit, filter=None, collection_name=None):
        self.searches.append({"limit": limit, "filter": filter, "collection_name": collection_name})
        return list(self.candidates)

    @classmethod
    def from_config_dict(cls, config):
        return cls([])


class ExplodingReranker(BaseReranker):
    def _rerank(self, query, candidates, config, idf_corpus):
        raise RuntimeError("scoring exploded")


def _settings(**chunking):
    return RetrievalSettings(
        rate_limit=NO_DELAYS,
        chunking=ChunkingConfig(**chunking) if chunking else ChunkingConfig(),
    )


def _pipeline(candidate_source, provider=None, llm=None, settings=None, reranker=None):
    settings = settings or ConfigStore(_settings())
    return RAGPipeline(
        embeddings=EmbeddingPipeline(provider or KeywordEmbeddingProvider(), lambda: settings.current().rate_limit),
        candidate_source=candidate_source,
        llm=llm or RecordingLLM(),
        reranker=reranker,
        settings=settings,
    )


@pytest.fixture
def qdrant_source():
    return QdrantCandidateSource(client=QdrantClient(":memory:"))


def test_ingest_stores_every_chunk_with_metadata(qdrant_source):
    store = ConfigStore(_settings(max_chunk_size=60, overlap_size=10))
    pipeline = _pipeline(qdrant_source, settings=store)
    text = (
        "The temple was founded in 1070. It honours Confucius and scholars. "
        "The citadel nearby was the seat of emperors. The pagoda stands on one pillar."
    )

    report = asyncio.run(pipeline.ingest(text, {"title": "Hanoi sites", "heritageId": "hn-01"}))

    assert report.collection_name == "heritage_documents"
    assert report.chunks_count == len(report.ids) > 1
    assert qdrant_source.count() == report.chunks_count

    candidates = qdrant_source.search([1.0, 0.0, 0.0, 0.0, 0.1], limit=report.chunks_count)
    indexes = sorted(c.metadata["chunkIndex"] for c in candidates)
    assert indexes == list(range(report.chunks_count))
    assert all(c.metadata["totalChunks"] == report.chunks_count for c in candidates)
    assert all(c.metadata["heritageId"] == "hn-01" for c in candidates)


def test_ingest_rejects_empty_document(qdrant_source):
    with pytest.raises(ValidationError):
        asyncio.run(_pipeline(qdrant_source).ingest("   "))


def test_ingest_stores_nothing_when_embedding_fails(qdrant_source):
    pipeline = _pipeline(qdrant_source, provider=FailingProvider())

    with pytest.raises(ProviderError):
        asyncio.run(pipeline.ingest("The temple was founded in 1070."))

    assert not qdrant_source.collection_exists()


def test_query_end_to_end_uses_reranked_context(qdrant_source):
    llm = RecordingLLM("The temple dates from 1070.")
    pipeline = _pipeline(qdrant_source, llm=llm)
    asyncio.run(pipeline.ingest("The temple was founded in 1070.", {"title": "Temple", "heritageId": "hn-01"}))
    asyncio.run(pipeline.ingest("The citadel was the seat of emperors.", {"title": "Citadel", "heritageId": "hn-02"}))

    result = asyncio.run(pipeline.query("When was the temple founded?", top_k=1))

    assert result.mode == MODE_RAG
    assert result.answer == "The temple dates from 1070."
    assert not result.degraded
    assert [s["content"] for s in result.sources] == ["The temple was founded in 1070."]
    assert set(result.sources[0]["signals"]) == {"semantic", "bm25", "keyword", "position", "metadata"}
    _, user_prompt = llm.prompts[0]
    assert "[Document 1]\nThe temple was founded in 1070." in user_prompt


def test_query_restricts_to_heritage_site(qdrant_source):
    pipeline = _pipeline(qdrant_source)
    asyncio.run(pipeline.ingest("The temple and citadel were founded early.", {"heritageId": "hn-01"}))
    asyncio.run(pipeline.ingest("The citadel was the seat of emperors.", {"heritageId": "hue-01"}))

    result = asyncio.run(pipeline.query("citadel", top_k=5, heritage_id="hue-01"))

    assert [s["metadata"]["heritageId"] for s in result.sources] == ["hue-01"]


def test_query_without_relevant_candidates_uses_fallback_prompt():
    source = RecordingCandidateSource([Candidate("1", "Cooking noodles.", similarity=0.05)])
    llm = RecordingLLM("No information yet.")
    pipeline = _pipeline(source, llm=llm)

    result = asyncio.run(pipeline.query("Tell me about the pagoda"))

    assert result.mode == MODE_NO_RELEVANT_CANDIDATES
    assert result.sources == []
    assert result.answer == "No information yet."
    _, user_prompt = llm.prompts[0]
    assert user_prompt == "Tell me about the pagoda"


def test_query_on_missing_collection_answers_from_general_knowledge(qdrant_source):
    llm = RecordingLLM("General answer.")

    result = asyncio.run(_pipeline(qdrant_source, llm=llm).query("temple"))

    assert result.mode == MODE_GENERAL
    assert result.sources == []
    assert result.answer == "General answer."
    assert llm.prompts[0][1] == "temple"


def test_query_with_empty_search_uses_general_prompt():
    source = RecordingCandidateSource([])
    llm = RecordingLLM()
    pipeline = _pipeline(source, llm=llm)

    result = asyncio.run(pipeline.query("When was the temple founded?"))

    assert result.mode == MODE_GENERAL
    assert len(source.searches) == 1
    system_prompt, user_prompt = llm.prompts[0]
    assert system_prompt == pipeline.prompt_builder.build("general", question="x").system
    assert user_prompt == "When was the temple founded?"


def test_off_topic_question_skips_retrieval():
    provider = KeywordEmbeddingProvider()
    source = RecordingCandidateSource([Candidate("1", "temple history", similarity=0.9)])
    llm = RecordingLLM("Take an umbrella.")
    pipeline = _pipeline(source, provider=provider, llm=llm)

    result = asyncio.run(pipeline.query("What is the weather like in Hanoi today?"))

    assert result.mode == MODE_GENERAL
    assert result.answer == "Take an umbrella."
    assert provider.calls == []
    assert source.searches == []
    assert llm.prompts[0][1] == "What is the weather like in Hanoi today?"


def test_custom_intent_classifier_routes_questions():
    source = RecordingCandidateSource([Candidate("1", "temple history", similarity=0.9)])
    settings = ConfigStore(_settings())
    pipeline = RAGPipeline(
        embeddings=EmbeddingPipeline(KeywordEmbeddingProvider(), lambda: settings.current().rate_limit),
        candidate_source=source,
        llm=RecordingLLM(),
        settings=settings,
        intent_classifier=lambda question: "temple" in question,
    )

    assert asyncio.run(pipeline.query("Tell me about the citadel")).mode == MODE_GENERAL
    assert asyncio.run(pipeline.query("Tell me about the temple")).mode == MODE_RAG
    assert len(source.searches) == 1

def test_query_searches_top_k_times_multiplier():
    source = RecordingCandidateSource([])
    pipeline = _pipeline(source)

    asyncio.run(pipeline.query("temple", top_k=4, heritage_id="hn-01"))

    search = source.searches[0]
    assert search["limit"] == 8
    assert search["collection_name"] == "heritage_documents"
    assert search["filter"].must[0].match.value == "hn-01"


def test_query_reports_degraded_reranking():
    candidates = [
        Candidate("a", "temple one", similarity=0.6),
        Candidate("b", "temple two", similarity=0.9),
    ]
    pipeline = _pipeline(RecordingCandidateSource(candidates), reranker=ExplodingReranker())

    result = asyncio.run(pipeline.query("temple", top_k=1))

    assert result.mode == MODE_RAG
    assert result.degraded
    assert [s["id"] for s in result.sources] == ["b"]


def test_query_with_reranking_disabled_keeps_similarity_order():
    candidates = [
        Candidate("a", "weather report", similarity=0.7),
        Candidate("b", "temple history", similarity=0.4),
    ]
    store = ConfigStore(_settings())
    store.update("reranking", enabled=False)
    pipeline = _pipeline(RecordingCandidateSource(candidates), settings=store)

    result = asyncio.run(pipeline.query("temple", top_k=2))

    assert [s["id"] for s in result.sources] == ["a", "b"]
    assert set(result.sources[0]["signals"]) == {"semantic"}


def test_settings_update_applies_to_next_query():
    candidates = [Candidate(str(i), f"temple {i}", similarity=0.9) for i in range(6)]
    source = RecordingCandidateSource(candidates)
    store = ConfigStore(_settings())
    pipeline = _pipeline(source, settings=store)

    asyncio.run(pipeline.query("temple"))
    store.update("pipeline", default_top_k=2, candidate_multiplier=3)
    result = asyncio.run(pipeline.query("temple"))

    assert [s["limit"] for s in source.searches] == [10, 6]
    assert len(result.sources) == 2


@pytest.mark.parametrize("question,top_k", [("", None), ("   ", None), ("temple", 0), ("temple", -1)])
def test_query_validates_arguments(question, top_k):
    pipeline = _pipeline(RecordingCandidateSource([]))
    with pytest.raises(ValidationError):
        asyncio.run(pipeline.query(question, top_k=top_k))


def test_cancelled_query_does_not_block_later_operations(qdrant_source):
    store = ConfigStore(RetrievalSettings(rate_limit=RateLimitConfig(retry_delay=5.0)))
    provider = RateLimitedOnceProvider()
    pipeline = _pipeline(qdrant_source, provider=provider, settings=store)

    async def cancelled_query():
        task = asyncio.ensure_future(pipeline.query("temple"))
        await asyncio.sleep(0.05)
        pipeline.cancel()
        with pytest.raises(EmbeddingCancelled):
            await task

    asyncio.run(cancelled_query())
    store.update("rate_limit", delay_between_requests=0, batch_delay=0, retry_delay=0)

    report = asyncio.run(pipeline.ingest("The temple was founded in 1070. The pagoda is older."))
    assert report.chunks_count == 1
    assert asyncio.run(pipeline.query("temple")).mode == MODE_RAG
