"""heritage_rag.pipelines.rag_pipeline

End-to-end Retrieval-Augmented Generation (RAG) pipeline orchestration.

This module defines the :class:`RAGPipeline`, which coordinates both data
flows of the system:

- ingestion: chunk → embed (paced) → ensure collection → upsert
- query: route by intent → embed question → vector search → rerank →
  prompt → generate

Questions about unrelated subjects, and questions for which the index holds
nothing at all, are answered from general knowledge with the ``general``
prompt. When candidates exist but none survives reranking, the ``fallback``
prompt answers instead.

Classes
-------
IngestionReport
    Outcome of :meth:`RAGPipeline.ingest`.
QueryResult
    Outcome of :meth:`RAGPipeline.query`.
RAGPipeline
    Orchestrates chunking, embedding, storage, retrieval, reranking and
    generation.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Union

from heritage_rag.common.errors import ValidationError
from heritage_rag.config.settings import ConfigStore, RetrievalSettings
from heritage_rag.generation.llm_interface import BaseLLM
from heritage_rag.generation.prompt_builder import PromptBuilder, build_context
from heritage_rag.retrieval.embedding_pipeline import EmbeddingPipeline
from heritage_rag.retrieval.question_filter import is_heritage_question
from heritage_rag.retrieval.reranker import BaseReranker, FusionReranker, similarity_order
from heritage_rag.retrieval.text_splitter import chunker_from_config
from heritage_rag.retrieval.vector_store import BaseCandidateSource, build_heritage_filter

logger = logging.getLogger("heritage_rag.rag_pipeline")

MODE_RAG = "rag"
MODE_NO_RELEVANT_CANDIDATES = "no_relevant_candidates"
MODE_GENERAL = "general"


@dataclass(frozen=True)
class IngestionReport:
    """Result of ingesting one document.

    Attributes
    ----------
    chunks_count : int
        Number of chunks stored.
    ids : list[str]
        Point ids, in chunk order.
    collection_name : str
        Collection the points were written to.
    """
    chunks_count: int
    ids: list[str]
    collection_name: str


@dataclass(frozen=True)
class QueryResult:
    """Result of answering one question.

    Attributes
    ----------
    answer : str
        Generated answer.
    sources : list[dict]
        Candidates used as context, with their signals and fused score.
    mode : str
        ``"rag"`` when context was used, ``"no_relevant_candidates"`` when
        no candidate survived reranking and the fallback prompt answered,
        ``"general"`` when the question was off-topic or the search found
        nothing and the general prompt answered.
    degraded : bool
        ``True`` when reranking fell back to similarity order.
    """
    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    mode: str = MODE_RAG
    degraded: bool = False


SettingsSource = Optional[Union[ConfigStore, RetrievalSettings, Callable[[], RetrievalSettings]]]


def _settings_reader(source: SettingsSource) -> Callable[[], RetrievalSettings]:
    if source is None:
        settings = RetrievalSettings()
        return lambda: settings
    if isinstance(source, ConfigStore):
        return source.current
    if isinstance(source, RetrievalSettings):
        return lambda: source
    return source


class RAGPipeline:
    """Retrieval-Augmented Generation (RAG) orchestrator.

    Parameters
    ----------
    embeddings : EmbeddingPipeline
        Paced embedding pipeline used for documents and questions.
    candidate_source : BaseCandidateSource
        Vector index adapter.
    llm : BaseLLM
        Generator used to answer.
    reranker : BaseReranker, optional
        Reranker; a :class:`FusionReranker` reading the current settings is
        used when omitted.
    prompt_builder : PromptBuilder, optional
        Prompt templates; defaults are used when omitted.
    settings : ConfigStore, RetrievalSettings or callable, optional
        Source of the settings in force. Read once per operation.
    intent_classifier : callable, optional
        ``intent_classifier(question) -> bool``; ``False`` sends the question
        to a general answer without retrieval. Defaults to
        :func:`~heritage_rag.retrieval.question_filter.is_heritage_question`.
    """

    def __init__(
            self,
            embeddings: EmbeddingPipeline,
            candidate_source: BaseCandidateSource,
            llm: BaseLLM,
            reranker: BaseReranker | None = None,
            prompt_builder: PromptBuilder | None = None,
            settings: SettingsSource = None,
            intent_classifier: Callable[[str], bool] | None = None,
        ):
        self.embeddings = embeddings
        self.candidate_source = candidate_source
        self.llm = llm
        self._settings = _settings_reader(settings)
        self.reranker = reranker or FusionReranker(lambda: self._settings().reranking)
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.intent_classifier = intent_classifier or is_heritage_question

    @staticmethod
    async def _run_sync(fn: Callable, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    async def ingest(
            self,
            text: str,
            metadata: Mapping[str, Any] | None = None,
            collection_name: str | None = None,
        ) -> IngestionReport:
        """Chunk, embed and store one document.

        Parameters
        ----------
        text : str
            Raw document text.
        metadata : Mapping[str, Any], optional
            Document-level fields (``title``, ``heritageId``, ``category``,
            ...) stored on every chunk.
        collection_name : str, optional
            Target collection. Defaults to ``pipeline.collection_name``.

        Raises
        ------
        ValidationError
            If the text yields no chunk.
        EmbeddingError
            If embedding failed; nothing is stored in that case.
        """
        settings = self._settings()
        name = collection_name or settings.pipeline.collection_name
        chunker = chunker_from_config(settings.chunking)

        chunks = chunker.split_with_metadata(text, metadata)
        if not chunks:
            raise ValidationError("Document produced no chunks")
        logger.info("Split document into %d chunks", len(chunks))

        vectors = await self.embeddings.embed_batch([c.content for c in chunks])

        await self._run_sync(self.candidate_source.ensure_collection, len(vectors[0]), name)
        ids = [str(uuid.uuid4()) for _ in chunks]
        points = [
            {"id": point_id, "vector": vector, "payload": chunk.to_payload()}
            for point_id, vector, chunk in zip(ids, vectors, chunks)
        ]
        await self._run_sync(self.candidate_source.upsert, points, collection_name=name)

        logger.info("Ingested %d chunks into %s", len(ids), name)
        return IngestionReport(chunks_count=len(ids), ids=ids, collection_name=name)

    async def query(
            self,
            question: str,
            top_k: int | None = None,
            heritage_id: str | None = None,
            collection_name: str | None = None,
        ) -> QueryResult:
        """Answer ``question`` from the stored documents.

        Parameters
        ----------
        question : str
            User question.
        top_k : int, optional
            Number of candidates used as context. Defaults to
            ``pipeline.default_top_k``.
        heritage_id : str, optional
            Restrict retrieval to chunks of this heritage site.
        collection_name : str, optional
            Collection to search. Defaults to ``pipeline.collection_name``.

        Raises
        ------
        ValidationError
            If ``question`` is empty or ``top_k`` is not positive.
        EmbeddingError
            If the question could not be embedded.
        """
        if not isinstance(question, str) or not question.strip():
            raise ValidationError("Question must be a non-empty string")

        settings = self._settings()
        if top_k is None:
            top_k = settings.pipeline.default_top_k
        if top_k < 1:
            raise ValidationError(f"top_k must be >= 1, got {top_k}")
        name = collection_name or settings.pipeline.collection_name
        limit = top_k * settings.pipeline.candidate_multiplier

        if not self.intent_classifier(question):
            return await self._general_answer(question)

        vector = await self.embeddings.embed_one(question)
        candidates = await self._run_sync(
            self.candidate_source.search,
            vector,
            limit,
            build_heritage_filter(heritage_id),
            collection_name=name,
        )
        logger.info("Retrieved %d candidates from %s", len(candidates), name)
        if not candidates:
            return await self._general_answer(question)

        rerank_config = settings.reranking.with_overrides(
            final_top_n=top_k,
            retrieval_top_k=max(settings.reranking.retrieval_top_k, top_k),
        )
        if rerank_config.enabled:
            result = self.reranker.rerank(question, candidates, rerank_config)
        else:
            result = similarity_order(candidates, top_k)

        if result.is_empty:
            logger.info("No relevant candidates, answering with the fallback prompt")
            prompt = self.prompt_builder.build("fallback", question=question)
            answer = await self.llm.agenerate(prompt.system, prompt.user)
            return QueryResult(answer=answer, mode=MODE_NO_RELEVANT_CANDIDATES)

        context = build_context(item.content for item in result)
        prompt = self.prompt_builder.build("answer", question=question, context=context)
        answer = await self.llm.agenerate(prompt.system, prompt.user)
        return QueryResult(
            answer=answer,
            sources=[item.to_dict() for item in result],
            mode=MODE_RAG,
            degraded=result.degraded,
        )

    async def _general_answer(self, question: str) -> QueryResult:
        logger.info("Answering without retrieval using the general prompt")
        prompt = self.prompt_builder.build("general", question=question)
        answer = await self.llm.agenerate(prompt.system, prompt.user)
        return QueryResult(answer=answer, mode=MODE_GENERAL)

    def cancel(self) -> None:
        """Interrupt pending embedding waits of the running operation."""
        self.embeddings.cancel()


__all__ = [
    "IngestionReport",
    "QueryResult",
    "RAGPipeline",
]
