"""heritage_rag.retrieval.reranker

Reranker abstractions and implementations for the query pipeline.

This module defines:
- an abstract reranker interface
- a multi-signal fusion reranker (semantic, BM25, keyword, position, metadata)
- a BM25-only reranker
- a small reranker factory for configuration-driven construction

Rerankers never raise. If scoring fails for any reason, the input candidates
are returned in their original similarity order, truncated to
``final_top_n``, and the result is flagged ``degraded``.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence, Union

from heritage_rag.common.schemas import Candidate, RerankResult, ScoredCandidate
from heritage_rag.config.settings import RerankConfig
from heritage_rag.retrieval.scoring import (
    BM25Scorer,
    fuse,
    keyword_score,
    metadata_score,
    min_max_normalise,
    position_score,
)

logger = logging.getLogger("heritage_rag.reranker")

ConfigSource = Union[RerankConfig, Callable[[], RerankConfig]]
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _fallback_relevance(candidate: Candidate) -> float:
    try:
        value = float(candidate.similarity)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def similarity_order(
        candidates: Sequence[Candidate],
        limit: int,
        *,
        degraded: bool = False,
        reason: str | None = None,
    ) -> RerankResult:
    """Return ``candidates`` by descending similarity (stable), truncated to ``limit``.

    A similarity that is not a number ranks as 0.0, so this ordering never
    raises on malformed candidates.
    """
    ranked = sorted(
        ((rank, candidate, _fallback_relevance(candidate))
         for rank, candidate in enumerate(candidates, start=1)),
        key=lambda item: item[2],
        reverse=True,
    )
    scored = tuple(
        ScoredCandidate(
            candidate=candidate,
            signals={"semantic": relevance},
            fused=relevance,
            original_rank=rank,
        )
        for rank, candidate, relevance in ranked[:limit]
    )
    return RerankResult(candidates=scored, degraded=degraded, reason=reason)


class BaseReranker(ABC):
    """Abstract interface for reranking retrieved candidates.

    Parameters
    ----------
    config_source : RerankConfig or Callable[[], RerankConfig], optional
        Reranking policy, or a callable returning the policy currently in
        force. It is read once per :meth:`rerank` call.
    """

    def __init__(self, config_source: ConfigSource | None = None):
        self._config_source = config_source if config_source is not None else RerankConfig()

    def current_config(self) -> RerankConfig:
        if callable(self._config_source):
            return self._config_source()
        return self._config_source

    def rerank(
            self,
            query: str,
            candidates: Sequence[Candidate],
            config: RerankConfig | None = None,
            *,
            idf_corpus: Sequence[str] | None = None,
        ) -> RerankResult:
        """Rerank ``candidates`` for ``query``.

        Parameters
        ----------
        query : str
            User query.
        candidates : Sequence[Candidate]
            Candidates in upstream similarity order.
        config : RerankConfig, optional
            Per-call policy. Defaults to the reranker's configured policy.
        idf_corpus : Sequence[str], optional
            Corpus for BM25 statistics. Defaults to the content of the
            candidates being scored.

        Returns
        -------
        RerankResult
            At most ``final_top_n`` candidates. ``degraded`` is set when
            scoring failed and similarity order was used instead.
        """
        cfg = config or self.current_config()
        if not candidates:
            return RerankResult()

        try:
            return self._rerank(query, list(candidates), cfg, idf_corpus)
        except Exception as exc:
            logger.exception("Reranking failed, falling back to similarity order")
            return similarity_order(
                candidates,
                cfg.final_top_n,
                degraded=True,
                reason=f"{type(exc).__name__}: {exc}",
            )

    @abstractmethod
    def _rerank(
            self,
            query: str,
            candidates: list[Candidate],
            config: RerankConfig,
            idf_corpus: Sequence[str] | None,
        ) -> RerankResult:
        """Score and order ``candidates``. May raise; :meth:`rerank` recovers."""
        raise NotImplementedError


class FusionReranker(BaseReranker):
    """Multi-signal reranker.

    Candidates whose clamped similarity is below ``min_semantic_score`` are
    dropped. The survivors are scored on five signals:

    - ``semantic``: clamped vector similarity
    - ``bm25``: BM25 over the survivors, min-max normalised across them
    - ``keyword``: Jaccard overlap of content tokens
    - ``position``: early occurrence of query tokens
    - ``metadata``: title, filename, category and recency

    and ordered by the weighted fusion of those signals, ties keeping their
    upstream order.

    Parameters
    ----------
    config_source : RerankConfig or Callable[[], RerankConfig], optional
        Reranking policy or a callable returning it.
    clock : Callable[[], datetime], optional
        Source of the current time for the recency boost.
    """

    def __init__(self, config_source: ConfigSource | None = None, clock: Clock = _utc_now):
        super().__init__(config_source)
        self.clock = clock

    def _rerank(self, query, candidates, config, idf_corpus):
        ranked = [
            (rank, candidate)
            for rank, candidate in enumerate(candidates, start=1)
            if candidate.relevance >= config.min_semantic_score
        ]
        if not ranked:
            logger.info(
                "No candidate reached the semantic threshold %.2f (%d retrieved)",
                config.min_semantic_score,
                len(candidates),
            )
            return RerankResult()

        corpus = idf_corpus if idf_corpus is not None else [c.content for _, c in ranked]
        scorer = BM25Scorer(corpus, config.bm25)
        now = self.clock()

        raw_signals: list[dict[str, float]] = []
        for _, candidate in ranked:
            raw_signals.append({
                "semantic": candidate.relevance,
                "bm25": scorer.score(query, candidate.content),
                "keyword": keyword_score(query, candidate.content),
                "position": position_score(query, candidate.content),
                "metadata": metadata_score(query, candidate.metadata, now=now),
            })

        normalised = min_max_normalise([signals["bm25"] for signals in raw_signals])
        scored: list[ScoredCandidate] = []
        for (rank, candidate), signals, bm25 in zip(ranked, raw_signals, normalised):
            signals["bm25"] = bm25
            scored.append(
                ScoredCandidate(
                    candidate=candidate,
                    signals=signals,
                    fused=fuse(signals, config.weights),
                    original_rank=rank,
                )
            )

        scored.sort(key=lambda item: item.fused, reverse=True)
        top = tuple(scored[:config.final_top_n])

        logger.info("Reranked: selected top %d from %d candidates", len(top), len(candidates))
        for position, item in enumerate(top[:3], start=1):
            logger.debug(
                "[%d] fused=%.3f semantic=%.2f bm25=%.2f keyword=%.2f",
                position,
                item.fused,
                item.signals["semantic"],
                item.signals["bm25"],
                item.signals["keyword"],
            )
        return RerankResult(candidates=top)


class BM25OnlyReranker(BaseReranker):
    """Rerank by normalised BM25 alone, without a semantic threshold."""

    def _rerank(self, query, candidates, config, idf_corpus):
        corpus = idf_corpus if idf_corpus is not None else [c.content for c in candidates]
        scorer = BM25Scorer(corpus, config.bm25)
        normalised = min_max_normalise([scorer.score(query, c.content) for c in candidates])

        scored = [
            ScoredCandidate(
                candidate=candidate,
                signals={"bm25": bm25},
                fused=bm25,
                original_rank=rank,
            )
            for rank, (candidate, bm25) in enumerate(zip(candidates, normalised), start=1)
        ]
        scored.sort(key=lambda item: item.fused, reverse=True)
        top = tuple(scored[:config.final_top_n])
        logger.info("BM25 reranked: selected top %d from %d candidates", len(top), len(candidates))
        return RerankResult(candidates=top)


def create_reranker(
        config: ConfigSource | Mapping[str, Any] | None = None,
        *,
        clock: Clock = _utc_now,
    ) -> BaseReranker:
    """Create a reranker from configuration.

    Parameters
    ----------
    config : RerankConfig, callable or mapping, optional
        Reranking policy. A mapping is parsed as the ``reranking`` section.
        ``algorithm`` selects ``fusion`` (default) or ``bm25_only``.
    clock : Callable[[], datetime], optional
        Time source for the fusion reranker's recency boost.

    Raises
    ------
    ValueError
        If the algorithm is not supported.
    """
    if isinstance(config, Mapping):
        config = RerankConfig.from_config_dict(config)
    source = config if config is not None else RerankConfig()
    current = source() if callable(source) else source

    kind = str(current.algorithm).lower().strip().replace("-", "_")
    if kind == "fusion":
        return FusionReranker(source, clock=clock)
    if kind == "bm25_only":
        return BM25OnlyReranker(source)

    raise ValueError(f"Unsupported rerank algorithm {kind!r}. Supported rerankers: ['fusion', 'bm25_only'].")


def _resolve_config(config: RerankConfig | None, overrides: Mapping[str, Any]) -> RerankConfig:
    cfg = config or RerankConfig()
    return cfg.with_overrides(**overrides) if overrides else cfg


def rerank(
        query: str,
        candidates: Sequence[Candidate],
        config: RerankConfig | None = None,
        **overrides: Any,
    ) -> RerankResult:
    """Rerank with :class:`FusionReranker`.

    Keyword ``overrides`` (e.g. ``weights={"bm25": 1.0}``) are applied to
    ``config`` for this call only.
    """
    return FusionReranker(_resolve_config(config, overrides)).rerank(query, candidates)


def rerank_bm25_only(
        query: str,
        candidates: Sequence[Candidate],
        config: RerankConfig | None = None,
        **overrides: Any,
    ) -> RerankResult:
    """Rerank with :class:`BM25OnlyReranker`."""
    return BM25OnlyReranker(_resolve_config(config, overrides)).rerank(query, candidates)


__all__ = [
    "BaseReranker",
    "FusionReranker",
    "BM25OnlyReranker",
    "similarity_order",
    "create_reranker",
    "rerank",
    "rerank_bm25_only",
]
