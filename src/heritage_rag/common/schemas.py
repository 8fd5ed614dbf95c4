"""heritage_rag.common.schemas

Core data schemas shared across the retrieval pipeline.

These lightweight dataclasses describe the canonical shapes passed between
chunking, embedding, candidate retrieval and reranking.

Classes
-------
Chunk
    A bounded, possibly-overlapping segment of a source document.
Candidate
    A stored chunk returned by the vector index for a query, with its
    similarity score.
ScoredCandidate
    A candidate plus its relevance signals and fused score.
RerankResult
    Ordered reranking output, tagged with whether the engine degraded to the
    similarity-order fallback.

Notes
-----
``metadata`` is intentionally untyped (``dict[str, Any]``) to allow arbitrary
document-level fields (e.g. ``title``, ``filename``, ``category``,
``uploadedAt``, ``heritageId``). Downstream code should treat missing keys
defensively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping, TypeAlias

SignalVector: TypeAlias = Mapping[str, float]

SIGNAL_NAMES: tuple[str, ...] = ("semantic", "bm25", "keyword", "position", "metadata")


@dataclass
class Chunk:
    """A contiguous segment of a source document prepared for embedding.

    Attributes
    ----------
    content : str
        Chunk text.
    chunk_index : int
        Zero-based position of this chunk within its document.
    total_chunks : int
        Number of chunks the document was split into.
    metadata : dict[str, Any]
        Document-level metadata, duplicated onto every chunk of the document.
    """
    content: str
    chunk_index: int
    total_chunks: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not 0 <= self.chunk_index < self.total_chunks:
            raise ValueError(
                f"chunk_index must satisfy 0 <= chunk_index < total_chunks, "
                f"got {self.chunk_index} of {self.total_chunks}"
            )

    def to_payload(self) -> dict[str, Any]:
        """Return the flat payload stored next to the vector in the index."""
        return {
            **self.metadata,
            "content": self.content,
            "chunkIndex": self.chunk_index,
            "totalChunks": self.total_chunks,
        }


@dataclass(frozen=True)
class Candidate:
    """A document chunk returned by the vector index.

    Attributes
    ----------
    id : str
        Point identifier in the index.
    content : str
        Chunk text.
    metadata : Mapping[str, Any]
        Stored payload without ``content``.
    similarity : float
        Index-defined similarity (cosine similarity, or ``1 - distance``).
        A candidate without a reported score counts as fully similar, the
        same as a missing distance in :meth:`from_distance`.
    """
    id: str
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    similarity: float = 1.0

    @classmethod
    def from_distance(
            cls,
            id: str,
            content: str,
            distance: float | None,
            metadata: Mapping[str, Any] | None = None,
        ) -> "Candidate":
        """Build a candidate from an index that reports distances."""
        return cls(
            id=id,
            content=content,
            metadata=dict(metadata or {}),
            similarity=1.0 - (distance or 0.0),
        )

    @property
    def relevance(self) -> float:
        """Similarity clamped to ``[0, 1]``."""
        return min(1.0, max(0.0, float(self.similarity)))


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its relevance signals and fused score.

    Attributes
    ----------
    candidate : Candidate
        The scored candidate.
    signals : SignalVector
        Read-only mapping of signal name to score in ``[0, 1]``.
    fused : float
        Weighted fusion of ``signals``.
    original_rank : int
        1-based position of the candidate in the upstream similarity ranking.
    """
    candidate: Candidate
    signals: SignalVector
    fused: float
    original_rank: int

    def __post_init__(self):
        object.__setattr__(self, "signals", MappingProxyType(dict(self.signals)))

    @property
    def content(self) -> str:
        return self.candidate.content

    @property
    def metadata(self) -> Mapping[str, Any]:
        return self.candidate.metadata

    def to_dict(self) -> dict[str, Any]:
        """Return a plain-dict view suitable for JSON responses."""
        return {
            "id": self.candidate.id,
            "content": self.candidate.content,
            "metadata": dict(self.candidate.metadata),
            "similarity": self.candidate.similarity,
            "signals": dict(self.signals),
            "fused": self.fused,
            "original_rank": self.original_rank,
        }


@dataclass(frozen=True)
class RerankResult:
    """Ordered output of a reranker.

    Attributes
    ----------
    candidates : tuple[ScoredCandidate, ...]
        Candidates in final order, at most ``final_top_n`` long.
    degraded : bool
        ``True`` when scoring failed and the similarity-order fallback was used.
    reason : str or None
        Short description of the failure when ``degraded`` is set.
    """
    candidates: tuple[ScoredCandidate, ...] = ()
    degraded: bool = False
    reason: str | None = None

    def __iter__(self) -> Iterator[ScoredCandidate]:
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    def __getitem__(self, index: int) -> ScoredCandidate:
        return self.candidates[index]

    @property
    def is_empty(self) -> bool:
        """``True`` when no candidate survived ("no relevant candidates")."""
        return not self.candidates


__all__ = [
    "SIGNAL_NAMES",
    "SignalVector",
    "Chunk",
    "Candidate",
    "ScoredCandidate",
    "RerankResult",
]
