"""heritage_rag.common.errors

Exception hierarchy shared by the chunking, embedding and reranking layers.

Classes
-------
HeritageRAGError
    Root of every error raised by this package.
ValidationError
    Malformed configuration or arguments (e.g. ``overlap_size >= max_chunk_size``).
EmbeddingError
    Base class for failures of the embedding pipeline.
RateLimitError
    Retryable rate-limit response from the embedding provider (HTTP 429).
RateLimitExceeded
    Rate limiting persisted after every retry was spent.
ProviderError
    Non-retryable upstream failure of the embedding provider.
EmbeddingCancelled
    A pacing or backoff wait was interrupted by cancellation.
ScoringFailure
    A relevance signal could not be computed. Always recovered by the reranker.

Notes
-----
An empty candidate set is *not* an error; it is reported through
:attr:`heritage_rag.common.schemas.RerankResult.is_empty`.
"""

from __future__ import annotations

from typing import Any


class HeritageRAGError(Exception):
    """Root exception for the heritage_rag package."""


class ValidationError(HeritageRAGError, ValueError):
    """Raised when configuration or call arguments are malformed."""


class EmbeddingError(HeritageRAGError):
    """Base class for embedding pipeline failures.

    Attributes
    ----------
    completed : list[list[float]]
        Vectors embedded before the failure, in input order. The pipeline does
        not resume; callers may keep these.
    """

    def __init__(self, message: str = "", *, completed: list[list[float]] | None = None):
        super().__init__(message)
        self.completed: list[list[float]] = list(completed or [])


class RateLimitError(EmbeddingError):
    """Provider answered with a rate-limit response. Retryable."""


class RateLimitExceeded(EmbeddingError):
    """Rate limiting persisted after ``attempts`` retries."""

    def __init__(self, attempts: int, *, completed: list[list[float]] | None = None):
        super().__init__(
            f"Embedding provider still rate limited after {attempts} retries",
            completed=completed,
        )
        self.attempts = attempts


class ProviderError(EmbeddingError):
    """Non-retryable failure reported by the embedding provider."""

    def __init__(
            self,
            status: int | None,
            body: Any = None,
            *,
            completed: list[list[float]] | None = None,
        ):
        super().__init__(f"Embedding provider error: {status} - {body}", completed=completed)
        self.status = status
        self.body = body


class EmbeddingCancelled(EmbeddingError):
    """A pacing or backoff wait was cancelled before it elapsed."""


class ScoringFailure(HeritageRAGError):
    """A relevance signal could not be computed for a candidate."""


__all__ = [
    "HeritageRAGError",
    "ValidationError",
    "EmbeddingError",
    "RateLimitError",
    "RateLimitExceeded",
    "ProviderError",
    "EmbeddingCancelled",
    "ScoringFailure",
]
