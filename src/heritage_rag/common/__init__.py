"""
Common building blocks shared across the retrieval stack.

This package provides small, widely-used primitives (data schemas, the error
hierarchy and the tokenisation helpers) intended to be imported by multiple
layers of the system.

Classes
-------
Chunk
    Segment of a source document with positional metadata.
Candidate
    Chunk returned by the vector index with its similarity score.
ScoredCandidate
    Candidate with relevance signals and fused score.
RerankResult
    Ordered reranking output with a ``degraded`` flag.

Attributes
----------
PointId : TypeAlias
    Type alias for vector index point identifiers.
__version__ : str
    Package version string. Defaults to "0.0.0-dev" when package metadata is
    unavailable.

See Also
--------
heritage_rag.common.errors
    Exception hierarchy.
heritage_rag.common.tokenisation
    Tokenisation and text-signal helpers.
heritage_rag.common.kinds
    Backend discriminator parsing for factories.
"""
from __future__ import annotations
from typing import TypeAlias

from .schemas import (
    Candidate,
    Chunk,
    RerankResult,
    ScoredCandidate,
)

PointId: TypeAlias = str

__all__ = [
    "Chunk",
    "Candidate",
    "ScoredCandidate",
    "RerankResult",
    "PointId",
    "__version__",
]

try:
    from importlib.metadata import version, PackageNotFoundError
    __version__ = version("heritage-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
