"""heritage_rag

Retrieval-augmented question answering over cultural-heritage documents.

Documents are split into overlapping, sentence-aligned chunks, embedded under
the provider's request quota and stored in Qdrant. Questions are answered from
the stored chunks after a reranking pass that blends semantic similarity with
BM25, keyword overlap, match position and document metadata.

Subpackages
-----------
config
    YAML loading and the frozen retrieval settings.
retrieval
    Chunker, embedding providers and pipeline, vector index, scoring, reranker.
generation
    Chat generators and prompt templates.
pipelines
    Ingestion and query orchestration.
app
    Component wiring from a configuration file.
common
    Shared data types, errors and tokenisation.

``__version__`` falls back to ``"0.0.0-dev"`` when the distribution is not
installed.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("heritage-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import HeritageContainer, build_container
from .pipelines.rag_pipeline import RAGPipeline
from .common import Candidate, Chunk

__all__ = [
    "__version__",
    "GlobalConfig",
    "HeritageContainer",
    "build_container",
    "RAGPipeline",
    "Chunk",
    "Candidate",
]
