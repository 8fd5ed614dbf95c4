"""
Retrieval layer of the RAG pipeline.

This package covers everything needed to turn raw documents into searchable
vectors and to pick the most relevant chunks for a query: the chunker, the
embedding providers and their paced pipeline, the vector index adapter, the
relevance signals, the rerankers and the question screen.

Submodules
----------
text_splitter
    Sentence-aware chunking with overlap.
rate_limiter
    Cancellable pacing of outbound requests.
embedder
    Embedding provider adapters and factory.
embedding_pipeline
    Sequential, paced, retrying batch embedding.
vector_store
    Qdrant candidate source.
scoring
    BM25, keyword, position and metadata signals, normalisation and fusion.
reranker
    Fusion and BM25-only rerankers.
question_filter
    Question screening and off-topic routing.
"""
