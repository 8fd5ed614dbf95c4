"""heritage_rag.pipelines

Pipeline orchestration components for the heritage RAG system.

This package contains the high-level pipeline that coordinates ingestion
(chunking, embedding, storage) and question answering (retrieval, reranking,
prompt construction and generation). The pipeline holds no per-request state
beyond its configured components, so one instance can serve many requests.

Modules
-------
rag_pipeline
    End-to-end Retrieval-Augmented Generation (RAG) pipeline.
"""
