"""heritage_rag.config

Configuration subsystem for the heritage RAG pipeline.

This package provides structured access to global and component-level
configuration loaded from YAML files. It exposes validated, immutable
settings rather than raw configuration dictionaries.

Modules
-------
global_config
    Global configuration loader and cached accessors.
settings
    Frozen, validated settings structs and the atomic ``ConfigStore``.
"""
from .global_config import GlobalConfig
from .settings import (
    BM25Parameters,
    ChunkingConfig,
    ConfigStore,
    PipelineConfig,
    RateLimitConfig,
    RerankConfig,
    RetrievalSettings,
)

__all__ = [
    "GlobalConfig",
    "BM25Parameters",
    "RerankConfig",
    "RateLimitConfig",
    "ChunkingConfig",
    "PipelineConfig",
    "RetrievalSettings",
    "ConfigStore",
]
