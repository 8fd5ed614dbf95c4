"""heritage_rag.app.container

Wiring of the heritage RAG components from a loaded configuration.

:class:`HeritageContainer` builds each component on first access and keeps
it. Nothing is constructed, read or contacted when the module is imported or
the container created, so scripts only pay for the components they touch.

All components share one :class:`~heritage_rag.config.ConfigStore`. They are
handed a reader of the store instead of a copy of its value, so
``container.settings.update(...)`` takes effect from their next call.

Examples
--------
>>> cfg = GlobalConfig.load("config/config.yaml")
>>> container = build_container(cfg)
>>> asyncio.run(container.pipeline.query("When was the citadel built?"))
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Any

from heritage_rag.config.settings import ConfigStore, RetrievalSettings


@dataclass(frozen=True)
class HeritageContainer:
    """Lazily built components of one configured deployment.

    Parameters
    ----------
    config : GlobalConfig
        Loaded configuration document.
    """

    config: Any

    @cached_property
    def settings(self) -> ConfigStore:
        return ConfigStore(RetrievalSettings.from_global_config(self.config))

    @cached_property
    def embedding_provider(self) -> Any:
        from heritage_rag.retrieval.embedder import create_embedding_provider

        return create_embedding_provider(self.config.embedder)

    @cached_property
    def embeddings(self) -> Any:
        """Embedding pipeline paced by the ``rate_limit`` settings in force."""
        from heritage_rag.retrieval.embedding_pipeline import EmbeddingPipeline

        store = self.settings
        return EmbeddingPipeline(
            self.embedding_provider,
            rate_limit=lambda: store.current().rate_limit,
        )

    @cached_property
    def candidate_source(self) -> Any:
        """Vector index; its default collection is ``pipeline.collection_name``."""
        from heritage_rag.retrieval.vector_store import create_candidate_source

        section = dict(self.config.vector_store)
        section.setdefault("collection_name", self.settings.current().pipeline.collection_name)
        return create_candidate_source(section)

    @cached_property
    def reranker(self) -> Any:
        from heritage_rag.retrieval.reranker import create_reranker

        store = self.settings
        return create_reranker(lambda: store.current().reranking)

    @cached_property
    def generator_llm(self) -> Any:
        from heritage_rag.generation.llm_interface import create_llm

        return create_llm(dict(self.config.generator_llm))

    @cached_property
    def prompt_builder(self) -> Any:
        """Prompt builder answering in ``answer_language``.

        JSON files named under ``prompts`` (one path or a list) add to or
        replace the default templates. Relative paths start from the
        directory of the configuration file.
        """
        from heritage_rag.generation.prompt_builder import PromptBuilder

        raw = getattr(self.config, "raw", None) or {}
        builder = PromptBuilder(language=raw.get("answer_language", "English"))

        files = raw.get("prompts") or []
        if isinstance(files, str):
            files = [files]
        elif not isinstance(files, (list, tuple)):
            raise TypeError(f"'prompts' must be a path or a list of paths, got {type(files).__name__}")

        config_path = getattr(self.config, "config_path", None)
        base_dir = Path(config_path).parent if config_path else None
        for path in files:
            builder.register_from_file(str(path), base_dir=base_dir)
        return builder

    @cached_property
    def pipeline(self) -> Any:
        from heritage_rag.pipelines.rag_pipeline import RAGPipeline

        return RAGPipeline(
            embeddings=self.embeddings,
            candidate_source=self.candidate_source,
            llm=self.generator_llm,
            reranker=self.reranker,
            prompt_builder=self.prompt_builder,
            settings=self.settings,
        )


def build_container(config: Any) -> HeritageContainer:
    """Return a container for ``config`` (a :class:`~heritage_rag.config.GlobalConfig`)."""
    return HeritageContainer(config=config)


__all__ = ["HeritageContainer", "build_container"]
