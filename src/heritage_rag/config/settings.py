"""heritage_rag.config.settings

Immutable, validated configuration structs for the retrieval subsystem.

Each section of the configuration is a frozen dataclass validated in
``__post_init__``. A running process holds one :class:`RetrievalSettings`
reference inside a :class:`ConfigStore`; updates build a new struct and swap
the reference atomically, so readers either see the old or the new settings
but never a partially updated one.

Classes
-------
BM25Parameters
    BM25 term-saturation and length-normalisation parameters.
RerankConfig
    Reranking policy: candidate counts, signal weights, semantic threshold.
RateLimitConfig
    Pacing and retry parameters of the embedding pipeline.
ChunkingConfig
    Chunk size and overlap used at ingestion.
PipelineConfig
    Query orchestration defaults.
RetrievalSettings
    Aggregate of every section above.
ConfigStore
    Thread-safe holder of the current :class:`RetrievalSettings`.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, TYPE_CHECKING

from heritage_rag.common.errors import ValidationError
from heritage_rag.common.schemas import SIGNAL_NAMES

if TYPE_CHECKING:
    from heritage_rag.config.global_config import GlobalConfig

logger = logging.getLogger("heritage_rag.config")

DEFAULT_WEIGHTS: Mapping[str, float] = MappingProxyType({
    "semantic": 0.50,
    "bm25": 0.25,
    "keyword": 0.15,
    "metadata": 0.05,
    "position": 0.05,
})

RERANK_ALGORITHMS = ("fusion", "bm25_only")

_CAMEL_ALIASES = {
    "retrievalTopK": "retrieval_top_k",
    "finalTopN": "final_top_n",
    "minSemanticScore": "min_semantic_score",
    "delayBetweenRequests": "delay_between_requests",
    "batchDelay": "batch_delay",
    "maxRetries": "max_retries",
    "retryDelay": "retry_delay",
    "batchSize": "batch_size",
    "maxChunkSize": "max_chunk_size",
    "overlapSize": "overlap_size",
    "defaultTopK": "default_top_k",
    "defaultCollectionName": "collection_name",
    "collectionName": "collection_name",
    "candidateMultiplier": "candidate_multiplier",
}

_SECTION_ALIASES = {
    "rateLimit": "rate_limit",
    "rerank": "reranking",
}


def _normalise_keys(values: Mapping[str, Any]) -> dict[str, Any]:
    return {_CAMEL_ALIASES.get(key, key): value for key, value in values.items()}


def _known_fields(cls, values: Mapping[str, Any]) -> dict[str, Any]:
    """Keep the keys ``cls`` declares, warning about the rest."""
    names = {f.name for f in dataclasses.fields(cls)}
    values = _normalise_keys(values)
    unknown = sorted(set(values) - names)
    if unknown:
        warnings.warn(
            f"Ignoring unknown {cls.__name__} keys: {', '.join(unknown)}",
            UserWarning,
            stacklevel=3,
        )
    return {key: value for key, value in values.items() if key in names}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValidationError(message)


@dataclass(frozen=True)
class BM25Parameters:
    """BM25 parameters.

    Attributes
    ----------
    k1 : float
        Term-frequency saturation. Must be positive.
    b : float
        Length normalisation strength, in ``[0, 1]``.
    """
    k1: float = 1.5
    b: float = 0.75

    def __post_init__(self):
        _require(_is_number(self.k1) and self.k1 > 0, f"bm25.k1 must be > 0, got {self.k1!r}")
        _require(_is_number(self.b) and 0 <= self.b <= 1, f"bm25.b must be in [0, 1], got {self.b!r}")

    @classmethod
    def from_config_dict(cls, cfg: Mapping[str, Any] | None) -> "BM25Parameters":
        return cls(**_known_fields(cls, cfg or {}))


@dataclass(frozen=True)
class RerankConfig:
    """Reranking policy.

    Attributes
    ----------
    retrieval_top_k : int
        Candidates requested from the vector index.
    final_top_n : int
        Candidates kept after reranking. At most ``retrieval_top_k``.
    weights : Mapping[str, float]
        Non-negative fusion weight per signal. Missing signals weigh 0.
    min_semantic_score : float
        Candidates whose clamped similarity falls below this are dropped.
    bm25 : BM25Parameters
        Parameters of the BM25 signal.
    algorithm : str
        ``"fusion"`` (all signals) or ``"bm25_only"``.
    enabled : bool
        When ``False`` the query pipeline keeps the index similarity order.
    """
    retrieval_top_k: int = 20
    final_top_n: int = 5
    weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    min_semantic_score: float = 0.3
    bm25: BM25Parameters = field(default_factory=BM25Parameters)
    algorithm: str = "fusion"
    enabled: bool = True

    def __post_init__(self):
        _require(
            isinstance(self.retrieval_top_k, int) and self.retrieval_top_k >= 1,
            f"reranking.retrieval_top_k must be >= 1, got {self.retrieval_top_k!r}",
        )
        _require(
            isinstance(self.final_top_n, int) and self.final_top_n >= 1,
            f"reranking.final_top_n must be >= 1, got {self.final_top_n!r}",
        )
        _require(
            self.final_top_n <= self.retrieval_top_k,
            "reranking.final_top_n must not exceed reranking.retrieval_top_k "
            f"({self.final_top_n} > {self.retrieval_top_k})",
        )
        _require(
            _is_number(self.min_semantic_score) and 0 <= self.min_semantic_score <= 1,
            f"reranking.min_semantic_score must be in [0, 1], got {self.min_semantic_score!r}",
        )
        _require(
            self.algorithm in RERANK_ALGORITHMS,
            f"reranking.algorithm must be one of {RERANK_ALGORITHMS}, got {self.algorithm!r}",
        )
        _require(isinstance(self.enabled, bool), "reranking.enabled must be a boolean")
        _require(isinstance(self.weights, Mapping), "reranking.weights must be a mapping")
        for name, weight in self.weights.items():
            _require(
                _is_number(weight) and weight >= 0,
                f"reranking.weights.{name} must be a number >= 0, got {weight!r}",
            )
        unknown = sorted(set(self.weights) - set(SIGNAL_NAMES))
        if unknown:
            warnings.warn(
                f"Unknown reranking weights are ignored: {', '.join(unknown)}",
                UserWarning,
                stacklevel=3,
            )
        if isinstance(self.bm25, Mapping):
            object.__setattr__(self, "bm25", BM25Parameters.from_config_dict(self.bm25))
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))

    def __hash__(self):
        return hash((
            self.retrieval_top_k,
            self.final_top_n,
            tuple(sorted(self.weights.items())),
            self.min_semantic_score,
            self.bm25,
            self.algorithm,
            self.enabled,
        ))

    @property
    def total_weight(self) -> float:
        return float(sum(self.weights.get(name, 0.0) for name in SIGNAL_NAMES))

    def with_overrides(self, **changes: Any) -> "RerankConfig":
        """Return a validated copy with ``changes`` applied.

        A ``weights`` mapping replaces the current weights entirely; signals it
        does not name weigh 0.
        """
        changes = _normalise_keys(changes)
        if isinstance(changes.get("bm25"), Mapping):
            changes["bm25"] = dataclasses.replace(self.bm25, **changes["bm25"])
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_config_dict(
            cls,
            cfg: Mapping[str, Any] | None,
            bm25: Mapping[str, Any] | BM25Parameters | None = None,
        ) -> "RerankConfig":
        """Build from the ``reranking`` section, plus an optional ``bm25`` section."""
        values = _known_fields(cls, cfg or {})
        if "weights" in values:
            values["weights"] = {**DEFAULT_WEIGHTS, **(values["weights"] or {})}
        if isinstance(bm25, BM25Parameters):
            values["bm25"] = bm25
        elif bm25 is not None:
            values["bm25"] = BM25Parameters.from_config_dict(bm25)
        return cls(**values)


@dataclass(frozen=True)
class RateLimitConfig:
    """Pacing and retry parameters, in seconds.

    Attributes
    ----------
    batch_size : int
        Requests per batch.
    delay_between_requests : float
        Wait after each request except the last one.
    batch_delay : float
        Additional wait between two batches.
    max_retries : int
        Retries on a rate-limit response before giving up.
    retry_delay : float
        Base of the linear backoff ``retry_delay * (attempt + 1)``.
    """
    batch_size: int = 3
    delay_between_requests: float = 1.5
    batch_delay: float = 5.0
    max_retries: int = 5
    retry_delay: float = 3.0

    def __post_init__(self):
        _require(
            isinstance(self.batch_size, int) and not isinstance(self.batch_size, bool)
            and self.batch_size >= 1,
            f"rate_limit.batch_size must be >= 1, got {self.batch_size!r}",
        )
        _require(
            isinstance(self.max_retries, int) and not isinstance(self.max_retries, bool)
            and self.max_retries >= 0,
            f"rate_limit.max_retries must be >= 0, got {self.max_retries!r}",
        )
        for name in ("delay_between_requests", "batch_delay", "retry_delay"):
            value = getattr(self, name)
            _require(_is_number(value) and value >= 0, f"rate_limit.{name} must be >= 0, got {value!r}")

    @classmethod
    def from_config_dict(cls, cfg: Mapping[str, Any] | None) -> "RateLimitConfig":
        return cls(**_known_fields(cls, cfg or {}))


@dataclass(frozen=True)
class ChunkingConfig:
    """Chunk size and overlap, in characters."""
    max_chunk_size: int = 450
    overlap_size: int = 120

    def __post_init__(self):
        _require(
            isinstance(self.max_chunk_size, int) and self.max_chunk_size >= 1,
            f"chunking.max_chunk_size must be >= 1, got {self.max_chunk_size!r}",
        )
        _require(
            isinstance(self.overlap_size, int) and self.overlap_size >= 0,
            f"chunking.overlap_size must be >= 0, got {self.overlap_size!r}",
        )
        _require(
            self.overlap_size < self.max_chunk_size,
            "chunking.overlap_size must be smaller than chunking.max_chunk_size "
            f"({self.overlap_size} >= {self.max_chunk_size})",
        )

    @classmethod
    def from_config_dict(cls, cfg: Mapping[str, Any] | None) -> "ChunkingConfig":
        return cls(**_known_fields(cls, cfg or {}))


@dataclass(frozen=True)
class PipelineConfig:
    """Query orchestration defaults."""
    collection_name: str = "heritage_documents"
    candidate_multiplier: int = 2
    default_top_k: int = 5

    def __post_init__(self):
        _require(
            isinstance(self.collection_name, str) and bool(self.collection_name.strip()),
            "pipeline.collection_name must be a non-empty string",
        )
        _require(
            isinstance(self.candidate_multiplier, int) and self.candidate_multiplier >= 1,
            f"pipeline.candidate_multiplier must be >= 1, got {self.candidate_multiplier!r}",
        )
        _require(
            isinstance(self.default_top_k, int) and self.default_top_k >= 1,
            f"pipeline.default_top_k must be >= 1, got {self.default_top_k!r}",
        )

    @classmethod
    def from_config_dict(cls, cfg: Mapping[str, Any] | None) -> "PipelineConfig":
        return cls(**_known_fields(cls, cfg or {}))


@dataclass(frozen=True)
class RetrievalSettings:
    """Every retrieval-related configuration section."""
    reranking: RerankConfig = field(default_factory=RerankConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @property
    def bm25(self) -> BM25Parameters:
        return self.reranking.bm25

    @classmethod
    def from_global_config(cls, cfg: "GlobalConfig") -> "RetrievalSettings":
        """Build settings from the sections of a loaded :class:`GlobalConfig`."""
        return cls(
            reranking=RerankConfig.from_config_dict(cfg.reranking, bm25=cfg.bm25),
            rate_limit=RateLimitConfig.from_config_dict(cfg.rate_limit),
            chunking=ChunkingConfig.from_config_dict(cfg.chunking),
            pipeline=PipelineConfig.from_config_dict(cfg.pipeline),
        )


class ConfigStore:
    """Holder of the current :class:`RetrievalSettings`.

    Readers call :meth:`current` once per operation and keep the returned
    struct for its whole duration. :meth:`update` validates a new struct and
    replaces the reference under a lock.

    Parameters
    ----------
    settings : RetrievalSettings, optional
        Initial settings. Defaults are used when omitted.
    """

    SECTIONS = ("reranking", "bm25", "rate_limit", "chunking", "pipeline")

    def __init__(self, settings: RetrievalSettings | None = None):
        self._settings = settings or RetrievalSettings()
        self._lock = threading.Lock()

    def current(self) -> RetrievalSettings:
        return self._settings

    def reranking(self) -> RerankConfig:
        return self._settings.reranking

    def rate_limit(self) -> RateLimitConfig:
        return self._settings.rate_limit

    def update(self, section: str, **changes: Any) -> RetrievalSettings:
        """Apply ``changes`` to ``section`` and swap in the new settings.

        Parameters
        ----------
        section : str
            One of ``reranking``, ``bm25``, ``rate_limit``, ``chunking`` or
            ``pipeline`` (camelCase ``rateLimit`` is accepted).
        **changes
            Field values; camelCase aliases are accepted.

        Returns
        -------
        RetrievalSettings
            The settings now in force.

        Raises
        ------
        ValidationError
            If the section is unknown or the new values are invalid. The
            current settings are left untouched.
        """
        section = _SECTION_ALIASES.get(section, section)
        if section not in self.SECTIONS:
            raise ValidationError(f"Unknown configuration section: {section!r}")
        changes = _normalise_keys(changes)

        with self._lock:
            current = self._settings
            try:
                if section == "reranking":
                    updated = dataclasses.replace(
                        current, reranking=current.reranking.with_overrides(**changes)
                    )
                elif section == "bm25":
                    bm25 = dataclasses.replace(current.reranking.bm25, **changes)
                    updated = dataclasses.replace(
                        current, reranking=dataclasses.replace(current.reranking, bm25=bm25)
                    )
                else:
                    new_section = dataclasses.replace(getattr(current, section), **changes)
                    updated = dataclasses.replace(current, **{section: new_section})
            except TypeError as exc:
                raise ValidationError(f"Invalid {section} settings: {exc}") from exc
            self._settings = updated

        logger.info("Configuration section %s updated: %s", section, changes)
        return updated


__all__ = [
    "DEFAULT_WEIGHTS",
    "RERANK_ALGORITHMS",
    "BM25Parameters",
    "RerankConfig",
    "RateLimitConfig",
    "ChunkingConfig",
    "PipelineConfig",
    "RetrievalSettings",
    "ConfigStore",
]
