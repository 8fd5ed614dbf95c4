"""heritage_rag.retrieval.embedder

Embedding provider interfaces and factories for the retrieval layer.

This module defines a small provider-agnostic interface for producing a
vector embedding from one text, along with two thin adapters: one for the
CLOVA Studio embedding endpoint and one for OpenAI-compatible endpoints via
LlamaIndex. Providers make exactly one upstream request per call and never
retry on their own; pacing and retries belong to
:class:`~heritage_rag.retrieval.embedding_pipeline.EmbeddingPipeline`.

Classes
-------
BaseEmbeddingProvider
    Abstract interface specifying the API used by the embedding pipeline.
ClovaEmbeddingProvider
    Provider calling the CLOVA Studio embedding API over HTTP.
OpenAILikeEmbeddingProvider
    Provider backed by an OpenAI-compatible HTTP API via LlamaIndex.

Functions
---------
create_embedding_provider
    Create an embedding provider from a configuration mapping.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import requests

from heritage_rag.common.errors import ProviderError, RateLimitError
from heritage_rag.common.kinds import get_kind, normalise_kind

logger = logging.getLogger("heritage_rag.embedder")

HTTP_TOO_MANY_REQUESTS = 429


class BaseEmbeddingProvider(ABC):
    """Abstract interface for single-text embedding.

    Implementations translate upstream failures into the package error
    taxonomy: a rate-limit response raises
    :class:`~heritage_rag.common.errors.RateLimitError`, any other failure
    raises :class:`~heritage_rag.common.errors.ProviderError`.
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text.

        Parameters
        ----------
        text : str
            Text to embed.

        Returns
        -------
        list[float]
            Embedding vector.

        Raises
        ------
        RateLimitError
            If the provider answered with a rate-limit response.
        ProviderError
            For any other upstream failure.
        """

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "BaseEmbeddingProvider":
        """Create a provider from a configuration mapping.

        Raises
        ------
        KeyError
            If required configuration keys are missing.
        """


class ClovaEmbeddingProvider(BaseEmbeddingProvider):
    """Provider for the CLOVA Studio embedding endpoint.

    Each call posts ``{"text": ...}`` with a bearer key and a fresh
    ``X-NCP-CLOVASTUDIO-REQUEST-ID`` header, and reads the vector from
    ``result.embedding`` in the response body. The blocking HTTP call runs in
    the default executor.

    Parameters
    ----------
    api_url : str
        Full URL of the embedding endpoint.
    api_key : str
        CLOVA Studio API key, sent as a bearer token.
    timeout : float, optional
        Request timeout in seconds.
    session : requests.Session, optional
        Session used for requests. Module-level ``requests.post`` is used
        when omitted.
    """

    def __init__(
            self,
            api_url: str,
            *,
            api_key: str,
            timeout: float = 30.0,
            session: Optional[requests.Session] = None,
        ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-NCP-CLOVASTUDIO-REQUEST-ID": str(uuid.uuid4()),
            "Content-Type": "application/json",
        }

    def _post(self, text: str) -> list[float]:
        post = self.session.post if self.session is not None else requests.post
        try:
            response = post(
                self.api_url,
                headers=self._headers(),
                json={"text": text},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(None, str(exc)) from exc

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            raise RateLimitError(f"Embedding provider rate limited: {response.text}")
        if not response.ok:
            raise ProviderError(response.status_code, response.text)

        try:
            embedding = response.json()["result"]["embedding"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderError(response.status_code, response.text) from exc
        if not embedding:
            raise ProviderError(response.status_code, "Response carries an empty embedding")
        return [float(x) for x in embedding]

    async def embed(self, text: str) -> list[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._post, text))

    @classmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "ClovaEmbeddingProvider":
        """Create a CLOVA provider from a configuration mapping.

        Raises
        ------
        KeyError
            If ``api_url`` or ``api_key`` is missing.
        """
        return cls(
            api_url=config["api_url"],
            api_key=config["api_key"],
            timeout=float(config.get("timeout", config.get("request_timeout", 30.0))),
        )


class OpenAILikeEmbeddingProvider(BaseEmbeddingProvider):
    """Provider backed by an OpenAI-compatible embedding API via LlamaIndex.

    This implementation wraps
    :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding` with the
    client's own retries disabled.

    Parameters
    ----------
    model_name : str
        Embedding model served at ``api_base``.
    api_base : str
        Server base URL, usually ending in ``/v1``.
    api_key : str, optional
        Bearer key; local servers accept any value.
    model_kwargs : dict, optional
        Extra request fields (``dimensions``, ``encoding_format``...).
    timeout : float, optional
        Request timeout in seconds.
    embed_model : Any, optional
        Pre-built embedding object exposing ``aget_text_embedding``. When
        given, no LlamaIndex object is constructed.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_base: str,
            api_key: Optional[str] = None,
            model_kwargs: Optional[dict] = None,
            timeout: float = 60.0,
            reuse_client: bool = True,
            embed_model: Any = None,
        ):
        if embed_model is None:
            from llama_index.embeddings.openai_like import OpenAILikeEmbedding

            embed_model = OpenAILikeEmbedding(
                model_name=model_name,
                api_base=api_base,
                api_key=api_key or "fake",
                additional_kwargs=model_kwargs or {},
                timeout=timeout,
                max_retries=0,
                embed_batch_size=1,
                reuse_client=reuse_client,
            )
        self.model_name = model_name
        self.embed_model = embed_model

    async def embed(self, text: str) -> list[float]:
        import openai

        try:
            return list(await self.embed_model.aget_text_embedding(text))
        except openai.RateLimitError as exc:
            raise RateLimitError(f"Embedding provider rate limited: {exc}") from exc
        except openai.APIStatusError as exc:
            raise ProviderError(exc.status_code, exc.message) from exc
        except openai.APIError as exc:
            raise ProviderError(None, str(exc)) from exc

    @classmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "OpenAILikeEmbeddingProvider":
        """Create an OpenAI-compatible provider from a configuration mapping.

        Raises
        ------
        KeyError
            If required keys (``model_name`` or ``api_base``) are missing.
        """
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key"),
            model_kwargs=config.get("model_kwargs", {}),
            timeout=float(config.get("timeout", config.get("request_timeout", 60.0))),
            reuse_client=bool(config.get("reuse_client", True)),
        )


_PROVIDERS: dict[str, type[BaseEmbeddingProvider]] = {
    "clova": ClovaEmbeddingProvider,
    "openai_like": OpenAILikeEmbeddingProvider,
    "openai": OpenAILikeEmbeddingProvider,
}

_PROVIDER_ALIASES = {
    "clova_studio": "clova",
    "clovastudio": "clova",
    "naver": "clova",
    "open_ailike": "openai_like",
    "openailike": "openai_like",
    "open_ai_like": "openai_like",
}


def create_embedding_provider(config: Mapping[str, Any]) -> BaseEmbeddingProvider:
    """Create an embedding provider from a configuration mapping.

    The concrete implementation is selected by a discriminator field (one of
    ``kind``, ``type``, ``provider``, ``backend`` or ``impl``).

    Parameters
    ----------
    config : Mapping[str, Any]
        The ``embedder`` configuration section.

    Returns
    -------
    BaseEmbeddingProvider
        An initialised provider.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.

    Notes
    -----
    If no discriminator is provided, :class:`ClovaEmbeddingProvider` is used.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedding_provider expected a mapping/dict, got {type(config)}")

    requested = get_kind(config)
    if not requested:
        cls = ClovaEmbeddingProvider
    else:
        kind = normalise_kind(requested, _PROVIDER_ALIASES)
        cls = _PROVIDERS.get(kind)
        if cls is None:
            raise ValueError(
                f"Unsupported embedder {requested!r}; expected one of {sorted(_PROVIDERS)}"
            )

    logger.debug("Creating embedding provider %s", cls.__name__)
    return cls.from_config_dict(dict(config))


__all__ = [
    "BaseEmbeddingProvider",
    "ClovaEmbeddingProvider",
    "OpenAILikeEmbeddingProvider",
    "create_embedding_provider",
]
