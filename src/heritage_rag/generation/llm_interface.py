"""heritage_rag.generation.llm_interface

Chat generator backends.

A generator answers one user prompt under one system prompt. Two backends are
available: the CLOVA Studio chat endpoint, called over HTTP, and any
OpenAI-compatible Chat Completions server, reached through LangChain.
:func:`create_llm` picks one from the ``generator_llm`` configuration section.

Classes
-------
BaseLLM
    Interface used by the RAG pipeline.
OpenAIChatLikeLLM
    Generator backed by :class:`langchain_openai.ChatOpenAI`.
ClovaChatLLM
    Generator posting to the CLOVA Studio chat completions API.

Functions
---------
create_llm
    Construct a generator from a configuration mapping.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Mapping

import requests
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from heritage_rag.common.kinds import get_kind, normalise_kind

logger = logging.getLogger("heritage_rag.llm_interface")


class GenerationError(RuntimeError):
    """Raised when the chat backend fails to produce an answer."""

    def __init__(self, status: int | None, body: Any = None):
        super().__init__(f"Chat API error: {status} - {body}")
        self.status = status
        self.body = body


class BaseLLM(ABC):
    """Abstract interface for chat generators."""

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: dict) -> "BaseLLM":
        """Build the generator from its configuration section."""

    @abstractmethod
    def generate(self, system_prompt: str, user_prompt: str, **kwargs: Any) -> str:
        """Return the model's answer to ``user_prompt`` under ``system_prompt``."""

    async def agenerate(self, system_prompt: str, user_prompt: str, **kwargs: Any) -> str:
        """Asynchronous :meth:`generate`, run in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.generate, system_prompt, user_prompt, **kwargs)
        )


def _content(response: Any) -> str:
    return response.content if hasattr(response, "content") else str(response)


class OpenAIChatLikeLLM(BaseLLM):
    """Generator for OpenAI-compatible chat servers (vLLM, TGI, OpenAI itself).

    Parameters
    ----------
    model_name : str
        Model served at ``api_base``.
    api_base : str
        Base URL of the server, usually ending in ``/v1``.
    api_key : str, optional
        Bearer key. Local servers accept any value.
    chat_model : Any, optional
        Ready LangChain chat model to use instead of building a ``ChatOpenAI``.
    **model_kwargs : Any
        Sampling options passed to ``ChatOpenAI`` (``temperature``,
        ``max_tokens``...).
    """

    def __init__(
        self,
        model_name: str,
        api_base: str,
        api_key: str = "fake",
        chat_model: Any = None,
        **model_kwargs: Any,
    ):
        self.model_name = model_name
        self.api_base = api_base
        self.model_kwargs = dict(model_kwargs)
        if chat_model is None:
            chat_model = ChatOpenAI(
                model=model_name,
                base_url=api_base,
                api_key=api_key,
                **self.model_kwargs,
            )
        self.llm = chat_model

    @classmethod
    def from_config_dict(cls, config: dict) -> "OpenAIChatLikeLLM":
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key", "fake"),
            **config.get("model_kwargs", {}),
        )

    @staticmethod
    def _messages(system_prompt: str, user_prompt: str) -> list:
        return [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]

    def generate(self, system_prompt: str, user_prompt: str, **kwargs: Any) -> str:
        return _content(self.llm.invoke(self._messages(system_prompt, user_prompt), **kwargs))

    async def agenerate(self, system_prompt: str, user_prompt: str, **kwargs: Any) -> str:
        response = await self.llm.ainvoke(self._messages(system_prompt, user_prompt), **kwargs)
        return _content(response)


class ClovaChatLLM(BaseLLM):
    """LLM interface for the CLOVA Studio chat completions endpoint.

    Parameters
    ----------
    api_url : str
        Full URL of the chat completions endpoint.
    api_key : str
        API key, sent as a bearer token.
    timeout : float, optional
        Request timeout in seconds.
    **model_kwargs : Any
        Sampling parameters sent with each request (``topP``, ``topK``,
        ``maxTokens``, ``temperature``, ``repeatPenalty``, ...).
    """

    DEFAULT_PARAMS = {
        "topP": 0.8,
        "topK": 0,
        "maxTokens": 1000,
        "temperature": 0.5,
        "repeatPenalty": 5.0,
        "stopBefore": [],
        "includeAiFilters": True,
    }

    def __init__(self, api_url: str, api_key: str, timeout: float = 60.0, **model_kwargs: Any):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.params = {**self.DEFAULT_PARAMS, **model_kwargs}

    @classmethod
    def from_config_dict(cls, config: dict) -> "ClovaChatLLM":
        return cls(
            api_url=config["api_url"],
            api_key=config["api_key"],
            timeout=float(config.get("timeout", 60.0)),
            **config.get("model_kwargs", {}),
        )

    def generate(self, system_prompt: str, user_prompt: str, **kwargs: Any) -> str:
        body = {
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **self.params,
            **kwargs,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-NCP-CLOVASTUDIO-REQUEST-ID": str(uuid.uuid4()),
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(self.api_url, headers=headers, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GenerationError(None, str(exc)) from exc
        if not response.ok:
            raise GenerationError(response.status_code, response.text)

        data = response.json()
        content = (data.get("result") or {}).get("message", {}).get("content") or data.get("content")
        if not content:
            raise GenerationError(response.status_code, "Response carries no message content")
        return content


_GENERATORS: dict[str, type[BaseLLM]] = {
    "clova": ClovaChatLLM,
    "openai_chat": OpenAIChatLikeLLM,
}

_GENERATOR_ALIASES = {
    "clova_studio": "clova",
    "clovastudio": "clova",
    "naver": "clova",
    "openai": "openai_chat",
    "openai_like": "openai_chat",
    "open_ailike": "openai_chat",
    "open_aichat_like": "openai_chat",
    "openai_chat_like": "openai_chat",
    "chat_open_ai": "openai_chat",
    "chatopenai": "openai_chat",
}


def create_llm(config: dict) -> BaseLLM:
    """Create a generator from the ``generator_llm`` configuration section.

    Unlike the embedder, the generator has no default backend: the section
    must name one through ``kind``, ``type``, ``provider``, ``backend`` or
    ``impl``.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If no backend is named, or the named backend is unknown.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_llm expected a mapping, got {type(config).__name__}")

    requested = get_kind(config)
    if not requested:
        raise ValueError("generator_llm needs a 'type', e.g. 'clova' or 'openai_chat'")

    cls = _GENERATORS.get(normalise_kind(requested, _GENERATOR_ALIASES))
    if cls is None:
        raise ValueError(
            f"Unsupported generator {requested!r}; expected one of {sorted(_GENERATORS)}"
        )

    logger.debug("Creating generator %s", cls.__name__)
    return cls.from_config_dict(dict(config))


__all__ = [
    "GenerationError",
    "BaseLLM",
    "OpenAIChatLikeLLM",
    "ClovaChatLLM",
    "create_llm",
]
