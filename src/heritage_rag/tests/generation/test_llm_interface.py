import asyncio
from types import SimpleNamespace

import pytest
import requests

from heritage_rag.generation.llm_interface import (
    ClovaChatLLM,
    GenerationError,
    OpenAIChatLikeLLM,
    create_llm,
)


class DummyChatModel:
    """Stand-in for a LangChain chat model recording the messages it receives."""

    def __init__(self, answer="An answer."):
        self.answer = answer
        self.calls = []

    def invoke(self, messages, **kwargs):
        self.calls.append((messages, kwargs))
        return SimpleNamespace(content=self.answer)

    async def ainvoke(self, messages, **kwargs):
        return self.invoke(messages, **kwargs)


def _response(status_code, payload=None, text=""):
    return SimpleNamespace(
        status_code=status_code,
        ok=status_code < 400,
        text=text,
        json=lambda: payload,
    )


def test_openai_chat_llm_sends_system_and_user_messages():
    model = DummyChatModel()
    llm = OpenAIChatLikeLLM("m", "http://localhost:8000/v1", chat_model=model)

    assert llm.generate("system text", "user text") == "An answer."
    messages, _ = model.calls[0]
    assert [m.content for m in messages] == ["system text", "user text"]
    assert [m.type for m in messages] == ["system", "human"]


def test_openai_chat_llm_async_generation():
    llm = OpenAIChatLikeLLM("m", "http://localhost:8000/v1", chat_model=DummyChatModel("async"))
    assert asyncio.run(llm.agenerate("s", "u")) == "async"


def test_clova_chat_llm_posts_messages(monkeypatch):
    sent = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        sent.update(url=url, headers=headers, json=json)
        return _response(200, {"result": {"message": {"role": "assistant", "content": "Xin chào"}}})

    monkeypatch.setattr(requests, "post", fake_post)
    llm = ClovaChatLLM("https://example.invalid/chat", "key", temperature=0.2)

    assert llm.generate("sys", "question") == "Xin chào"
    assert sent["json"]["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "question"},
    ]
    assert sent["json"]["temperature"] == 0.2
    assert sent["json"]["maxTokens"] == 1000
    assert sent["headers"]["Authorization"] == "Bearer key"


def test_clova_chat_llm_default_agenerate_runs_generate(monkeypatch):
    monkeypatch.setattr(
        requests, "post", lambda *a, **k: _response(200, {"content": "fallback field"})
    )
    llm = ClovaChatLLM("https://example.invalid/chat", "key")
    assert asyncio.run(llm.agenerate("s", "u")) == "fallback field"


@pytest.mark.parametrize(
    "response",
    [_response(500, text="boom"), _response(200, {"result": {"message": {}}})],
)
def test_clova_chat_llm_raises_generation_error(monkeypatch, response):
    monkeypatch.setattr(requests, "post", lambda *a, **k: response)
    llm = ClovaChatLLM("https://example.invalid/chat", "key")

    with pytest.raises(GenerationError):
        llm.generate("s", "u")


def test_create_llm_selects_implementation():
    llm = create_llm({"type": "clova_studio", "api_url": "https://example.invalid", "api_key": "k"})
    assert isinstance(llm, ClovaChatLLM)

    llm = create_llm({"type": "OpenAIChatLike", "model_name": "m", "api_base": "http://localhost:8000/v1"})
    assert isinstance(llm, OpenAIChatLikeLLM)


def test_create_llm_requires_a_known_discriminator():
    with pytest.raises(ValueError):
        create_llm({"api_url": "https://example.invalid"})
    with pytest.raises(ValueError):
        create_llm({"type": "llamacpp"})
    with pytest.raises(TypeError):
        create_llm("clova")
