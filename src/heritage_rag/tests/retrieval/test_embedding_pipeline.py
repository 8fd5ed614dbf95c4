import asyncio

import pytest

from heritage_rag.common.errors import (
    EmbeddingCancelled,
    ProviderError,
    RateLimitError,
    RateLimitExceeded,
    ValidationError,
)
from heritage_rag.config.settings import RateLimitConfig
from heritage_rag.retrieval.embedder import BaseEmbeddingProvider
from heritage_rag.retrieval.embedding_pipeline import EmbeddingPipeline
from heritage_rag.retrieval.rate_limiter import RequestPacer

RATE = RateLimitConfig(
    batch_size=3,
    delay_between_requests=1.5,
    batch_delay=5.0,
    max_retries=2,
    retry_delay=3.0,
)


class RecordingPacer(RequestPacer):
    """Pacer whose waits return at once, recording each requested delay."""

    def __init__(self):
        super().__init__(wait=self._record)
        self.waits = []

    async def _record(self, event, delay):
        self.waits.append(delay)
        return event.is_set()


class ScriptedProvider(BaseEmbeddingProvider):
    """
    Provider returning ``[len(text)]`` vectors, or raising the exception
    scripted for a given call number.
    """

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        failure = self.failures.get(len(self.calls))
        if failure is not None:
            raise failure
        return [float(len(text))]

    @classmethod
    def from_config_dict(cls, config):
        return cls()


class AlwaysRateLimited(ScriptedProvider):
    async def embed(self, text):
        self.calls.append(text)
        raise RateLimitError("429")


def _run(coro):
    return asyncio.run(coro)


def test_embed_batch_returns_vectors_in_order():
    provider = ScriptedProvider()
    pipeline = EmbeddingPipeline(provider, RATE, RecordingPacer())

    vectors = _run(pipeline.embed_batch(["a", "bb", "ccc", "dddd"]))

    assert vectors == [[1.0], [2.0], [3.0], [4.0]]
    assert provider.calls == ["a", "bb", "ccc", "dddd"]


def test_embed_batch_pacing_schedule():
    """
    Four texts with batches of three: a request delay after every text but
    the last, and one batch delay between the two batches.
    """
    pacer = RecordingPacer()
    pipeline = EmbeddingPipeline(ScriptedProvider(), RATE, pacer)

    _run(pipeline.embed_batch(["a", "b", "c", "d"]))

    assert pacer.waits == [1.5, 1.5, 1.5, 5.0]


def test_single_text_is_not_paced():
    pacer = RecordingPacer()
    pipeline = EmbeddingPipeline(ScriptedProvider(), RATE, pacer)

    _run(pipeline.embed_batch(["only"]))

    assert pacer.waits == []


def test_rate_limit_is_retried_with_linear_backoff():
    provider = ScriptedProvider({1: RateLimitError("429"), 2: RateLimitError("429")})
    pacer = RecordingPacer()
    pipeline = EmbeddingPipeline(provider, RATE, pacer)

    vectors = _run(pipeline.embed_batch(["abc"]))

    assert vectors == [[3.0]]
    assert len(provider.calls) == 3
    assert pacer.waits == [3.0, 6.0]


def test_persistent_rate_limit_raises_after_max_retries():
    provider = AlwaysRateLimited()
    pacer = RecordingPacer()
    pipeline = EmbeddingPipeline(provider, RATE, pacer)

    with pytest.raises(RateLimitExceeded) as excinfo:
        _run(pipeline.embed_batch(["a"]))

    assert excinfo.value.attempts == RATE.max_retries
    assert len(provider.calls) == RATE.max_retries + 1
    assert pacer.waits == [3.0, 6.0]


def test_zero_retries_fails_on_first_rate_limit():
    provider = AlwaysRateLimited()
    rate = RateLimitConfig(max_retries=0)
    pipeline = EmbeddingPipeline(provider, rate, RecordingPacer())

    with pytest.raises(RateLimitExceeded):
        _run(pipeline.embed_batch(["a"]))

    assert len(provider.calls) == 1


def test_provider_error_propagates_without_retry_and_keeps_completed():
    provider = ScriptedProvider({3: ProviderError(500, "server error")})
    pipeline = EmbeddingPipeline(provider, RATE, RecordingPacer())

    with pytest.raises(ProviderError) as excinfo:
        _run(pipeline.embed_batch(["a", "bb", "ccc", "dddd"]))

    assert excinfo.value.status == 500
    assert excinfo.value.completed == [[1.0], [2.0]]
    assert provider.calls == ["a", "bb", "ccc"]


def test_empty_input_raises_validation_error():
    pipeline = EmbeddingPipeline(ScriptedProvider(), RATE, RecordingPacer())

    with pytest.raises(ValidationError):
        _run(pipeline.embed_batch([]))
    with pytest.raises(ValidationError):
        _run(pipeline.embed_one(""))


def test_embed_one_uses_retry_policy_without_pacing():
    provider = ScriptedProvider({1: RateLimitError("429")})
    pacer = RecordingPacer()
    pipeline = EmbeddingPipeline(provider, RATE, pacer)

    assert _run(pipeline.embed_one("query")) == [5.0]
    assert pacer.waits == [3.0]


class CancellingProvider(ScriptedProvider):
    """Cancels its pipeline while serving the first request."""

    def __init__(self):
        super().__init__()
        self.pipeline = None

    async def embed(self, text):
        vector = await super().embed(text)
        if len(self.calls) == 1:
            self.pipeline.cancel()
        return vector


def test_cancel_stops_the_running_batch():
    provider = CancellingProvider()
    pipeline = EmbeddingPipeline(provider, RATE, RecordingPacer())
    provider.pipeline = pipeline

    with pytest.raises(EmbeddingCancelled) as excinfo:
        _run(pipeline.embed_batch(["a", "bb", "ccc"]))

    assert excinfo.value.completed == [[1.0]]
    assert provider.calls == ["a"]


def test_cancel_does_not_affect_later_calls():
    provider = CancellingProvider()
    pacer = RecordingPacer()
    pipeline = EmbeddingPipeline(provider, RATE, pacer)
    provider.pipeline = pipeline

    with pytest.raises(EmbeddingCancelled):
        _run(pipeline.embed_batch(["a", "bb"]))
    pipeline.cancel()

    assert _run(pipeline.embed_batch(["ccc", "dddd"])) == [[3.0], [4.0]]
    assert _run(pipeline.embed_one("eeeee")) == [5.0]


def test_cancel_interrupts_retry_backoff():
    provider = ScriptedProvider({1: RateLimitError("429")})
    pipeline = EmbeddingPipeline(provider, RATE)

    async def scenario():
        task = asyncio.ensure_future(pipeline.embed_one("query"))
        await asyncio.sleep(0.05)
        pipeline.cancel()
        with pytest.raises(EmbeddingCancelled):
            await task

    _run(scenario())
    assert len(provider.calls) == 1


def test_rate_limit_config_is_read_once_per_call():
    configs = iter([
        RateLimitConfig(batch_size=1, delay_between_requests=0.5, batch_delay=2.0),
        RateLimitConfig(batch_size=5, delay_between_requests=0.1, batch_delay=9.0),
    ])
    pacer = RecordingPacer()
    pipeline = EmbeddingPipeline(ScriptedProvider(), lambda: next(configs), pacer)

    _run(pipeline.embed_batch(["a", "b"]))
    assert pacer.waits == [0.5, 2.0]

    pacer.waits.clear()
    _run(pipeline.embed_batch(["a", "b"]))
    assert pacer.waits == [0.1]
