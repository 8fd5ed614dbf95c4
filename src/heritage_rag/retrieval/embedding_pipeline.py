"""heritage_rag.retrieval.embedding_pipeline

Rate-limited, sequential batch embedding.

The embedding provider enforces a request quota, so texts are embedded one
request at a time in fixed-size batches, with a pause after every request and
a longer pause between batches. Rate-limit responses are retried with a
linear backoff. Non-retryable failures propagate immediately; no placeholder
vector is ever substituted for a failed text.

Classes
-------
EmbeddingPipeline
    Paced, retrying wrapper around a
    :class:`~heritage_rag.retrieval.embedder.BaseEmbeddingProvider`.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from heritage_rag.common.errors import (
    EmbeddingError,
    RateLimitError,
    RateLimitExceeded,
    ValidationError,
)
from heritage_rag.config.settings import RateLimitConfig
from heritage_rag.retrieval.embedder import BaseEmbeddingProvider
from heritage_rag.retrieval.rate_limiter import RequestPacer

logger = logging.getLogger("heritage_rag.embedding_pipeline")


class EmbeddingPipeline:
    """Sequential embedding with pacing and bounded retries.

    Parameters
    ----------
    provider : BaseEmbeddingProvider
        Provider performing one upstream request per call.
    rate_limit : RateLimitConfig or Callable[[], RateLimitConfig], optional
        Pacing parameters, or a callable returning the parameters currently
        in force. The value is read once at the start of every call.
    pacer : RequestPacer, optional
        Delay source. A fresh :class:`RequestPacer` is created when omitted.
    """

    def __init__(
            self,
            provider: BaseEmbeddingProvider,
            rate_limit: RateLimitConfig | Callable[[], RateLimitConfig] | None = None,
            pacer: RequestPacer | None = None,
        ):
        self.provider = provider
        self._rate_limit = rate_limit if rate_limit is not None else RateLimitConfig()
        self.pacer = pacer or RequestPacer()

    def _current_config(self) -> RateLimitConfig:
        if callable(self._rate_limit):
            return self._rate_limit()
        return self._rate_limit

    async def _embed_with_retry(self, text: str, config: RateLimitConfig) -> list[float]:
        """Embed one text, retrying rate-limit responses with a linear backoff.

        Backoff waits go through the pacer so that :meth:`cancel` interrupts
        them. Other provider failures are not retried.
        """
        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Rate limited by embedding provider, retry %d/%d in %.1fs",
                retry_state.attempt_number,
                config.max_retries,
                retry_state.next_action.sleep,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RateLimitError),
            stop=stop_after_attempt(config.max_retries + 1),
            wait=wait_incrementing(start=config.retry_delay, increment=config.retry_delay),
            sleep=self.pacer.acquire,
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self.provider.embed(text)
        except RateLimitError:
            raise RateLimitExceeded(config.max_retries) from None

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed ``texts`` in order, one request at a time.

        Parameters
        ----------
        texts : Sequence[str]
            Texts to embed. Must not be empty.

        Returns
        -------
        list[list[float]]
            One vector per input text, in input order.

        Raises
        ------
        ValidationError
            If ``texts`` is empty.
        RateLimitExceeded
            If a text stayed rate limited after ``max_retries`` retries.
        ProviderError
            On a non-retryable provider failure.
        EmbeddingCancelled
            If a pacing or backoff wait was cancelled.

        Notes
        -----
        Every :class:`~heritage_rag.common.errors.EmbeddingError` raised from
        here carries the vectors produced before the failure in
        ``completed``.
        """
        if not texts:
            raise ValidationError("No texts to embed")

        config = self._current_config()
        total = len(texts)
        total_batches = (total + config.batch_size - 1) // config.batch_size
        embeddings: list[list[float]] = []

        logger.info(
            "Embedding %d texts in %d batches of up to %d",
            total,
            total_batches,
            config.batch_size,
        )

        with self.pacer.operation():
            try:
                for start in range(0, total, config.batch_size):
                    batch = texts[start:start + config.batch_size]
                    batch_number = start // config.batch_size + 1
                    logger.info("Processing batch %d/%d", batch_number, total_batches)

                    for offset, text in enumerate(batch):
                        embeddings.append(await self._embed_with_retry(text, config))
                        if start + offset < total - 1:
                            await self.pacer.acquire(config.delay_between_requests)

                    if start + config.batch_size < total:
                        logger.debug("Waiting %.1fs before next batch", config.batch_delay)
                        await self.pacer.acquire(config.batch_delay)
            except EmbeddingError as exc:
                exc.completed = list(embeddings)
                logger.error(
                    "Embedding stopped after %d/%d texts: %s",
                    len(embeddings),
                    total,
                    exc,
                )
                raise

        logger.info("Embedded %d texts", len(embeddings))
        return embeddings

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text through the retry policy, without pacing delays."""
        if not isinstance(text, str) or not text:
            raise ValidationError("No text to embed")
        with self.pacer.operation():
            return await self._embed_with_retry(text, self._current_config())

    def cancel(self) -> None:
        """Interrupt the pacing and backoff waits of the calls now running.

        Calls started afterwards are not affected.
        """
        self.pacer.cancel()


__all__ = ["EmbeddingPipeline"]
