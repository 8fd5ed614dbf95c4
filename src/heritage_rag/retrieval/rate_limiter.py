"""heritage_rag.retrieval.rate_limiter

Cooperative pacing for outbound embedding requests.

:class:`RequestPacer` replaces fixed sleeps between provider calls with
waits that can be interrupted. Waits belong to an *operation* (one
``embed_batch`` or ``embed_one`` call, opened with :meth:`RequestPacer.operation`).
:meth:`RequestPacer.cancel` interrupts the operations running at that moment;
operations started afterwards are unaffected. Cancelling the surrounding
asyncio task interrupts a wait too.

Classes
-------
RequestPacer
    Cancellable asyncio delay source used by the embedding pipeline.

Functions
---------
wait_or_cancel
    Default wait primitive: sleep until a delay elapses or an event is set.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextvars import ContextVar
from typing import Awaitable, Callable, Iterator, Optional

from heritage_rag.common.errors import EmbeddingCancelled

logger = logging.getLogger("heritage_rag.rate_limiter")

WaitFunction = Callable[[asyncio.Event, float], Awaitable[bool]]


async def wait_or_cancel(event: asyncio.Event, delay: float) -> bool:
    """Sleep ``delay`` seconds; return ``True`` if ``event`` was set first."""
    try:
        await asyncio.wait_for(event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


class _Operation:
    def __init__(self, pacer: "RequestPacer"):
        self.pacer = pacer
        self.event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self.event.is_set()


_active_operation: ContextVar[Optional[_Operation]] = ContextVar(
    "heritage_rag_pacing_operation", default=None
)


class RequestPacer:
    """Cancellable delay source.

    Parameters
    ----------
    wait : callable, optional
        Coroutine function ``wait(event, delay) -> bool`` performing one wait
        and reporting whether ``event`` (the cancellation signal) was set
        before ``delay`` elapsed. Defaults to :func:`wait_or_cancel`; tests
        pass a recording function that returns immediately.
    """

    def __init__(self, wait: Optional[WaitFunction] = None):
        self._wait = wait or wait_or_cancel
        self._operations: set[_Operation] = set()

    @contextlib.contextmanager
    def operation(self) -> Iterator[None]:
        """Scope the waits of one pipeline call.

        The scope is bound to the current asyncio task, so concurrent calls
        sharing a pacer each get their own.
        """
        op = _Operation(self)
        self._operations.add(op)
        token = _active_operation.set(op)
        try:
            yield
        finally:
            _active_operation.reset(token)
            self._operations.discard(op)

    def _current(self) -> Optional[_Operation]:
        op = _active_operation.get()
        return op if op is not None and op.pacer is self else None

    @property
    def cancelled(self) -> bool:
        """Whether the calling task's current operation has been cancelled."""
        op = self._current()
        return op is not None and op.cancelled

    async def acquire(self, delay: float) -> None:
        """Wait ``delay`` seconds unless the current operation is cancelled first.

        Outside :meth:`operation`, the wait forms an operation of its own.

        Raises
        ------
        EmbeddingCancelled
            If the operation was cancelled before or during the wait.
        """
        op = self._current()
        if op is None:
            with self.operation():
                return await self.acquire(delay)

        if op.cancelled:
            raise EmbeddingCancelled("Operation cancelled before pacing wait")
        if delay <= 0:
            return
        if await self._wait(op.event, delay):
            raise EmbeddingCancelled(f"Pacing wait of {delay:.2f}s cancelled")

    def cancel(self) -> int:
        """Interrupt every running operation; return how many were running."""
        running = list(self._operations)
        for op in running:
            op.event.set()
        logger.info("Cancelled %d pacing operation(s)", len(running))
        return len(running)


__all__ = ["RequestPacer", "wait_or_cancel"]
