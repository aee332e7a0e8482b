"""
Request Queue: FIFO Admission Against a Token Bucket
=======================================================

Serializes rate-limited operations through a shared TokenBucket.

Design:
  - Strict FIFO; admission order equals arrival order
  - One drain task at a time, guarded by a processing flag; enqueueing while
    a drain is active only appends
  - Head-of-line blocking: the head waits for a token, sleeping
    ``min(time_until_next_token, max_sleep_s)`` between checks
  - Each admitted operation is removed from the queue before it starts and
    runs to completion before the next admission
  - A failing operation rejects only its own handle; the queue keeps draining
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from relay.core.exceptions import QueueClosedError
from relay.infra.runtime.token_bucket import TokenBucket
from relay.infra.telemetry import MetricsCollector, get_logger, get_metrics

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], "Awaitable[T] | T"]

@dataclass
class QueueEntry(Generic[T]):
    """A queued operation and the handle its caller awaits."""

    operation: Operation
    future: asyncio.Future[T]
    enqueued_at: float = field(default_factory=time.monotonic)

    @property
    def wait_s(self) -> float:
        return time.monotonic() - self.enqueued_at

class RequestQueue:
    """
    FIFO admission queue in front of a TokenBucket.

    Usage:
        queue = RequestQueue(TokenBucket(capacity=20, refill_rate=10))
        rows = await queue.enqueue(lambda: client.table("deals").select("*").execute())
        ...
        await queue.close()
    """

    def __init__(
        self,
        bucket: TokenBucket,
        *,
        max_sleep_s: float = 1.0,
        name: str = "default",
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._bucket = bucket
        self._name = name
        self._max_sleep_s = max_sleep_s
        self._metrics = metrics or get_metrics()
        self._entries: deque[QueueEntry[Any]] = deque()
        self._processing = False
        self._closed = False
        self._drain_task: asyncio.Task | None = None

        # Stats
        self._total_enqueued = 0
        self._total_admitted = 0
        self._total_failed = 0
        self._rate_limit_hits = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def bucket(self) -> TokenBucket:
        return self._bucket

    @property
    def depth(self) -> int:
        return len(self._entries)

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, operation: Operation) -> asyncio.Future[Any]:
        """
        Queue an operation and return the handle that settles with its outcome.

        The handle resolves with the operation's return value (awaited if it
        is awaitable) or raises the operation's exception, exactly once.
        """
        if self._closed:
            raise QueueClosedError()

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._entries.append(QueueEntry(operation=operation, future=future))
        self._total_enqueued += 1
        self._metrics.record_queue_depth(len(self._entries), queue=self._name)

        if not self._processing:
            self._processing = True
            self._drain_task = loop.create_task(self._drain())
        return future

    async def _drain(self) -> None:
        """Admit queued operations in order until the queue is empty."""
        try:
            while self._entries:
                head = self._entries[0]
                if head.future.done():
                    # Caller cancelled while waiting; no token spent.
                    self._entries.popleft()
                    continue

                if not self._bucket.try_consume():
                    wait_s = min(self._bucket.time_until_next_token(), self._max_sleep_s)
                    self._rate_limit_hits += 1
                    self._metrics.record_rate_limit_wait()
                    logger.debug(
                        "rate_limit_wait",
                        queue_depth=len(self._entries),
                        wait_s=round(wait_s, 4),
                    )
                    await asyncio.sleep(wait_s)
                    continue

                self._entries.popleft()
                self._metrics.record_queue_depth(len(self._entries), queue=self._name)
                await self._execute(head)
        finally:
            self._processing = False
            self._drain_task = None

    async def _execute(self, entry: QueueEntry[Any]) -> None:
        wait_s = entry.wait_s
        self._total_admitted += 1
        try:
            result = entry.operation()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.set_exception(
                    QueueClosedError("Request queue stopped during execution")
                )
            raise
        except Exception as exc:
            self._total_failed += 1
            self._metrics.record_admission(wait_s=wait_s, status="error")
            logger.debug("queue_operation_failed", exc_type=type(exc).__name__)
            if not entry.future.done():
                entry.future.set_exception(exc)
        else:
            self._metrics.record_admission(wait_s=wait_s, status="success")
            if not entry.future.done():
                entry.future.set_result(result)

    async def drain(self) -> None:
        """Wait until every queued operation has been admitted and settled."""
        while self._drain_task is not None:
            await asyncio.wait({self._drain_task})

    async def stop(self) -> None:
        """Stop draining and reject everything still queued."""
        self._closed = True
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        while self._entries:
            entry = self._entries.popleft()
            if not entry.future.done():
                entry.future.set_exception(QueueClosedError())
        self._metrics.record_queue_depth(0, queue=self._name)

    async def close(self, *, drain: bool = True) -> None:
        """Refuse new work, then drain (default) or stop the queue."""
        self._closed = True
        if drain:
            await self.drain()
        await self.stop()

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self._name,
            "depth": self.depth,
            "processing": self._processing,
            "closed": self._closed,
            "total_enqueued": self._total_enqueued,
            "total_admitted": self._total_admitted,
            "total_failed": self._total_failed,
            "rate_limit_hits": self._rate_limit_hits,
            "bucket": self._bucket.get_stats(),
        }
