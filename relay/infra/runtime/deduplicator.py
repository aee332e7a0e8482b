"""
Request Deduplicator: In-Flight Sharing and Debounced Batching
=================================================================

Two capabilities over one caller-chosen keyspace:

  deduplicate(key, operation)
      Concurrent calls with the same key share one execution of
      ``operation``; every caller sees the same result or the same
      exception. The entry is dropped as soon as the operation settles, or
      treated as stale once older than ``ttl_s`` so a hung upstream call
      cannot block later callers forever.

  batch(key, updates, flush_fn, delay_s)
      Rapid partial updates to one entity are merged field by field (last
      write wins) and sent as a single ``flush_fn(merged)`` call once no new
      update has arrived for ``delay_s``. Every caller in the window gets the
      flush outcome. Updates arriving after the flush started open a new
      batch.

In-flight operations are shielded from caller cancellation; they can only
be evicted after the TTL. ``cancel_batch`` is the one explicit cancellation.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from relay.core.exceptions import BatchCancelledError
from relay.infra.telemetry import MetricsCollector, get_logger, get_metrics

logger = get_logger(__name__)

DEFAULT_TTL_S = 30.0
DEFAULT_BATCH_DELAY_S = 0.3

FlushFn = Callable[[dict[str, Any]], "Awaitable[Any] | Any"]

@dataclass
class InFlightEntry:
    """Shared execution for one key."""

    task: asyncio.Task
    started_at: float

@dataclass
class PendingBatch:
    """Accumulated updates for one key, waiting for the debounce timer."""

    flush_fn: FlushFn
    updates: dict[str, Any] = field(default_factory=dict)
    waiters: list[asyncio.Future] = field(default_factory=list)
    timer: asyncio.TimerHandle | None = None

def _mark_retrieved(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()

class RequestDeduplicator:
    """
    Keyed in-flight cache plus keyed debounce batcher.

    Usage:
        dedup = RequestDeduplicator()
        deal = await dedup.deduplicate(f"load-deal-{deal_id}", lambda: load(deal_id))
        await dedup.batch(f"deal-{deal_id}", {"stage": "won"}, save_deal)
    """

    def __init__(
        self,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        batch_delay_s: float = DEFAULT_BATCH_DELAY_S,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._ttl_s = ttl_s
        self._batch_delay_s = batch_delay_s
        self._clock = clock
        self._metrics = metrics or get_metrics()
        self._in_flight: dict[str, InFlightEntry] = {}
        self._pending: dict[str, PendingBatch] = {}
        self._background_tasks: set[asyncio.Task] = set()

    # ── Deduplication ─────────────────────────────────────────────

    async def deduplicate(self, key: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation`` unless an execution for ``key`` is already in flight."""
        now = self._clock()
        entry = self._in_flight.get(key)
        if entry is not None:
            age_s = now - entry.started_at
            if age_s < self._ttl_s:
                self._metrics.record_dedup("reused")
                logger.debug("dedup_reuse", key=key, age_s=round(age_s, 3))
                return await asyncio.shield(entry.task)
            del self._in_flight[key]
            self._metrics.record_dedup("evicted")
            logger.warning("dedup_stale_evicted", key=key, age_s=round(age_s, 3))

        task = asyncio.ensure_future(self._run(key, operation))
        self._in_flight[key] = InFlightEntry(task=task, started_at=now)
        task.add_done_callback(lambda t: self._on_in_flight_done(key, t))
        self._metrics.record_dedup("new")
        logger.debug("dedup_new", key=key)
        return await asyncio.shield(task)

    async def _run(self, key: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            self._discard(key, asyncio.current_task())

    def _discard(self, key: str, task: asyncio.Task | None) -> None:
        """Remove the entry for ``key`` only if it still belongs to ``task``."""
        entry = self._in_flight.get(key)
        if entry is not None and entry.task is task:
            del self._in_flight[key]

    def _on_in_flight_done(self, key: str, task: asyncio.Task) -> None:
        # Covers tasks cancelled before their first step, where _run's
        # finally never executes.
        self._discard(key, task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(
                "dedup_operation_failed",
                key=key,
                exc_type=type(task.exception()).__name__,
            )

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    # ── Debounced Batching ────────────────────────────────────────

    def batch(
        self,
        key: str,
        updates: Mapping[str, Any],
        flush_fn: FlushFn,
        delay_s: float | None = None,
    ) -> asyncio.Future[Any]:
        """
        Merge ``updates`` into the pending batch for ``key`` and restart its timer.

        Returns a handle that settles with the outcome of the flush that
        eventually carries these updates. The most recent ``flush_fn`` is
        the one called.
        """
        loop = asyncio.get_running_loop()
        delay = self._batch_delay_s if delay_s is None else delay_s

        pending = self._pending.get(key)
        if pending is None:
            pending = PendingBatch(flush_fn=flush_fn)
            self._pending[key] = pending
        else:
            pending.flush_fn = flush_fn
        pending.updates.update(updates)

        if pending.timer is not None:
            pending.timer.cancel()
        pending.timer = loop.call_later(delay, self._fire, key)

        waiter: asyncio.Future[Any] = loop.create_future()
        # Fire-and-forget callers never await the handle; mark a failed or
        # cancelled outcome as retrieved so asyncio does not report it.
        waiter.add_done_callback(_mark_retrieved)
        pending.waiters.append(waiter)
        logger.debug("batch_merged", key=key, fields=sorted(pending.updates))
        return waiter

    def _fire(self, key: str) -> None:
        # Swap the batch out before flushing so later updates start a new one.
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        pending.timer = None
        task = asyncio.ensure_future(self._flush(key, pending))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _flush(self, key: str, pending: PendingBatch) -> None:
        merged = dict(pending.updates)
        logger.info("batch_flushed", key=key, fields=sorted(merged))
        try:
            result = pending.flush_fn(merged)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            self._metrics.record_batch_flush("error")
            logger.warning("batch_flush_failed", key=key, error=str(exc))
            for waiter in pending.waiters:
                if not waiter.done():
                    waiter.set_exception(exc)
        else:
            self._metrics.record_batch_flush("success")
            for waiter in pending.waiters:
                if not waiter.done():
                    waiter.set_result(result)

    def cancel_batch(self, key: str) -> bool:
        """Discard the pending batch for ``key`` without flushing it."""
        pending = self._pending.pop(key, None)
        if pending is None:
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        for waiter in pending.waiters:
            if not waiter.done():
                waiter.set_exception(BatchCancelledError(key))
        self._metrics.record_batch_flush("cancelled")
        logger.info("batch_cancelled", key=key)
        return True

    def has_pending_batch(self, key: str) -> bool:
        return key in self._pending

    async def flush_all(self) -> None:
        """Flush every pending batch now and wait for the flushes to finish."""
        for key in list(self._pending):
            pending = self._pending[key]
            if pending.timer is not None:
                pending.timer.cancel()
            self._fire(key)
        if self._background_tasks:
            await asyncio.wait(set(self._background_tasks))

    # ── Housekeeping ──────────────────────────────────────────────

    def get_stats(self) -> dict[str, int]:
        return {
            "in_flight": len(self._in_flight),
            "pending": len(self._pending),
            "timers": sum(1 for p in self._pending.values() if p.timer is not None),
        }

    def clear(self) -> None:
        """Cancel all pending batches and forget in-flight entries."""
        for key in list(self._pending):
            self.cancel_batch(key)
        self._in_flight.clear()
        logger.info("dedup_cleared")
