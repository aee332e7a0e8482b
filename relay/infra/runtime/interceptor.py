"""
Transparent Client Interceptor: Rate-Gated Fluent Clients
============================================================

Wraps a chainable data-access client so that every terminal resolution of a
query/mutation builder goes through a RequestQueue, while every intermediate
chain step passes straight through.

    client = create_rate_limited_client(supabase_client)
    rows = await client.table("deals").update({"stage": "won"}).eq("id", 7).execute()

Rules:
  - Builder entry points (``table``, ``from_``, ``rpc`` by default) return a
    RateLimitedBuilder around the real builder
  - Any builder method whose result is itself a builder returns another
    RateLimitedBuilder, so chains of any length keep the wrapper
  - The resolve hook (``execute`` by default), or awaiting an awaitable
    builder directly, is the only step submitted to the queue
  - Other attributes are returned from the wrapped object untouched; bound
    methods stay bound to the original receiver

Rate limiting never raises; it only delays. Errors from the underlying
operation propagate unchanged.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Callable, Generator, Iterable
from typing import Any

from relay.infra.runtime.queue import RequestQueue
from relay.infra.runtime.token_bucket import TokenBucket
from relay.infra.telemetry import MetricsCollector, get_logger

logger = get_logger(__name__)

DEFAULT_BUILDER_METHODS = ("table", "from_", "rpc")
DEFAULT_RESOLVE_HOOK = "execute"

class ClientInterceptor:
    """Shared state for one wrapped client: the queue and request counters."""

    def __init__(
        self,
        queue: RequestQueue,
        *,
        builder_methods: Iterable[str] = DEFAULT_BUILDER_METHODS,
        resolve_hook: str = DEFAULT_RESOLVE_HOOK,
    ) -> None:
        self.queue = queue
        self.builder_methods = frozenset(builder_methods)
        self.resolve_hook = resolve_hook
        self.total_requests = 0
        self.queued_requests = 0

    def is_builder(self, obj: Any) -> bool:
        """A builder exposes the resolve hook or is awaitable, and is not a coroutine."""
        if obj is None or isinstance(obj, type) or inspect.iscoroutine(obj):
            return False
        return callable(getattr(obj, self.resolve_hook, None)) or hasattr(
            type(obj), "__await__"
        )

    def wrap_builder(self, builder: Any) -> RateLimitedBuilder:
        return RateLimitedBuilder(builder, self)

    def submit(self, operation: Callable[[], Any]) -> asyncio.Future[Any]:
        self.total_requests += 1
        # Anything submitted while the drain loop is busy waits its turn.
        if self.queue.is_processing or self.queue.depth > 0:
            self.queued_requests += 1
            logger.debug("rate_limit_queued", queue_depth=self.queue.depth)
        return self.queue.enqueue(operation)

    @property
    def metrics(self) -> dict[str, int]:
        return {
            "total_requests": self.total_requests,
            "queued_requests": self.queued_requests,
            "rate_limit_hits": self.queue.get_stats()["rate_limit_hits"],
        }

class RateLimitedBuilder:
    """Proxy around one query builder in a chain."""

    __slots__ = ("_builder", "_interceptor")

    def __init__(self, builder: Any, interceptor: ClientInterceptor) -> None:
        self._builder = builder
        self._interceptor = interceptor

    @property
    def wrapped(self) -> Any:
        return self._builder

    def __getattr__(self, name: str) -> Any:
        value = getattr(self._builder, name)
        if not callable(value):
            return value

        interceptor = self._interceptor
        if name == interceptor.resolve_hook:

            @functools.wraps(value)
            def resolve(*args: Any, **kwargs: Any) -> asyncio.Future[Any]:
                return interceptor.submit(lambda: value(*args, **kwargs))

            return resolve

        @functools.wraps(value)
        def chained(*args: Any, **kwargs: Any) -> Any:
            result = value(*args, **kwargs)
            if interceptor.is_builder(result):
                return interceptor.wrap_builder(result)
            return result

        return chained

    def __await__(self) -> Generator[Any, None, Any]:
        if not hasattr(type(self._builder), "__await__"):
            raise TypeError(
                f"{type(self._builder).__name__} is not awaitable; "
                f"call .{self._interceptor.resolve_hook}() instead"
            )
        builder = self._builder
        return self._interceptor.submit(lambda: builder).__await__()

    def __repr__(self) -> str:
        return f"RateLimitedBuilder({self._builder!r})"

class RateLimitedClient:
    """
    Drop-in wrapper exposing the same surface as the wrapped client.

    All builders created through one RateLimitedClient share its queue.
    """

    __slots__ = ("_client", "_interceptor")

    def __init__(self, client: Any, interceptor: ClientInterceptor) -> None:
        self._client = client
        self._interceptor = interceptor

    @property
    def wrapped(self) -> Any:
        return self._client

    @property
    def interceptor(self) -> ClientInterceptor:
        return self._interceptor

    @property
    def queue(self) -> RequestQueue:
        return self._interceptor.queue

    def __getattr__(self, name: str) -> Any:
        value = getattr(self._client, name)
        if name not in self._interceptor.builder_methods or not callable(value):
            return value

        interceptor = self._interceptor

        @functools.wraps(value)
        def builder_entry(*args: Any, **kwargs: Any) -> Any:
            builder = value(*args, **kwargs)
            if interceptor.is_builder(builder):
                return interceptor.wrap_builder(builder)
            return builder

        return builder_entry

    def __repr__(self) -> str:
        return f"RateLimitedClient({self._client!r})"

def create_rate_limited_client(
    client: Any,
    *,
    tokens_per_second: float = 10.0,
    burst_size: int = 20,
    max_sleep_s: float = 1.0,
    builder_methods: Iterable[str] = DEFAULT_BUILDER_METHODS,
    resolve_hook: str = DEFAULT_RESOLVE_HOOK,
    name: str = "default",
    metrics: MetricsCollector | None = None,
) -> RateLimitedClient:
    """Wrap ``client`` behind its own TokenBucket and RequestQueue.

    ``name`` labels the queue in metrics and stats.
    """
    bucket = TokenBucket(capacity=burst_size, refill_rate=tokens_per_second)
    queue = RequestQueue(bucket, max_sleep_s=max_sleep_s, name=name, metrics=metrics)
    interceptor = ClientInterceptor(
        queue, builder_methods=builder_methods, resolve_hook=resolve_hook
    )
    logger.info(
        "rate_limited_client_created",
        queue=name,
        tokens_per_second=tokens_per_second,
        burst_size=burst_size,
    )
    return RateLimitedClient(client, interceptor)

def get_rate_limiter_metrics(client: RateLimitedClient) -> dict[str, int]:
    """Request counters for a wrapped client."""
    return client.interceptor.metrics
