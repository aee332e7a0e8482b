"""
Orchestration Context
======================

Owns the shared runtime instances for one application: one rate-limited
queue per wrapped backend client, one deduplicator, and optionally one
provider fallback coordinator. Nothing is created at import time; the
caller builds the context and closes it.

Usage:
    async with OrchestrationContext.from_settings(registry=registry) as ctx:
        db = ctx.wrap_client(supabase_client)
        rows = await db.table("deals").select("*").execute()
        answer = await ctx.fallback.run_with_fallback("Summarize my pipeline", ...)
"""

from __future__ import annotations

from typing import Any

from relay.core.config import Settings, settings as default_settings
from relay.core.exceptions import RetryConfig
from relay.infra.runtime.deduplicator import RequestDeduplicator
from relay.infra.runtime.fallback import ProviderFallbackCoordinator
from relay.infra.runtime.interceptor import RateLimitedClient, create_rate_limited_client
from relay.infra.runtime.providers import ConnectedProvidersSource, ProviderRegistry
from relay.infra.telemetry import MetricsCollector, get_logger, get_metrics, setup_logging

logger = get_logger(__name__)

class OrchestrationContext:
    """Explicitly constructed holder for the orchestration components."""

    def __init__(
        self,
        *,
        tokens_per_second: float = 10.0,
        burst_size: int = 20,
        max_sleep_s: float = 1.0,
        dedup_ttl_s: float = 30.0,
        batch_delay_s: float = 0.3,
        registry: ProviderRegistry | None = None,
        providers_source: ConnectedProvidersSource | None = None,
        retry_config: RetryConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._tokens_per_second = tokens_per_second
        self._burst_size = burst_size
        self._max_sleep_s = max_sleep_s
        self._metrics = metrics or get_metrics()
        self._clients: list[RateLimitedClient] = []
        self._closed = False

        self.deduplicator = RequestDeduplicator(
            ttl_s=dedup_ttl_s, batch_delay_s=batch_delay_s, metrics=self._metrics
        )
        self._fallback: ProviderFallbackCoordinator | None = None
        if registry is not None:
            self._fallback = ProviderFallbackCoordinator(
                registry,
                providers_source=providers_source,
                retry_config=retry_config,
                metrics=self._metrics,
            )

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        *,
        configure_logging: bool = False,
        **overrides: Any,
    ) -> OrchestrationContext:
        """
        Build a context from ``Settings``; keyword overrides win.

        ``configure_logging=True`` also installs the root log handler from
        the LOG_* settings, for applications that have not done so already.
        """
        cfg = config or default_settings
        if configure_logging:
            setup_logging(
                level=cfg.LOG_LEVEL,
                json_output=cfg.LOG_JSON,
                environment=cfg.ENVIRONMENT,
            )
        kwargs: dict[str, Any] = {
            "tokens_per_second": cfg.RATE_LIMIT_TOKENS_PER_SECOND,
            "burst_size": cfg.RATE_LIMIT_BURST_SIZE,
            "max_sleep_s": cfg.RATE_LIMIT_MAX_SLEEP_S,
            "dedup_ttl_s": cfg.DEDUP_TTL_S,
            "batch_delay_s": cfg.BATCH_DELAY_S,
            "retry_config": RetryConfig(
                max_attempts=cfg.FALLBACK_RETRY_MAX_ATTEMPTS,
                initial_delay=cfg.FALLBACK_RETRY_INITIAL_DELAY_S,
                max_delay=cfg.FALLBACK_RETRY_MAX_DELAY_S,
                jitter=False,
            ),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def fallback(self) -> ProviderFallbackCoordinator:
        if self._fallback is None:
            raise RuntimeError("No provider registry configured for this context")
        return self._fallback

    @property
    def closed(self) -> bool:
        return self._closed

    def wrap_client(self, client: Any, **options: Any) -> RateLimitedClient:
        """Wrap a backend client behind its own token bucket and queue."""
        if self._closed:
            raise RuntimeError("OrchestrationContext is closed")
        options.setdefault("name", f"client-{len(self._clients)}")
        wrapped = create_rate_limited_client(
            client,
            tokens_per_second=self._tokens_per_second,
            burst_size=self._burst_size,
            max_sleep_s=self._max_sleep_s,
            metrics=self._metrics,
            **options,
        )
        self._clients.append(wrapped)
        return wrapped

    async def close(self, *, drain: bool = True) -> None:
        """
        Shut down owned components.

        With ``drain=True`` queued operations run and pending batches flush
        first; otherwise queued operations are rejected and batches dropped.
        """
        if self._closed:
            return
        self._closed = True
        if drain:
            await self.deduplicator.flush_all()
        else:
            self.deduplicator.clear()
        for client in self._clients:
            await client.queue.close(drain=drain)
        logger.info("orchestration_context_closed", clients=len(self._clients), drained=drain)

    def get_stats(self) -> dict[str, Any]:
        return {
            "clients": [c.queue.get_stats() for c in self._clients],
            "deduplicator": self.deduplicator.get_stats(),
        }

    async def __aenter__(self) -> OrchestrationContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
