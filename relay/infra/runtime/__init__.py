"""
Runtime Layer: Request Orchestration
=======================================

Provides:
  - Token-bucket rate accounting and FIFO admission queue
  - Transparent rate gating for fluent data-access clients
  - In-flight deduplication and debounced update batching
  - Ordered failover across interchangeable AI providers

Depends on: telemetry
"""

from relay.infra.runtime.deduplicator import RequestDeduplicator
from relay.infra.runtime.fallback import (
    FallbackResult,
    ProviderFallbackCoordinator,
    build_fallback_chain,
)
from relay.infra.runtime.interceptor import (
    RateLimitedBuilder,
    RateLimitedClient,
    create_rate_limited_client,
    get_rate_limiter_metrics,
)
from relay.infra.runtime.providers import (
    ConnectedProvider,
    ProviderRegistry,
    ProviderRequest,
    ProviderResponse,
)
from relay.infra.runtime.queue import RequestQueue
from relay.infra.runtime.token_bucket import TokenBucket

__all__ = [
    "ConnectedProvider",
    "FallbackResult",
    "ProviderFallbackCoordinator",
    "ProviderRegistry",
    "ProviderRequest",
    "ProviderResponse",
    "RateLimitedBuilder",
    "RateLimitedClient",
    "RequestDeduplicator",
    "RequestQueue",
    "TokenBucket",
    "build_fallback_chain",
    "create_rate_limited_client",
    "get_rate_limiter_metrics",
]
