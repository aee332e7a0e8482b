"""
Metrics Collector: Prometheus
================================

Centralized metrics registry for the orchestration runtime.

Design:
  - Single collector, no scattered metric creation
  - Pre-defined metrics for rate limiting, dedup/batching and fallback
  - Registry is injectable so tests can use an isolated CollectorRegistry

Metric Naming Convention:
  - relay_{component}_{metric}_{unit}
  - e.g., relay_ratelimit_queue_wait_seconds
"""

from __future__ import annotations

from typing import Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from relay.infra.telemetry.logger import get_logger

logger = get_logger(__name__)

class MetricsCollector:
    """
    Prometheus metrics for the runtime components.

    Components call the ``record_*`` helpers; they never touch the
    underlying metric objects directly.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry if registry is not None else REGISTRY

        # ── Rate Limiting ──
        self.ratelimit_requests = Counter(
            "relay_ratelimit_requests_total",
            "Operations admitted through the request queue",
            labelnames=["status"],
            registry=self._registry,
        )

        self.ratelimit_waits = Counter(
            "relay_ratelimit_waits_total",
            "Drain loop sleeps caused by an empty token bucket",
            registry=self._registry,
        )

        self.queue_depth = Gauge(
            "relay_ratelimit_queue_depth",
            "Operations waiting for admission",
            labelnames=["queue"],
            registry=self._registry,
        )

        self.queue_wait_time = Histogram(
            "relay_ratelimit_queue_wait_seconds",
            "Time between enqueue and admission",
            buckets=(0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self._registry,
        )

        # ── Deduplication ──
        self.dedup_requests = Counter(
            "relay_dedup_requests_total",
            "Deduplicate calls by outcome",
            labelnames=["outcome"],  # new / reused / evicted
            registry=self._registry,
        )

        self.batch_flushes = Counter(
            "relay_dedup_batch_flushes_total",
            "Debounced batch flushes by outcome",
            labelnames=["status"],  # success / error / cancelled
            registry=self._registry,
        )

        # ── Provider Fallback ──
        self.fallback_attempts = Counter(
            "relay_fallback_attempts_total",
            "Provider attempts within fallback runs",
            labelnames=["provider", "outcome"],
            registry=self._registry,
        )

        self.fallback_runs = Counter(
            "relay_fallback_runs_total",
            "Completed fallback runs by final state",
            labelnames=["outcome"],
            registry=self._registry,
        )

    # ── Recording Methods ──────────────────────────────────────────

    def record_admission(self, *, wait_s: float, status: str) -> None:
        self.ratelimit_requests.labels(status=status).inc()
        self.queue_wait_time.observe(wait_s)

    def record_rate_limit_wait(self) -> None:
        self.ratelimit_waits.inc()

    def record_queue_depth(self, depth: int, queue: str = "default") -> None:
        self.queue_depth.labels(queue=queue).set(depth)

    def record_dedup(self, outcome: str) -> None:
        self.dedup_requests.labels(outcome=outcome).inc()

    def record_batch_flush(self, status: str) -> None:
        self.batch_flushes.labels(status=status).inc()

    def record_fallback_attempt(self, *, provider: str, outcome: str) -> None:
        self.fallback_attempts.labels(provider=provider, outcome=outcome).inc()

    def record_fallback_run(self, outcome: str) -> None:
        self.fallback_runs.labels(outcome=outcome).inc()

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Read a current sample value (0.0 when absent)."""
        value = self._registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def export_prometheus(self) -> bytes:
        """Export metrics in Prometheus text format."""
        return generate_latest(self._registry)

    def get_summary(self) -> dict[str, Any]:
        return {
            "queue_depth": sum(
                s.value for family in self.queue_depth.collect() for s in family.samples
            ),
            "rate_limit_waits": self.sample("relay_ratelimit_waits_total"),
        }

# ── Singleton ──────────────────────────────────────────────────────

_metrics: MetricsCollector | None = None

def get_metrics() -> MetricsCollector:
    # Lock-free benign-race singleton; everything runs on one event loop.
    global _metrics
    if _metrics is not None:
        return _metrics
    _metrics = MetricsCollector()
    return _metrics
