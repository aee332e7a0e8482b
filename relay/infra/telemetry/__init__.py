"""
Telemetry Layer: Unified Observability
========================================

All runtime components depend on this layer.

Provides:
  - Structured logging with request context
  - Metrics collection (Prometheus)
  - Tracing spans (OpenTelemetry API)

Usage:
    from relay.infra.telemetry import get_logger, get_metrics

    logger = get_logger(__name__)
    metrics = get_metrics()
    logger.info("fallback_succeeded", provider="anthropic")
"""

from relay.infra.telemetry.logger import StructuredLogger, get_logger, setup_logging
from relay.infra.telemetry.metrics import MetricsCollector, get_metrics
from relay.infra.telemetry.tracer import Tracer, get_tracer

__all__ = [
    "MetricsCollector",
    "StructuredLogger",
    "Tracer",
    "get_logger",
    "get_metrics",
    "get_tracer",
    "setup_logging",
]
