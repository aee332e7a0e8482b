"""
Distributed Tracing: OpenTelemetry API
=========================================

Thin span helper over the OpenTelemetry API.

Without an SDK ``TracerProvider`` installed by the host application the
API hands out non-recording spans, so tracing costs nothing unless the
application opts in.

Usage:
    from relay.infra.telemetry.tracer import get_tracer

    tracer = get_tracer(__name__)

    async def attempt(provider):
        with tracer.span("fallback.attempt", attributes={"provider": provider}) as span:
            result = await registry.request(...)
            span.set_attribute("soft_failure", False)
            return result
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace as otel_trace
from opentelemetry.trace import Status, StatusCode

class Tracer:
    """Span factory bound to one instrumentation scope."""

    def __init__(self, name: str):
        self._name = name
        self._tracer = otel_trace.get_tracer(name)

    @contextmanager
    def span(
        self,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Any, None, None]:
        """
        Create a traced span.

        Exceptions escaping the block are recorded on the span and re-raised.
        """
        with self._tracer.start_as_current_span(
            name,
            attributes=attributes,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise

# ── Global Tracer Registry ────────────────────────────────────────

_tracers: dict[str, Tracer] = {}

def get_tracer(name: str) -> Tracer:
    """Get or create a tracer for the given module."""
    if name not in _tracers:
        _tracers[name] = Tracer(name)
    return _tracers[name]
