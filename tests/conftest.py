"""Shared fixtures for the unit suites."""

import pytest
from prometheus_client import CollectorRegistry

from relay.infra.telemetry.metrics import MetricsCollector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    """Metrics collector on an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())
