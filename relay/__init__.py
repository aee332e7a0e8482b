"""Relay: client-side request orchestration for quota-limited backends."""

__version__ = "1.0.0"
