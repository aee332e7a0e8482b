"""
Canonical Type Definitions
===========================

Shared enums used across the runtime layer.

This module defines:
- ProviderErrorCode: Structured error codes reported by provider registries
- FallbackState: States of a single fallback run
- AttemptOutcome: Outcome label for one provider attempt
- TaskType: Coarse task classification attached to fallback results
"""

from enum import StrEnum

__all__ = [
    "AttemptOutcome",
    "FallbackState",
    "ProviderErrorCode",
    "TaskType",
]

class ProviderErrorCode(StrEnum):
    """Structured error codes attached to provider request failures.

    Registries set these instead of leaving callers to match on message
    text. ``PROVIDER_CREDENTIALS`` and ``USER_SESSION`` both arrive as
    401/403 but are handled differently by the fallback coordinator.
    """

    USAGE_LIMIT_REACHED = "usage_limit_reached"
    USER_SESSION = "user_session"
    PROVIDER_CREDENTIALS = "provider_credentials"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    SERVER = "server"
    UNKNOWN = "unknown"

class FallbackState(StrEnum):
    """States of one fallback run."""

    BUILDING_CHAIN = "building_chain"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    ALL_FAILED = "all_failed"
    FATAL_ABORT = "fatal_abort"

class AttemptOutcome(StrEnum):
    """Outcome of a single provider attempt (metric label)."""

    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"
    RETRYABLE_ERROR = "retryable_error"
    FATAL_ERROR = "fatal_error"

class TaskType(StrEnum):
    """Task classification inferred from the user's message."""

    IMAGE = "image"
    CHART = "chart"
    PLANNING = "planning"
    COACHING = "coaching"
    ANALYSIS = "analysis"
    GENERAL = "general"
