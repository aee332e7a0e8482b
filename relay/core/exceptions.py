"""Custom exception classes for Relay.

Includes:
- Base exception with a serializable error payload
- Provider fallback exceptions (configuration, request, aggregate)
- Queue and batching lifecycle exceptions
- Async retry configuration and decorator
"""

import asyncio
import functools
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from relay.core.types import ProviderErrorCode

logger = logging.getLogger(__name__)
F = TypeVar("F", bound=Callable[..., Any])


class RelayError(Exception):
    """Base exception for all Relay errors."""

    def __init__(
        self, detail: str, status_code: int = 500, error_code: str = "INTERNAL_ERROR"
    ):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)

    def to_dict(self):
        """Serializable error payload for logs and callers."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


# =============================================================================
# RUNTIME LIFECYCLE EXCEPTIONS
# =============================================================================


class QueueClosedError(RelayError):
    """Raised for operations submitted to, or left in, a stopped queue."""

    def __init__(self, detail: str = "Request queue is closed"):
        super().__init__(detail=detail, status_code=503, error_code="QUEUE_CLOSED")


class BatchCancelledError(RelayError):
    """Raised to callers waiting on a batch that was discarded before flushing."""

    def __init__(self, key: str):
        super().__init__(
            detail=f"Pending batch for {key} was cancelled",
            status_code=409,
            error_code="BATCH_CANCELLED",
        )
        self.key = key


# =============================================================================
# PROVIDER FALLBACK EXCEPTIONS
# =============================================================================


class ProviderConfigurationError(RelayError):
    """Raised when the fallback chain cannot be built from the configuration."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=400, error_code="NO_PROVIDERS")
        self.attempted_providers: list[str] = []


class NoProvidersConfiguredError(ProviderConfigurationError):
    """Raised when the caller's organization has no connected providers."""

    def __init__(self):
        super().__init__(
            "No AI provider configured. Please connect an AI provider in "
            "Integrations settings."
        )


class ProviderRequestError(RelayError):
    """Raised by a provider registry when a single provider request fails.

    ``code`` is the structured classification used to decide between
    falling back and aborting; ``body`` is the provider's error payload.
    """

    def __init__(
        self,
        detail: str,
        *,
        provider_type: str,
        status: int | None = None,
        code: ProviderErrorCode = ProviderErrorCode.UNKNOWN,
        body: dict[str, Any] | None = None,
    ):
        super().__init__(
            detail=detail,
            status_code=status or 502,
            error_code=str(code).upper(),
        )
        self.status = status
        self.provider_type = provider_type
        self.code = ProviderErrorCode(code)
        self.body = body or {}
        self.attempted_providers: list[str] = []

    @property
    def is_limit_reached(self) -> bool:
        return (
            self.code == ProviderErrorCode.USAGE_LIMIT_REACHED
            or bool(self.body.get("limit_reached"))
        )

    def to_dict(self):
        base = super().to_dict()
        base.update(
            {
                "provider_type": self.provider_type,
                "code": str(self.code),
                "attempted_providers": list(self.attempted_providers),
                "is_limit_reached": self.is_limit_reached,
            }
        )
        return base


class SoftFailureError(RelayError):
    """A provider answered successfully but the content is an error message."""

    def __init__(self, provider_type: str, pattern: str, response_text: str):
        super().__init__(
            detail=response_text,
            status_code=200,
            error_code="PROVIDER_SOFT_FAILURE",
        )
        self.provider_type = provider_type
        self.pattern = pattern
        self.response_text = response_text


class AllProvidersFailedError(RelayError):
    """Raised when every provider in the fallback chain failed."""

    is_all_providers_failed = True

    def __init__(
        self,
        detail: str,
        attempted_providers: list[str],
        last_error: Exception | None = None,
    ):
        super().__init__(
            detail=detail, status_code=503, error_code="ALL_PROVIDERS_FAILED"
        )
        self.attempted_providers = list(attempted_providers)
        self.last_error = last_error
        self.retry_attempts = 1

    @property
    def was_retried(self) -> bool:
        return self.retry_attempts > 1

    def to_dict(self):
        base = super().to_dict()
        base.update(
            {
                "attempted_providers": list(self.attempted_providers),
                "is_all_providers_failed": True,
                "retry_attempts": self.retry_attempts,
                "last_error": str(self.last_error) if self.last_error else None,
            }
        )
        return base


# =============================================================================
# RETRY CONFIGURATION & DECORATOR
# =============================================================================


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.25
    retryable_exceptions: tuple = field(
        default_factory=lambda: (
            TimeoutError,
            ConnectionError,
            AllProvidersFailedError,
        )
    )
    non_retryable_exceptions: tuple = field(
        default_factory=lambda: (
            ValueError,
            TypeError,
            ProviderConfigurationError,
            ProviderRequestError,
        )
    )


DEFAULT_RETRY_CONFIG = RetryConfig()
FALLBACK_RETRY_CONFIG = RetryConfig(
    max_attempts=2, initial_delay=1.0, max_delay=3.0, jitter=False
)


def _compute_retry_delay(cfg: RetryConfig, attempt: int) -> float:
    """Compute delay for a retry attempt with optional jitter."""
    delay = min(
        cfg.initial_delay * (cfg.exponential_base ** (attempt - 1)),
        cfg.max_delay,
    )
    if cfg.jitter:
        delay += delay * cfg.jitter_factor * random.random()
    return delay


def with_retry(
    config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable[[F], F]:
    """
    Retry decorator with exponential backoff for coroutine functions.

    Only ``retryable_exceptions`` are retried; everything else propagates
    on the first failure. The final exception carries ``retry_attempts``.

    Example:
        @with_retry(config=RetryConfig(max_attempts=2))
        async def ask() -> FallbackResult:
            ...
    """
    cfg = config or DEFAULT_RETRY_CONFIG

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            return await _run_async_with_retry(func, args, kwargs, cfg, on_retry)

        return async_wrapper  # type: ignore[return-value]

    return decorator


async def _run_async_with_retry(
    func: Callable,
    args: tuple,
    kwargs: dict,
    cfg: RetryConfig,
    on_retry: Callable[[int, Exception, float], None] | None,
) -> Any:
    """Run an async function with retry logic."""
    for attempt in range(1, cfg.max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except cfg.non_retryable_exceptions as exc:
            logger.warning("[Retry] Non-retryable in %s: %s", func.__name__, exc)
            _mark_attempts(exc, attempt)
            raise
        except cfg.retryable_exceptions as exc:
            if attempt >= cfg.max_attempts:
                _mark_attempts(exc, attempt)
                raise
            delay = _compute_retry_delay(cfg, attempt)
            logger.warning(
                "[Retry] %s attempt %d/%d. Retrying in %.2fs...",
                func.__name__, attempt, cfg.max_attempts, delay,
            )
            if on_retry:
                on_retry(attempt, exc, delay)
            await asyncio.sleep(delay)
        else:
            _mark_attempts(result, attempt)
            return result
    raise RuntimeError("retry loop exited without a result")  # pragma: no cover


def _mark_attempts(target: Any, attempts: int) -> None:
    """Record the attempt count on a result or exception when it has the slot."""
    if hasattr(target, "retry_attempts"):
        target.retry_attempts = attempts
