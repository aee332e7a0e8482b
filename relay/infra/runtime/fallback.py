"""
Provider Fallback Coordinator: Ordered Failover Across AI Providers
======================================================================

Walks a fallback chain of interchangeable providers until one returns a
usable answer.

State machine per run:
    BUILDING_CHAIN → ATTEMPTING(i) → SUCCEEDED | ALL_FAILED | FATAL_ABORT

  - BUILDING_CHAIN: no connected providers is a configuration error raised
    before any request. Chain = primary (if connected, else the first
    connected provider), then the remaining connected providers in the order
    given, without duplicates.
  - ATTEMPTING(i): one request to chain[i], never retried within the run.
      * soft failure (answer text is an error message) → next provider
      * usage limit / user-session auth failure → abort, error re-raised
      * any other failure → remembered as last error, next provider
      * usable answer → SUCCEEDED
  - ALL_FAILED: AllProvidersFailedError with the attempted providers and
    the last underlying error.

Provider identity only surfaces to callers through the result metadata;
``fallback_occurred`` is True iff the answering provider is not chain[0].
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from relay.core.exceptions import (
    FALLBACK_RETRY_CONFIG,
    AllProvidersFailedError,
    NoProvidersConfiguredError,
    ProviderRequestError,
    RetryConfig,
    SoftFailureError,
    with_retry,
)
from relay.core.types import AttemptOutcome, FallbackState, TaskType
from relay.infra.runtime.providers import (
    ConnectedProvider,
    ConnectedProvidersSource,
    ProviderRegistry,
    ProviderRequest,
    detect_soft_failure,
    generate_all_failed_message,
    generate_fallback_notice,
    infer_task_type,
    is_fatal_provider_error,
)
from relay.infra.telemetry import MetricsCollector, get_logger, get_metrics, get_tracer

logger = get_logger(__name__)
tracer = get_tracer(__name__)

SoftFailureDetector = Callable[[str | None], "tuple[bool, str | None]"]

@dataclass
class FallbackResult:
    """Successful outcome of a fallback run."""

    response_text: str | None
    provider_used: str
    original_provider: str
    attempted_providers: list[str]
    provider_display_name: str
    task_type: TaskType = TaskType.GENERAL
    payload: dict[str, Any] = field(default_factory=dict)
    retry_attempts: int = 1

    @property
    def fallback_occurred(self) -> bool:
        return self.provider_used != self.original_provider

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.payload,
            "response_text": self.response_text,
            "provider": self.provider_display_name,
            "provider_used": self.provider_used,
            "original_provider": self.original_provider,
            "fallback_occurred": self.fallback_occurred,
            "attempted_providers": list(self.attempted_providers),
            "task_type": str(self.task_type),
            "retry_attempts": self.retry_attempts,
        }

def build_fallback_chain(
    primary_provider: str | None,
    connected_providers: Sequence[ConnectedProvider | str],
) -> list[str]:
    """Primary first (if connected), then the rest in their given order."""
    provider_types = [
        p if isinstance(p, str) else p.provider_type for p in connected_providers
    ]
    if not provider_types:
        raise NoProvidersConfiguredError()

    first = primary_provider if primary_provider in provider_types else provider_types[0]
    chain = [first]
    for provider_type in provider_types:
        if provider_type not in chain:
            chain.append(provider_type)
    return chain

def _resolve_task_type(
    task_type: TaskType | str | None,
    message: str,
    quick_action_id: str | None,
) -> TaskType:
    """Explicit task type when it is a known one, otherwise inferred."""
    if task_type:
        try:
            return TaskType(task_type)
        except ValueError:
            logger.debug("fallback_unknown_task_type", task_type=str(task_type))
    return infer_task_type(message, quick_action_id)

class ProviderFallbackCoordinator:
    """
    Runs AI queries against a chain of connected providers.

    Usage:
        coordinator = ProviderFallbackCoordinator(registry)
        result = await coordinator.run_with_fallback(
            "Which deals are at risk?",
            primary_provider="anthropic",
            connected_providers=[ConnectedProvider("openai"), ConnectedProvider("anthropic")],
        )
        if result.fallback_occurred:
            notice = coordinator.fallback_notice(result)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        providers_source: ConnectedProvidersSource | None = None,
        soft_failure_detector: SoftFailureDetector | None = None,
        retry_config: RetryConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._registry = registry
        self._providers_source = providers_source
        self._detect_soft_failure = (
            soft_failure_detector
            or getattr(registry, "is_soft_failure", None)
            or detect_soft_failure
        )
        self._retry_config = retry_config or FALLBACK_RETRY_CONFIG
        self._metrics = metrics or get_metrics()

    def display_name(self, provider_type: str) -> str:
        return self._registry.display_name(provider_type)

    async def fetch_connected_providers(
        self, organization_id: str | None
    ) -> list[ConnectedProvider]:
        """
        Load connected providers from the configured source.

        Session errors (401/403) propagate; any other source failure is
        logged and treated as "no providers".
        """
        if self._providers_source is None or not organization_id:
            logger.warning("connected_providers_unavailable", organization_id=organization_id)
            return []
        try:
            return list(await self._providers_source(organization_id))
        except ProviderRequestError as exc:
            if exc.status in (401, 403):
                raise
            logger.error("connected_providers_fetch_failed", exc=exc)
            return []
        except Exception as exc:
            logger.error("connected_providers_fetch_failed", exc=exc)
            return []

    async def run_with_fallback(
        self,
        message: str,
        *,
        primary_provider: str | None = None,
        connected_providers: Sequence[ConnectedProvider | str] | None = None,
        organization_id: str | None = None,
        context_items: Sequence[Any] = (),
        conversation_history: Sequence[Any] = (),
        personalization_signals: Sequence[Any] = (),
        task_type: TaskType | str | None = None,
        quick_action_id: str | None = None,
    ) -> FallbackResult:
        """Try each provider in the chain until one produces a usable answer."""
        state = FallbackState.BUILDING_CHAIN
        if connected_providers is None:
            connected_providers = await self.fetch_connected_providers(organization_id)

        try:
            chain = build_fallback_chain(primary_provider, connected_providers)
        except NoProvidersConfiguredError:
            self._metrics.record_fallback_run(FallbackState.FATAL_ABORT)
            logger.warning("fallback_no_providers", organization_id=organization_id)
            raise

        resolved_task = _resolve_task_type(task_type, message, quick_action_id)
        original_provider = chain[0]
        attempted: list[str] = []
        last_error: Exception | None = None

        with tracer.span(
            "fallback.run",
            attributes={"chain": ",".join(chain), "task_type": str(resolved_task)},
        ) as run_span:
            for index, provider_type in enumerate(chain):
                state = FallbackState.ATTEMPTING
                attempted.append(provider_type)
                logger.info(
                    "fallback_attempt",
                    state=str(state),
                    index=index,
                    provider=provider_type,
                )
                request = ProviderRequest(
                    message=message,
                    provider_type=provider_type,
                    context_items=context_items,
                    conversation_history=conversation_history,
                    personalization_signals=personalization_signals,
                )

                with tracer.span(
                    "fallback.attempt", attributes={"provider": provider_type, "index": index}
                ) as span:
                    try:
                        response = await self._registry.request(request)
                    except Exception as exc:
                        if is_fatal_provider_error(exc):
                            state = FallbackState.FATAL_ABORT
                            exc.attempted_providers = list(attempted)
                            self._record_attempt(provider_type, AttemptOutcome.FATAL_ERROR)
                            self._metrics.record_fallback_run(state)
                            logger.warning(
                                "fallback_fatal_abort",
                                provider=provider_type,
                                error=str(exc),
                                attempted=list(attempted),
                            )
                            raise
                        last_error = exc
                        span.set_attribute("outcome", str(AttemptOutcome.RETRYABLE_ERROR))
                        self._record_attempt(provider_type, AttemptOutcome.RETRYABLE_ERROR)
                        logger.warning(
                            "fallback_provider_failed",
                            provider=provider_type,
                            error=str(exc),
                            exc_type=type(exc).__name__,
                        )
                        continue

                    is_soft, pattern = self._detect_soft_failure(response.response_text)
                    if is_soft:
                        last_error = SoftFailureError(
                            provider_type, pattern or "", response.response_text or ""
                        )
                        span.set_attribute("outcome", str(AttemptOutcome.SOFT_FAILURE))
                        self._record_attempt(provider_type, AttemptOutcome.SOFT_FAILURE)
                        logger.warning(
                            "fallback_soft_failure", provider=provider_type, pattern=pattern
                        )
                        continue

                    span.set_attribute("outcome", str(AttemptOutcome.SUCCESS))
                    self._record_attempt(provider_type, AttemptOutcome.SUCCESS)

                state = FallbackState.SUCCEEDED
                result = FallbackResult(
                    response_text=response.response_text,
                    provider_used=provider_type,
                    original_provider=original_provider,
                    attempted_providers=list(attempted),
                    provider_display_name=self.display_name(provider_type),
                    task_type=resolved_task,
                    payload=dict(response.payload),
                )
                run_span.set_attribute("provider_used", provider_type)
                self._metrics.record_fallback_run(state)
                logger.info(
                    "fallback_succeeded",
                    provider=provider_type,
                    original_provider=original_provider,
                    fallback_occurred=result.fallback_occurred,
                    attempts=len(attempted),
                )
                return result

            state = FallbackState.ALL_FAILED
            self._metrics.record_fallback_run(state)
            logger.error(
                "fallback_all_failed",
                attempted=list(attempted),
                last_error=str(last_error) if last_error else None,
            )
            raise AllProvidersFailedError(
                generate_all_failed_message(attempted, self.display_name),
                attempted_providers=attempted,
                last_error=last_error,
            ) from last_error

    async def run_with_retry(
        self,
        message: str,
        *,
        retry_config: RetryConfig | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
        **kwargs: Any,
    ) -> FallbackResult:
        """
        ``run_with_fallback`` retried when every provider failed.

        Configuration errors and fatal provider errors are never retried.
        The result (or final error) carries ``retry_attempts``.
        """
        cfg = retry_config or self._retry_config
        run = with_retry(config=cfg, on_retry=on_retry)(self.run_with_fallback)
        return await run(message, **kwargs)

    def fallback_notice(self, result: FallbackResult) -> str | None:
        """User-facing notice when the answer came from a fallback provider."""
        if not result.fallback_occurred:
            return None
        return generate_fallback_notice(
            result.original_provider, result.provider_used, self.display_name
        )

    def _record_attempt(self, provider_type: str, outcome: AttemptOutcome) -> None:
        self._metrics.record_fallback_attempt(provider=provider_type, outcome=str(outcome))
