"""
Provider Registry Boundary
===========================

Types and helpers shared by the fallback coordinator and the
provider-capability registries it calls.

Provides:
  - ProviderRequest / ProviderResponse / ConnectedProvider value types
  - ProviderRegistry protocol (one non-streaming request per provider)
  - Soft-failure detection over response text
  - Structured error classification (fall back vs abort)
  - User-facing fallback / all-failed messages
  - Keyword task-type inference reported on results
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from relay.core.exceptions import ProviderRequestError
from relay.core.types import ProviderErrorCode, TaskType

__all__ = [
    "PROVIDER_DISPLAY_NAMES",
    "SOFT_FAILURE_PATTERNS",
    "ConnectedProvider",
    "ConnectedProvidersSource",
    "ProviderRegistry",
    "ProviderRequest",
    "ProviderResponse",
    "detect_soft_failure",
    "generate_all_failed_message",
    "generate_fallback_notice",
    "get_provider_display_name",
    "infer_task_type",
    "is_fatal_provider_error",
]

# ── Value Types ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConnectedProvider:
    """A provider the caller's organization has configured."""

    provider_type: str
    model: str | None = None
    display_name: str | None = None

@dataclass(frozen=True)
class ProviderRequest:
    """One non-streaming request to a single provider."""

    message: str
    provider_type: str
    context_items: Sequence[Any] = ()
    conversation_history: Sequence[Any] = ()
    personalization_signals: Sequence[Any] = ()

@dataclass
class ProviderResponse:
    """A provider's answer. ``payload`` holds optional chart/metrics data."""

    response_text: str | None
    payload: dict[str, Any] = field(default_factory=dict)

@runtime_checkable
class ProviderRegistry(Protocol):
    """Capability registry for interchangeable AI providers.

    ``request`` raises ProviderRequestError with a structured ``code`` on
    failure. A registry may also define ``is_soft_failure(text)`` returning
    ``(bool, marker)`` to replace ``detect_soft_failure``.
    """

    def display_name(self, provider_type: str) -> str: ...

    async def request(self, request: ProviderRequest) -> ProviderResponse: ...

ConnectedProvidersSource = Callable[[str | None], Awaitable[Sequence[ConnectedProvider]]]

# ── Display Names ──────────────────────────────────────────────────

PROVIDER_DISPLAY_NAMES: dict[str, str] = {
    "openai": "ChatGPT",
    "anthropic": "Claude",
    "google": "Gemini",
}

def get_provider_display_name(provider_type: str) -> str:
    return PROVIDER_DISPLAY_NAMES.get(provider_type, provider_type)

# ── Soft Failures ──────────────────────────────────────────────────

SOFT_FAILURE_PATTERNS: tuple[str, ...] = (
    "i'm unable to connect",
    "unable to connect to",
    "api key needs credits",
    "api key needs permissions",
    "check your api key",
    "verify your api key",
    "no credits",
    "insufficient credits",
    "permission denied",
    "not authorized",
    "invalid api key",
    "authentication failed",
    "rate limit exceeded",
    "quota exceeded",
    "model is currently overloaded",
    "currently experiencing high demand",
    "please try again later",
    "service temporarily unavailable",
    "server is busy",
    "capacity limit",
)

def detect_soft_failure(response_text: str | None) -> tuple[bool, str | None]:
    """Return ``(True, pattern)`` if the text is a provider error in disguise."""
    if not response_text or not isinstance(response_text, str):
        return False, None
    lowered = response_text.lower()
    for pattern in SOFT_FAILURE_PATTERNS:
        if pattern in lowered:
            return True, pattern
    return False, None

# ── Error Classification ──────────────────────────────────────────

_AUTH_STATUSES = frozenset({401, 403})

def is_fatal_provider_error(exc: BaseException) -> bool:
    """
    Whether a provider failure must abort the fallback run.

    Usage-limit errors and user-session auth failures abort. Provider
    credential failures (a bad key for one provider) and everything else
    fall through to the next provider.
    """
    if not isinstance(exc, ProviderRequestError):
        return False
    if exc.is_limit_reached:
        return True
    if exc.code == ProviderErrorCode.USER_SESSION:
        return True
    if exc.status in _AUTH_STATUSES:
        return exc.code != ProviderErrorCode.PROVIDER_CREDENTIALS
    return False

# ── User-Facing Messages ──────────────────────────────────────────

def generate_fallback_notice(
    original_provider: str,
    used_provider: str,
    display_name: Callable[[str], str] = get_provider_display_name,
) -> str:
    """Short neutral notice shown when an answer came from a fallback provider."""
    return (
        f"{display_name(original_provider)} is unavailable right now, "
        f"so I answered using {display_name(used_provider)} instead."
    )

def generate_all_failed_message(
    attempted_providers: Sequence[str],
    display_name: Callable[[str], str] = get_provider_display_name,
) -> str:
    if len(attempted_providers) == 1:
        name = display_name(attempted_providers[0])
        return (
            f"I'm unable to connect to {name} right now. Please check your API "
            "key or try again in a few minutes."
        )
    if attempted_providers:
        names = ", ".join(display_name(p) for p in attempted_providers)
        return (
            f"I wasn't able to get a response from any of your connected AI "
            f"providers ({names}). Please check your API keys or try again in "
            "a few minutes."
        )
    return (
        "I wasn't able to get a response from any of your connected AI "
        "providers. Please check your API keys or try again in a few minutes."
    )

# ── Task Type Inference ───────────────────────────────────────────

_CHART_ACTIONS = frozenset({
    "weekly_trends", "pipeline_flow", "at_risk", "revenue_forecast",
    "goal_progress", "velocity_booster", "icp_analyzer", "momentum_insights",
    "flow_forecast",
})
_COACHING_ACTIONS = frozenset({"deal_doctor", "qualifier_coach", "retention_master"})

_TASK_KEYWORDS: tuple[tuple[TaskType, tuple[str, ...]], ...] = (
    (TaskType.IMAGE, (
        "image", "graphic", "slide", "deck", "presentation", "visual summary",
        "infographic", "diagram", "picture",
    )),
    (TaskType.CHART, (
        "chart", "graph", "trend", "forecast", "pipeline flow", "velocity",
        "at risk", "goal progress", "weekly", "monthly", "distribution",
        "breakdown", "metrics", "analytics", "icp",
    )),
    (TaskType.PLANNING, (
        "plan my day", "daily action", "today", "priorities", "what should i",
        "schedule", "agenda", "tasks for",
    )),
    (TaskType.COACHING, (
        "coach", "teach", "help me", "improve", "how do i", "strategy",
        "qualification", "discovery", "negotiate", "close", "objection",
        "stuck deal", "stalled", "blocked", "advice", "tips", "best practice",
    )),
    (TaskType.ANALYSIS, (
        "analyze", "analysis", "review", "assess", "evaluate", "summary",
        "insight", "pipeline", "deals",
    )),
)

_WHITESPACE = re.compile(r"\s+")

def infer_task_type(message: str | None, quick_action_id: str | None = None) -> TaskType:
    """Classify a message by quick action first, then by keyword."""
    if not message:
        return TaskType.GENERAL

    if quick_action_id:
        if quick_action_id in _CHART_ACTIONS:
            return TaskType.CHART
        if quick_action_id == "plan_my_day":
            return TaskType.PLANNING
        if quick_action_id in _COACHING_ACTIONS:
            return TaskType.COACHING

    lowered = _WHITESPACE.sub(" ", message.lower())
    for task_type, keywords in _TASK_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return task_type
    return TaskType.GENERAL
