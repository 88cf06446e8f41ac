"""Completion provider interface, shared types and the structured provider error."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable

import httpx

from ea_plan_ai.services.rate_limiter import RateLimiter
from ea_plan_ai.services.usage_recorder import UsageRecord, UsageRecorder
from ea_plan_ai.services.user_profiles import UserProfile

logger = logging.getLogger(__name__)

AIMessage = dict[str, str]

FINISH_REASONS: tuple[str, ...] = ("stop", "length", "error")


class ProviderErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    TRANSPORT = "transport"
    AUTH_OR_VALIDATION = "auth_or_validation"
    REGISTRY = "registry"
    ALL_PROVIDERS_FAILED = "all_providers_failed"


class AIProviderError(Exception):
    """Structured failure raised by adapters and the orchestrator.

    Callers branch on ``kind`` and ``retryable`` rather than on subclasses.
    ``cause`` and ``attempts`` are only set on ``ALL_PROVIDERS_FAILED``.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ProviderErrorKind,
        provider: str = "unknown",
        model: str = "unknown",
        status_code: int | None = None,
        retryable: bool = False,
        retry_after_ms: int | None = None,
        cause: AIProviderError | None = None,
        attempts: list[AIProviderError] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after_ms = retry_after_ms
        self.cause = cause
        self.attempts = list(attempts or [])

    def __repr__(self) -> str:
        return (
            f"AIProviderError(kind={self.kind.value!r}, provider={self.provider!r}, "
            f"model={self.model!r}, status_code={self.status_code!r}, "
            f"retryable={self.retryable!r}, message={self.message!r})"
        )


def classify_http_status(status_code: int) -> tuple[ProviderErrorKind, bool]:
    """Map a provider HTTP status to an error kind and retryability."""
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMITED, True
    if status_code in (408, 409) or status_code >= 500:
        return ProviderErrorKind.TRANSPORT, True
    return ProviderErrorKind.AUTH_OR_VALIDATION, False


@dataclass(frozen=True)
class ModelRateLimits:
    """Provider-side rate hints advertised for a model. Informational only."""

    requests_per_minute: int = 0
    tokens_per_minute: int = 0


@dataclass(frozen=True)
class AIModelConfig:
    id: str
    name: str
    provider: str
    model_id: str
    max_tokens: int
    cost_per_input_token: float
    cost_per_output_token: float
    rate_limits: ModelRateLimits = field(default_factory=ModelRateLimits)
    api_key: str | None = None
    api_endpoint: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    # Completion length cap sent to the provider; ``max_tokens`` is the
    # context window and is used when this is unset.
    max_output_tokens: int | None = None

    @property
    def output_token_limit(self) -> int:
        if self.max_output_tokens:
            return min(self.max_output_tokens, self.max_tokens)
        return self.max_tokens


@dataclass
class AIRequestOptions:
    messages: list[AIMessage]
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class AIUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class AIResponse:
    content: str
    model: str
    usage: AIUsage
    cost: float
    response_time: int
    finish_reason: str = "stop"


@dataclass
class ProviderResult:
    """Raw outcome of one provider call, before cost and usage accounting.

    Token counts are ``None`` when the provider did not report them.
    """

    content: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    finish_reason: str = "stop"


def estimate_tokens(text: str) -> int:
    """Approximate token count at ~4 characters per token.

    This is a heuristic for providers that report no usage, not a real
    tokeniser; expect drift of tens of percent on non-English text.
    """
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def calculate_cost(config: AIModelConfig, input_tokens: int, output_tokens: int) -> float:
    """Cost in USD from the model's per-token prices."""
    input_cost = Decimal(max(0, input_tokens)) * Decimal(str(config.cost_per_input_token))
    output_cost = Decimal(max(0, output_tokens)) * Decimal(str(config.cost_per_output_token))
    return float(input_cost + output_cost)


def normalise_finish_reason(value: str | None) -> str:
    reason = str(value or "").strip().lower()
    if reason in FINISH_REASONS:
        return reason
    if reason in {"max_tokens", "max_output_tokens", "length_limit"}:
        return "length"
    return "stop"


class LLMProvider(ABC):
    """Base class for completion providers.

    Subclasses only implement ``_complete``; this class owns rate-limit
    admission, concurrency tracking, error classification, token estimation,
    cost calculation and usage reporting.
    """

    provider_id: str = "unknown"

    def __init__(
        self,
        config: AIModelConfig,
        *,
        rate_limiter: RateLimiter | None = None,
        usage_recorder: UsageRecorder | None = None,
        profile_lookup: Callable[[str], UserProfile] | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.config = config
        self.model_id = config.model_id
        self.rate_limiter = rate_limiter
        self.usage_recorder = usage_recorder
        self.profile_lookup = profile_lookup
        self.timeout = timeout

    @abstractmethod
    async def _complete(self, options: AIRequestOptions) -> ProviderResult:
        """Issue the provider call and return the raw result.

        Implementations raise ``AIProviderError`` for HTTP failures and may let
        ``httpx`` errors propagate; both are classified by the caller.
        """
        ...

    def error(
        self,
        message: str,
        *,
        kind: ProviderErrorKind,
        status_code: int | None = None,
        retryable: bool = False,
        retry_after_ms: int | None = None,
    ) -> AIProviderError:
        return AIProviderError(
            message,
            kind=kind,
            provider=self.config.provider,
            model=self.config.id,
            status_code=status_code,
            retryable=retryable,
            retry_after_ms=retry_after_ms,
        )

    def http_error(self, status_code: int, body: str = "") -> AIProviderError:
        kind, retryable = classify_http_status(status_code)
        detail = body.strip()[:500]
        message = f"{self.provider_label} API error {status_code}"
        if detail:
            message = f"{message}: {detail}"
        return self.error(message, kind=kind, status_code=status_code, retryable=retryable)

    @property
    def provider_label(self) -> str:
        return self.provider_id.capitalize()

    def require_api_key(self) -> str:
        if not self.config.api_key:
            raise self.error(
                f"{self.provider_label} API key is not configured for model '{self.config.id}'",
                kind=ProviderErrorKind.AUTH_OR_VALIDATION,
                status_code=401,
            )
        return self.config.api_key

    def resolve_max_tokens(self, options: AIRequestOptions) -> int:
        limit = self.config.output_token_limit
        if options.max_tokens is None:
            return limit
        return max(1, min(options.max_tokens, limit))

    def resolve_temperature(self, options: AIRequestOptions) -> float:
        if options.temperature is not None:
            return options.temperature
        if self.config.temperature is not None:
            return self.config.temperature
        return 0.7

    def resolve_top_p(self, options: AIRequestOptions) -> float:
        if options.top_p is not None:
            return options.top_p
        if self.config.top_p is not None:
            return self.config.top_p
        return 1.0

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return calculate_cost(self.config, input_tokens, output_tokens)

    def _check_rate_limit(self, user_id: str) -> None:
        if self.rate_limiter is None:
            return
        if self.profile_lookup is not None:
            profile = self.profile_lookup(user_id)
            role, level = profile.role, profile.level
        else:
            role, level = "user", None
        result = self.rate_limiter.check_rate_limit(user_id, role, level)
        if not result.allowed:
            raise self.error(
                f"Rate limit exceeded: {result.reason}",
                kind=ProviderErrorKind.RATE_LIMITED,
                status_code=429,
                retryable=True,
                retry_after_ms=result.retry_after,
            )

    async def generate_completion(self, options: AIRequestOptions) -> AIResponse:
        """Run one completion against this provider and account for it."""
        started = time.monotonic()
        user_id = options.user_id
        if user_id:
            self._check_rate_limit(user_id)

        tracked = bool(user_id) and self.rate_limiter is not None
        if tracked:
            self.rate_limiter.track_request_start(user_id)
        try:
            result = await self._complete(options)
        except AIProviderError:
            raise
        except httpx.TimeoutException as exc:
            raise self.error(
                f"{self.provider_label} API timeout after {self.timeout:.0f}s: {exc}",
                kind=ProviderErrorKind.TRANSPORT,
                status_code=504,
                retryable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise self.error(
                f"{self.provider_label} API network error: {exc}",
                kind=ProviderErrorKind.TRANSPORT,
                status_code=503,
                retryable=True,
            ) from exc
        except Exception as exc:
            raise self.error(
                f"{self.provider_label} API unexpected error: {exc}",
                kind=ProviderErrorKind.TRANSPORT,
                status_code=502,
                retryable=True,
            ) from exc
        finally:
            if tracked:
                self.rate_limiter.track_request_end(user_id)

        if result.input_tokens is None:
            input_tokens = estimate_tokens(" ".join(m.get("content", "") for m in options.messages))
        else:
            input_tokens = result.input_tokens
        if result.output_tokens is None:
            output_tokens = estimate_tokens(result.content)
        else:
            output_tokens = result.output_tokens

        response = AIResponse(
            content=result.content,
            model=self.config.id,
            usage=AIUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            cost=self.calculate_cost(input_tokens, output_tokens),
            response_time=int((time.monotonic() - started) * 1000),
            finish_reason=normalise_finish_reason(result.finish_reason),
        )

        if user_id and self.usage_recorder is not None:
            await self._record_usage(user_id, response)
        return response

    async def _record_usage(self, user_id: str, response: AIResponse) -> None:
        record = UsageRecord(
            user_id=user_id,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            cost=response.cost,
        )
        try:
            await self.usage_recorder.record_usage_batch([record])
        except Exception:
            # Usage accounting never fails a served completion.
            logger.exception("Failed to record usage for user %s on model %s", user_id, response.model)
