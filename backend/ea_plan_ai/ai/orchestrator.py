"""Model registry and fallback orchestration across completion providers."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from ea_plan_ai.ai.llm_base import (
    AIModelConfig,
    AIProviderError,
    AIRequestOptions,
    AIResponse,
    LLMProvider,
    ProviderErrorKind,
)
from ea_plan_ai.ai.llm_factory import ProviderFactoryRegistry
from ea_plan_ai.ai.model_registry import normalise_llm_provider
from ea_plan_ai.ai.pricing import CostComparison, compare_model_costs
from ea_plan_ai.services.rate_limiter import RateLimiter
from ea_plan_ai.services.usage_recorder import UsageRecorder
from ea_plan_ai.services.user_profiles import UserProfile

logger = logging.getLogger(__name__)

HEALTH_CHECK_MESSAGES = [{"role": "user", "content": "test"}]
HEALTH_CHECK_MAX_TOKENS = 10


@dataclass(frozen=True)
class FallbackConfig:
    enabled: bool = True
    models: list[str] = field(default_factory=list)
    max_retries: int = 3
    retry_delay: int = 1000  # ms, multiplied by the attempt number
    # When False, a non-retryable error skips to the next candidate instead
    # of ending the request.
    abort_fallback_on_non_retryable: bool = True


class ProviderOrchestrator:
    """Hold registered models and run completions with ordered fallback.

    One instance is built at startup and shared through ``app.state``; tests
    build their own.
    """

    def __init__(
        self,
        *,
        rate_limiter: RateLimiter | None = None,
        usage_recorder: UsageRecorder | None = None,
        profile_lookup: Callable[[str], UserProfile] | None = None,
        fallback_config: FallbackConfig | None = None,
        factories: ProviderFactoryRegistry | None = None,
        provider_timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.usage_recorder = usage_recorder
        self.profile_lookup = profile_lookup
        self.factories = factories or ProviderFactoryRegistry()
        self.provider_timeout = provider_timeout
        self._fallback_config = fallback_config or FallbackConfig()
        self._sleep = sleep
        self._models: dict[str, AIModelConfig] = {}
        self._providers: dict[str, LLMProvider] = {}

    # Registry

    def register_model(self, config: AIModelConfig) -> None:
        canonical = normalise_llm_provider(config.provider)
        if canonical != config.provider:
            config = dataclasses.replace(config, provider=canonical)
        provider = self.factories.build(
            config,
            rate_limiter=self.rate_limiter,
            usage_recorder=self.usage_recorder,
            profile_lookup=self.profile_lookup,
            timeout=self.provider_timeout,
        )
        if config.id in self._models:
            logger.info("Re-registering model %s", config.id)
        self._models[config.id] = config
        self._providers[config.id] = provider

    def unregister_model(self, model_id: str) -> None:
        self._models.pop(model_id, None)
        self._providers.pop(model_id, None)

    def get_registered_models(self) -> list[AIModelConfig]:
        return list(self._models.values())

    def get_model(self, model_id: str) -> AIModelConfig | None:
        return self._models.get(model_id)

    def get_provider(self, model_id: str) -> LLMProvider | None:
        return self._providers.get(model_id)

    def clear(self) -> None:
        self._models.clear()
        self._providers.clear()

    # Fallback

    @property
    def fallback_config(self) -> FallbackConfig:
        return self._fallback_config

    def set_fallback_config(self, **changes) -> FallbackConfig:
        """Merge ``changes`` into the current fallback configuration."""
        if "models" in changes:
            changes["models"] = list(changes["models"])
        self._fallback_config = dataclasses.replace(self._fallback_config, **changes)
        return self._fallback_config

    def candidate_models(self, model_id: str) -> list[str]:
        """Requested model first, then the fallback chain, capped at ``max_retries``."""
        config = self._fallback_config
        candidates = [model_id]
        if config.enabled:
            for fallback_id in config.models:
                if fallback_id not in candidates:
                    candidates.append(fallback_id)
        return candidates[: max(1, config.max_retries)]

    async def generate_completion(self, model_id: str, options: AIRequestOptions) -> AIResponse:
        """Produce a completion, falling back along the configured chain.

        Candidates run strictly one after another. Raises the first
        non-retryable error as is (unless the abort policy is off), otherwise
        an ``ALL_PROVIDERS_FAILED`` error wrapping the last failure.
        """
        config = self._fallback_config
        candidates = self.candidate_models(model_id)
        errors: list[AIProviderError] = []

        for index, candidate_id in enumerate(candidates):
            provider = self._providers.get(candidate_id)
            if provider is None:
                errors.append(
                    AIProviderError(
                        f"Model not found: {candidate_id}",
                        kind=ProviderErrorKind.REGISTRY,
                        model=candidate_id,
                        status_code=404,
                        retryable=True,
                    )
                )
                logger.warning("Model %s is not registered, skipping", candidate_id)
                continue

            try:
                logger.info("Attempting completion with model %s", candidate_id)
                response = await provider.generate_completion(options)
            except Exception as exc:
                error = exc if isinstance(exc, AIProviderError) else AIProviderError(
                    f"Unexpected error from model {candidate_id}: {exc}",
                    kind=ProviderErrorKind.TRANSPORT,
                    provider=provider.config.provider,
                    model=candidate_id,
                    retryable=True,
                )
                errors.append(error)
                logger.warning("Model %s failed: %r", candidate_id, error)

                if not error.retryable and config.abort_fallback_on_non_retryable:
                    raise error

                if index < len(candidates) - 1:
                    await self._sleep(config.retry_delay * (index + 1) / 1000)
                continue

            if index > 0:
                logger.info(
                    "Fallback succeeded with model %s after %d failed attempt(s)",
                    candidate_id,
                    len(errors),
                )
            return response

        if not errors:
            raise AIProviderError(
                "All AI providers failed",
                kind=ProviderErrorKind.ALL_PROVIDERS_FAILED,
                model=model_id,
            )
        last = errors[-1]
        raise AIProviderError(
            f"All AI providers failed; last error: {last.message}",
            kind=ProviderErrorKind.ALL_PROVIDERS_FAILED,
            provider=last.provider,
            model=last.model,
            status_code=last.status_code,
            retryable=last.retryable,
            retry_after_ms=last.retry_after_ms,
            cause=last,
            attempts=errors,
        ) from last

    # Diagnostics

    async def health_check(self, model_id: str | None = None) -> dict[str, bool]:
        """Send a tiny completion to one or every model; failures are isolated."""
        model_ids = [model_id] if model_id else list(self._models)

        async def _check(candidate_id: str) -> bool:
            provider = self._providers.get(candidate_id)
            if provider is None:
                return False
            await provider.generate_completion(
                AIRequestOptions(
                    messages=list(HEALTH_CHECK_MESSAGES),
                    max_tokens=HEALTH_CHECK_MAX_TOKENS,
                )
            )
            return True

        outcomes = await asyncio.gather(
            *(_check(candidate_id) for candidate_id in model_ids),
            return_exceptions=True,
        )
        results: dict[str, bool] = {}
        for candidate_id, outcome in zip(model_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Health check failed for model %s: %s", candidate_id, outcome)
                results[candidate_id] = False
            else:
                results[candidate_id] = bool(outcome)
        return results

    def get_provider_stats(self) -> dict[str, dict[str, int]]:
        stats = {tag: {"models": 0, "active": 0} for tag in self.factories.tags()}
        for config in self._models.values():
            entry = stats.setdefault(config.provider, {"models": 0, "active": 0})
            entry["models"] += 1
            if config.id in self._providers:
                entry["active"] += 1
        return stats

    def compare_costs(self, input_tokens: int, output_tokens: int) -> list[CostComparison]:
        return compare_model_costs(self._models.values(), input_tokens, output_tokens)


def initialise_default_models(
    orchestrator: ProviderOrchestrator,
    configs: list[AIModelConfig],
    *,
    fallback_models: list[str] | None = None,
    enabled: bool = True,
    max_retries: int = 3,
    retry_delay: int = 1000,
    abort_fallback_on_non_retryable: bool = True,
) -> list[str]:
    """Register ``configs`` and point the fallback chain at them.

    ``fallback_models`` overrides the chain; unknown ids in it are kept so the
    orchestrator can report them as registry misses. Returns registered ids.
    """
    registered: list[str] = []
    for config in configs:
        orchestrator.register_model(config)
        registered.append(config.id)

    orchestrator.set_fallback_config(
        enabled=enabled,
        models=list(fallback_models) if fallback_models else list(registered),
        max_retries=max_retries,
        retry_delay=retry_delay,
        abort_fallback_on_non_retryable=abort_fallback_on_non_retryable,
    )
    if registered:
        logger.info("Registered %d AI model(s): %s", len(registered), ", ".join(registered))
    else:
        logger.warning("No AI provider API keys configured; no models registered")
    return registered
