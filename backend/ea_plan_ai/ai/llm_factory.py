"""Provider tag to adapter constructor registry."""

from __future__ import annotations

import logging
from typing import Callable

from ea_plan_ai.ai.llm_anthropic import AnthropicProvider
from ea_plan_ai.ai.llm_base import AIModelConfig, LLMProvider
from ea_plan_ai.ai.llm_custom import CustomHTTPProvider
from ea_plan_ai.ai.llm_google import GoogleGeminiProvider
from ea_plan_ai.ai.llm_openai import OpenAIProvider
from ea_plan_ai.ai.model_registry import normalise_llm_provider

logger = logging.getLogger(__name__)

# Called as factory(config, **adapter_kwargs); LLMProvider subclasses qualify.
ProviderFactory = Callable[..., LLMProvider]

DEFAULT_PROVIDER_FACTORIES: dict[str, ProviderFactory] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GoogleGeminiProvider,
    "custom": CustomHTTPProvider,
}


class ProviderFactoryRegistry:
    """Open set of provider constructors keyed by provider tag."""

    def __init__(self, factories: dict[str, ProviderFactory] | None = None) -> None:
        source = DEFAULT_PROVIDER_FACTORIES if factories is None else factories
        self._factories: dict[str, ProviderFactory] = {
            normalise_llm_provider(tag): factory for tag, factory in source.items()
        }

    def register(self, tag: str, factory: ProviderFactory) -> None:
        canonical = normalise_llm_provider(tag)
        if canonical in self._factories:
            logger.info("Replacing provider factory for '%s'", canonical)
        self._factories[canonical] = factory

    def tags(self) -> list[str]:
        return list(self._factories)

    def build(self, config: AIModelConfig, **adapter_kwargs) -> LLMProvider:
        """Instantiate the adapter for ``config.provider``; ValueError if unknown."""
        tag = normalise_llm_provider(config.provider)
        factory = self._factories.get(tag)
        if factory is None:
            raise ValueError(
                f"Unsupported LLM provider '{config.provider}'. "
                f"Supported providers: {sorted(self._factories)}"
            )
        return factory(config, **adapter_kwargs)
