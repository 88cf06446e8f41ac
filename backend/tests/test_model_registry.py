"""Default model catalogue, provider aliases and factory registry tests."""

from types import SimpleNamespace

import pytest

from ea_plan_ai.ai.llm_anthropic import AnthropicProvider
from ea_plan_ai.ai.llm_factory import ProviderFactoryRegistry
from ea_plan_ai.ai.model_registry import (
    DEFAULT_MODEL_CATALOGUE,
    build_default_model_configs,
    is_configured_api_key,
    model_config_from_entry,
    normalise_llm_provider,
)
from tests.conftest import MockProvider, ProviderScript, make_config


def _settings(**overrides) -> SimpleNamespace:
    values = {
        "openai_api_key": "",
        "anthropic_api_key": "",
        "google_api_key": "",
        "custom_ai_endpoint": "",
        "custom_ai_api_key": "",
        "custom_ai_model": "",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_normalise_llm_provider_aliases() -> None:
    assert normalise_llm_provider("GPT") == "openai"
    assert normalise_llm_provider(" claude ") == "anthropic"
    assert normalise_llm_provider("gemini") == "google"
    assert normalise_llm_provider("http") == "custom"
    assert normalise_llm_provider("bedrock") == "bedrock"


def test_placeholder_keys_are_not_configured() -> None:
    assert is_configured_api_key("sk-live") is True
    assert is_configured_api_key("sk-your-openai-key-here") is False
    assert is_configured_api_key("   ") is False
    assert is_configured_api_key(None) is False


def test_only_models_with_keys_are_built() -> None:
    configs = build_default_model_configs(
        _settings(openai_api_key="sk-live", anthropic_api_key="your-anthropic-key-here")
    )

    assert [config.id for config in configs] == ["gpt-4o", "gpt-4-turbo"]
    assert all(config.api_key == "sk-live" for config in configs)
    assert configs[1].model_id == "gpt-4-turbo-preview"


def test_every_provider_key_builds_full_catalogue() -> None:
    configs = build_default_model_configs(
        _settings(openai_api_key="a", anthropic_api_key="b", google_api_key="c")
    )

    assert [config.id for config in configs] == [entry["id"] for entry in DEFAULT_MODEL_CATALOGUE]


def test_custom_endpoint_adds_custom_model() -> None:
    configs = build_default_model_configs(
        _settings(custom_ai_endpoint="http://llm.local/complete", custom_ai_model="llama3")
    )

    assert len(configs) == 1
    custom = configs[0]
    assert custom.id == "custom-llama3"
    assert custom.provider == "custom"
    assert custom.model_id == "llama3"
    assert custom.api_endpoint == "http://llm.local/complete"
    assert custom.api_key is None


def test_model_config_from_entry_reads_rate_limits() -> None:
    config = model_config_from_entry(DEFAULT_MODEL_CATALOGUE[3], api_key="k")

    assert config.id == "claude-3-sonnet"
    assert config.provider == "anthropic"
    assert config.cost_per_input_token == 0.000003
    assert config.rate_limits.requests_per_minute == 300
    assert config.rate_limits.tokens_per_minute == 20000


def test_factory_registry_builds_by_tag() -> None:
    registry = ProviderFactoryRegistry()

    provider = registry.build(make_config("claude", provider="claude"))

    assert isinstance(provider, AnthropicProvider)
    assert set(registry.tags()) == {"openai", "anthropic", "google", "custom"}


def test_factory_registry_accepts_new_tags() -> None:
    script = ProviderScript()
    registry = ProviderFactoryRegistry()
    registry.register("mock", lambda config, **kwargs: MockProvider(config, script=script, **kwargs))

    provider = registry.build(make_config("m"))

    assert isinstance(provider, MockProvider)
    assert "mock" in registry.tags()


def test_factory_registry_rejects_unknown_tag() -> None:
    with pytest.raises(ValueError, match="bedrock"):
        ProviderFactoryRegistry().build(make_config("x", provider="bedrock"))
