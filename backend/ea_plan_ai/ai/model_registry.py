"""Default model catalogue and provider alias normalisation."""

from __future__ import annotations

from ea_plan_ai.ai.llm_base import AIModelConfig, ModelRateLimits

# Per-token list prices (USD) used for cost accounting.
DEFAULT_MODEL_CATALOGUE: tuple[dict, ...] = (
    {
        "id": "gpt-4o",
        "name": "GPT-4o",
        "provider": "openai",
        "model_id": "gpt-4o",
        "max_tokens": 128000,
        "max_output_tokens": 16384,
        "cost_per_input_token": 0.000005,
        "cost_per_output_token": 0.000015,
        "rate_limits": {"requests_per_minute": 500, "tokens_per_minute": 30000},
    },
    {
        "id": "gpt-4-turbo",
        "name": "GPT-4 Turbo",
        "provider": "openai",
        "model_id": "gpt-4-turbo-preview",
        "max_tokens": 4096,
        "max_output_tokens": 4096,
        "cost_per_input_token": 0.00001,
        "cost_per_output_token": 0.00003,
        "rate_limits": {"requests_per_minute": 500, "tokens_per_minute": 30000},
    },
    {
        "id": "claude-3-opus",
        "name": "Claude 3 Opus",
        "provider": "anthropic",
        "model_id": "claude-3-opus-20240229",
        "max_tokens": 4096,
        "max_output_tokens": 4096,
        "cost_per_input_token": 0.000015,
        "cost_per_output_token": 0.000075,
        "rate_limits": {"requests_per_minute": 100, "tokens_per_minute": 10000},
    },
    {
        "id": "claude-3-sonnet",
        "name": "Claude 3 Sonnet",
        "provider": "anthropic",
        "model_id": "claude-3-sonnet-20240229",
        "max_tokens": 4096,
        "max_output_tokens": 4096,
        "cost_per_input_token": 0.000003,
        "cost_per_output_token": 0.000015,
        "rate_limits": {"requests_per_minute": 300, "tokens_per_minute": 20000},
    },
    {
        "id": "gemini-pro",
        "name": "Gemini Pro",
        "provider": "google",
        "model_id": "gemini-pro",
        "max_tokens": 2048,
        "max_output_tokens": 2048,
        "cost_per_input_token": 0.0000005,
        "cost_per_output_token": 0.0000015,
        "rate_limits": {"requests_per_minute": 60, "tokens_per_minute": 5000},
    },
)

# Values shipped in example .env files; treated as "not configured".
PLACEHOLDER_API_KEYS: set[str] = {
    "sk-your-openai-key-here",
    "your-anthropic-key-here",
    "your-google-ai-key-here",
}


def normalise_llm_provider(value: str) -> str:
    provider = str(value or "").strip().lower()
    aliases = {
        "gpt": "openai",
        "openai": "openai",
        "claude": "anthropic",
        "anthropic": "anthropic",
        "gemini": "google",
        "google-ai": "google",
        "google-aistudio": "google",
        "google-ai-studio": "google",
        "google": "google",
        "http": "custom",
        "custom": "custom",
    }
    return aliases.get(provider, provider)


def is_configured_api_key(value: str | None) -> bool:
    key = str(value or "").strip()
    return bool(key) and key not in PLACEHOLDER_API_KEYS


def model_config_from_entry(entry: dict, *, api_key: str | None = None, api_endpoint: str | None = None) -> AIModelConfig:
    """Build an ``AIModelConfig`` from one static catalogue entry."""
    rate_limits = entry.get("rate_limits") or {}
    return AIModelConfig(
        id=entry["id"],
        name=entry.get("name", entry["id"]),
        provider=normalise_llm_provider(entry["provider"]),
        model_id=entry.get("model_id", entry["id"]),
        max_tokens=int(entry["max_tokens"]),
        max_output_tokens=entry.get("max_output_tokens"),
        cost_per_input_token=float(entry["cost_per_input_token"]),
        cost_per_output_token=float(entry["cost_per_output_token"]),
        rate_limits=ModelRateLimits(
            requests_per_minute=int(rate_limits.get("requests_per_minute", 0)),
            tokens_per_minute=int(rate_limits.get("tokens_per_minute", 0)),
        ),
        api_key=api_key,
        api_endpoint=api_endpoint or entry.get("api_endpoint"),
        temperature=entry.get("temperature"),
        top_p=entry.get("top_p"),
    )


def build_default_model_configs(settings) -> list[AIModelConfig]:
    """Return catalogue models whose provider has a real API key configured.

    A ``custom`` model is appended when ``custom_ai_endpoint`` is set.
    """
    keys = {
        "openai": getattr(settings, "openai_api_key", ""),
        "anthropic": getattr(settings, "anthropic_api_key", ""),
        "google": getattr(settings, "google_api_key", ""),
    }
    configs: list[AIModelConfig] = []
    for entry in DEFAULT_MODEL_CATALOGUE:
        api_key = keys.get(normalise_llm_provider(entry["provider"]))
        if not is_configured_api_key(api_key):
            continue
        configs.append(model_config_from_entry(entry, api_key=str(api_key).strip()))

    endpoint = str(getattr(settings, "custom_ai_endpoint", "") or "").strip()
    if endpoint:
        model_name = str(getattr(settings, "custom_ai_model", "") or "").strip() or "custom"
        configs.append(
            model_config_from_entry(
                {
                    "id": f"custom-{model_name}" if model_name != "custom" else "custom",
                    "name": f"Custom ({model_name})",
                    "provider": "custom",
                    "model_id": model_name,
                    "max_tokens": 4096,
                    "cost_per_input_token": 0.0,
                    "cost_per_output_token": 0.0,
                },
                api_key=str(getattr(settings, "custom_ai_api_key", "") or "") or None,
                api_endpoint=endpoint,
            )
        )
    return configs
