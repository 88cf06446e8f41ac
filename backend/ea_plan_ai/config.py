"""Application settings loaded from environment variables via .env file."""

from pathlib import Path
import json
import re

from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings

REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = Path(__file__).resolve().parents[1]


def parse_id_list(raw: str) -> list[str]:
    """Parse a flexible id list string (JSON array or comma/space separated).

    Order is preserved and duplicates are dropped.
    """
    value = raw.strip()
    if not value:
        return []

    if value.startswith("["):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                candidates = [str(item) for item in parsed]
            else:
                candidates = [value]
        except json.JSONDecodeError:
            candidates = re.split(r"[,\s;]+", value)
    else:
        candidates = re.split(r"[,\s;]+", value)

    ids: list[str] = []
    for candidate in candidates:
        item = candidate.strip().strip("'\"[]")
        if item and item not in ids:
            ids.append(item)
    return ids


class Settings(BaseSettings):
    # CORS
    cors_origins: list[str] = ["http://localhost:5173"]

    # LLM providers
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""
    # Optional OpenAI-compatible or bespoke HTTP endpoint registered as the `custom` provider.
    custom_ai_endpoint: str = ""
    custom_ai_api_key: str = ""
    custom_ai_model: str = ""
    provider_timeout_seconds: float = 60.0

    # Fallback chain
    ai_fallback_enabled: bool = True
    # Empty means "every registered default model, in catalogue order".
    ai_fallback_models: str = ""
    ai_fallback_max_retries: int = 3
    ai_fallback_retry_delay_ms: int = 1000
    ai_abort_fallback_on_non_retryable: bool = True

    # Rate limiting
    rate_limit_cleanup_interval_seconds: float = 300.0
    admin_user_ids: str = ""
    subadmin_user_ids: str = ""

    # Health checks
    ai_health_cache_seconds: int = 30

    @property
    def fallback_model_ids(self) -> list[str]:
        return parse_id_list(self.ai_fallback_models)

    @property
    def admin_user_id_list(self) -> list[str]:
        return parse_id_list(self.admin_user_ids)

    @property
    def subadmin_user_id_list(self) -> list[str]:
        return parse_id_list(self.subadmin_user_ids)

    @field_validator(
        "openai_api_key",
        "anthropic_api_key",
        "google_api_key",
        "custom_ai_endpoint",
        "custom_ai_api_key",
        "custom_ai_model",
        mode="before",
    )
    @classmethod
    def _strip_strings(cls, value: str) -> str:
        return str(value or "").strip()

    @field_validator("ai_fallback_max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("ai_fallback_max_retries must be at least 1")
        return value

    @field_validator("ai_fallback_retry_delay_ms", "ai_health_cache_seconds")
    @classmethod
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must not be negative")
        return value

    model_config = ConfigDict(
        env_file=(str(REPO_ROOT / ".env"), str(BACKEND_DIR / ".env")),
        extra="ignore",
    )


settings = Settings()
