"""OpenAI Chat Completions provider."""

import logging

import httpx

from ea_plan_ai.ai.llm_base import (
    AIRequestOptions,
    LLMProvider,
    ProviderErrorKind,
    ProviderResult,
)

logger = logging.getLogger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIProvider(LLMProvider):
    provider_id = "openai"

    @property
    def provider_label(self) -> str:
        return "OpenAI"

    async def _complete(self, options: AIRequestOptions) -> ProviderResult:
        """Call the Chat Completions API and read the reported usage."""
        api_key = self.require_api_key()
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.config.model_id,
            "messages": [
                {"role": msg["role"], "content": msg["content"]} for msg in options.messages
            ],
            "max_tokens": self.resolve_max_tokens(options),
            "temperature": self.resolve_temperature(options),
            "top_p": self.resolve_top_p(options),
        }
        url = self.config.api_endpoint or OPENAI_API_URL

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=payload, headers=headers)

        if response.status_code != 200:
            raise self.http_error(response.status_code, response.text)

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise self.error(
                "OpenAI API returned no choices",
                kind=ProviderErrorKind.TRANSPORT,
                status_code=502,
                retryable=True,
            )
        choice = choices[0]
        usage = data.get("usage") or {}
        return ProviderResult(
            content=(choice.get("message") or {}).get("content") or "",
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
            finish_reason=choice.get("finish_reason") or "stop",
        )
