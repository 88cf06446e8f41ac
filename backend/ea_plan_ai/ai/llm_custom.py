"""Custom HTTP completion endpoint provider.

The endpoint receives an OpenAI-shaped request body and answers with
``{"content": ...}`` (or ``{"message": ...}``). It reports no token usage,
so both sides are estimated.
"""

import httpx

from ea_plan_ai.ai.llm_base import (
    AIRequestOptions,
    LLMProvider,
    ProviderErrorKind,
    ProviderResult,
)


class CustomHTTPProvider(LLMProvider):
    provider_id = "custom"

    async def _complete(self, options: AIRequestOptions) -> ProviderResult:
        if not self.config.api_endpoint:
            raise self.error(
                f"Custom model '{self.config.id}' has no api_endpoint configured",
                kind=ProviderErrorKind.AUTH_OR_VALIDATION,
                status_code=400,
            )
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        payload = {
            "model": self.config.model_id,
            "messages": options.messages,
            "max_tokens": self.resolve_max_tokens(options),
            "temperature": self.resolve_temperature(options),
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.config.api_endpoint, json=payload, headers=headers)

        if response.status_code >= 300:
            raise self.http_error(response.status_code, response.text)

        data = response.json()
        content = None
        if isinstance(data, dict):
            content = data.get("content") or data.get("message")
        if not isinstance(content, str):
            raise self.error(
                "Custom API response has no text content",
                kind=ProviderErrorKind.TRANSPORT,
                status_code=502,
                retryable=True,
            )
        return ProviderResult(content=content)
