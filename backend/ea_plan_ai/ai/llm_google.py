"""Google Gemini provider via the Google AI Studio generateContent API."""

import logging

import httpx

from ea_plan_ai.ai.llm_base import (
    AIMessage,
    AIRequestOptions,
    LLMProvider,
    ProviderErrorKind,
    ProviderResult,
)

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "error",
    "RECITATION": "error",
    "OTHER": "error",
}


class GoogleGeminiProvider(LLMProvider):
    provider_id = "google"

    @property
    def provider_label(self) -> str:
        return "Gemini"

    def _build_url(self) -> str:
        if self.config.api_endpoint:
            return self.config.api_endpoint
        return f"{GEMINI_API_BASE}/{self.config.model_id}:generateContent"

    async def _complete(self, options: AIRequestOptions) -> ProviderResult:
        """Call generateContent and capture ``usageMetadata`` token counts."""
        api_key = self.require_api_key()
        headers = {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }
        system_prompt, contents = self._to_gemini_contents(options.messages)
        payload: dict = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": self.resolve_max_tokens(options),
                "temperature": self.resolve_temperature(options),
                "topP": self.resolve_top_p(options),
            },
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self._build_url(), json=payload, headers=headers)

        if response.status_code != 200:
            raise self.http_error(response.status_code, response.text)

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise self.error(
                "Gemini API returned no candidates",
                kind=ProviderErrorKind.TRANSPORT,
                status_code=502,
                retryable=True,
            )
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        usage_meta = data.get("usageMetadata") or {}
        return ProviderResult(
            content="".join(part.get("text", "") for part in parts),
            input_tokens=usage_meta.get("promptTokenCount"),
            output_tokens=usage_meta.get("candidatesTokenCount"),
            finish_reason=_FINISH_REASONS.get(candidate.get("finishReason") or "STOP", "stop"),
        )

    @staticmethod
    def _to_gemini_contents(messages: list[AIMessage]) -> tuple[str, list[dict]]:
        system_parts: list[str] = []
        contents: list[dict] = []
        for msg in messages:
            role = msg.get("role")
            if role == "system":
                system_parts.append(msg.get("content", ""))
                continue
            contents.append(
                {
                    "role": "model" if role == "assistant" else "user",
                    "parts": [{"text": msg.get("content", "")}],
                }
            )
        return "\n\n".join(part for part in system_parts if part), contents
