"""Anthropic Claude provider using the Messages API."""

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

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "stop",
    "max_tokens": "length",
}


class AnthropicProvider(LLMProvider):
    provider_id = "anthropic"

    async def _complete(self, options: AIRequestOptions) -> ProviderResult:
        """Call the Messages API.

        System messages are lifted into the top-level ``system`` field since
        the API only accepts user/assistant turns in ``messages``.
        """
        api_key = self.require_api_key()
        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        system_prompt, turns = self._split_system(options.messages)
        payload = {
            "model": self.config.model_id,
            "max_tokens": self.resolve_max_tokens(options),
            "temperature": self.resolve_temperature(options),
            "top_p": self.resolve_top_p(options),
            "messages": [
                {"role": msg["role"], "content": [{"type": "text", "text": msg["content"]}]}
                for msg in turns
            ],
        }
        if system_prompt:
            payload["system"] = system_prompt
        url = self.config.api_endpoint or ANTHROPIC_API_URL

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=payload, headers=headers)

        if response.status_code != 200:
            raise self.http_error(response.status_code, response.text)

        data = response.json()
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise self.error(
                "Anthropic API response has no content blocks",
                kind=ProviderErrorKind.TRANSPORT,
                status_code=502,
                retryable=True,
            )
        text = "".join(
            block.get("text", "") for block in blocks if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        return ProviderResult(
            content=text,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
            finish_reason=_STOP_REASONS.get(data.get("stop_reason") or "", "stop"),
        )

    @staticmethod
    def _split_system(messages: list[AIMessage]) -> tuple[str, list[AIMessage]]:
        system_parts: list[str] = []
        turns: list[AIMessage] = []
        for msg in messages:
            if msg.get("role") == "system":
                system_parts.append(msg.get("content", ""))
            else:
                turns.append(msg)
        return "\n\n".join(part for part in system_parts if part), turns
