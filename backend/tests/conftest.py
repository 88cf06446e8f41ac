"""Shared test fixtures and mock implementations."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from ea_plan_ai.ai.llm_base import (
    AIModelConfig,
    AIProviderError,
    AIRequestOptions,
    LLMProvider,
    ProviderErrorKind,
    ProviderResult,
)
from ea_plan_ai.ai.llm_factory import ProviderFactoryRegistry


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class ProviderScript:
    """Scripted outcomes for ``MockProvider`` keyed by registry model id."""

    failures: dict[str, Exception] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    seen_options: list[AIRequestOptions] = field(default_factory=list)


class MockProvider(LLMProvider):
    """Provider that answers ``"reply from <id>"`` unless scripted to fail."""

    provider_id = "mock"

    def __init__(self, config: AIModelConfig, *, script: ProviderScript, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.script = script

    async def _complete(self, options: AIRequestOptions) -> ProviderResult:
        self.script.calls.append(self.config.id)
        self.script.seen_options.append(options)
        failure = self.script.failures.get(self.config.id)
        if failure is not None:
            raise failure
        return ProviderResult(
            content=f"reply from {self.config.id}",
            input_tokens=10,
            output_tokens=5,
        )


def make_config(model_id: str, provider: str = "mock", **overrides) -> AIModelConfig:
    values = {
        "id": model_id,
        "name": model_id.upper(),
        "provider": provider,
        "model_id": model_id,
        "max_tokens": 4096,
        "cost_per_input_token": 0.000005,
        "cost_per_output_token": 0.000015,
        "api_key": "test-key",
    }
    values.update(overrides)
    return AIModelConfig(**values)


def mock_factories(script: ProviderScript) -> ProviderFactoryRegistry:
    def _factory(config: AIModelConfig, **kwargs) -> MockProvider:
        return MockProvider(config, script=script, **kwargs)

    return ProviderFactoryRegistry({"mock": _factory})


def retryable_error(model: str, message: str = "upstream unavailable") -> AIProviderError:
    return AIProviderError(
        message,
        kind=ProviderErrorKind.TRANSPORT,
        provider="mock",
        model=model,
        status_code=503,
        retryable=True,
    )


def fatal_error(model: str, message: str = "invalid api key") -> AIProviderError:
    return AIProviderError(
        message,
        kind=ProviderErrorKind.AUTH_OR_VALIDATION,
        provider="mock",
        model=model,
        status_code=401,
        retryable=False,
    )


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def json(self):
        return self._payload


def fake_async_client(response: FakeResponse | None = None, error: Exception | None = None):
    """Build an ``httpx.AsyncClient`` stand-in that answers every POST the same way.

    Calls are collected on the returned class as ``calls``.
    """

    class _FakeAsyncClient:
        calls: list[dict] = []
        init_kwargs: dict = {}

        def __init__(self, *args, **kwargs) -> None:
            _FakeAsyncClient.init_kwargs = kwargs

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, json=None, headers=None):
            _FakeAsyncClient.calls.append({"url": url, "json": json, "headers": headers})
            if error is not None:
                raise error
            return response or FakeResponse()

    return _FakeAsyncClient


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def script() -> ProviderScript:
    return ProviderScript()
