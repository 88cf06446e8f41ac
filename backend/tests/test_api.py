"""HTTP surface tests for the AI and health routers."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from ea_plan_ai import main
from ea_plan_ai.ai.orchestrator import FallbackConfig, ProviderOrchestrator
from ea_plan_ai.routers import health as health_router
from ea_plan_ai.routers.ai import router as ai_router
from ea_plan_ai.routers.health import router as health_api_router
from ea_plan_ai.services.rate_limiter import RateLimiter
from ea_plan_ai.services.usage_recorder import InMemoryUsageRecorder
from ea_plan_ai.services.user_profiles import StaticUserProfileLookup
from tests.conftest import fatal_error, make_config, mock_factories, retryable_error


async def _no_sleep(seconds: float) -> None:
    return None


def _build_app(script, clock, models=("A", "B")) -> FastAPI:
    app = FastAPI()
    app.include_router(ai_router)
    app.include_router(health_api_router)

    rate_limiter = RateLimiter(clock=clock)
    profile_lookup = StaticUserProfileLookup(admin_ids=["root"], subadmin_ids=["ops"])
    orchestrator = ProviderOrchestrator(
        rate_limiter=rate_limiter,
        usage_recorder=InMemoryUsageRecorder(),
        profile_lookup=profile_lookup,
        fallback_config=FallbackConfig(models=list(models)),
        factories=mock_factories(script),
        sleep=_no_sleep,
    )
    for model_id in models:
        orchestrator.register_model(make_config(model_id))

    app.state.rate_limiter = rate_limiter
    app.state.profile_lookup = profile_lookup
    app.state.orchestrator = orchestrator
    return app


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _completion_body(model: str = "A", **extra) -> dict:
    body = {"model": model, "messages": [{"role": "user", "content": "hello"}]}
    body.update(extra)
    return body


@pytest.mark.asyncio
async def test_completion_returns_response(script, clock) -> None:
    app = _build_app(script, clock)

    async with _client(app) as client:
        resp = await client.post("/api/ai/completion", json=_completion_body(user_id="u1"))

    assert resp.status_code == 200
    data = resp.json()
    assert data["content"] == "reply from A"
    assert data["model"] == "A"
    assert data["usage"] == {"input_tokens": 10, "output_tokens": 5, "total_tokens": 15}
    assert data["cost"] == pytest.approx(0.000125)
    assert data["finish_reason"] == "stop"


@pytest.mark.asyncio
async def test_completion_falls_back_over_http(script, clock) -> None:
    app = _build_app(script, clock)
    script.failures["A"] = retryable_error("A")

    async with _client(app) as client:
        resp = await client.post("/api/ai/completion", json=_completion_body())

    assert resp.status_code == 200
    assert resp.json()["model"] == "B"


@pytest.mark.asyncio
async def test_completion_failure_maps_status_and_kind(script, clock) -> None:
    app = _build_app(script, clock)
    script.failures["A"] = retryable_error("A")
    script.failures["B"] = retryable_error("B")

    async with _client(app) as client:
        exhausted = await client.post("/api/ai/completion", json=_completion_body())
        script.failures["A"] = fatal_error("A")
        fatal = await client.post("/api/ai/completion", json=_completion_body())

    assert exhausted.status_code == 503
    assert exhausted.json()["detail"]["kind"] == "all_providers_failed"
    assert exhausted.json()["detail"]["cause_kind"] == "transport"
    assert fatal.status_code == 401
    assert fatal.json()["detail"]["kind"] == "auth_or_validation"
    assert fatal.json()["detail"]["retryable"] is False


@pytest.mark.asyncio
async def test_rate_limited_completion_sets_retry_after(script, clock) -> None:
    app = _build_app(script, clock, models=("A",))
    for _ in range(10):
        app.state.rate_limiter.check_rate_limit("u1", "user")

    async with _client(app) as client:
        resp = await client.post("/api/ai/completion", json=_completion_body(user_id="u1"))

    assert resp.status_code == 429
    assert resp.headers["retry-after"] == "2"
    assert resp.json()["detail"]["cause_kind"] == "rate_limited"
    assert script.calls == []


@pytest.mark.asyncio
async def test_completion_validates_body(script, clock) -> None:
    app = _build_app(script, clock)

    async with _client(app) as client:
        resp = await client.post("/api/ai/completion", json={"model": "A", "messages": []})

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_models_and_costs_hide_credentials(script, clock) -> None:
    app = _build_app(script, clock)

    async with _client(app) as client:
        models = await client.get("/api/ai/models")
        costs = await client.get(
            "/api/ai/models/costs", params={"input_tokens": 1000, "output_tokens": 500}
        )
        stats = await client.get("/api/ai/providers/stats")

    assert models.status_code == 200
    assert [item["id"] for item in models.json()] == ["A", "B"]
    assert all("api_key" not in item for item in models.json())
    assert costs.status_code == 200
    assert costs.json()[0]["total_cost"] == pytest.approx(0.0125)
    assert stats.json() == {"mock": {"models": 2, "active": 2}}


@pytest.mark.asyncio
async def test_rate_limit_status_stats_and_reset(script, clock) -> None:
    app = _build_app(script, clock)

    async with _client(app) as client:
        await client.post("/api/ai/completion", json=_completion_body(user_id="ops"))
        status_resp = await client.get("/api/ai/rate-limit/ops")
        stats_resp = await client.get("/api/ai/rate-limit/stats")
        reset_resp = await client.post(
            "/api/ai/rate-limit/ops/reset", headers={"X-User-Id": "root"}
        )
        after_reset = await client.get("/api/ai/rate-limit/ops")
        admin_resp = await client.get("/api/ai/rate-limit/root")

    assert status_resp.status_code == 200
    status = status_resp.json()
    assert status["role"] == "subadmin"
    assert status["limits"]["requests_per_hour"] == 1000
    assert status["current"]["hour"] == 1
    assert status["remaining"]["hour"] == 999

    stats = stats_resp.json()
    assert stats["total_users"] == 1
    assert stats["top_users"] == [{"user_id": "ops", "requests": 1}]

    assert reset_resp.status_code == 204
    assert after_reset.json()["current"]["hour"] == 0
    assert admin_resp.json()["remaining"]["day"] == -1


@pytest.mark.asyncio
async def test_rate_limit_reset_requires_admin(script, clock) -> None:
    app = _build_app(script, clock)
    for _ in range(10):
        app.state.rate_limiter.check_rate_limit("u1", "user")

    async with _client(app) as client:
        anonymous = await client.post("/api/ai/rate-limit/u1/reset")
        self_reset = await client.post(
            "/api/ai/rate-limit/u1/reset", headers={"X-User-Id": "u1"}
        )
        subadmin = await client.post(
            "/api/ai/rate-limit/u1/reset", headers={"X-User-Id": "ops"}
        )

    assert anonymous.status_code == 401
    assert self_reset.status_code == 403
    assert subadmin.status_code == 403
    assert app.state.rate_limiter.check_rate_limit("u1", "user").allowed is False


@pytest.mark.asyncio
async def test_models_report_output_cap(script, clock) -> None:
    app = _build_app(script, clock, models=("A",))

    async with _client(app) as client:
        models = await client.get("/api/ai/models")

    assert models.json()[0]["max_tokens"] == 4096
    assert models.json()[0]["max_output_tokens"] == 4096


@pytest.mark.asyncio
async def test_ai_health_endpoint_caches_all_model_checks(script, clock) -> None:
    app = _build_app(script, clock)
    script.failures["B"] = retryable_error("B")
    health_router.invalidate_ai_health_cache()

    async with _client(app) as client:
        first = await client.get("/api/health/ai")
        second = await client.get("/api/health/ai")
        forced = await client.get("/api/health/ai", params={"force": "true"})
        single = await client.get("/api/health/ai", params={"model": "A"})

    assert first.json()["models"] == {"A": True, "B": False}
    assert first.json()["healthy"] is False
    assert first.json()["cached"] is False
    assert second.json()["cached"] is True
    assert forced.json()["cached"] is False
    assert single.json() == {
        "models": {"A": True},
        "healthy": True,
        "cached": False,
        "checked_at": single.json()["checked_at"],
    }
    assert script.calls.count("A") == 3
    health_router.invalidate_ai_health_cache()


@pytest.mark.asyncio
async def test_missing_services_return_503() -> None:
    app = FastAPI()
    app.include_router(ai_router)

    async with _client(app) as client:
        resp = await client.get("/api/ai/models")

    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_root_health_check() -> None:
    assert await main.health_check() == {"status": "healthy"}


def test_build_services_registers_configured_models(monkeypatch) -> None:
    monkeypatch.setattr(main.settings, "openai_api_key", "")
    monkeypatch.setattr(main.settings, "anthropic_api_key", "")
    monkeypatch.setattr(main.settings, "google_api_key", "")
    monkeypatch.setattr(main.settings, "custom_ai_endpoint", "http://llm.local/complete")
    monkeypatch.setattr(main.settings, "custom_ai_model", "")
    monkeypatch.setattr(main.settings, "ai_fallback_models", "")
    app = FastAPI()

    main.build_services(app)

    orchestrator = app.state.orchestrator
    assert [config.id for config in orchestrator.get_registered_models()] == ["custom"]
    assert orchestrator.fallback_config.models == ["custom"]
    assert orchestrator.rate_limiter is app.state.rate_limiter
