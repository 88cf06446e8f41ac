"""AI completion, model catalogue and rate-limit administration endpoints."""

import logging
import math
from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Query, status

from ea_plan_ai.ai.llm_base import AIProviderError, AIRequestOptions, ProviderErrorKind
from ea_plan_ai.dependencies import (
    AdminUserDep,
    OrchestratorDep,
    ProfileLookupDep,
    RateLimiterDep,
)
from ea_plan_ai.schemas.ai import (
    CompletionRequest,
    CompletionResponse,
    CostComparisonOut,
    GlobalStatsOut,
    LimitStatusOut,
    ModelOut,
    RateLimitConfigOut,
    UsageOut,
    UserVolumeOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


def _error_root(exc: AIProviderError) -> AIProviderError:
    return exc.cause if exc.cause is not None else exc


def _http_error(exc: AIProviderError) -> HTTPException:
    root = _error_root(exc)
    status_code = exc.status_code or status.HTTP_502_BAD_GATEWAY
    if status_code < 400:
        status_code = status.HTTP_502_BAD_GATEWAY
    headers = None
    if root.kind == ProviderErrorKind.RATE_LIMITED and exc.retry_after_ms:
        headers = {"Retry-After": str(math.ceil(exc.retry_after_ms / 1000))}
    return HTTPException(
        status_code=status_code,
        detail={
            "error": exc.message,
            "kind": exc.kind.value,
            "cause_kind": root.kind.value,
            "provider": exc.provider,
            "model": exc.model,
            "retryable": exc.retryable,
        },
        headers=headers,
    )


@router.post("/completion", response_model=CompletionResponse)
async def create_completion(body: CompletionRequest, orchestrator: OrchestratorDep):
    """Generate a completion with automatic fallback across registered models."""
    options = AIRequestOptions(
        messages=[{"role": msg.role, "content": msg.content} for msg in body.messages],
        max_tokens=body.max_tokens,
        temperature=body.temperature,
        top_p=body.top_p,
        user_id=body.user_id,
    )
    try:
        response = await orchestrator.generate_completion(body.model, options)
    except AIProviderError as exc:
        logger.warning("Completion for model %s failed: %s", body.model, exc.message)
        raise _http_error(exc) from exc

    return CompletionResponse(
        content=response.content,
        model=response.model,
        usage=UsageOut(**asdict(response.usage)),
        cost=response.cost,
        response_time=response.response_time,
        finish_reason=response.finish_reason,
    )


@router.get("/models", response_model=list[ModelOut])
async def list_models(orchestrator: OrchestratorDep):
    """Return registered models without credentials."""
    return [
        ModelOut(
            id=config.id,
            name=config.name,
            provider=config.provider,
            model_id=config.model_id,
            max_tokens=config.max_tokens,
            max_output_tokens=config.output_token_limit,
            cost_per_input_token=config.cost_per_input_token,
            cost_per_output_token=config.cost_per_output_token,
            requests_per_minute=config.rate_limits.requests_per_minute,
            tokens_per_minute=config.rate_limits.tokens_per_minute,
        )
        for config in orchestrator.get_registered_models()
    ]


@router.get("/models/costs", response_model=list[CostComparisonOut])
async def compare_model_costs(
    orchestrator: OrchestratorDep,
    input_tokens: int = Query(default=1000, ge=0),
    output_tokens: int = Query(default=500, ge=0),
):
    return [
        CostComparisonOut(**asdict(item))
        for item in orchestrator.compare_costs(input_tokens, output_tokens)
    ]


@router.get("/providers/stats")
async def provider_stats(orchestrator: OrchestratorDep) -> dict[str, dict[str, int]]:
    return orchestrator.get_provider_stats()


@router.get("/rate-limit/stats", response_model=GlobalStatsOut)
async def rate_limit_stats(rate_limiter: RateLimiterDep):
    stats = rate_limiter.get_global_stats()
    return GlobalStatsOut(
        total_users=stats.total_users,
        total_active_requests=stats.total_active_requests,
        average_requests_per_user=stats.average_requests_per_user,
        top_users=[UserVolumeOut(user_id=u.user_id, requests=u.requests) for u in stats.top_users],
    )


@router.get("/rate-limit/{user_id}", response_model=LimitStatusOut)
async def rate_limit_status(
    user_id: str,
    rate_limiter: RateLimiterDep,
    profile_lookup: ProfileLookupDep,
):
    """Current usage and remaining quota for one user."""
    profile = profile_lookup(user_id)
    snapshot = rate_limiter.get_limit_status(user_id, profile.role, profile.level)
    return LimitStatusOut(
        user_id=user_id,
        role=profile.role,
        limits=RateLimitConfigOut(**asdict(snapshot.limits)),
        current=snapshot.current,
        remaining=snapshot.remaining,
        reset_times=snapshot.reset_times,
    )


@router.post("/rate-limit/{user_id}/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset_rate_limit(
    user_id: str,
    rate_limiter: RateLimiterDep,
    admin_id: AdminUserDep,
) -> None:
    """Clear every quota counter for a user (administrative override)."""
    logger.info("Admin %s reset rate limits for user %s", admin_id, user_id)
    rate_limiter.emergency_reset(user_id)
