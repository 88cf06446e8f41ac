"""Health check endpoints for registered AI models."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter

from ea_plan_ai.ai.orchestrator import ProviderOrchestrator
from ea_plan_ai.config import settings
from ea_plan_ai.dependencies import OrchestratorDep

router = APIRouter(prefix="/api/health", tags=["health"])
_last_ai_health_result: dict[str, bool] | None = None
_last_ai_health_at: datetime | None = None


def _utc_now_naive() -> datetime:
    """Return a naive UTC datetime without deprecated utcnow()."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def invalidate_ai_health_cache() -> None:
    """Clear cached `/api/health/ai` data after runtime model changes."""
    global _last_ai_health_result, _last_ai_health_at
    _last_ai_health_result = None
    _last_ai_health_at = None


async def ai_model_health_check(
    orchestrator: ProviderOrchestrator,
    *,
    force: bool = False,
    model: str | None = None,
) -> dict:
    """Smoke-test registered models, caching the all-model result briefly.

    Single-model checks always run and never touch the cache.
    """
    global _last_ai_health_result, _last_ai_health_at

    now = _utc_now_naive()
    if model:
        results = await orchestrator.health_check(model)
        return {
            "models": results,
            "healthy": all(results.values()),
            "cached": False,
            "checked_at": now.isoformat() + "Z",
        }

    ttl = timedelta(seconds=settings.ai_health_cache_seconds)
    if (
        not force
        and _last_ai_health_result is not None
        and _last_ai_health_at is not None
        and (now - _last_ai_health_at) <= ttl
    ):
        return {
            "models": _last_ai_health_result,
            "healthy": bool(_last_ai_health_result) and all(_last_ai_health_result.values()),
            "cached": True,
            "checked_at": _last_ai_health_at.isoformat() + "Z",
        }

    results = await orchestrator.health_check()
    _last_ai_health_result = results
    _last_ai_health_at = now
    return {
        "models": results,
        "healthy": bool(results) and all(results.values()),
        "cached": False,
        "checked_at": now.isoformat() + "Z",
    }


@router.get("/ai")
async def ai_health_check(
    orchestrator: OrchestratorDep,
    force: bool = False,
    model: str | None = None,
):
    """Check that registered AI models answer a minimal completion."""
    return await ai_model_health_check(orchestrator, force=force, model=model)
