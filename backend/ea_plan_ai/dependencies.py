"""FastAPI dependency injection for the shared AI services built at startup."""

from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from ea_plan_ai.ai.orchestrator import ProviderOrchestrator
from ea_plan_ai.services.rate_limiter import RateLimiter
from ea_plan_ai.services.user_profiles import StaticUserProfileLookup, UserProfile


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI services are not initialised",
        )
    return value


def get_orchestrator(request: Request) -> ProviderOrchestrator:
    return _state_attr(request, "orchestrator")


def get_rate_limiter(request: Request) -> RateLimiter:
    return _state_attr(request, "rate_limiter")


def get_profile_lookup(request: Request) -> Callable[[str], UserProfile]:
    lookup = getattr(request.app.state, "profile_lookup", None)
    return lookup or StaticUserProfileLookup()


OrchestratorDep = Annotated[ProviderOrchestrator, Depends(get_orchestrator)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
ProfileLookupDep = Annotated[Callable[[str], UserProfile], Depends(get_profile_lookup)]


async def get_admin_user(
    profile_lookup: ProfileLookupDep,
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Require admin privileges for protected endpoints."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    if profile_lookup(user_id).role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
    return user_id


AdminUserDep = Annotated[str, Depends(get_admin_user)]
