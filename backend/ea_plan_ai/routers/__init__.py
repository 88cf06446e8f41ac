from ea_plan_ai.routers.ai import router as ai_router
from ea_plan_ai.routers.health import router as health_router

__all__ = [
    "ai_router",
    "health_router",
]
