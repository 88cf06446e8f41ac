"""FastAPI application entry point with startup initialisation and logging."""

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ea_plan_ai.ai.model_registry import build_default_model_configs
from ea_plan_ai.ai.orchestrator import (
    FallbackConfig,
    ProviderOrchestrator,
    initialise_default_models,
)
from ea_plan_ai.config import settings
from ea_plan_ai.routers.ai import router as ai_router
from ea_plan_ai.routers.health import router as health_router
from ea_plan_ai.services.rate_limiter import RateLimiter, run_periodic_cleanup
from ea_plan_ai.services.usage_recorder import InMemoryUsageRecorder
from ea_plan_ai.services.user_profiles import StaticUserProfileLookup

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Set up structured logging for the application."""
    root_logger = logging.getLogger("ea_plan_ai")
    root_logger.setLevel(logging.INFO)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in ("ea_plan_ai.ai", "ea_plan_ai.services", "ea_plan_ai.routers"):
        logging.getLogger(name).setLevel(logging.INFO)


_configure_logging()


def build_services(app: FastAPI) -> None:
    """Create the shared limiter, usage recorder and orchestrator on ``app.state``."""
    rate_limiter = RateLimiter()
    usage_recorder = InMemoryUsageRecorder()
    profile_lookup = StaticUserProfileLookup(
        admin_ids=settings.admin_user_id_list,
        subadmin_ids=settings.subadmin_user_id_list,
    )
    orchestrator = ProviderOrchestrator(
        rate_limiter=rate_limiter,
        usage_recorder=usage_recorder,
        profile_lookup=profile_lookup,
        fallback_config=FallbackConfig(),
        provider_timeout=settings.provider_timeout_seconds,
    )
    initialise_default_models(
        orchestrator,
        build_default_model_configs(settings),
        fallback_models=settings.fallback_model_ids,
        enabled=settings.ai_fallback_enabled,
        max_retries=settings.ai_fallback_max_retries,
        retry_delay=settings.ai_fallback_retry_delay_ms,
        abort_fallback_on_non_retryable=settings.ai_abort_fallback_on_non_retryable,
    )

    app.state.rate_limiter = rate_limiter
    app.state.usage_recorder = usage_recorder
    app.state.profile_lookup = profile_lookup
    app.state.orchestrator = orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    build_services(app)
    cleanup_task = None
    if settings.rate_limit_cleanup_interval_seconds > 0:
        cleanup_task = asyncio.create_task(
            run_periodic_cleanup(
                app.state.rate_limiter,
                settings.rate_limit_cleanup_interval_seconds,
            )
        )
    yield
    if cleanup_task is not None:
        cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup_task


app = FastAPI(title="EA Plan AI", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ai_router)
app.include_router(health_router)


@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy"}
