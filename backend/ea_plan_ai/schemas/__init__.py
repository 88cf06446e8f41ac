from ea_plan_ai.schemas.ai import (
    ChatMessageIn,
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

__all__ = [
    "ChatMessageIn",
    "CompletionRequest",
    "CompletionResponse",
    "CostComparisonOut",
    "GlobalStatsOut",
    "LimitStatusOut",
    "ModelOut",
    "RateLimitConfigOut",
    "UsageOut",
    "UserVolumeOut",
]
