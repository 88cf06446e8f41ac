from typing import Literal

from pydantic import BaseModel, Field


class ChatMessageIn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(max_length=200000)


class CompletionRequest(BaseModel):
    model: str = Field(min_length=1)
    messages: list[ChatMessageIn] = Field(min_length=1)
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, gt=0.0, le=1.0)
    user_id: str | None = None


class UsageOut(BaseModel):
    input_tokens: int
    output_tokens: int
    total_tokens: int


class CompletionResponse(BaseModel):
    content: str
    model: str
    usage: UsageOut
    cost: float
    response_time: int
    finish_reason: Literal["stop", "length", "error"]


class ModelOut(BaseModel):
    id: str
    name: str
    provider: str
    model_id: str
    max_tokens: int
    max_output_tokens: int
    cost_per_input_token: float
    cost_per_output_token: float
    requests_per_minute: int
    tokens_per_minute: int


class CostComparisonOut(BaseModel):
    model: str
    name: str
    provider: str
    input_cost: float
    output_cost: float
    total_cost: float
    savings_vs_most_expensive: float
    savings_percentage: float
    rank: int


class RateLimitConfigOut(BaseModel):
    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int
    concurrent_requests: int
    burst_allowance: int
    window_size: float


class LimitStatusOut(BaseModel):
    user_id: str
    role: str
    limits: RateLimitConfigOut
    current: dict[str, float]
    remaining: dict[str, float]
    reset_times: dict[str, float]


class UserVolumeOut(BaseModel):
    user_id: str
    requests: float


class GlobalStatsOut(BaseModel):
    total_users: int
    total_active_requests: int
    average_requests_per_user: float
    top_users: list[UserVolumeOut]
