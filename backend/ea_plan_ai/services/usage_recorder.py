"""Usage accounting collaborator for completed AI calls."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float


@dataclass
class UsageTotals:
    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


class UsageRecorder(ABC):
    """Receives usage records after successful completions."""

    @abstractmethod
    async def record_usage_batch(self, records: list[UsageRecord]) -> None:
        ...


class InMemoryUsageRecorder(UsageRecorder):
    """Keep usage records and per-user totals in process memory."""

    def __init__(self) -> None:
        self.records: list[UsageRecord] = []
        self._totals: dict[str, UsageTotals] = {}

    async def record_usage_batch(self, records: list[UsageRecord]) -> None:
        for record in records:
            self.records.append(record)
            totals = self._totals.setdefault(record.user_id, UsageTotals())
            totals.requests += 1
            totals.input_tokens += record.input_tokens
            totals.output_tokens += record.output_tokens
            totals.cost += record.cost
        if records:
            logger.info("Recorded %d usage record(s)", len(records))

    def totals_for(self, user_id: str) -> UsageTotals:
        return self._totals.get(user_id, UsageTotals())
