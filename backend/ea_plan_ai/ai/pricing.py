"""Cost comparison across registered models for a given token volume."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from ea_plan_ai.ai.llm_base import AIModelConfig, calculate_cost


@dataclass(frozen=True)
class CostComparison:
    model: str
    name: str
    provider: str
    input_cost: float
    output_cost: float
    total_cost: float
    savings_vs_most_expensive: float
    savings_percentage: float
    rank: int


def _round_pct(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def compare_model_costs(
    configs: Iterable[AIModelConfig],
    input_tokens: int,
    output_tokens: int,
) -> list[CostComparison]:
    """Rank models cheapest first for the same input/output token counts."""
    priced = []
    for config in configs:
        input_cost = calculate_cost(config, input_tokens, 0)
        output_cost = calculate_cost(config, 0, output_tokens)
        priced.append((config, input_cost, output_cost, calculate_cost(config, input_tokens, output_tokens)))
    if not priced:
        return []

    priced.sort(key=lambda item: (item[3], item[0].id))
    most_expensive = Decimal(str(max(item[3] for item in priced)))

    results: list[CostComparison] = []
    for rank, (config, input_cost, output_cost, total) in enumerate(priced, start=1):
        savings = most_expensive - Decimal(str(total))
        percentage = savings / most_expensive * 100 if most_expensive > 0 else Decimal(0)
        results.append(
            CostComparison(
                model=config.id,
                name=config.name,
                provider=config.provider,
                input_cost=input_cost,
                output_cost=output_cost,
                total_cost=total,
                savings_vs_most_expensive=float(savings),
                savings_percentage=_round_pct(percentage),
                rank=rank,
            )
        )
    return results
