"""
Pricing calculations and rate management.

Converts token usage into a dollar cost using fixed per-token rates.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict

from .token_counter import TokenUsage

ONE_MILLION = Decimal("1000000")
COST_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1m: Decimal  # Cost per 1M prompt tokens
    output_cost_per_1m: Decimal  # Cost per 1M completion tokens
    currency: str = "USD"

    @property
    def input_rate(self) -> Decimal:
        """Cost of a single prompt token."""
        return self.input_cost_per_1m / ONE_MILLION

    @property
    def output_rate(self) -> Decimal:
        """Cost of a single completion token."""
        return self.output_cost_per_1m / ONE_MILLION


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


@dataclass(frozen=True)
class CostCalculation:
    """Cost derived from a TokenUsage. Never stored on its own."""
    prompt_cost: float
    completion_cost: float
    total_cost: float
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {
            "prompt_cost": self.prompt_cost,
            "completion_cost": self.completion_cost,
            "total_cost": self.total_cost,
            "currency": self.currency,
        }


# DeepSeek pricing: $0.14 / 1M input tokens, $0.28 / 1M output tokens
DEEPSEEK_PRICING = ModelPricing(
    input_cost_per_1m=Decimal("0.14"),
    output_cost_per_1m=Decimal("0.28")
)

# Fixed pricing table - no dynamic fetching
PRICING_TABLE = PricingTable({
    "deepseek-chat": DEEPSEEK_PRICING,
    "deepseek-reasoner": ModelPricing(
        input_cost_per_1m=Decimal("0.55"),
        output_cost_per_1m=Decimal("2.19")
    ),
})


def _round_cost(amount: Decimal) -> float:
    return float(amount.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP))


def calculate_cost(usage: TokenUsage, pricing: ModelPricing = DEEPSEEK_PRICING) -> CostCalculation:
    """Calculate the cost of a token usage.

    Pure function. Each component is rounded to 6 decimal places; the total
    is computed from the unrounded parts before rounding.

    Args:
        usage: Token usage data
        pricing: Per-token rates, DeepSeek rates by default

    Returns:
        CostCalculation in the pricing's currency
    """
    prompt_cost = Decimal(usage.prompt_tokens) * pricing.input_rate
    completion_cost = Decimal(usage.completion_tokens) * pricing.output_rate
    total_cost = prompt_cost + completion_cost

    return CostCalculation(
        prompt_cost=_round_cost(prompt_cost),
        completion_cost=_round_cost(completion_cost),
        total_cost=_round_cost(total_cost),
        currency=pricing.currency
    )


def calculate_model_cost(model: str, usage: TokenUsage, table: PricingTable = PRICING_TABLE) -> CostCalculation:
    """Calculate cost for a named model from the pricing table.

    Raises:
        ValueError: If model is not supported
    """
    return calculate_cost(usage, table.get_pricing(model))
