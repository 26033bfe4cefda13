"""
Pricing calculations and rate management.

Converts raw token usage into a UsageRecord using a static per-model table.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List

from .ledger import UsageRecord
from .token_counter import TokenUsage


DEFAULT_MODEL = "gpt-4-turbo-preview"

# Costs are kept to the micro-dollar
COST_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K input tokens
    completion_cost_per_1k: Decimal  # Cost per 1K output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]
    default_model: str = DEFAULT_MODEL

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model, falling back to the default model.

        Dated snapshots such as ``gpt-4o-2024-08-06`` resolve to the longest
        known model name they start with.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or for the default model when the
            identifier is unknown
        """
        if model in self.prices:
            return self.prices[model]
        prefixes = [name for name in self.prices if model and model.startswith(name + "-")]
        if prefixes:
            return self.prices[max(prefixes, key=len)]
        return self.prices[self.default_model]

    def models(self) -> List[str]:
        return list(self.prices)


# Fixed pricing table, USD per 1K tokens
PRICING_TABLE = PricingTable({
    "gpt-4-turbo-preview": ModelPricing(
        prompt_cost_per_1k=Decimal("0.01"),
        completion_cost_per_1k=Decimal("0.03")
    ),
    "gpt-4-turbo": ModelPricing(
        prompt_cost_per_1k=Decimal("0.01"),
        completion_cost_per_1k=Decimal("0.03")
    ),
    "gpt-4": ModelPricing(
        prompt_cost_per_1k=Decimal("0.03"),
        completion_cost_per_1k=Decimal("0.06")
    ),
    "gpt-4-32k": ModelPricing(
        prompt_cost_per_1k=Decimal("0.06"),
        completion_cost_per_1k=Decimal("0.12")
    ),
    "gpt-4o": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0025"),
        completion_cost_per_1k=Decimal("0.01")
    ),
    "gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00015"),
        completion_cost_per_1k=Decimal("0.0006")
    ),
    "gpt-3.5-turbo": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0005"),
        completion_cost_per_1k=Decimal("0.0015")
    ),
    "gpt-3.5-turbo-16k": ModelPricing(
        prompt_cost_per_1k=Decimal("0.001"),
        completion_cost_per_1k=Decimal("0.002")
    ),
})


def calculate_cost(usage: TokenUsage, model: str) -> UsageRecord:
    """Price a completion's token usage.

    Args:
        usage: Raw token usage
        model: Model identifier; unknown models use the default model's rates

    Returns:
        UsageRecord whose total cost is the sum of its input and output costs

    Raises:
        ValueError: If a token count is negative
    """
    if usage.prompt_tokens < 0 or usage.completion_tokens < 0:
        raise ValueError("token counts cannot be negative")

    pricing = PRICING_TABLE.get_pricing(model)

    input_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    output_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    input_cost = input_cost.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)
    output_cost = output_cost.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)

    return UsageRecord(
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
        total_cost=float(input_cost + output_cost),
        input_cost=float(input_cost),
        output_cost=float(output_cost),
    )


def available_models() -> List[str]:
    """Models with a known price."""
    return PRICING_TABLE.models()
