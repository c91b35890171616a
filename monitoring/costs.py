"""Model pricing and per-call cost calculation."""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPrice:
    """Price of a model in USD per one million tokens."""
    input_cost_per_1m: float
    output_cost_per_1m: float


MODEL_COSTS: Dict[str, ModelPrice] = {
    # Free during experimental phase
    "gemini-2.0-flash-exp": ModelPrice(0.0, 0.0),
    "gemini-2.0-flash": ModelPrice(0.10, 0.40),
    "gemini-1.5-pro": ModelPrice(3.5, 10.5),
    "gemini-1.5-flash": ModelPrice(0.35, 1.05),
    "gemini-2.5-pro": ModelPrice(1.25, 10.0),
}


class CostModel:
    """Maps (model, input tokens, output tokens) to a monetary cost."""

    def __init__(self, prices: Optional[Mapping[str, ModelPrice]] = None):
        self.prices: Dict[str, ModelPrice] = dict(MODEL_COSTS if prices is None else prices)

    def with_prices(self, **overrides: ModelPrice) -> "CostModel":
        """Return a copy of this cost model with some prices replaced or added."""
        return CostModel({**self.prices, **overrides})

    def cost(self, model_name: str, input_tokens: int, output_tokens: int) -> float:
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("Token counts cannot be negative")

        price = self.prices.get(model_name)
        if price is None:
            logger.warning(f"Unknown model for cost calculation: {model_name}")
            return 0.0

        input_cost = (input_tokens / 1_000_000) * price.input_cost_per_1m
        output_cost = (output_tokens / 1_000_000) * price.output_cost_per_1m
        return input_cost + output_cost


DEFAULT_COST_MODEL = CostModel()


def calculate_model_cost(model_name: str, input_tokens: int, output_tokens: int) -> float:
    """Calculate the USD cost of one model call using the default price table."""
    return DEFAULT_COST_MODEL.cost(model_name, input_tokens, output_tokens)
