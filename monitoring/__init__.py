"""Cost accounting, per-agent budgets and agent health."""

from .budget import (
    DEFAULT_AGENTS,
    BudgetConfig,
    BudgetRegistry,
    BudgetStatus,
    ChargeEvent,
    ChargeResult,
)
from .costs import DEFAULT_COST_MODEL, MODEL_COSTS, CostModel, ModelPrice, calculate_model_cost
from .health import AgentHealth, get_agent_health

__all__ = [
    "DEFAULT_AGENTS",
    "BudgetConfig",
    "BudgetRegistry",
    "BudgetStatus",
    "ChargeEvent",
    "ChargeResult",
    "DEFAULT_COST_MODEL",
    "MODEL_COSTS",
    "CostModel",
    "ModelPrice",
    "calculate_model_cost",
    "AgentHealth",
    "get_agent_health",
]
