"""Per-agent daily/monthly spend tracking built on the cost model."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .costs import DEFAULT_COST_MODEL, CostModel

logger = logging.getLogger(__name__)

DEFAULT_AGENTS = (
    "skill_matcher",
    "community_intelligence",
    "engagement_coach",
    "impact_measurement",
    "action_coordinator",
    "master_coordinator",
)


@dataclass
class BudgetConfig:
    agent_name: str
    daily_limit: float
    monthly_limit: float
    alert_threshold: float = 0.8


@dataclass
class ChargeEvent:
    timestamp: datetime
    cost: float
    model_name: str
    input_tokens: int
    output_tokens: int


@dataclass
class BudgetState:
    """Mutable spend state for one agent. Only ``BudgetRegistry`` mutates it."""
    config: BudgetConfig
    daily_spend: float = 0.0
    monthly_spend: float = 0.0
    last_reset: datetime = field(default_factory=datetime.now)
    history: List[ChargeEvent] = field(default_factory=list)

    @property
    def daily_ratio(self) -> float:
        return self.daily_spend / self.config.daily_limit

    @property
    def monthly_ratio(self) -> float:
        return self.monthly_spend / self.config.monthly_limit


@dataclass
class BudgetStatus:
    """Read-only snapshot of an agent's budget."""
    agent_name: str
    daily_spend: float
    daily_limit: float
    daily_remaining: float
    daily_percentage: float
    monthly_spend: float
    monthly_limit: float
    monthly_remaining: float
    monthly_percentage: float
    recent_costs: List[ChargeEvent] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "agent_name": self.agent_name,
            "daily_spend": self.daily_spend,
            "daily_limit": self.daily_limit,
            "daily_remaining": self.daily_remaining,
            "daily_percentage": self.daily_percentage,
            "monthly_spend": self.monthly_spend,
            "monthly_limit": self.monthly_limit,
            "monthly_remaining": self.monthly_remaining,
            "monthly_percentage": self.monthly_percentage,
            "recent_costs": [
                {
                    "timestamp": event.timestamp.isoformat(),
                    "cost": event.cost,
                    "model_name": event.model_name,
                }
                for event in self.recent_costs
            ],
        }


@dataclass
class ChargeResult:
    cost: float
    within_budget: bool
    alert: Optional[str] = None
    budget_status: Optional[BudgetStatus] = None


class BudgetRegistry:
    """Per-process registry of agent budgets.

    Tracking is opt-in: an agent without a registered budget is always
    within budget. State lives in memory only and is lost on restart.
    """

    def __init__(
        self,
        cost_model: Optional[CostModel] = None,
        clock: Optional[Callable[[], datetime]] = None,
        history_limit: int = 1000,
    ):
        self.cost_model = cost_model or DEFAULT_COST_MODEL
        self.clock = clock or datetime.now
        self.history_limit = history_limit
        self._states: Dict[str, BudgetState] = {}
        self._lock = threading.Lock()

    def set_budget(
        self,
        agent_name: str,
        daily_limit: float,
        monthly_limit: float,
        alert_threshold: float = 0.8,
    ) -> BudgetConfig:
        if daily_limit <= 0 or monthly_limit <= 0:
            raise ValueError("Budget limits must be positive")
        if not 0 < alert_threshold <= 1:
            raise ValueError("alert_threshold must be in (0, 1]")

        config = BudgetConfig(agent_name, daily_limit, monthly_limit, alert_threshold)
        with self._lock:
            self._states[agent_name] = BudgetState(config=config, last_reset=self.clock())

        logger.info(f"Budget set for {agent_name}: ${daily_limit}/day, ${monthly_limit}/month")
        return config

    def has_budget(self, agent_name: str) -> bool:
        return agent_name in self._states

    def charge(
        self,
        agent_name: str,
        model_name: str,
        input_tokens: int,
        output_tokens: int,
    ) -> ChargeResult:
        """Record the cost of one model call against ``agent_name``'s budget."""
        cost = self.cost_model.cost(model_name, input_tokens, output_tokens)

        with self._lock:
            state = self._states.get(agent_name)
            if state is None:
                return ChargeResult(cost=cost, within_budget=True)

            now = self.clock()
            self._roll_over(state, now)

            state.daily_spend += cost
            state.monthly_spend += cost
            state.history.append(ChargeEvent(now, cost, model_name, input_tokens, output_tokens))
            if len(state.history) > self.history_limit:
                del state.history[: len(state.history) - self.history_limit]

            within_budget, alert = self._assess(state)
            status = self._snapshot(agent_name, state)

        if alert:
            logger.warning(f"{agent_name}: {alert}")

        return ChargeResult(cost=cost, within_budget=within_budget, alert=alert, budget_status=status)

    @staticmethod
    def _roll_over(state: BudgetState, now: datetime) -> None:
        last = state.last_reset
        if (now.year, now.month, now.day) != (last.year, last.month, last.day):
            state.daily_spend = 0.0
        if (now.year, now.month) != (last.year, last.month):
            state.monthly_spend = 0.0
        state.last_reset = now

    @staticmethod
    def _assess(state: BudgetState) -> Tuple[bool, Optional[str]]:
        config = state.config
        daily_ratio = state.daily_ratio
        monthly_ratio = state.monthly_ratio

        if daily_ratio >= 1.0:
            return False, f"Daily budget exceeded: ${state.daily_spend:.4f} / ${config.daily_limit}"
        if monthly_ratio >= 1.0:
            return False, f"Monthly budget exceeded: ${state.monthly_spend:.2f} / ${config.monthly_limit}"
        if daily_ratio >= config.alert_threshold or monthly_ratio >= config.alert_threshold:
            peak = max(daily_ratio, monthly_ratio)
            return True, f"Budget warning: {peak * 100:.1f}% of limit reached"
        return True, None

    @staticmethod
    def _snapshot(agent_name: str, state: BudgetState, recent: int = 10) -> BudgetStatus:
        config = state.config
        return BudgetStatus(
            agent_name=agent_name,
            daily_spend=state.daily_spend,
            daily_limit=config.daily_limit,
            daily_remaining=config.daily_limit - state.daily_spend,
            daily_percentage=state.daily_ratio,
            monthly_spend=state.monthly_spend,
            monthly_limit=config.monthly_limit,
            monthly_remaining=config.monthly_limit - state.monthly_spend,
            monthly_percentage=state.monthly_ratio,
            recent_costs=list(state.history[-recent:]) if recent > 0 else [],
        )

    def get_budget_status(self, agent_name: str) -> Optional[BudgetStatus]:
        with self._lock:
            state = self._states.get(agent_name)
            if state is None:
                return None
            self._roll_over(state, self.clock())
            return self._snapshot(agent_name, state)

    def get_all_budgets(self) -> Dict[str, BudgetStatus]:
        with self._lock:
            now = self.clock()
            for state in self._states.values():
                self._roll_over(state, now)
            return {
                name: self._snapshot(name, state, recent=0)
                for name, state in self._states.items()
            }

    def reset_budget(self, agent_name: str) -> None:
        with self._lock:
            state = self._states.get(agent_name)
            if state is None:
                return
            state.daily_spend = 0.0
            state.monthly_spend = 0.0
            state.last_reset = self.clock()
            state.history = []
        logger.info(f"Budget reset for {agent_name}")

    def setup_default_budgets(
        self,
        agents: Sequence[str] = DEFAULT_AGENTS,
        daily_limit: float = 5.0,
        monthly_limit: float = 100.0,
        alert_threshold: float = 0.8,
    ) -> None:
        for agent in agents:
            self.set_budget(agent, daily_limit, monthly_limit, alert_threshold)
        logger.info(f"Default budgets set for {len(agents)} agents")

    def check_agent_alerts(self, agent_name: str, threshold: float = 0.9) -> Tuple[bool, List[str]]:
        """Return ``(healthy, alerts)`` for spend at or above ``threshold`` of either limit."""
        alerts: List[str] = []
        status = self.get_budget_status(agent_name)
        if status is not None:
            if status.daily_percentage >= threshold:
                alerts.append(f"High daily spend: {status.daily_percentage * 100:.0f}% of limit")
            if status.monthly_percentage >= threshold:
                alerts.append(f"High monthly spend: {status.monthly_percentage * 100:.0f}% of limit")
        return len(alerts) == 0, alerts
