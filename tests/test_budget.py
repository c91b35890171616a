"""Tests for cost calculation and per-agent budgets."""

from datetime import datetime

import pytest

from monitoring.budget import DEFAULT_AGENTS, BudgetRegistry
from monitoring.costs import CostModel, ModelPrice, calculate_model_cost


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestCostModel:
    def test_input_only(self):
        assert calculate_model_cost("gemini-1.5-flash", 1_000_000, 0) == pytest.approx(0.35)

    def test_input_and_output(self):
        cost = calculate_model_cost("gemini-1.5-pro", 1000, 500)
        assert cost == pytest.approx(1000 / 1e6 * 3.5 + 500 / 1e6 * 10.5)

    def test_experimental_model_is_free(self):
        assert calculate_model_cost("gemini-2.0-flash-exp", 10_000, 10_000) == 0.0

    def test_unknown_model_costs_nothing(self):
        assert calculate_model_cost("mystery-model", 1000, 1000) == 0.0

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            calculate_model_cost("gemini-1.5-flash", -1, 0)

    def test_with_prices_does_not_mutate(self):
        base = CostModel()
        custom = base.with_prices(**{"custom-model": ModelPrice(1.0, 2.0)})
        assert custom.cost("custom-model", 1_000_000, 1_000_000) == pytest.approx(3.0)
        assert base.cost("custom-model", 1_000_000, 1_000_000) == 0.0


class TestBudgetRegistry:
    def setup_method(self):
        self.clock = FakeClock(datetime(2024, 3, 15, 12, 0))
        self.registry = BudgetRegistry(clock=self.clock)

    def test_untracked_agent_is_within_budget(self):
        result = self.registry.charge("nobody", "gemini-1.5-flash", 1_000_000, 0)
        assert result.within_budget is True
        assert result.alert is None
        assert result.cost == pytest.approx(0.35)
        assert self.registry.get_budget_status("nobody") is None

    def test_daily_budget_exceeded(self):
        self.registry.set_budget("agentA", daily_limit=0.10, monthly_limit=10.0)
        result = self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        assert result.cost == pytest.approx(0.35)
        assert result.within_budget is False
        assert "Daily budget exceeded" in result.alert

    def test_monthly_budget_exceeded(self):
        self.registry.set_budget("agentA", daily_limit=10.0, monthly_limit=0.30)
        result = self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        assert result.within_budget is False
        assert "Monthly budget exceeded" in result.alert

    def test_warning_at_threshold(self):
        self.registry.set_budget("agentA", daily_limit=0.40, monthly_limit=100.0, alert_threshold=0.8)
        result = self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        assert result.within_budget is True
        assert result.alert.startswith("Budget warning")

    def test_no_alert_below_threshold(self):
        self.registry.set_budget("agentA", daily_limit=5.0, monthly_limit=100.0)
        result = self.registry.charge("agentA", "gemini-1.5-flash", 1000, 1000)
        assert result.within_budget is True
        assert result.alert is None
        assert result.budget_status.daily_spend == pytest.approx(result.cost)

    def test_daily_rollover_keeps_monthly(self):
        self.registry.set_budget("agentA", daily_limit=5.0, monthly_limit=100.0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        self.clock.now = datetime(2024, 3, 16, 9, 0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)

        status = self.registry.get_budget_status("agentA")
        assert status.daily_spend == pytest.approx(0.35)
        assert status.monthly_spend == pytest.approx(0.70)

    def test_monthly_rollover(self):
        self.registry.set_budget("agentA", daily_limit=5.0, monthly_limit=100.0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        self.clock.now = datetime(2024, 4, 1, 0, 5)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)

        status = self.registry.get_budget_status("agentA")
        assert status.daily_spend == pytest.approx(0.35)
        assert status.monthly_spend == pytest.approx(0.35)

    def test_same_day_number_in_other_month_rolls_daily(self):
        self.registry.set_budget("agentA", daily_limit=5.0, monthly_limit=100.0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        self.clock.now = datetime(2024, 4, 15, 12, 0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        assert self.registry.get_budget_status("agentA").daily_spend == pytest.approx(0.35)

    def test_status_rolls_over_on_read(self):
        self.registry.set_budget("agentA", daily_limit=5.0, monthly_limit=100.0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        self.clock.now = datetime(2024, 3, 16, 9, 0)

        status = self.registry.get_budget_status("agentA")
        assert status.daily_spend == 0.0
        assert status.monthly_spend == pytest.approx(0.35)

        self.clock.now = datetime(2024, 4, 1, 0, 5)
        assert self.registry.get_all_budgets()["agentA"].monthly_spend == 0.0

    def test_status_snapshot_and_history(self):
        self.registry.set_budget("agentA", daily_limit=1.0, monthly_limit=10.0)
        for _ in range(12):
            self.registry.charge("agentA", "gemini-1.5-flash", 100_000, 0)

        status = self.registry.get_budget_status("agentA")
        assert len(status.recent_costs) == 10
        assert status.daily_remaining == pytest.approx(1.0 - status.daily_spend)
        data = status.to_dict()
        assert data["agent_name"] == "agentA"
        assert len(data["recent_costs"]) == 10

        all_budgets = self.registry.get_all_budgets()
        assert all_budgets["agentA"].recent_costs == []

    def test_reset_budget(self):
        self.registry.set_budget("agentA", daily_limit=1.0, monthly_limit=10.0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        self.registry.reset_budget("agentA")
        status = self.registry.get_budget_status("agentA")
        assert status.daily_spend == 0.0
        assert status.monthly_spend == 0.0
        assert status.recent_costs == []

    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            self.registry.set_budget("agentA", daily_limit=0, monthly_limit=10.0)
        with pytest.raises(ValueError):
            self.registry.set_budget("agentA", daily_limit=1.0, monthly_limit=10.0, alert_threshold=1.5)

    def test_default_budgets(self):
        self.registry.setup_default_budgets()
        assert set(self.registry.get_all_budgets()) == set(DEFAULT_AGENTS)

    def test_check_agent_alerts(self):
        self.registry.set_budget("agentA", daily_limit=0.36, monthly_limit=100.0, alert_threshold=1.0)
        self.registry.charge("agentA", "gemini-1.5-flash", 1_000_000, 0)
        healthy, alerts = self.registry.check_agent_alerts("agentA")
        assert healthy is False
        assert alerts[0].startswith("High daily spend")
