"""Tests for agent health computed from DuckDB-stored traces."""

from datetime import datetime, timedelta

import pytest

from monitoring.health import get_agent_health
from storage.database import Database
from tracing.models import TraceRecord
from tracing.sinks import DuckDBSink

NOW = datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture
def sink(tmp_path):
    sink = DuckDBSink(Database(str(tmp_path / "health.duckdb")), project_name="proj")
    yield sink
    sink.db.close()


def trace(name, minutes_ago, duration_ms, success=True, cost=0.0, error=None) -> TraceRecord:
    metadata = {"success": success, "duration_ms": duration_ms, "cost": cost}
    if error:
        metadata["error_message"] = error
    start = NOW - timedelta(minutes=minutes_ago)
    return TraceRecord(name=name, metadata=metadata, start_time=start, end_time=start)


class TestAgentHealth:
    @pytest.mark.asyncio
    async def test_summarizes_window(self, sink):
        records = [
            trace("skill_matcher", 10, 100, cost=0.01),
            trace("skill_matcher", 20, 200, cost=0.02),
            trace("skill_matcher", 30, 300, success=False, error="timeout"),
            trace("skill_matcher", 40, 400, success=False, error="timeout"),
            trace("skill_matcher", 60 * 30, 9999),
            trace("engagement_coach", 5, 50),
        ]
        for record in records:
            await sink.send_trace(record)
        await sink.log_feedback_score(records[0].id, "star_rating", 1.0)
        await sink.log_feedback_score(records[1].id, "star_rating", 0.5)

        health = get_agent_health(sink.repository, "skill_matcher", hours=24, now=NOW)

        assert health.total_calls == 4
        assert health.success_rate == pytest.approx(0.5)
        assert health.error_rate == pytest.approx(0.5)
        assert health.average_latency == pytest.approx(250.0)
        assert health.p95_latency == pytest.approx(385.0)
        assert health.total_cost == pytest.approx(0.03)
        assert health.average_feedback_score == pytest.approx(0.75)
        assert health.top_errors == [{"error": "timeout", "count": 2}]

        data = health.to_dict()
        assert data["metrics"]["total_calls"] == 4
        assert data["period"]["end"] == NOW.isoformat()

    def test_no_traces(self, sink):
        health = get_agent_health(sink.repository, "unknown", now=NOW)
        assert health.total_calls == 0
        assert health.average_feedback_score is None
        assert health.top_errors == []
