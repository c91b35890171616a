"""Tests for API v1 surface."""

import pytest
from fastapi.testclient import TestClient

from core.config import TracingSettings
from dashboard.app import create_app
from feedback.log import FeedbackLog
from monitoring.budget import BudgetRegistry
from storage.database import Database
from tracing.sinks import DuckDBSink


@pytest.fixture
def registry():
    registry = BudgetRegistry()
    registry.set_budget("skill_matcher", daily_limit=1.0, monthly_limit=10.0)
    return registry


@pytest.fixture
def client(sink, registry):
    settings = TracingSettings(api_key="key-123456789", workspace="team", project_name="proj")
    app = create_app(FeedbackLog(sink), registry, settings)
    with TestClient(app) as client:
        yield client


class TestFeedbackEndpoint:
    def test_thumbs(self, client, sink):
        response = client.post("/api/v1/feedback", json={
            "traceId": "t1", "type": "thumbs", "thumbsUp": True, "comment": "great", "userId": "u1",
        })
        assert response.status_code == 200
        assert response.json() == {"success": True, "trace_id": "t1", "scores_logged": 1, "error": None}
        assert sink.scores[0]["value"] == 1.0
        assert sink.scores[0]["metadata"]["user_id"] == "u1"

    def test_stars(self, client, sink):
        response = client.post("/api/v1/feedback", json={
            "traceId": "t1", "type": "stars", "stars": 3, "starComment": "fine",
        })
        assert response.status_code == 200
        assert sink.scores[0]["value"] == 0.5
        assert sink.scores[0]["reason"] == "fine"

    def test_multi(self, client, sink):
        response = client.post("/api/v1/feedback", json={
            "traceId": "t1", "type": "multi", "ratings": {"relevance": 5, "clarity": 1},
        })
        assert response.json()["scores_logged"] == 2

    @pytest.mark.parametrize("payload,detail", [
        ({"type": "thumbs", "thumbsUp": True}, "traceId is required"),
        ({"traceId": "t1", "type": "emoji"}, "Unknown feedback type: emoji"),
        ({"traceId": "t1", "type": "stars", "stars": 6}, "stars must be between 1 and 5"),
        ({"traceId": "t1", "type": "thumbs", "thumbsUp": True, "metadata": [1]}, "metadata must be an object"),
    ])
    def test_bad_requests(self, client, sink, payload, detail):
        response = client.post("/api/v1/feedback", json=payload)
        assert response.status_code == 400
        assert response.json()["detail"] == detail
        assert sink.scores == []

    def test_missing_type_fields(self, client):
        response = client.post("/api/v1/feedback", json={"traceId": "t1", "type": "multi", "ratings": {}})
        assert response.status_code == 400

    def test_not_json(self, client):
        response = client.post("/api/v1/feedback", content=b"nope", headers={"content-type": "application/json"})
        assert response.status_code == 400

    def test_sink_failure_is_500(self, client, sink):
        sink.fail_feedback_after = 0
        response = client.post("/api/v1/feedback", json={"traceId": "t1", "type": "thumbs", "thumbsUp": False})
        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["scores_logged"] == 0


class TestBudgetEndpoints:
    def test_list(self, client):
        response = client.get("/api/v1/budgets")
        assert response.status_code == 200
        assert list(response.json()["budgets"]) == ["skill_matcher"]

    def test_single(self, client, registry):
        registry.charge("skill_matcher", "gemini-1.5-flash", 2_857_143, 0)
        data = client.get("/api/v1/budgets/skill_matcher").json()
        assert data["agent_name"] == "skill_matcher"
        assert data["daily_limit"] == 1.0
        assert data["healthy"] is False
        assert data["alerts"][0].startswith("High daily spend")

    def test_unknown_agent(self, client):
        response = client.get("/api/v1/budgets/nobody")
        assert response.status_code == 404
        assert response.json()["detail"] == "No budget set for nobody"


class TestHealthEndpoints:
    def test_health(self, client):
        data = client.get("/api/v1/health").json()
        assert data["status"] == "ok"
        assert data["tracing"]["sink"] == "memory"
        assert data["tracing"]["configured"] is True
        assert data["tracing"]["project"] == "proj"

    def test_agent_health_needs_local_database(self, client):
        assert client.get("/api/v1/agents/skill_matcher/health").status_code == 404

    def test_agent_health_from_duckdb(self, tmp_path):
        sink = DuckDBSink(Database(str(tmp_path / "api.duckdb")))
        app = create_app(FeedbackLog(sink), BudgetRegistry(), TracingSettings(db_path=str(tmp_path / "api.duckdb")))
        with TestClient(app) as client:
            response = client.get("/api/v1/agents/skill_matcher/health", params={"hours": 1})
        assert response.status_code == 200
        data = response.json()
        assert data["agent_name"] == "skill_matcher"
        assert data["metrics"]["total_calls"] == 0
