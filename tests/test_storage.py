"""Tests for the storage layer."""

import uuid
from datetime import timedelta

import duckdb
import pytest

from storage.database import Database
from storage.models import DatasetItemRecord, DatasetRecord, FeedbackRecord, StoredSpan, StoredTrace
from core.values import utc_now
from storage.repository import TraceRepository


@pytest.fixture
def db(tmp_path):
    """Create a temporary database for testing."""
    db_path = str(tmp_path / "test.duckdb")
    database = Database(db_path)
    yield database
    database.close()


@pytest.fixture
def repo(db):
    return TraceRepository(db)


def make_trace(name="skill_matcher", **kwargs) -> StoredTrace:
    return StoredTrace(id=str(uuid.uuid4()), name=name, **kwargs)


class TestDatabase:
    def test_schema_creation(self, db):
        tables = db.fetchall("SHOW TABLES")
        table_names = {t["name"] for t in tables}
        assert {"traces", "spans", "datasets", "dataset_items", "feedback_scores"} <= table_names

    def test_reopen_after_close(self, db):
        db.close()
        assert db.fetchone("SELECT 1 AS one")["one"] == 1


class TestTraceRepository:
    def test_save_and_get_trace_with_spans(self, repo):
        trace = make_trace(
            input={"user_id": "u1"},
            output={"matches": [1, 2]},
            metadata={"success": True},
            tags=["skill_matcher", "agent"],
            success=True,
            duration_ms=12.5,
        )
        outer = StoredSpan(id="s1", trace_id=trace.id, name="fetch", position=0)
        inner = StoredSpan(id="s2", trace_id=trace.id, name="parse", position=1, parent_span_id="s1")
        repo.save_trace(trace, [inner, outer])

        fetched = repo.get_trace(trace.id)
        assert fetched["name"] == "skill_matcher"
        assert fetched["input"] == {"user_id": "u1"}
        assert fetched["output"] == {"matches": [1, 2]}
        assert fetched["tags"] == ["skill_matcher", "agent"]
        assert fetched["success"] is True
        assert [s["name"] for s in fetched["spans"]] == ["fetch", "parse"]
        assert fetched["spans"][1]["parent_span_id"] == "s1"

    def test_failed_span_insert_rolls_back_trace(self, repo):
        trace = make_trace()
        spans = [
            StoredSpan(id="dup", trace_id=trace.id, name="fetch", position=0),
            StoredSpan(id="dup", trace_id=trace.id, name="parse", position=1),
        ]
        with pytest.raises(duckdb.Error):
            repo.save_trace(trace, spans)

        assert repo.get_trace(trace.id) is None
        assert repo.get_spans(trace.id) == []

        repo.save_trace(trace, spans[:1])
        assert [s["name"] for s in repo.get_trace(trace.id)["spans"]] == ["fetch"]

    def test_missing_trace(self, repo):
        assert repo.get_trace("nope") is None

    def test_list_traces_filters(self, repo):
        now = utc_now()
        repo.save_trace(make_trace("a", start_time=now - timedelta(hours=2), tags=["x"]))
        repo.save_trace(make_trace("a", start_time=now, tags=["y"]))
        repo.save_trace(make_trace("b", start_time=now))

        assert len(repo.list_traces(name="a")) == 2
        assert len(repo.list_traces(name="a", since=now - timedelta(hours=1))) == 1
        assert [t["tags"] for t in repo.list_traces(tag="x")] == [["x"]]
        assert len(repo.list_traces(limit=1)) == 1

    def test_dataset_items_keep_order(self, repo):
        dataset_id = repo.create_dataset(DatasetRecord(id="d1", name="ds"))
        first = [DatasetItemRecord(id=f"i{n}", dataset_id=dataset_id, input={"n": n}) for n in range(2)]
        second = [DatasetItemRecord(id="i2", dataset_id=dataset_id, input={"n": 2})]
        assert repo.add_dataset_items(dataset_id, first) == 2
        repo.add_dataset_items(dataset_id, second)

        items = repo.get_dataset_items(dataset_id)
        assert [item["input"]["n"] for item in items] == [0, 1, 2]
        assert repo.get_dataset_by_name("ds")["id"] == "d1"

    def test_delete_dataset(self, repo):
        dataset_id = repo.create_dataset(DatasetRecord(id="d1", name="ds"))
        repo.add_dataset_items(dataset_id, [DatasetItemRecord(id="i0", dataset_id=dataset_id)])
        repo.delete_dataset(dataset_id)
        assert repo.get_dataset_by_name("ds") is None
        assert repo.get_dataset_items(dataset_id) == []

    def test_feedback_and_average(self, repo):
        repo.save_feedback(FeedbackRecord(id="f1", trace_id="t1", name="star_rating", value=0.5))
        repo.save_feedback(FeedbackRecord(id="f2", trace_id="t1", name="user_satisfaction", value=1.0,
                                          metadata={"user_id": "u"}))
        repo.save_feedback(FeedbackRecord(id="f3", trace_id="t2", name="user_satisfaction", value=0.0))

        scores = repo.get_feedback("t1")
        assert {s["name"] for s in scores} == {"star_rating", "user_satisfaction"}
        assert repo.average_feedback(["t1"]) == pytest.approx(0.75)
        assert repo.average_feedback(["t1", "t2"]) == pytest.approx(0.5)
        assert repo.average_feedback([]) is None
        assert repo.average_feedback(["none"]) is None
