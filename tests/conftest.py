"""Shared fixtures: an in-memory sink and a recorder delivering to it."""

import uuid

import pytest

from core.errors import NotFoundError, RemoteSinkError
from monitoring.budget import BudgetRegistry
from tracing.recorder import TraceRecorder
from tracing.sinks import Sink


class MemorySink(Sink):
    """Active sink keeping everything in memory."""

    name = "memory"

    def __init__(self):
        self.project_name = "test-project"
        self.traces = []
        self.datasets = {}
        self.scores = []
        self.fail_feedback_after = None

    async def send_trace(self, record):
        self.traces.append(record)

    async def create_dataset(self, name, description=""):
        if name in self.datasets:
            raise RemoteSinkError(f"Dataset already exists: {name}", status_code=409)
        dataset_id = str(uuid.uuid4())
        self.datasets[name] = {"id": dataset_id, "name": name, "description": description, "items": []}
        return dataset_id

    async def add_dataset_items(self, name, items):
        if name not in self.datasets:
            raise NotFoundError(f"Dataset not found: {name}")
        self.datasets[name]["items"].extend(dict(item) for item in items)
        return len(items)

    async def get_dataset(self, name):
        if name not in self.datasets:
            raise NotFoundError(f"Dataset not found: {name}")
        data = self.datasets[name]
        return {**data, "items": [dict(item) for item in data["items"]]}

    async def delete_dataset(self, name):
        if name not in self.datasets:
            raise NotFoundError(f"Dataset not found: {name}")
        del self.datasets[name]

    async def log_feedback_score(self, trace_id, name, value, reason=None, category="custom", metadata=None):
        if self.fail_feedback_after is not None and len(self.scores) >= self.fail_feedback_after:
            raise RemoteSinkError("feedback endpoint unavailable", status_code=503)
        self.scores.append({
            "trace_id": trace_id,
            "name": name,
            "value": value,
            "reason": reason,
            "category": category,
            "metadata": dict(metadata or {}),
        })

    def trace(self, name):
        return next(t for t in self.traces if t.name == name)


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def budgets():
    return BudgetRegistry()


@pytest.fixture
def recorder(sink, budgets):
    return TraceRecorder(sink, environment="test", budgets=budgets)
