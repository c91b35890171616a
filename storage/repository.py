"""Repository pattern for CRUD operations on traces, datasets and feedback."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .database import Database
from .models import DatasetItemRecord, DatasetRecord, FeedbackRecord, StoredSpan, StoredTrace

logger = logging.getLogger(__name__)

_JSON_COLUMNS = ("input", "output", "metadata", "tags", "expected_output")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _decode(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Parse JSON columns returned by DuckDB as strings."""
    if row is None:
        return None
    for column in _JSON_COLUMNS:
        value = row.get(column)
        if isinstance(value, str):
            row[column] = json.loads(value)
    return row


class TraceRepository:
    """CRUD operations for locally persisted tracing data."""

    def __init__(self, db: Database):
        self.db = db

    # ── Traces ────────────────────────────────────────────────────────

    def save_trace(self, trace: StoredTrace, spans: Optional[List[StoredSpan]] = None) -> str:
        """Insert a trace and its flattened spans in one transaction. Returns the trace id."""
        with self.db.transaction():
            self.db.execute(
                """INSERT INTO traces (
                    id, name, project_name, input, output, metadata, tags,
                    success, duration_ms, start_time, end_time
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?)""",
                [
                    trace.id, trace.name, trace.project_name,
                    _dumps(trace.input), _dumps(trace.output),
                    _dumps(trace.metadata), _dumps(trace.tags),
                    trace.success, trace.duration_ms, trace.start_time, trace.end_time,
                ],
            )
            for span in spans or []:
                self.db.execute(
                    """INSERT INTO spans (
                        id, trace_id, parent_span_id, position, name, input, output,
                        metadata, success, duration_ms, start_time, end_time
                    ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)""",
                    [
                        span.id, span.trace_id, span.parent_span_id, span.position, span.name,
                        _dumps(span.input), _dumps(span.output), _dumps(span.metadata),
                        span.success, span.duration_ms, span.start_time, span.end_time,
                    ],
                )
        return trace.id

    def get_trace(self, trace_id: str) -> Optional[Dict[str, Any]]:
        trace = _decode(self.db.fetchone("SELECT * FROM traces WHERE id = ?", [trace_id]))
        if trace is None:
            return None
        trace["spans"] = self.get_spans(trace_id)
        return trace

    def get_spans(self, trace_id: str) -> List[Dict[str, Any]]:
        rows = self.db.fetchall(
            "SELECT * FROM spans WHERE trace_id = ? ORDER BY position", [trace_id]
        )
        return [_decode(row) for row in rows]

    def list_traces(
        self,
        name: Optional[str] = None,
        since: Optional[datetime] = None,
        tag: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        query = "SELECT * FROM traces WHERE 1=1"
        params: list = []
        if name:
            query += " AND name = ?"
            params.append(name)
        if since:
            query += " AND start_time >= ?"
            params.append(since)
        query += " ORDER BY start_time DESC"
        rows = [_decode(row) for row in self.db.fetchall(query, params or None)]
        if tag:
            rows = [row for row in rows if tag in (row.get("tags") or [])]
        return rows[offset:offset + limit]

    # ── Datasets ──────────────────────────────────────────────────────

    def create_dataset(self, dataset: DatasetRecord) -> str:
        self.db.execute(
            "INSERT INTO datasets (id, name, description, created_at) VALUES (?,?,?,?)",
            [dataset.id, dataset.name, dataset.description, dataset.created_at],
        )
        return dataset.id

    def get_dataset_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return self.db.fetchone("SELECT * FROM datasets WHERE name = ?", [name])

    def list_datasets(self) -> List[Dict[str, Any]]:
        return self.db.fetchall("SELECT * FROM datasets ORDER BY created_at")

    def add_dataset_items(self, dataset_id: str, items: List[DatasetItemRecord]) -> int:
        """Append items after the current last position. Returns count inserted."""
        row = self.db.fetchone(
            "SELECT COALESCE(MAX(position), -1) AS last FROM dataset_items WHERE dataset_id = ?",
            [dataset_id],
        )
        position = row["last"] + 1 if row else 0
        for item in items:
            self.db.execute(
                """INSERT INTO dataset_items (
                    id, dataset_id, position, input, expected_output, metadata, created_at
                ) VALUES (?,?,?,?,?,?,?)""",
                [
                    item.id, dataset_id, position,
                    _dumps(item.input), _dumps(item.expected_output), _dumps(item.metadata),
                    item.created_at,
                ],
            )
            position += 1
        return len(items)

    def get_dataset_items(self, dataset_id: str) -> List[Dict[str, Any]]:
        rows = self.db.fetchall(
            "SELECT * FROM dataset_items WHERE dataset_id = ? ORDER BY position", [dataset_id]
        )
        return [_decode(row) for row in rows]

    def delete_dataset(self, dataset_id: str) -> None:
        self.db.execute("DELETE FROM dataset_items WHERE dataset_id = ?", [dataset_id])
        self.db.execute("DELETE FROM datasets WHERE id = ?", [dataset_id])

    # ── Feedback ──────────────────────────────────────────────────────

    def save_feedback(self, record: FeedbackRecord) -> str:
        self.db.execute(
            """INSERT INTO feedback_scores (
                id, trace_id, name, value, category, reason, metadata, created_at
            ) VALUES (?,?,?,?,?,?,?,?)""",
            [
                record.id, record.trace_id, record.name, record.value,
                record.category, record.reason, _dumps(record.metadata), record.created_at,
            ],
        )
        return record.id

    def get_feedback(self, trace_id: str) -> List[Dict[str, Any]]:
        rows = self.db.fetchall(
            "SELECT * FROM feedback_scores WHERE trace_id = ? ORDER BY created_at", [trace_id]
        )
        return [_decode(row) for row in rows]

    def average_feedback(self, trace_ids: List[str]) -> Optional[float]:
        if not trace_ids:
            return None
        placeholders = ",".join("?" for _ in trace_ids)
        row = self.db.fetchone(
            f"SELECT AVG(value) AS avg_value FROM feedback_scores WHERE trace_id IN ({placeholders})",
            list(trace_ids),
        )
        return row["avg_value"] if row else None
