"""Data models for the storage layer."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.values import utc_now


@dataclass
class StoredTrace:
    """A closed trace as persisted in the database."""
    id: str
    name: str
    project_name: str = ""
    input: Any = None
    output: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    success: Optional[bool] = None
    duration_ms: Optional[float] = None
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None


@dataclass
class StoredSpan:
    """A closed span, flattened with a pointer to its parent span."""
    id: str
    trace_id: str
    name: str
    position: int
    parent_span_id: Optional[str] = None
    input: Any = None
    output: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    success: Optional[bool] = None
    duration_ms: Optional[float] = None
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None


@dataclass
class DatasetRecord:
    id: str
    name: str
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class DatasetItemRecord:
    id: str
    dataset_id: str
    input: Any = None
    expected_output: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class FeedbackRecord:
    """One feedback score attached to a trace id."""
    id: str
    trace_id: str
    name: str
    value: float
    category: str = "custom"
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
