"""Wire models for traces and spans."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.values import utc_now


class TraceStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class SpanRecord(BaseModel):
    """A nested sub-operation recorded inside a trace."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: str
    parent_span_id: Optional[str] = None
    name: str
    type: str = "general"
    input: Any = None
    output: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    spans: List["SpanRecord"] = Field(default_factory=list)
    status: TraceStatus = TraceStatus.OPEN
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None

    @property
    def success(self) -> Optional[bool]:
        return self.metadata.get("success")

    @property
    def duration_ms(self) -> Optional[float]:
        return self.metadata.get("duration_ms")

    def walk(self):
        """Yield ``(span, parent_span_id)`` for this span's subtree, depth first."""
        for child in self.spans:
            yield child, self.id
            yield from child.walk()


class TraceRecord(BaseModel):
    """One recorded execution of a named operation."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    project_name: str = ""
    input: Any = None
    output: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    spans: List[SpanRecord] = Field(default_factory=list)
    status: TraceStatus = TraceStatus.OPEN
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None

    @property
    def success(self) -> Optional[bool]:
        return self.metadata.get("success")

    @property
    def duration_ms(self) -> Optional[float]:
        return self.metadata.get("duration_ms")

    def flat_spans(self):
        """Yield ``(span, parent_span_id)`` for every span, depth first in opening order."""
        for span in self.spans:
            yield span, None
            yield from span.walk()


SpanRecord.model_rebuild()
