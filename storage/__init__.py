"""Local DuckDB storage for traces, datasets and feedback scores."""

from .database import Database
from .models import DatasetItemRecord, DatasetRecord, FeedbackRecord, StoredSpan, StoredTrace
from .repository import TraceRepository

__all__ = [
    "Database",
    "DatasetItemRecord",
    "DatasetRecord",
    "FeedbackRecord",
    "StoredSpan",
    "StoredTrace",
    "TraceRepository",
]
