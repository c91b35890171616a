"""Sink capability: where traces, datasets and feedback scores are delivered.

A sink is selected once at startup with :func:`create_sink`. Components only
ever talk to the :class:`Sink` interface; whether tracing is active is a
property of the sink, never a flag checked at call sites.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from core.config import TracingSettings
from core.errors import ConfigurationError, NotFoundError, RemoteSinkError
from storage.database import Database
from storage.models import DatasetItemRecord, DatasetRecord, FeedbackRecord, StoredSpan, StoredTrace
from storage.repository import TraceRepository

from .models import TraceRecord

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Tracing sink not configured. Check OPIK_API_KEY and OPIK_WORKSPACE_NAME"


class Sink(ABC):
    """Abstract destination for tracing data."""

    enabled: bool = True
    name: str = "sink"

    @abstractmethod
    async def send_trace(self, record: TraceRecord) -> None:
        """Deliver one closed trace together with its spans."""

    @abstractmethod
    async def create_dataset(self, name: str, description: str = "") -> str:
        """Create an empty dataset and return its id."""

    @abstractmethod
    async def add_dataset_items(self, name: str, items: List[Dict[str, Any]]) -> int:
        """Append items (``input``, ``expected_output``, ``metadata`` dicts)."""

    @abstractmethod
    async def get_dataset(self, name: str) -> Dict[str, Any]:
        """Return ``{"id", "name", "description", "items"}`` or raise NotFoundError."""

    @abstractmethod
    async def delete_dataset(self, name: str) -> None:
        """Delete a dataset and all of its items."""

    @abstractmethod
    async def log_feedback_score(
        self,
        trace_id: str,
        name: str,
        value: float,
        reason: Optional[str] = None,
        category: str = "custom",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Attach one feedback score to a trace id."""

    async def aclose(self) -> None:
        return None


class NullSink(Sink):
    """Sink used when tracing is not configured.

    Trace delivery silently does nothing. Dataset and feedback operations have
    no meaningful no-op and raise ConfigurationError.
    """

    enabled = False
    name = "null"

    def __init__(self, reason: str = NOT_CONFIGURED):
        self.reason = reason

    async def send_trace(self, record: TraceRecord) -> None:
        return None

    async def create_dataset(self, name: str, description: str = "") -> str:
        raise ConfigurationError(self.reason)

    async def add_dataset_items(self, name: str, items: List[Dict[str, Any]]) -> int:
        raise ConfigurationError(self.reason)

    async def get_dataset(self, name: str) -> Dict[str, Any]:
        raise ConfigurationError(self.reason)

    async def delete_dataset(self, name: str) -> None:
        raise ConfigurationError(self.reason)

    async def log_feedback_score(self, trace_id, name, value, reason=None, category="custom", metadata=None) -> None:
        raise ConfigurationError(self.reason)


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() + "Z"


def _as_object(value: Any) -> Optional[Dict[str, Any]]:
    """The REST API only accepts JSON objects as trace input/output."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    return {"value": value}


class HttpSink(Sink):
    """Sink delivering to an Opik-compatible REST API over httpx."""

    name = "http"

    def __init__(self, settings: TracingSettings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.project_name = settings.project_name
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=settings.request_timeout,
        )
        self._headers = {
            "authorization": settings.api_key or "",
            "Comet-Workspace": settings.workspace or "",
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteSinkError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteSinkError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def send_trace(self, record: TraceRecord) -> None:
        payload = {
            "id": record.id,
            "project_name": self.project_name,
            "name": record.name,
            "start_time": _timestamp(record.start_time),
            "end_time": _timestamp(record.end_time),
            "input": _as_object(record.input),
            "output": _as_object(record.output),
            "metadata": record.metadata,
            "tags": record.tags,
        }
        await self._request("POST", "/v1/private/traces/batch", json={"traces": [payload]})

        spans = [
            {
                "id": span.id,
                "trace_id": record.id,
                "parent_span_id": parent_id,
                "project_name": self.project_name,
                "name": span.name,
                "type": span.type,
                "start_time": _timestamp(span.start_time),
                "end_time": _timestamp(span.end_time),
                "input": _as_object(span.input),
                "output": _as_object(span.output),
                "metadata": span.metadata,
                "tags": span.tags,
            }
            for span, parent_id in record.flat_spans()
        ]
        if spans:
            await self._request("POST", "/v1/private/spans/batch", json={"spans": spans})

    async def create_dataset(self, name: str, description: str = "") -> str:
        dataset_id = str(uuid.uuid4())
        await self._request(
            "POST",
            "/v1/private/datasets",
            json={"id": dataset_id, "name": name, "description": description},
        )
        return dataset_id

    async def add_dataset_items(self, name: str, items: List[Dict[str, Any]]) -> int:
        payload = {
            "dataset_name": name,
            "items": [
                {
                    "id": str(uuid.uuid4()),
                    "source": "sdk",
                    "data": {
                        "input": item.get("input"),
                        "expected_output": item.get("expected_output"),
                        "metadata": item.get("metadata") or {},
                    },
                }
                for item in items
            ],
        }
        await self._request("PUT", "/v1/private/datasets/items", json=payload)
        return len(items)

    async def get_dataset(self, name: str, page_size: int = 100) -> Dict[str, Any]:
        try:
            response = await self._request(
                "POST", "/v1/private/datasets/retrieve", json={"dataset_name": name}
            )
        except RemoteSinkError as e:
            if e.status_code == 404:
                raise NotFoundError(f"Dataset not found: {name}") from e
            raise
        meta = response.json()
        dataset_id = meta.get("id")
        if not dataset_id:
            raise RemoteSinkError(f"Dataset lookup for {name} returned no id")

        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                f"/v1/private/datasets/{dataset_id}/items",
                params={"page": page, "size": page_size},
            )
            body = response.json()
            content = body.get("content", [])
            for entry in content:
                data = entry.get("data") or {}
                items.append({
                    "input": data.get("input"),
                    "expected_output": data.get("expected_output"),
                    "metadata": data.get("metadata") or {},
                })
            if not content or len(items) >= body.get("total", len(items)):
                break
            page += 1

        return {
            "id": dataset_id,
            "name": meta.get("name", name),
            "description": meta.get("description", ""),
            "items": items,
        }

    async def delete_dataset(self, name: str) -> None:
        try:
            await self._request("POST", "/v1/private/datasets/delete", json={"dataset_name": name})
        except RemoteSinkError as e:
            if e.status_code == 404:
                raise NotFoundError(f"Dataset not found: {name}") from e
            raise

    async def log_feedback_score(self, trace_id, name, value, reason=None, category="custom", metadata=None) -> None:
        score = {
            "id": trace_id,
            "project_name": self.project_name,
            "name": name,
            "value": value,
            "reason": reason,
            "category_name": category,
            "source": "sdk",
        }
        await self._request("PUT", "/v1/private/traces/feedback-scores", json={"scores": [score]})

    async def aclose(self) -> None:
        await self._client.aclose()


class DuckDBSink(Sink):
    """Active sink persisting everything to a local DuckDB database.

    DuckDB calls block, so every repository call runs in a worker thread.
    """

    name = "duckdb"

    def __init__(self, db: Database, project_name: str = ""):
        self.db = db
        self.repository = TraceRepository(db)
        self.project_name = project_name

    async def send_trace(self, record: TraceRecord) -> None:
        trace = StoredTrace(
            id=record.id,
            name=record.name,
            project_name=self.project_name,
            input=record.input,
            output=record.output,
            metadata=record.metadata,
            tags=record.tags,
            success=record.success,
            duration_ms=record.duration_ms,
            start_time=record.start_time,
            end_time=record.end_time,
        )
        spans = [
            StoredSpan(
                id=span.id,
                trace_id=record.id,
                name=span.name,
                position=position,
                parent_span_id=parent_id,
                input=span.input,
                output=span.output,
                metadata=span.metadata,
                success=span.success,
                duration_ms=span.duration_ms,
                start_time=span.start_time,
                end_time=span.end_time,
            )
            for position, (span, parent_id) in enumerate(record.flat_spans())
        ]
        await asyncio.to_thread(self.repository.save_trace, trace, spans)

    def _create_dataset(self, name: str, description: str) -> str:
        if self.repository.get_dataset_by_name(name) is not None:
            raise RemoteSinkError(f"Dataset already exists: {name}", status_code=409)
        return self.repository.create_dataset(
            DatasetRecord(id=str(uuid.uuid4()), name=name, description=description)
        )

    async def create_dataset(self, name: str, description: str = "") -> str:
        return await asyncio.to_thread(self._create_dataset, name, description)

    def _dataset_row(self, name: str) -> Dict[str, Any]:
        row = self.repository.get_dataset_by_name(name)
        if row is None:
            raise NotFoundError(f"Dataset not found: {name}")
        return row

    def _add_dataset_items(self, name: str, items: List[Dict[str, Any]]) -> int:
        row = self._dataset_row(name)
        records = [
            DatasetItemRecord(
                id=str(uuid.uuid4()),
                dataset_id=row["id"],
                input=item.get("input"),
                expected_output=item.get("expected_output"),
                metadata=item.get("metadata") or {},
            )
            for item in items
        ]
        return self.repository.add_dataset_items(row["id"], records)

    async def add_dataset_items(self, name: str, items: List[Dict[str, Any]]) -> int:
        return await asyncio.to_thread(self._add_dataset_items, name, items)

    def _get_dataset(self, name: str) -> Dict[str, Any]:
        row = self._dataset_row(name)
        items = [
            {
                "input": item["input"],
                "expected_output": item["expected_output"],
                "metadata": item["metadata"] or {},
            }
            for item in self.repository.get_dataset_items(row["id"])
        ]
        return {
            "id": row["id"],
            "name": row["name"],
            "description": row.get("description") or "",
            "items": items,
        }

    async def get_dataset(self, name: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get_dataset, name)

    def _delete_dataset(self, name: str) -> None:
        row = self._dataset_row(name)
        self.repository.delete_dataset(row["id"])

    async def delete_dataset(self, name: str) -> None:
        await asyncio.to_thread(self._delete_dataset, name)

    async def log_feedback_score(self, trace_id, name, value, reason=None, category="custom", metadata=None) -> None:
        record = FeedbackRecord(
            id=str(uuid.uuid4()),
            trace_id=trace_id,
            name=name,
            value=value,
            category=category,
            reason=reason,
            metadata=metadata or {},
        )
        await asyncio.to_thread(self.repository.save_feedback, record)

    async def aclose(self) -> None:
        await asyncio.to_thread(self.db.close)


def create_sink(settings: TracingSettings, client: Optional[httpx.AsyncClient] = None) -> Sink:
    """Select the sink once from configuration. Never raises for missing credentials."""
    if not settings.enabled:
        logger.info("Tracing disabled by configuration")
        return NullSink("Tracing is disabled")

    if settings.is_configured:
        logger.info(
            f"Tracing to {settings.base_url} (workspace={settings.workspace}, "
            f"project={settings.project_name}, key={settings.masked_key()})"
        )
        return HttpSink(settings, client=client)

    if settings.db_path:
        logger.info(f"Tracing to local DuckDB database at {settings.db_path}")
        return DuckDBSink(Database(settings.db_path), project_name=settings.project_name)

    logger.warning("Tracing not configured - missing API key or workspace; running without tracing")
    return NullSink()
