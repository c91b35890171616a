"""Agent health computed from locally stored traces."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import numpy as np

from core.values import utc_now
from storage.repository import TraceRepository

logger = logging.getLogger(__name__)

MAX_TRACES = 100_000


@dataclass
class AgentHealth:
    agent_name: str
    period_start: datetime
    period_end: datetime
    total_calls: int = 0
    success_rate: float = 0.0
    average_latency: float = 0.0
    p95_latency: float = 0.0
    p99_latency: float = 0.0
    error_rate: float = 0.0
    total_cost: float = 0.0
    average_feedback_score: Optional[float] = None
    top_errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "period": {"start": self.period_start.isoformat(), "end": self.period_end.isoformat()},
            "metrics": {
                "total_calls": self.total_calls,
                "success_rate": self.success_rate,
                "average_latency": self.average_latency,
                "p95_latency": self.p95_latency,
                "p99_latency": self.p99_latency,
                "error_rate": self.error_rate,
                "total_cost": self.total_cost,
                "average_feedback_score": self.average_feedback_score,
            },
            "top_errors": self.top_errors,
        }


def get_agent_health(
    repository: TraceRepository,
    agent_name: str,
    hours: int = 24,
    now: Optional[datetime] = None,
    top: int = 5,
) -> AgentHealth:
    """Summarize the last ``hours`` of traces named ``agent_name``."""
    end = now or utc_now()
    start = end - timedelta(hours=hours)
    traces = [
        t for t in repository.list_traces(name=agent_name, since=start, limit=MAX_TRACES)
        if t["start_time"] <= end
    ]
    health = AgentHealth(agent_name=agent_name, period_start=start, period_end=end)
    if not traces:
        return health

    total = len(traces)
    successes = sum(1 for t in traces if t.get("success"))
    latencies = np.array([t["duration_ms"] for t in traces if t.get("duration_ms") is not None], dtype=float)
    errors = Counter(
        (t.get("metadata") or {}).get("error_message") or "unknown error"
        for t in traces if t.get("success") is False
    )

    health.total_calls = total
    health.success_rate = successes / total
    health.error_rate = sum(errors.values()) / total
    if latencies.size:
        health.average_latency = float(latencies.mean())
        health.p95_latency = float(np.percentile(latencies, 95))
        health.p99_latency = float(np.percentile(latencies, 99))
    health.total_cost = float(sum((t.get("metadata") or {}).get("cost") or 0.0 for t in traces))
    health.average_feedback_score = repository.average_feedback([t["id"] for t in traces])
    health.top_errors = [{"error": error, "count": count} for error, count in errors.most_common(top)]

    logger.debug(f"Health for {agent_name}: {total} calls, success rate {health.success_rate:.2f}")
    return health
