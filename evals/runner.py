"""Offline evaluation of a function under test against a stored dataset."""

import inspect
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from core.errors import FunctionUnderTestError
from core.values import to_trace_value, utc_now

from .dataset import DatasetStore
from .metrics import BaseMetric, MetricResult, MetricsEngine

logger = logging.getLogger(__name__)

FunctionUnderTest = Callable[[Any], Any]


@dataclass
class EvaluationCaseResult:
    """Result of running one dataset item."""
    input: Any
    output: Any = None
    expected_output: Any = None
    error: Optional[str] = None
    metrics: List[MetricResult] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def average_score(self) -> float:
        if not self.metrics:
            return 0.0
        return sum(m.value for m in self.metrics) / len(self.metrics)


@dataclass
class EvaluationResult:
    """Result of running an evaluation on a dataset. Treated as immutable once built."""
    agent_name: str
    dataset_name: str
    total_cases: int
    successful_cases: int
    failed_cases: int
    average_scores: Dict[str, float]
    results: List[EvaluationCaseResult]
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def success_rate(self) -> float:
        """Fraction of cases whose function call succeeded."""
        if self.total_cases == 0:
            return 0.0
        return self.successful_cases / self.total_cases

    @property
    def overall_score(self) -> float:
        """Mean of the per-metric averages."""
        if not self.average_scores:
            return 0.0
        return sum(self.average_scores.values()) / len(self.average_scores)

    def get_failed_results(self) -> List[EvaluationCaseResult]:
        return [result for result in self.results if not result.success]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "agent_name": self.agent_name,
            "dataset_name": self.dataset_name,
            "total_cases": self.total_cases,
            "successful_cases": self.successful_cases,
            "failed_cases": self.failed_cases,
            "success_rate": self.success_rate,
            "overall_score": self.overall_score,
            "average_scores": dict(self.average_scores),
            "timestamp": self.timestamp.isoformat(),
            "results": [
                {
                    "input": to_trace_value(result.input),
                    "output": to_trace_value(result.output),
                    "expected_output": to_trace_value(result.expected_output),
                    "error": result.error,
                    "metrics": [to_trace_value(asdict(m)) for m in result.metrics],
                    "metadata": to_trace_value(result.metadata),
                }
                for result in self.results
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationResult":
        return cls(
            agent_name=data["agent_name"],
            dataset_name=data["dataset_name"],
            total_cases=data["total_cases"],
            successful_cases=data["successful_cases"],
            failed_cases=data["failed_cases"],
            average_scores=dict(data.get("average_scores", {})),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            results=[
                EvaluationCaseResult(
                    input=r.get("input"),
                    output=r.get("output"),
                    expected_output=r.get("expected_output"),
                    error=r.get("error"),
                    metrics=[MetricResult(**m) for m in r.get("metrics", [])],
                    metadata=r.get("metadata") or {},
                )
                for r in data.get("results", [])
            ],
        )


@dataclass
class EvaluationConfig:
    """Arguments of one ``EvaluationRunner.evaluate`` call."""
    agent_name: str
    function_under_test: FunctionUnderTest
    dataset_name: str
    metrics: Optional[List[Union[str, BaseMetric]]] = None
    max_cases: Optional[int] = None
    experiment_name: Optional[str] = None
    verbose: bool = False


class EvaluationRunner:
    """Runs a function under test over a dataset and scores every case.

    Cases run sequentially so ``results`` always follows dataset order and
    per-case durations are not skewed by contention.
    """

    def __init__(self, datasets: DatasetStore, metrics_engine: Optional[MetricsEngine] = None, recorder=None):
        self.datasets = datasets
        self.metrics_engine = metrics_engine or MetricsEngine()
        self.recorder = recorder

    async def evaluate(
        self,
        agent_name: str,
        function_under_test: FunctionUnderTest,
        dataset_name: str,
        metrics: Optional[List[Union[str, BaseMetric]]] = None,
        max_cases: Optional[int] = None,
        experiment_name: Optional[str] = None,
        verbose: bool = False,
    ) -> EvaluationResult:
        metric_list = (
            self.metrics_engine.resolve(metrics)
            if metrics is not None
            else self.metrics_engine.default_metrics(agent_name)
        )
        log = logger.info if verbose else logger.debug

        dataset = await self.datasets.get(dataset_name)
        items = dataset.head(max_cases)
        logger.info(
            f"Evaluating {agent_name} on dataset: {dataset_name} "
            f"({len(items)} cases, metrics: {', '.join(m.name for m in metric_list)})"
        )

        results: List[EvaluationCaseResult] = []
        scores: Dict[str, List[float]] = {}
        successful = 0
        failed = 0

        for index, item in enumerate(items, start=1):
            started = time.perf_counter()
            try:
                output = function_under_test(item.input)
                if inspect.isawaitable(output):
                    output = await output
            except Exception as e:
                duration_ms = round((time.perf_counter() - started) * 1000, 2)
                failure = FunctionUnderTestError(e)
                failed += 1
                results.append(EvaluationCaseResult(
                    input=item.input,
                    expected_output=item.expected_output,
                    error=str(failure),
                    metadata={**item.metadata, "duration_ms": duration_ms},
                ))
                log(f"[{index}/{len(items)}] Error: {failure} ({duration_ms}ms)")
                continue

            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            case_metadata = {**item.metadata, "duration_ms": duration_ms}
            scored = await self.metrics_engine.score_all(
                metric_list, item.input, output, item.expected_output, case_metadata
            )
            for name, metric_result in scored.items():
                scores.setdefault(name, []).append(metric_result.value)

            case = EvaluationCaseResult(
                input=item.input,
                output=output,
                expected_output=item.expected_output,
                metrics=list(scored.values()),
                metadata=case_metadata,
            )
            results.append(case)
            successful += 1
            log(f"[{index}/{len(items)}] Score: {case.average_score * 100:.1f}% ({duration_ms}ms)")

        average_scores = {name: sum(values) / len(values) for name, values in scores.items()}
        result = EvaluationResult(
            agent_name=agent_name,
            dataset_name=dataset_name,
            total_cases=len(items),
            successful_cases=successful,
            failed_cases=failed,
            average_scores=average_scores,
            results=results,
        )

        logger.info(
            f"Evaluation complete: {agent_name} success rate {result.success_rate * 100:.1f}%, "
            + ", ".join(f"{name}={value * 100:.1f}%" for name, value in average_scores.items())
        )

        if experiment_name and self.recorder is not None:
            await self._record_summary(result, experiment_name)

        return result

    async def evaluate_config(self, config: EvaluationConfig) -> EvaluationResult:
        return await self.evaluate(
            agent_name=config.agent_name,
            function_under_test=config.function_under_test,
            dataset_name=config.dataset_name,
            metrics=config.metrics,
            max_cases=config.max_cases,
            experiment_name=config.experiment_name,
            verbose=config.verbose,
        )

    async def _record_summary(self, result: EvaluationResult, experiment_name: str) -> None:
        """Record the evaluation as one closed trace. Failures are only logged."""
        try:
            handle = self.recorder.start_trace(
                f"evaluation_{result.agent_name}",
                input={"dataset_name": result.dataset_name, "experiment_name": experiment_name},
                metadata={
                    "total_cases": result.total_cases,
                    "successful_cases": result.successful_cases,
                    "failed_cases": result.failed_cases,
                    "timestamp": result.timestamp.isoformat(),
                    "experiment_name": experiment_name,
                },
                tags=["evaluation", result.agent_name, experiment_name],
            )
            handle.end({"average_scores": result.average_scores, "success_rate": result.success_rate})
            await self.recorder.flush_and_wait()
        except Exception as e:
            logger.error(f"Failed to record evaluation summary: {e}")


def save_results(result: EvaluationResult, path: Union[str, Path]) -> None:
    """Write an evaluation result as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, default=str)
    logger.info(f"Saved evaluation results to {path}")


def load_results(path: Union[str, Path]) -> EvaluationResult:
    with open(path, "r", encoding="utf-8") as f:
        return EvaluationResult.from_dict(json.load(f))
