"""A/B experiments: evaluate several variants on one dataset and rank them."""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from core.values import utc_now

from .metrics import BaseMetric
from .runner import EvaluationResult, EvaluationRunner, FunctionUnderTest

logger = logging.getLogger(__name__)

TIE_THRESHOLD_PP = 1.0
TIE = "tie"
DEFAULT_VARIANT_WEIGHTS = {"control": 50, "variant_a": 50}
COMPARE_METRICS = ["relevance", "accuracy"]


@dataclass
class ExperimentVariant:
    """One named implementation taking part in an experiment."""
    name: str
    function_under_test: FunctionUnderTest
    description: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VariantScore:
    variant: str
    score: float


@dataclass
class ExperimentWinner:
    """Best variant overall plus its per-metric delta against the baseline."""
    name: str
    overall_score: float
    improvements: Dict[str, float] = field(default_factory=dict)


@dataclass
class ExperimentComparison:
    metric_comparison: Dict[str, List[VariantScore]] = field(default_factory=dict)
    best_per_metric: Dict[str, str] = field(default_factory=dict)


@dataclass
class ExperimentResult:
    """Outcome of an experiment. ``variants`` keeps the order variants were run in."""
    experiment_name: str
    dataset_name: str
    variants: Dict[str, EvaluationResult]
    winner: ExperimentWinner
    comparison: ExperimentComparison
    overall_scores: Dict[str, float] = field(default_factory=dict)
    description: str = ""
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def baseline(self) -> Optional[str]:
        return next(iter(self.variants), None)

    def summary(self) -> str:
        lines = [f"Experiment: {self.experiment_name} (dataset: {self.dataset_name})"]
        for metric_name, ranking in self.comparison.metric_comparison.items():
            lines.append(f"  {metric_name}:")
            for position, entry in enumerate(ranking, start=1):
                lines.append(f"    {position}. {entry.variant:<20} {entry.score * 100:.1f}%")
        lines.append(f"Winner: {self.winner.name.upper()} ({self.winner.overall_score * 100:.1f}%)")
        for metric_name, delta in self.winner.improvements.items():
            sign = "+" if delta >= 0 else ""
            lines.append(f"  {metric_name:<20} {sign}{delta * 100:.2f}% vs baseline")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_name": self.experiment_name,
            "dataset_name": self.dataset_name,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "variants": {name: result.to_dict() for name, result in self.variants.items()},
            "overall_scores": dict(self.overall_scores),
            "winner": {
                "name": self.winner.name,
                "overall_score": self.winner.overall_score,
                "improvements": dict(self.winner.improvements),
            },
            "comparison": {
                "metric_comparison": {
                    metric: [{"variant": e.variant, "score": e.score} for e in ranking]
                    for metric, ranking in self.comparison.metric_comparison.items()
                },
                "best_per_metric": dict(self.comparison.best_per_metric),
            },
        }


@dataclass
class AgentComparison:
    """Two-variant comparison with the tie rule applied."""
    baseline: EvaluationResult
    candidate: EvaluationResult
    metric_differences: Dict[str, float]
    winner: str
    improvement_percentage: float


# ── Analysis ──────────────────────────────────────────────────────────────

def _metric_names(variant_results: Dict[str, EvaluationResult]) -> List[str]:
    names: List[str] = []
    for result in variant_results.values():
        for name in result.average_scores:
            if name not in names:
                names.append(name)
    return names


def percentage_points(delta: float) -> float:
    """Score delta in percentage points, rounded past float noise (0.57 - 0.56 is 1.0, not 0.999...)."""
    return round(delta * 100, 9)


def is_tie(score_a: float, score_b: float) -> bool:
    """Overall scores strictly less than one percentage point apart are a tie."""
    return abs(percentage_points(score_b - score_a)) < TIE_THRESHOLD_PP


def analyze_variants(
    variant_results: Dict[str, EvaluationResult],
) -> Tuple[ExperimentWinner, ExperimentComparison, Dict[str, float]]:
    """Rank variants overall and per metric.

    The first variant is the baseline. The winner is the variant with the
    strictly highest overall score, so the earlier variant keeps ties.
    A variant missing a metric contributes 0 for it.
    """
    if not variant_results:
        raise ValueError("Cannot analyze an experiment without variants")

    variant_names = list(variant_results)
    metric_names = _metric_names(variant_results)

    def score(variant: str, metric: str) -> float:
        return variant_results[variant].average_scores.get(metric, 0.0)

    overall: Dict[str, float] = {}
    for variant in variant_names:
        overall[variant] = (
            sum(score(variant, m) for m in metric_names) / len(metric_names) if metric_names else 0.0
        )

    winner_name = variant_names[0]
    for variant in variant_names:
        if overall[variant] > overall[winner_name]:
            winner_name = variant

    baseline = variant_names[0]
    improvements = {m: score(winner_name, m) - score(baseline, m) for m in metric_names}

    comparison = ExperimentComparison()
    for metric in metric_names:
        # sorted() is stable: equal scores keep variant order
        ranking = sorted(
            (VariantScore(variant, score(variant, metric)) for variant in variant_names),
            key=lambda entry: entry.score,
            reverse=True,
        )
        comparison.metric_comparison[metric] = ranking
        comparison.best_per_metric[metric] = ranking[0].variant

    winner = ExperimentWinner(winner_name, overall[winner_name], improvements)
    return winner, comparison, overall


def assign_variant(
    experiment_name: str,
    user_id: str,
    weights: Optional[Dict[str, int]] = None,
) -> str:
    """Deterministically bucket a user into a weighted variant."""
    weights = weights or DEFAULT_VARIANT_WEIGHTS
    total = sum(weights.values())
    if total <= 0:
        raise ValueError("Variant weights must sum to a positive number")

    digest = hashlib.sha256(f"{experiment_name}:{user_id}".encode("utf-8")).hexdigest()
    bucket = int(digest[:16], 16) % total
    cumulative = 0
    for variant, weight in weights.items():
        cumulative += weight
        if bucket < cumulative:
            return variant
    return list(weights)[-1]


async def track_experiment_feedback(
    recorder,
    experiment_name: str,
    variant: str,
    user_id: str,
    feedback: Dict[str, Any],
) -> Optional[str]:
    """Record a user's feedback on an experiment variant as a closed trace."""
    try:
        handle = recorder.start_trace(
            f"experiment_{experiment_name}",
            input={"user_id": user_id, "variant": variant},
            metadata={
                "experiment_name": experiment_name,
                "variant": variant,
                "user_id": user_id,
                "timestamp": utc_now().isoformat(),
            },
            tags=["experiment", experiment_name, variant],
        )
        handle.end(feedback)
        await recorder.flush_and_wait()
        logger.info(f"Tracked experiment feedback for {experiment_name}:{variant}")
        return handle.id
    except Exception as e:
        logger.error(f"Failed to track experiment feedback: {e}")
        return None


# ── Runner ────────────────────────────────────────────────────────────────

class ExperimentRunner:
    """Evaluates variants sequentially on the identical dataset and metric set."""

    def __init__(self, evaluation_runner: EvaluationRunner):
        self.evaluation_runner = evaluation_runner

    async def run_experiment(
        self,
        name: str,
        dataset_name: str,
        variants: List[ExperimentVariant],
        metrics: Optional[List[Union[str, BaseMetric]]] = None,
        max_cases: Optional[int] = None,
        description: str = "",
    ) -> ExperimentResult:
        if not variants:
            raise ValueError("An experiment needs at least one variant")
        names = [v.name for v in variants]
        if len(set(names)) != len(names):
            raise ValueError(f"Variant names must be unique: {names}")

        engine = self.evaluation_runner.metrics_engine
        metric_list = engine.resolve(metrics) if metrics is not None else engine.default_metrics(variants[0].name)

        logger.info(
            f"Running experiment: {name} on {dataset_name} "
            f"(variants: {', '.join(names)}; metrics: {', '.join(m.name for m in metric_list)})"
        )

        variant_results: Dict[str, EvaluationResult] = {}
        for index, variant in enumerate(variants, start=1):
            logger.info(f"Evaluating variant {index}/{len(variants)}: {variant.name}")
            result = await self.evaluation_runner.evaluate(
                agent_name=variant.name,
                function_under_test=variant.function_under_test,
                dataset_name=dataset_name,
                metrics=metric_list,
                max_cases=max_cases,
                experiment_name=name,
            )
            variant_results[variant.name] = result
            logger.info(
                f"{variant.name}: overall {result.overall_score * 100:.1f}% "
                f"({result.successful_cases}/{result.total_cases} succeeded)"
            )

        winner, comparison, overall = analyze_variants(variant_results)
        experiment = ExperimentResult(
            experiment_name=name,
            dataset_name=dataset_name,
            variants=variant_results,
            winner=winner,
            comparison=comparison,
            overall_scores=overall,
            description=description,
        )
        logger.info(f"Experiment {name} winner: {winner.name} ({winner.overall_score * 100:.1f}%)")
        return experiment

    async def quick_compare(
        self,
        dataset_name: str,
        baseline: FunctionUnderTest,
        candidate: FunctionUnderTest,
        baseline_name: str = "baseline",
        candidate_name: str = "candidate",
        metrics: Optional[List[Union[str, BaseMetric]]] = None,
    ) -> ExperimentResult:
        """Two-variant experiment whose winner is ``"tie"`` within one percentage point."""
        result = await self.run_experiment(
            name=f"quick_comparison_{int(time.time() * 1000)}",
            dataset_name=dataset_name,
            variants=[
                ExperimentVariant(baseline_name, baseline),
                ExperimentVariant(candidate_name, candidate),
            ],
            metrics=metrics,
            description="Quick A/B comparison",
        )
        if is_tie(result.overall_scores[baseline_name], result.overall_scores[candidate_name]):
            result.winner = ExperimentWinner(TIE, result.winner.overall_score, result.winner.improvements)
        return result

    async def compare_agents(
        self,
        dataset_name: str,
        baseline: ExperimentVariant,
        candidate: ExperimentVariant,
        metrics: Optional[List[Union[str, BaseMetric]]] = None,
    ) -> AgentComparison:
        """Compare a candidate against a baseline metric by metric."""
        engine = self.evaluation_runner.metrics_engine
        metric_list = engine.resolve(metrics if metrics is not None else COMPARE_METRICS)

        baseline_result = await self.evaluation_runner.evaluate(
            baseline.name, baseline.function_under_test, dataset_name, metrics=metric_list
        )
        candidate_result = await self.evaluation_runner.evaluate(
            candidate.name, candidate.function_under_test, dataset_name, metrics=metric_list
        )

        # A metric missing on either side (e.g. every case failed) counts as 0
        metric_names = _metric_names({"baseline": baseline_result, "candidate": candidate_result})
        differences = {
            name: candidate_result.average_scores.get(name, 0.0) - baseline_result.average_scores.get(name, 0.0)
            for name in metric_names
        }
        average = sum(differences.values()) / len(differences) if differences else 0.0
        improvement_percentage = percentage_points(average)

        if abs(improvement_percentage) < TIE_THRESHOLD_PP:
            winner = TIE
        elif improvement_percentage > 0:
            winner = "candidate"
        else:
            winner = "baseline"

        logger.info(
            f"Comparison {baseline.name} vs {candidate.name}: winner {winner.upper()} "
            f"({improvement_percentage:+.2f}%)"
        )
        return AgentComparison(
            baseline=baseline_result,
            candidate=candidate_result,
            metric_differences=differences,
            winner=winner,
            improvement_percentage=improvement_percentage,
        )
