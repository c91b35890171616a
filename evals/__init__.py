"""Evaluation framework: metrics, datasets, evaluation and experiment runners."""

from .dataset import (
    Dataset, DatasetItem, DatasetItemMetadata, DatasetLoader, DatasetStore,
    DifficultyLevel, create_sample_dataset, next_version_name,
)
from .experiments import (
    AgentComparison, ExperimentResult, ExperimentRunner, ExperimentVariant,
    analyze_variants, assign_variant, track_experiment_feedback,
)
from .metrics import (
    MetricsEngine, MetricResult, BaseMetric, FunctionMetric,
    RelevanceMetric, AccuracyMetric, HallucinationMetric, PersonalizationMetric,
    ActionabilityMetric, ResponseTimeMetric, ConfidenceCalibrationMetric,
    get_default_metrics, string_similarity, structural_similarity,
)
from .runner import (
    EvaluationCaseResult, EvaluationConfig, EvaluationResult, EvaluationRunner,
    load_results, save_results,
)

__all__ = [
    "Dataset",
    "DatasetItem",
    "DatasetItemMetadata",
    "DatasetLoader",
    "DatasetStore",
    "DifficultyLevel",
    "create_sample_dataset",
    "next_version_name",
    "AgentComparison",
    "ExperimentResult",
    "ExperimentRunner",
    "ExperimentVariant",
    "analyze_variants",
    "assign_variant",
    "track_experiment_feedback",
    "MetricsEngine",
    "MetricResult",
    "BaseMetric",
    "FunctionMetric",
    "RelevanceMetric",
    "AccuracyMetric",
    "HallucinationMetric",
    "PersonalizationMetric",
    "ActionabilityMetric",
    "ResponseTimeMetric",
    "ConfidenceCalibrationMetric",
    "get_default_metrics",
    "string_similarity",
    "structural_similarity",
    "EvaluationCaseResult",
    "EvaluationConfig",
    "EvaluationResult",
    "EvaluationRunner",
    "load_results",
    "save_results",
]
