"""Metrics engine: named scoring functions producing a 0-1 score and a rationale.

Every metric resolves. A metric that raises internally is converted into a
neutral 0.5 result so one failing metric never aborts an evaluation run.
"""

import asyncio
import inspect
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import numpy as np

from core.errors import MetricEvaluationError
from core.values import lookup, to_trace_value
from llm.base import parse_json_response

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5

_WORD_RE = re.compile(r"[a-z0-9]+")
_BULLET_RE = re.compile(r"^[\s\-*\d.)]+")

ACTION_KEYS = ("actions", "action_items", "next_steps", "steps", "recommendations", "tasks", "activities")
ACTION_VERBS = (
    "join", "attend", "contact", "create", "schedule", "organize", "volunteer",
    "register", "sign", "start", "visit", "call", "email", "share", "plan",
    "donate", "reach", "invite", "prepare", "complete", "review", "set",
)


# ── Text helpers ──────────────────────────────────────────────────────────

def _canonical(value: Any) -> str:
    """Serialize a payload with sorted keys so key order never matters."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(to_trace_value(value), sort_keys=True, default=str)


def _tokens(value: Any) -> List[str]:
    return _WORD_RE.findall(_canonical(value).lower())


def _content_words(value: Any) -> set:
    return {t for t in _tokens(value) if len(t) > 3}


def _cosine_similarity(a, b) -> float:
    """Compute cosine similarity between two vectors."""
    a, b = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def _term_vectors(text_a: Any, text_b: Any):
    tokens_a, tokens_b = _tokens(text_a), _tokens(text_b)
    vocab = {t: i for i, t in enumerate(sorted(set(tokens_a) | set(tokens_b)))}
    vec_a, vec_b = np.zeros(len(vocab)), np.zeros(len(vocab))
    for t in tokens_a:
        vec_a[vocab[t]] += 1
    for t in tokens_b:
        vec_b[vocab[t]] += 1
    return vec_a, vec_b


def _leaf_strings(value: Any) -> Iterable[str]:
    value = to_trace_value(value)
    if isinstance(value, dict):
        for v in value.values():
            yield from _leaf_strings(v)
    elif isinstance(value, list):
        for v in value:
            yield from _leaf_strings(v)
    elif isinstance(value, str) and value.strip():
        yield value


# ── Similarity ────────────────────────────────────────────────────────────

def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """``1 - edit_distance / max(len)``, case-insensitive. Two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a.lower(), b.lower()) / longest


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _similarity(a: Any, b: Any) -> float:
    if isinstance(a, dict) and isinstance(b, dict):
        keys = set(a) | set(b)
        if not keys:
            return 1.0
        return sum(_similarity(a[k], b[k]) if k in a and k in b else 0.0 for k in keys) / len(keys)

    if isinstance(a, list) and isinstance(b, list):
        length = max(len(a), len(b))
        if length == 0:
            return 1.0
        return sum(
            _similarity(a[i], b[i]) if i < len(a) and i < len(b) else 0.0
            for i in range(length)
        ) / length

    if isinstance(a, str) and isinstance(b, str):
        return string_similarity(a, b)

    if isinstance(a, bool) or isinstance(b, bool) or a is None or b is None:
        return 1.0 if type(a) is type(b) and a == b else 0.0

    if _is_number(a) and _is_number(b):
        if a == b:
            return 1.0
        if not (math.isfinite(a) and math.isfinite(b)):
            return 0.0
        return max(0.0, 1.0 - abs(a - b) / max(abs(a), abs(b)))

    return string_similarity(_canonical(a), _canonical(b))


def structural_similarity(output: Any, expected: Any) -> float:
    """Compare two payloads structurally rather than by serialized text."""
    return _similarity(to_trace_value(output), to_trace_value(expected))


# ── Result container ──────────────────────────────────────────────────────

@dataclass
class MetricResult:
    """Result of a single metric evaluation, ``value`` in [0, 1]."""
    name: str
    value: float
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        try:
            value = float(self.value)
        except (TypeError, ValueError):
            value = NEUTRAL_SCORE
        if math.isnan(value):
            value = NEUTRAL_SCORE
        self.value = min(1.0, max(0.0, value))


# ── Metric base classes ───────────────────────────────────────────────────

class BaseMetric(ABC):
    """A named scoring function over ``(input, output, expected_output, context)``."""

    name: str = "metric"

    @abstractmethod
    async def score(self, input: Any, output: Any, expected_output: Any = None,
                    context: Any = None) -> MetricResult:
        ...

    async def __call__(self, input: Any, output: Any, expected_output: Any = None,
                       context: Any = None) -> MetricResult:
        try:
            result = await self.score(input, output, expected_output, context)
            if not isinstance(result, MetricResult):
                raise MetricEvaluationError(f"{self.name} returned {type(result).__name__}")
            return result
        except Exception as e:
            logger.warning(f"Metric {self.name} failed: {e}")
            return MetricResult(self.name, NEUTRAL_SCORE, f"Evaluation failed: {e}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class FunctionMetric(BaseMetric):
    """Adapts a plain sync or async callable into a metric.

    The callable may return a number, a ``MetricResult`` or a dict with
    ``value`` and optional ``reason``/``metadata``.
    """

    def __init__(self, name: str, fn: Callable[..., Any]):
        self.name = name
        self.fn = fn

    async def score(self, input, output, expected_output=None, context=None) -> MetricResult:
        value = self.fn(input, output, expected_output, context)
        if inspect.isawaitable(value):
            value = await value

        if isinstance(value, MetricResult):
            return value
        if isinstance(value, dict):
            return MetricResult(
                self.name, value["value"], value.get("reason"), dict(value.get("metadata") or {})
            )
        if _is_number(value):
            return MetricResult(self.name, value)
        raise MetricEvaluationError(f"{self.name} returned unsupported {type(value).__name__}")


class JudgedMetric(BaseMetric):
    """Metric scored by a judge model when one is supplied, by a heuristic otherwise.

    The judge is any ``async generate(prompt) -> ModelResponse`` callable and
    is asked for ``{"score": 0-100, "reason": "..."}``.
    """

    prompt_template: str = ""
    invert = False

    def __init__(self, judge=None):
        self.judge = judge

    async def score(self, input, output, expected_output=None, context=None) -> MetricResult:
        if self.judge is None:
            return self.heuristic(input, output, expected_output, context)
        return await self._judge_score(input, output, context)

    async def _judge_score(self, input, output, context) -> MetricResult:
        prompt = self.prompt_template.format(
            input=json.dumps(to_trace_value(input), indent=2),
            output=json.dumps(to_trace_value(output), indent=2),
            context=json.dumps({"input": to_trace_value(input), "context": to_trace_value(context)}, indent=2),
        )
        response = await self.judge(prompt)
        text = getattr(response, "text", response)
        parsed = parse_json_response(text)
        if not isinstance(parsed, dict) or not _is_number(parsed.get("score")):
            raise MetricEvaluationError("Judge returned no usable score")

        value = parsed["score"] / 100
        if self.invert:
            value = 1 - value
        metadata = {k: v for k, v in parsed.items() if k not in ("score", "reason")}
        metadata["method"] = "llm_judge"
        return MetricResult(self.name, value, parsed.get("reason"), metadata)

    @abstractmethod
    def heuristic(self, input, output, expected_output=None, context=None) -> MetricResult:
        """Score without a judge model."""


# ── Provided metrics ──────────────────────────────────────────────────────

class RelevanceMetric(JudgedMetric):
    """How on-topic the output is for the input."""

    name = "relevance"
    prompt_template = (
        "Evaluate the relevance of this AI agent response.\n\n"
        "Input: {input}\nOutput: {output}\n\n"
        "Score the relevance from 0-100:\n"
        "- 0: Completely irrelevant\n- 50: Somewhat relevant\n"
        "- 100: Perfectly relevant and on-topic\n\n"
        'Respond with JSON:\n{{"score": <number>, "reason": "<brief explanation>"}}'
    )

    def heuristic(self, input, output, expected_output=None, context=None) -> MetricResult:
        if not _tokens(output):
            return MetricResult(self.name, 0.0, "Empty output", {"method": "term_cosine"})
        vec_in, vec_out = _term_vectors(input, output)
        score = _cosine_similarity(vec_in, vec_out)
        return MetricResult(
            self.name, score, f"Term similarity to input: {score * 100:.1f}%", {"method": "term_cosine"}
        )


class HallucinationMetric(JudgedMetric):
    """Hallucination freedom: 1.0 means fully grounded in input and context."""

    name = "hallucination"
    invert = True
    prompt_template = (
        "Detect hallucinations in this AI response.\n\n"
        "Context/Input: {context}\nAI Output: {output}\n\n"
        "Score hallucination from 0-100:\n"
        "- 0: Fully factual, grounded in context\n- 50: Some unverified claims\n"
        "- 100: Completely hallucinated, false information\n\n"
        'Respond with JSON:\n{{"score": <number>, "reason": "<explanation>", '
        '"examples": ["<hallucination 1>"]}}'
    )

    def heuristic(self, input, output, expected_output=None, context=None) -> MetricResult:
        claimed = _content_words(output)
        if not claimed:
            return MetricResult(self.name, 1.0, "No claims in output", {"method": "grounding"})
        reference = _content_words(input) | _content_words(context) | _content_words(expected_output)
        grounded = len(claimed & reference) / len(claimed)
        ungrounded = sorted(claimed - reference)[:10]
        return MetricResult(
            self.name, grounded, f"{grounded * 100:.1f}% of output terms grounded in input",
            {"method": "grounding", "ungrounded_terms": ungrounded},
        )


class PersonalizationMetric(JudgedMetric):
    """How tailored the output is to the user context in the input."""

    name = "personalization"
    prompt_template = (
        "Evaluate how personalized this response is to the user's context.\n\n"
        "User Context: {input}\nResponse: {output}\n\n"
        "Score personalization from 0-100:\n"
        "- 0: Generic, could apply to anyone\n"
        "- 50: Some personalization, mentions user context\n"
        "- 100: Highly personalized, deeply tailored to user's specific situation\n\n"
        'Respond with JSON:\n{{"score": <number>, "reason": "<explanation>", '
        '"personalizations": ["<element 1>"]}}'
    )

    def heuristic(self, input, output, expected_output=None, context=None) -> MetricResult:
        facts = {s.strip().lower() for s in _leaf_strings(input) if len(s.strip()) > 2}
        if not facts:
            return MetricResult(self.name, NEUTRAL_SCORE, "No user context to personalize against",
                                {"method": "mention_coverage"})
        text = _canonical(output).lower()
        mentioned = sorted(f for f in facts if f in text)
        score = len(mentioned) / len(facts)
        return MetricResult(
            self.name, score, f"Mentions {len(mentioned)} of {len(facts)} user context values",
            {"method": "mention_coverage", "personalizations": mentioned[:10]},
        )


class ActionabilityMetric(JudgedMetric):
    """Whether the output contains clear, specific actions."""

    name = "actionability"
    target_actions = 3
    prompt_template = (
        "Evaluate how actionable this agent response is.\n\n"
        "Response: {output}\n\n"
        "Score actionability from 0-100:\n"
        "- 0: Vague, no clear actions\n- 50: Some actions, but not specific\n"
        "- 100: Clear, specific, immediately actionable steps\n\n"
        'Respond with JSON:\n{{"score": <number>, "reason": "<explanation>", "actions_found": <number>}}'
    )

    def _count_actions(self, value: Any) -> int:
        value = to_trace_value(value)
        if isinstance(value, dict):
            count = 0
            for key, item in value.items():
                if key.lower() in ACTION_KEYS and isinstance(item, list):
                    count += len(item)
                else:
                    count += self._count_actions(item)
            return count
        if isinstance(value, list):
            return sum(self._count_actions(item) for item in value)
        if isinstance(value, str):
            sentences = re.split(r"[.!?;\n]+", value.lower())
            starts = (_BULLET_RE.sub("", s).split(" ", 1)[0] for s in sentences)
            return sum(1 for word in starts if word in ACTION_VERBS)
        return 0

    def heuristic(self, input, output, expected_output=None, context=None) -> MetricResult:
        actions = self._count_actions(output)
        score = min(1.0, actions / self.target_actions)
        return MetricResult(
            self.name, score, f"Found {actions} action item(s)",
            {"method": "action_detection", "actions_found": actions},
        )


class AccuracyMetric(BaseMetric):
    """Structural similarity between output and expected output."""

    name = "accuracy"

    async def score(self, input, output, expected_output=None, context=None) -> MetricResult:
        if expected_output is None:
            return MetricResult(self.name, 0.0, "No expected output provided")
        similarity = structural_similarity(output, expected_output)
        return MetricResult(
            self.name, similarity, f"Output similarity: {similarity * 100:.1f}%",
            {
                "output_length": len(_canonical(output)),
                "expected_length": len(_canonical(expected_output)),
            },
        )


class ResponseTimeMetric(BaseMetric):
    """Piecewise latency score from ``duration_ms``."""

    name = "response_time"
    THRESHOLDS = ((1000, 1.0), (3000, 0.8), (5000, 0.5))
    SLOW_SCORE = 0.2

    async def score(self, input, output, expected_output=None, context=None) -> MetricResult:
        duration = (
            lookup(lookup(output, "metadata"), "duration_ms")
            or lookup(output, "duration_ms")
            or lookup(context, "duration_ms")
            or 0
        )
        duration = float(duration)

        value = self.SLOW_SCORE
        for limit, limit_score in self.THRESHOLDS:
            if duration <= limit:
                value = limit_score
                break
        return MetricResult(self.name, value, f"Response time: {duration:.0f}ms", {"duration_ms": duration})


class ConfidenceCalibrationMetric(BaseMetric):
    """Rewards high confidence on correct outputs and penalizes it on wrong ones."""

    name = "confidence_calibration"

    async def score(self, input, output, expected_output=None, context=None) -> MetricResult:
        if expected_output is None:
            return MetricResult(self.name, NEUTRAL_SCORE, "No expected output to compare")

        confidence = lookup(output, "confidence")
        confidence = NEUTRAL_SCORE if confidence is None else float(confidence)

        def non_empty(obj, key):
            items = lookup(obj, key)
            return isinstance(items, (list, tuple)) and len(items) > 0

        correct = (
            (non_empty(output, "matches") and non_empty(expected_output, "matches"))
            or (non_empty(output, "recommendations") and non_empty(expected_output, "recommendations"))
        )
        value = confidence if correct else 1 - confidence
        return MetricResult(
            self.name, value, f"Confidence: {confidence:.2f}, Correct: {correct}",
            {"confidence": confidence, "is_correct": correct},
        )


# ── Metrics Engine (registry) ─────────────────────────────────────────────

DEFAULT_METRIC_SETS: Dict[str, List[str]] = {
    "skill_matcher": ["relevance", "accuracy", "personalization"],
    "community_intelligence": ["relevance", "hallucination", "actionability"],
    "engagement_coach": ["personalization", "actionability", "response_time"],
    "impact_measurement": ["hallucination", "accuracy"],
    "action_coordinator": ["relevance", "actionability"],
    "master_coordinator": ["accuracy", "response_time"],
}
FALLBACK_METRICS = ["relevance", "accuracy"]


class MetricsEngine:
    """Registry of named metrics and the default sets per agent type."""

    def __init__(self, judge=None):
        self.judge = judge
        self._metrics: Dict[str, BaseMetric] = {}
        for metric in (
            RelevanceMetric(judge),
            AccuracyMetric(),
            HallucinationMetric(judge),
            PersonalizationMetric(judge),
            ActionabilityMetric(judge),
            ResponseTimeMetric(),
            ConfidenceCalibrationMetric(),
        ):
            self.register(metric)

    def register(self, metric: BaseMetric) -> None:
        self._metrics[metric.name] = metric

    def get(self, name: str) -> BaseMetric:
        try:
            return self._metrics[name]
        except KeyError:
            raise ValueError(f"Unknown metric: {name}. Available: {', '.join(self.names())}") from None

    def names(self) -> List[str]:
        return list(self._metrics)

    def resolve(self, metrics: Iterable[Union[str, BaseMetric]]) -> List[BaseMetric]:
        """Turn a mix of metric names and metric objects into metric objects."""
        return [self.get(m) if isinstance(m, str) else m for m in metrics]

    def default_metrics(self, agent_type: str) -> List[BaseMetric]:
        names = DEFAULT_METRIC_SETS.get(agent_type, FALLBACK_METRICS)
        return [self.get(name) for name in names]

    async def score_all(
        self,
        metrics: List[BaseMetric],
        input: Any,
        output: Any,
        expected_output: Any = None,
        context: Any = None,
    ) -> Dict[str, MetricResult]:
        """Score one case with every metric concurrently. Never raises."""
        results = await asyncio.gather(
            *(metric(input, output, expected_output, context) for metric in metrics)
        )
        return {result.name: result for result in results}


def get_default_metrics(agent_type: str, judge=None) -> List[BaseMetric]:
    return MetricsEngine(judge=judge).default_metrics(agent_type)
