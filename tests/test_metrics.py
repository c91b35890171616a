"""Tests for the metrics engine."""

import json

import pytest

from evals.metrics import (
    AccuracyMetric,
    ActionabilityMetric,
    BaseMetric,
    ConfidenceCalibrationMetric,
    FunctionMetric,
    HallucinationMetric,
    JudgedMetric,
    MetricResult,
    MetricsEngine,
    PersonalizationMetric,
    RelevanceMetric,
    ResponseTimeMetric,
    edit_distance,
    get_default_metrics,
    string_similarity,
    structural_similarity,
)
from llm.base import ModelResponse


class FakeJudge:
    def __init__(self, text):
        self.text = text
        self.prompts = []

    async def __call__(self, prompt, images=None):
        self.prompts.append(prompt)
        return ModelResponse(text=self.text)


class TestMetricResult:
    def test_clamps_into_range(self):
        assert MetricResult("m", 1.7).value == 1.0
        assert MetricResult("m", -0.2).value == 0.0

    def test_nan_becomes_neutral(self):
        assert MetricResult("m", float("nan")).value == 0.5
        assert MetricResult("m", "not a number").value == 0.5


class TestSimilarity:
    def test_edit_distance(self):
        assert edit_distance("kitten", "sitting") == 3
        assert edit_distance("", "abc") == 3

    def test_string_similarity(self):
        assert string_similarity("", "") == 1.0
        assert string_similarity("Paris", "paris") == 1.0
        assert string_similarity("abcd", "abce") == pytest.approx(0.75)

    def test_key_order_does_not_matter(self):
        a = {"name": "Ada", "skills": ["python", "sql"], "level": 3}
        b = {"level": 3, "skills": ["python", "sql"], "name": "Ada"}
        assert structural_similarity(a, b) == 1.0

    def test_partial_structural_match(self):
        score = structural_similarity({"a": 1, "b": 2}, {"a": 1, "b": 3})
        assert 0.5 < score < 1.0
        assert structural_similarity({"a": 1}, {"b": 1}) == 0.0

    def test_list_length_mismatch(self):
        assert structural_similarity([1, 2], [1, 2, 3, 4]) == pytest.approx(0.5)

    def test_bool_and_none(self):
        assert structural_similarity(True, True) == 1.0
        assert structural_similarity(True, 1) == 0.0
        assert structural_similarity(None, None) == 1.0


class TestAccuracyMetric:
    def setup_method(self):
        self.metric = AccuracyMetric()

    @pytest.mark.asyncio
    async def test_exact_structured_match(self):
        result = await self.metric({}, {"matches": [1, 2]}, {"matches": [1, 2]})
        assert result.value == 1.0
        assert result.name == "accuracy"

    @pytest.mark.asyncio
    async def test_no_expected_output(self):
        result = await self.metric({}, "anything", None)
        assert result.value == 0.0
        assert result.reason == "No expected output provided"


class TestJudgedMetric:
    def test_heuristic_is_required(self):
        class Unscored(JudgedMetric):
            name = "unscored"

        with pytest.raises(TypeError):
            Unscored()


class TestRelevanceMetric:
    @pytest.mark.asyncio
    async def test_heuristic_relevant_beats_irrelevant(self):
        metric = RelevanceMetric()
        question = {"question": "volunteer opportunities for python developers in education"}
        relevant = await metric(question, "Python developers can volunteer teaching education workshops")
        irrelevant = await metric(question, "The weather tomorrow is sunny")
        assert relevant.value > irrelevant.value
        assert relevant.metadata["method"] == "term_cosine"

    @pytest.mark.asyncio
    async def test_empty_output_scores_zero(self):
        result = await RelevanceMetric()({"q": "x"}, "")
        assert result.value == 0.0

    @pytest.mark.asyncio
    async def test_judge_score_is_scaled(self):
        judge = FakeJudge('```json\n{"score": 80, "reason": "on topic"}\n```')
        result = await RelevanceMetric(judge)({"q": "x"}, "answer")
        assert result.value == pytest.approx(0.8)
        assert result.reason == "on topic"
        assert result.metadata["method"] == "llm_judge"
        assert "Evaluate the relevance" in judge.prompts[0]

    @pytest.mark.asyncio
    async def test_malformed_judge_reply_is_neutral(self):
        result = await RelevanceMetric(FakeJudge("I think it is fine"))({"q": "x"}, "answer")
        assert result.value == 0.5
        assert result.reason.startswith("Evaluation failed")


class TestHallucinationMetric:
    @pytest.mark.asyncio
    async def test_grounded_output_scores_high(self):
        metric = HallucinationMetric()
        result = await metric({"skills": ["python", "teaching"]}, "python teaching")
        assert result.value == 1.0

    @pytest.mark.asyncio
    async def test_ungrounded_terms_reported(self):
        result = await HallucinationMetric()({"skills": ["python"]}, "python astronaut")
        assert result.value == pytest.approx(0.5)
        assert result.metadata["ungrounded_terms"] == ["astronaut"]

    @pytest.mark.asyncio
    async def test_judge_score_is_inverted(self):
        result = await HallucinationMetric(FakeJudge('{"score": 30, "reason": "minor"}'))({}, "x")
        assert result.value == pytest.approx(0.7)


class TestPersonalizationMetric:
    @pytest.mark.asyncio
    async def test_mentions_user_context(self):
        user = {"location": "Oakland", "interests": ["gardening", "literacy"]}
        result = await PersonalizationMetric()(user, "Join the Oakland gardening club this weekend")
        assert result.value == pytest.approx(2 / 3)
        assert result.metadata["personalizations"] == ["gardening", "oakland"]

    @pytest.mark.asyncio
    async def test_no_context_is_neutral(self):
        result = await PersonalizationMetric()({}, "Generic advice")
        assert result.value == 0.5


class TestActionabilityMetric:
    @pytest.mark.asyncio
    async def test_action_list(self):
        output = {"next_steps": ["a", "b", "c", "d"]}
        result = await ActionabilityMetric()({}, output)
        assert result.value == 1.0
        assert result.metadata["actions_found"] == 4

    @pytest.mark.asyncio
    async def test_action_sentences(self):
        text = "- Join the food bank.\n- Email the organizer. It is a nice place."
        result = await ActionabilityMetric()({}, text)
        assert result.metadata["actions_found"] == 2
        assert result.value == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_vague_output(self):
        result = await ActionabilityMetric()({}, "Things could be better.")
        assert result.value == 0.0


class TestResponseTimeMetric:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration,expected", [(500, 1.0), (1000, 1.0), (2500, 0.8), (4000, 0.5), (9000, 0.2)])
    async def test_thresholds(self, duration, expected):
        result = await ResponseTimeMetric()({}, {"metadata": {"duration_ms": duration}})
        assert result.value == expected

    @pytest.mark.asyncio
    async def test_reads_context_duration(self):
        result = await ResponseTimeMetric()({}, "out", None, {"duration_ms": 3500})
        assert result.value == 0.5


class TestConfidenceCalibrationMetric:
    @pytest.mark.asyncio
    async def test_confident_and_correct(self):
        result = await ConfidenceCalibrationMetric()(
            {}, {"matches": [1], "confidence": 0.9}, {"matches": [2]}
        )
        assert result.value == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_confident_and_wrong(self):
        result = await ConfidenceCalibrationMetric()({}, {"matches": [], "confidence": 0.9}, {"matches": [2]})
        assert result.value == pytest.approx(0.1)


class TestNeverRaises:
    @pytest.mark.asyncio
    async def test_raising_function_metric_is_neutral(self):
        def boom(i, o, e, c):
            raise KeyError("missing")

        result = await FunctionMetric("boom", boom)({}, {})
        assert result.value == 0.5
        assert result.reason.startswith("Evaluation failed")

    @pytest.mark.asyncio
    async def test_wrong_return_type_is_neutral(self):
        class Broken(BaseMetric):
            name = "broken"

            async def score(self, input, output, expected_output=None, context=None):
                return "high"

        assert (await Broken()({}, {})).value == 0.5

    @pytest.mark.asyncio
    async def test_unserializable_payloads(self):
        weird = {"obj": object(), "nan": float("nan")}
        engine = MetricsEngine()
        results = await engine.score_all(engine.resolve(engine.names()), weird, weird, weird, weird)
        assert set(results) == set(engine.names())
        assert all(0.0 <= r.value <= 1.0 for r in results.values())


class TestMetricsEngine:
    def test_default_sets(self):
        names = [m.name for m in get_default_metrics("skill_matcher")]
        assert names == ["relevance", "accuracy", "personalization"]
        assert [m.name for m in get_default_metrics("unknown_agent")] == ["relevance", "accuracy"]

    def test_unknown_metric(self):
        with pytest.raises(ValueError, match="Unknown metric"):
            MetricsEngine().get("bleu")

    @pytest.mark.asyncio
    async def test_register_and_resolve(self):
        engine = MetricsEngine()
        engine.register(FunctionMetric("has_text", lambda i, o, e, c: 1.0 if o else 0.0))
        metrics = engine.resolve(["has_text", AccuracyMetric()])
        results = await engine.score_all(metrics, {}, "x", "x")
        assert results["has_text"].value == 1.0
        assert results["accuracy"].value == 1.0

    @pytest.mark.asyncio
    async def test_function_metric_dict_result(self):
        metric = FunctionMetric("m", lambda i, o, e, c: {"value": 0.3, "reason": json.dumps(o)})
        result = await metric({}, {"a": 1})
        assert result.value == pytest.approx(0.3)
        assert result.reason == '{"a": 1}'
