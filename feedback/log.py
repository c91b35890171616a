"""Human and user feedback scores attached to traces."""

import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from core.values import utc_now
from tracing.sinks import Sink

logger = logging.getLogger(__name__)


class FeedbackCategory(str, Enum):
    QUALITY = "quality"
    RELEVANCE = "relevance"
    HELPFULNESS = "helpfulness"
    ACCURACY = "accuracy"
    SATISFACTION = "satisfaction"
    CUSTOM = "custom"


class FeedbackScore(BaseModel):
    """One quality signal. Appended, never mutated."""
    name: str = Field(..., min_length=1)
    value: float = Field(..., ge=0.0, le=1.0)
    reason: Optional[str] = None
    category: FeedbackCategory = FeedbackCategory.CUSTOM


class FeedbackResult(BaseModel):
    success: bool
    trace_id: str
    scores_logged: int = 0
    error: Optional[str] = None


def stars_to_value(stars: int) -> float:
    """Map a 1-5 star rating onto [0, 1]."""
    if isinstance(stars, bool) or not isinstance(stars, int) or not 1 <= stars <= 5:
        raise ValueError(f"stars must be between 1 and 5, got {stars!r}")
    return (stars - 1) / 4


class FeedbackLog:
    """Appends feedback scores for a caller-supplied trace id.

    The trace id is opaque and not checked for existence. Scores are sent one
    at a time; on failure nothing is rolled back and ``scores_logged`` is 0.
    """

    def __init__(self, sink: Sink):
        self.sink = sink

    async def log_feedback(
        self,
        trace_id: str,
        scores: List[FeedbackScore],
        comment: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FeedbackResult:
        if not trace_id or not str(trace_id).strip():
            raise ValueError("trace_id is required")

        shared_metadata = dict(metadata or {})
        if user_id:
            shared_metadata["user_id"] = user_id
        if comment:
            shared_metadata["comment"] = comment

        try:
            for score in scores:
                await self.sink.log_feedback_score(
                    trace_id,
                    score.name,
                    score.value,
                    reason=score.reason or comment,
                    category=score.category.value,
                    metadata=shared_metadata,
                )
        except Exception as e:
            logger.error(f"Failed to log feedback for trace {trace_id}: {e}")
            return FeedbackResult(success=False, trace_id=trace_id, scores_logged=0, error=str(e))

        logger.info(f"Logged {len(scores)} feedback score(s) for trace {trace_id}")
        return FeedbackResult(success=True, trace_id=trace_id, scores_logged=len(scores))

    async def log_thumbs_feedback(self, trace_id: str, thumbs_up: bool, comment: Optional[str] = None,
                                  user_id: Optional[str] = None,
                                  metadata: Optional[Dict[str, Any]] = None) -> FeedbackResult:
        score = FeedbackScore(
            name="user_satisfaction",
            value=1.0 if thumbs_up else 0.0,
            reason=comment,
            category=FeedbackCategory.SATISFACTION,
        )
        return await self.log_feedback(trace_id, [score], user_id=user_id, metadata=metadata)

    async def log_star_rating(self, trace_id: str, stars: int, comment: Optional[str] = None,
                              user_id: Optional[str] = None,
                              metadata: Optional[Dict[str, Any]] = None) -> FeedbackResult:
        score = FeedbackScore(
            name="star_rating",
            value=stars_to_value(stars),
            reason=comment,
            category=FeedbackCategory.QUALITY,
        )
        return await self.log_feedback(
            trace_id, [score], user_id=user_id, metadata={**(metadata or {}), "stars": stars}
        )

    async def log_multi_dimensional_feedback(self, trace_id: str, ratings: Mapping[str, int],
                                             comment: Optional[str] = None, user_id: Optional[str] = None,
                                             metadata: Optional[Dict[str, Any]] = None) -> FeedbackResult:
        """One quality score per named dimension, each rated 1-5 stars."""
        scores = [
            FeedbackScore(name=name, value=stars_to_value(stars), reason=comment,
                          category=FeedbackCategory.QUALITY)
            for name, stars in ratings.items()
        ]
        return await self.log_feedback(trace_id, scores, user_id=user_id, metadata=metadata)

    async def log_negative_feedback(self, trace_id: str, issues: List[str], comment: Optional[str] = None,
                                    user_id: Optional[str] = None,
                                    metadata: Optional[Dict[str, Any]] = None) -> FeedbackResult:
        reason = f"Issues: {', '.join(issues)}."
        if comment:
            reason = f"{reason} {comment}"
        score = FeedbackScore(
            name="user_satisfaction",
            value=0.0,
            reason=reason,
            category=FeedbackCategory.SATISFACTION,
        )
        return await self.log_feedback(
            trace_id, [score], user_id=user_id, metadata={**(metadata or {}), "issues": list(issues)}
        )

    async def log_expert_annotation(self, trace_id: str, expert_id: str, scores: Mapping[str, float],
                                    notes: Optional[str] = None, approved: Optional[bool] = None,
                                    metadata: Optional[Dict[str, Any]] = None) -> FeedbackResult:
        feedback = [
            FeedbackScore(name=f"expert_{name}", value=value, reason=notes, category=FeedbackCategory.QUALITY)
            for name, value in scores.items()
        ]
        if approved is not None:
            feedback.append(FeedbackScore(
                name="expert_approval",
                value=1.0 if approved else 0.0,
                reason=notes,
                category=FeedbackCategory.QUALITY,
            ))
        return await self.log_feedback(
            trace_id,
            feedback,
            metadata={
                **(metadata or {}),
                "expert_id": expert_id,
                "review_type": "expert_annotation",
                "timestamp": utc_now().isoformat(),
            },
        )
