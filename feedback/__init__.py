"""Feedback scores and human review queues."""

from .annotations import ANNOTATION_QUEUES, AnnotationQueue, AnnotationQueueItem
from .log import FeedbackCategory, FeedbackLog, FeedbackResult, FeedbackScore, stars_to_value

__all__ = [
    "ANNOTATION_QUEUES",
    "AnnotationQueue",
    "AnnotationQueueItem",
    "FeedbackCategory",
    "FeedbackLog",
    "FeedbackResult",
    "FeedbackScore",
    "stars_to_value",
]
