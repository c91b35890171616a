"""Routing of low-confidence or flagged outputs into human review queues."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.values import lookup

logger = logging.getLogger(__name__)

ANNOTATION_QUEUES = {
    "SKILL_MATCHING": "skill_matching_review",
    "IMPACT_VALIDATION": "impact_validation_review",
    "SAFETY_FLAGS": "safety_review",
    "LOW_CONFIDENCE": "low_confidence_review",
    "USER_FEEDBACK": "user_feedback_review",
}

LOW_CONFIDENCE_THRESHOLD = 0.7
IMPACT_VALIDATOR_AGENT = "impact_measurement_validate"
PRIORITIES = ("low", "medium", "high")


@dataclass
class AnnotationQueueItem:
    agent_name: str
    input: Any
    output: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    priority: str = "medium"

    def __post_init__(self):
        if self.priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {PRIORITIES}, got {self.priority!r}")


class AnnotationQueue:
    """Records review requests as closed traces tagged ``needs_review``."""

    def __init__(self, recorder):
        self.recorder = recorder

    async def queue_for_review(self, queue_name: str, item: AnnotationQueueItem) -> Optional[str]:
        """Returns the review trace id, or None when nothing was recorded."""
        try:
            handle = self.recorder.start_trace(
                f"{item.agent_name}_for_review",
                input=item.input,
                metadata={
                    **item.metadata,
                    "annotation_queue": queue_name,
                    "priority": item.priority,
                    "needs_review": True,
                },
                tags=["needs_review", queue_name, item.agent_name],
            )
            handle.end(item.output)
            await self.recorder.flush_and_wait()
        except Exception as e:
            logger.error(f"Failed to queue {item.agent_name} output for review: {e}")
            return None

        if handle.id is None:
            logger.debug(f"Tracing inactive, review of {item.agent_name} in '{queue_name}' not recorded")
            return None
        logger.info(f"Queued {item.agent_name} output for review in '{queue_name}'")
        return handle.id

    async def auto_queue_for_review(
        self,
        agent_name: str,
        input: Any,
        output: Any,
        confidence: Optional[float] = None,
    ) -> List[str]:
        """Apply every routing rule independently. Returns the queues actually recorded."""
        queued: List[str] = []

        async def queue(name: str, item: AnnotationQueueItem) -> None:
            if await self.queue_for_review(name, item) is not None:
                queued.append(name)

        if confidence is not None and confidence < LOW_CONFIDENCE_THRESHOLD:
            await queue(ANNOTATION_QUEUES["LOW_CONFIDENCE"], AnnotationQueueItem(
                agent_name, input, output, {"confidence": confidence}, priority="high",
            ))

        flags = lookup(output, "flags")
        if flags:
            if isinstance(flags, str):
                flags = [flags]
            await queue(ANNOTATION_QUEUES["SAFETY_FLAGS"], AnnotationQueueItem(
                agent_name, input, output, {"flags": list(flags)}, priority="high",
            ))

        if agent_name == IMPACT_VALIDATOR_AGENT and not lookup(output, "valid"):
            await queue(ANNOTATION_QUEUES["IMPACT_VALIDATION"], AnnotationQueueItem(
                agent_name, input, output, {"validation_result": "rejected"}, priority="medium",
            ))

        return queued
