"""Model-invocation protocol and response helpers."""

import json
import logging
import re
from typing import Any, List, Optional, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?", re.IGNORECASE)


class TokenUsage(BaseModel):
    """Token counts reported by a model call."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ModelResponse(BaseModel):
    """Standardized response of a ``generate`` call."""
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: Optional[str] = None


class GenerateFn(Protocol):
    """Caller-supplied model invocation: ``await generate(prompt, images)``."""

    async def __call__(self, prompt: str, images: Optional[List[Any]] = None) -> ModelResponse:
        ...


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences such as ```json ... ```."""
    return _FENCE_RE.sub("", text).strip()


def parse_json_response(text: Optional[str]) -> Optional[Any]:
    """Parse a model's JSON answer. Returns None when no usable JSON is present."""
    if not text:
        return None
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as e:
        logger.debug(f"Malformed JSON response: {e}")
        return None
