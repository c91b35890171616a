"""Model invocation helpers and the traced Gemini wrapper."""

from .base import GenerateFn, ModelResponse, TokenUsage, parse_json_response, strip_code_fences
from .gemini import DEFAULT_MODEL, TrackedGeminiModel

__all__ = [
    "GenerateFn",
    "ModelResponse",
    "TokenUsage",
    "parse_json_response",
    "strip_code_fences",
    "DEFAULT_MODEL",
    "TrackedGeminiModel",
]
