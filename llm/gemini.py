"""Google Gemini model wrapper that traces every call."""

import logging
import os
import time
from typing import Any, Dict, List, Optional

import google.genai as genai

from core.errors import ConfigurationError

from .base import ModelResponse, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"


def _extract_text(response) -> str:
    text = getattr(response, "text", None)
    if isinstance(text, str):
        return text
    if response.candidates and len(response.candidates) > 0:
        candidate = response.candidates[0]
        if candidate.content and candidate.content.parts:
            return candidate.content.parts[0].text or ""
    return ""


def _extract_usage(response) -> TokenUsage:
    usage = getattr(response, "usage_metadata", None)
    if not usage:
        return TokenUsage()
    return TokenUsage(
        input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
        output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
    )


class TrackedGeminiModel:
    """Gemini ``generate`` callable whose calls are recorded as ``llm-call`` traces.

    Token usage lands in the trace metadata and is charged against
    ``agent_name``'s budget. Instances are usable directly as a judge for
    LLM-scored metrics.
    """

    def __init__(
        self,
        model_name: str,
        recorder,
        budgets=None,
        agent_name: Optional[str] = None,
        client=None,
        api_key: Optional[str] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ):
        self.recorder = recorder
        self.model_name = model_name
        self.agent_name = agent_name
        self.budgets = budgets
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._api_key = api_key
        self._client = client

    @property
    def client(self):
        if self._client is None:
            api_key = self._api_key or os.getenv("GOOGLE_API_KEY")
            if not api_key:
                raise ConfigurationError("GOOGLE_API_KEY is not set")
            self._client = genai.Client(api_key=api_key)
        return self._client

    def _config(self):
        if self.temperature is None and self.max_output_tokens is None:
            return None
        return genai.types.GenerateContentConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

    def _usage_metadata(self, usage: TokenUsage) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "model": self.model_name,
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
            "total_tokens": usage.total_tokens,
        }
        if self.agent_name:
            metadata["agent_name"] = self.agent_name
        if self.budgets is not None:
            agent = self.agent_name or "gemini_generate"
            try:
                result = self.budgets.charge(agent, self.model_name, usage.input_tokens, usage.output_tokens)
                metadata.update(cost=result.cost, within_budget=result.within_budget, budget_alert=result.alert)
            except Exception as e:
                logger.error(f"Budget charge failed for {agent}: {e}")
        return metadata

    async def generate(self, prompt: str, images: Optional[List[Any]] = None) -> ModelResponse:
        """Call the model and return its text with token usage."""
        contents: List[Any] = [prompt, *(images or [])]
        handle = self.recorder.start_trace(
            "gemini_generate",
            input={"prompt": prompt, "image_count": len(images or [])},
            metadata={"model": self.model_name, "agent_name": self.agent_name},
            tags=["llm-call", self.model_name, self.recorder.environment],
        )
        start = time.perf_counter()
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=self._config(),
            )
        except Exception as e:
            handle.fail(e)
            logger.error(f"Gemini call failed: {e}")
            raise

        text = _extract_text(response)
        usage = _extract_usage(response)
        metadata = self._usage_metadata(usage)
        metadata["latency_ms"] = int((time.perf_counter() - start) * 1000)
        try:
            handle.end({"text": text, "length": len(text)}, metadata)
        except Exception as e:
            logger.error(f"Failed to record Gemini trace: {e}")

        return ModelResponse(text=text, usage=usage, model=self.model_name)

    async def __call__(self, prompt: str, images: Optional[List[Any]] = None) -> ModelResponse:
        return await self.generate(prompt, images)

    async def count_tokens(self, content: Any) -> int:
        """Count tokens for ``content`` without generating."""
        handle = self.recorder.start_trace(
            "gemini_count_tokens",
            input={"content": content},
            metadata={"model": self.model_name},
            tags=["token_count", self.model_name, self.recorder.environment],
        )
        try:
            result = await self.client.aio.models.count_tokens(model=self.model_name, contents=content)
        except Exception as e:
            handle.fail(e)
            raise

        total = int(getattr(result, "total_tokens", 0) or 0)
        handle.end({"total_tokens": total})
        return total
