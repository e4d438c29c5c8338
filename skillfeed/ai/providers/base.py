"""
Base LLM Provider Interface
===========================

Abstract interface for the LLM collaborator used by skill generation.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ...utils.exceptions import AIError, ErrorCode, LLMRateLimitError

__all__ = ["LLMClient", "UnconfiguredLLM", "AIError", "LLMRateLimitError", "extract_json_object"]


class LLMClient(ABC):
    """Abstract LLM client.

    Implementations raise ``LLMRateLimitError`` when the provider throttles
    and ``AIError`` for every other provider failure.
    """

    def __init__(self, model_name: str, provider_name: str):
        self.model_name = model_name
        self.provider_name = provider_name

    @abstractmethod
    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """Return the raw text completion for a prompt."""

    @abstractmethod
    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        system: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return a JSON object produced against a JSON schema.

        Raises:
            AIError: If the response is not a JSON object
        """

    async def close(self) -> None:
        """Release client resources."""


def extract_json_object(content: str, provider: str) -> Dict[str, Any]:
    """Pull the outermost JSON object out of a model response.

    Raises:
        AIError: If no JSON object can be decoded
    """
    content = (content or "").strip()
    start_idx = content.find("{")
    end_idx = content.rfind("}") + 1

    if start_idx == -1 or end_idx == 0:
        raise AIError(
            "No JSON object found in response",
            provider=provider,
            error_code=ErrorCode.AI_INVALID_RESPONSE,
        )

    try:
        result = json.loads(content[start_idx:end_idx])
    except json.JSONDecodeError as e:
        raise AIError(
            f"Invalid JSON in response: {e}",
            provider=provider,
            error_code=ErrorCode.AI_INVALID_RESPONSE,
        ) from e

    if not isinstance(result, dict):
        raise AIError(
            "Response JSON is not an object",
            provider=provider,
            error_code=ErrorCode.AI_INVALID_RESPONSE,
        )
    return result


class UnconfiguredLLM(LLMClient):
    """Placeholder client used when no API key is configured.

    Every call fails, so skill generation fails cleanly and feed sources
    keep working.
    """

    def __init__(self):
        super().__init__(model_name="none", provider_name="unconfigured")

    def _unavailable(self) -> AIError:
        return AIError(
            "No LLM provider configured (set SKILLFEED_LLM__API_KEY)",
            provider=self.provider_name,
            error_code=ErrorCode.AI_PROVIDER_UNAVAILABLE,
            recoverable=False,
        )

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        raise self._unavailable()

    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        system: Optional[str] = None,
    ) -> Dict[str, Any]:
        raise self._unavailable()
