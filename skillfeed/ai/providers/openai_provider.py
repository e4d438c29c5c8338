"""
OpenAI-Compatible Provider
==========================

Chat completions client for OpenAI and OpenRouter (which speaks the same
API) built on the ``openai`` async SDK.
"""

import json
from typing import Any, Dict, Optional

import openai

from ...config.settings import LLMSettings
from ...utils.exceptions import AIError, ErrorCode, LLMRateLimitError
from ...utils.logging import get_logger_for_component
from .base import LLMClient, extract_json_object


class OpenAICompatibleProvider(LLMClient):
    """LLM client for any OpenAI-compatible chat completion endpoint."""

    def __init__(
        self,
        api_key: str,
        model_name: str,
        base_url: str,
        provider_name: str = "openai",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: float = 60.0,
    ):
        """Initialize the provider.

        Args:
            api_key: API key for the endpoint
            model_name: Model identifier
            base_url: Endpoint base URL
            provider_name: Name used in logs and errors
            temperature: Sampling temperature
            max_tokens: Maximum tokens per response
            timeout: Per-request timeout in seconds

        Raises:
            AIError: If no API key is given
        """
        if not api_key:
            raise AIError(
                f"{provider_name} API key is required",
                provider=provider_name,
                error_code=ErrorCode.AI_AUTHENTICATION,
                recoverable=False,
            )

        super().__init__(model_name, provider_name)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.logger = get_logger_for_component(f"{provider_name}_provider")

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "OpenAICompatibleProvider":
        return cls(
            api_key=settings.api_key,
            model_name=settings.model,
            base_url=settings.get_base_url(),
            provider_name=settings.provider.value,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.request_timeout,
        )

    async def _chat(self, messages: list, json_mode: bool = False) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**kwargs)

        except openai.RateLimitError as e:
            self.logger.warning(f"{self.provider_name} rate limit hit")
            raise LLMRateLimitError(
                f"{self.provider_name} rate limit: {e}", provider=self.provider_name
            ) from e
        except openai.AuthenticationError as e:
            raise AIError(
                f"{self.provider_name} authentication failed: {e}",
                provider=self.provider_name,
                error_code=ErrorCode.AI_AUTHENTICATION,
                recoverable=False,
            ) from e
        except openai.APITimeoutError as e:
            raise AIError(
                f"{self.provider_name} request timed out: {e}",
                provider=self.provider_name,
                error_code=ErrorCode.AI_TIMEOUT,
            ) from e
        except openai.APIError as e:
            raise AIError(
                f"{self.provider_name} API error: {e}",
                provider=self.provider_name,
                error_code=ErrorCode.AI_API_ERROR,
            ) from e

        if not response.choices or response.choices[0].message.content is None:
            raise AIError(
                "Empty completion",
                provider=self.provider_name,
                error_code=ErrorCode.AI_INVALID_RESPONSE,
            )

        return response.choices[0].message.content.strip()

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return await self._chat(messages)

    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        system: Optional[str] = None,
    ) -> Dict[str, Any]:
        instructions = (system or "You produce structured data.") + (
            "\nRespond with a single JSON object that validates against this JSON schema:\n"
            + json.dumps(schema)
        )
        content = await self._chat(
            [
                {"role": "system", "content": instructions},
                {"role": "user", "content": prompt},
            ],
            json_mode=True,
        )
        return extract_json_object(content, self.provider_name)

    async def close(self) -> None:
        await self.client.close()
