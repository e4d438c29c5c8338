"""
LLM Collaborator Tests
======================

Unit tests for the LLM gate, the OpenAI-compatible provider and the
unconfigured placeholder client.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from skillfeed.ai.limiter import LLMGate, RateLimiter
from skillfeed.ai.providers.base import UnconfiguredLLM, extract_json_object
from skillfeed.ai.providers.openai_provider import OpenAICompatibleProvider
from skillfeed.config.settings import LLMSettings
from skillfeed.utils.exceptions import AIError, ErrorCode, ErrorKind, LLMRateLimitError


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class TestRateLimiter:
    """Sliding-window limiter."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        limiter = RateLimiter(max_requests=2, period_seconds=60)

        assert await limiter.acquire("llm", timeout=0)
        assert await limiter.acquire("llm", timeout=0)
        assert await limiter.acquire("llm", timeout=0) is False
        assert limiter.get_status("llm")["available"] == 0

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        limiter = RateLimiter(max_requests=1, period_seconds=60)

        assert await limiter.acquire("a", timeout=0)
        assert await limiter.acquire("b", timeout=0)

    @pytest.mark.asyncio
    async def test_custom_limit(self):
        limiter = RateLimiter(max_requests=1, period_seconds=60)
        limiter.set_limit("burst", 3, 60)

        results = [await limiter.acquire("burst", timeout=0) for _ in range(4)]
        assert results == [True, True, True, False]


class TestLLMGate:
    """Shared concurrency and budget gate for LLM calls."""

    @pytest.mark.asyncio
    async def test_budget_exhaustion_raises_rate_limit(self):
        gate = LLMGate(max_concurrent=2, requests_per_minute=1, acquire_timeout=0)

        async with gate.slot():
            pass

        with pytest.raises(LLMRateLimitError) as exc_info:
            async with gate.slot():
                pass
        assert exc_info.value.kind == ErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_concurrency_capped(self):
        gate = LLMGate(max_concurrent=2, requests_per_minute=100)
        release = asyncio.Event()
        peak = 0

        async def call():
            nonlocal peak
            async with gate.slot():
                peak = max(peak, gate.get_status()["in_flight"])
                await release.wait()

        tasks = [asyncio.create_task(call()) for _ in range(5)]
        await asyncio.sleep(0.05)
        assert gate.get_status()["in_flight"] == 2

        release.set()
        await asyncio.gather(*tasks)
        assert peak == 2
        assert gate.get_status()["in_flight"] == 0


class TestJSONExtraction:
    """JSON object extraction from model output."""

    def test_plain_object(self):
        assert extract_json_object('{"rules": []}', "test") == {"rules": []}

    def test_object_wrapped_in_prose(self):
        content = 'Here is the ruleset:\n```json\n{"link_selector": "h2 a"}\n```'
        assert extract_json_object(content, "test") == {"link_selector": "h2 a"}

    @pytest.mark.parametrize("content", ["", "no json here", "{not valid}", "[1, 2]"])
    def test_invalid_content(self, content):
        with pytest.raises(AIError) as exc_info:
            extract_json_object(content, "test")
        assert exc_info.value.error_code == ErrorCode.AI_INVALID_RESPONSE


class TestOpenAICompatibleProvider:
    """Provider behaviour with a mocked OpenAI client."""

    @pytest.fixture
    def mock_openai_client(self):
        mock_client = MagicMock()
        mock_client.chat = MagicMock()
        mock_client.chat.completions = MagicMock()
        mock_client.chat.completions.create = AsyncMock()
        mock_client.close = AsyncMock()
        return mock_client

    @pytest.fixture
    def provider(self, mock_openai_client):
        with patch(
            "skillfeed.ai.providers.openai_provider.openai.AsyncOpenAI",
            return_value=mock_openai_client,
        ):
            return OpenAICompatibleProvider.from_settings(
                LLMSettings(api_key="test-key", model="openai/gpt-4o-mini")
            )

    def test_requires_api_key(self):
        with pytest.raises(AIError) as exc_info:
            OpenAICompatibleProvider(api_key="", model_name="m", base_url="https://x/v1")
        assert exc_info.value.error_code == ErrorCode.AI_AUTHENTICATION

    def test_from_settings(self, provider):
        assert provider.provider_name == "openrouter"
        assert provider.model_name == "openai/gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_generate_structured(self, provider, mock_openai_client):
        """Structured generation requests JSON mode and embeds the schema."""
        mock_openai_client.chat.completions.create.return_value = completion(
            '{"link_selector": "h2 a", "rules": []}'
        )

        result = await provider.generate_structured(
            "Write a ruleset", {"type": "object"}, system="You write rulesets."
        )

        assert result == {"link_selector": "h2 a", "rules": []}
        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "openai/gpt-4o-mini"
        assert '"type": "object"' in kwargs["messages"][0]["content"]
        assert kwargs["messages"][1] == {"role": "user", "content": "Write a ruleset"}

    @pytest.mark.asyncio
    async def test_complete(self, provider, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = completion("  OK  ")

        assert await provider.complete("ping") == "OK"
        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_rate_limit_mapped(self, provider, mock_openai_client):
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        mock_openai_client.chat.completions.create.side_effect = openai.RateLimitError(
            "Too many requests", response=httpx.Response(429, request=request), body=None
        )

        with pytest.raises(LLMRateLimitError):
            await provider.generate_structured("prompt", {})

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self, provider, mock_openai_client):
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        mock_openai_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=request
        )

        with pytest.raises(AIError) as exc_info:
            await provider.generate_structured("prompt", {})
        assert not isinstance(exc_info.value, LLMRateLimitError)

    @pytest.mark.asyncio
    async def test_empty_completion(self, provider, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = completion(None)

        with pytest.raises(AIError) as exc_info:
            await provider.complete("prompt")
        assert exc_info.value.error_code == ErrorCode.AI_INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_close(self, provider, mock_openai_client):
        await provider.close()
        mock_openai_client.close.assert_awaited_once()


class TestUnconfiguredLLM:
    """Placeholder client without credentials."""

    @pytest.mark.asyncio
    async def test_every_call_fails(self):
        llm = UnconfiguredLLM()

        with pytest.raises(AIError) as exc_info:
            await llm.generate_structured("prompt", {})
        assert exc_info.value.error_code == ErrorCode.AI_PROVIDER_UNAVAILABLE
        assert not exc_info.value.recoverable

        with pytest.raises(AIError):
            await llm.complete("prompt")
