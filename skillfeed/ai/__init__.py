"""
SkillFeed AI Module
===================

LLM access for skill generation: an OpenAI-compatible client (OpenAI or
OpenRouter) behind a shared concurrency and rate-limit gate.
"""

from .providers.base import LLMClient, AIError, LLMRateLimitError
from .providers.openai_provider import OpenAICompatibleProvider
from .limiter import LLMGate, RateLimiter

__all__ = [
    "LLMClient",
    "AIError",
    "LLMRateLimitError",
    "OpenAICompatibleProvider",
    "LLMGate",
    "RateLimiter",
]
