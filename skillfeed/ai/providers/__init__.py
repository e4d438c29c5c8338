"""
AI Providers Module
===================

LLM client interface and the OpenAI-compatible implementation.
"""

from .base import LLMClient, UnconfiguredLLM, AIError, LLMRateLimitError
from .openai_provider import OpenAICompatibleProvider

__all__ = [
    'LLMClient',
    'UnconfiguredLLM',
    'AIError',
    'LLMRateLimitError',
    'OpenAICompatibleProvider',
]
