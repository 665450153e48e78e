"""LLM provider implementations."""

from vitalroute.core.llm.providers.anthropic import AnthropicProvider
from vitalroute.core.llm.providers.mock import MockProvider
from vitalroute.core.llm.providers.openai import OpenAIProvider

__all__ = ["AnthropicProvider", "MockProvider", "OpenAIProvider"]
