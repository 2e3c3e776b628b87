"""LLM provider clients used by the job narrator."""

from llm.base import LLMClient
from llm.openrouter import OpenRouterClient

__all__ = ["LLMClient", "OpenRouterClient"]
