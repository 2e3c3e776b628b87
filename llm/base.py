"""LLMClient abstract base class.

The narrator depends only on this interface, never on a concrete provider,
so tests can hand it a scripted fake and production can hand it OpenRouter.
"""

from abc import ABC, abstractmethod


class LLMClient(ABC):
    """Abstract base class for LLM provider clients.

    To add a provider, subclass LLMClient and implement complete().
    """

    @abstractmethod
    async def complete(self, system: str, user: str) -> str:
        """Send a prompt and return the model's reply as plain text.

        Args:
            system: System prompt with the role and output format.
            user: User-turn content: job record, analysis and log tail.

        Returns:
            The reply text. Callers never see the SDK response object.
        """
        ...
