"""OpenRouter LLM client.

OpenRouter proxies models from many vendors behind one OpenAI-compatible
API, so the openai SDK is pointed at its base URL and the model is just a
string (NARRATOR_MODEL).
"""

import openai

from llm.base import LLMClient

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterClient(LLMClient):
    """LLMClient implementation backed by OpenRouter.

    Example usage:
        narrator = JobNarrator(llm=OpenRouterClient("google/gemini-2.0-flash-001", api_key))

    Attributes:
        model: OpenRouter model identifier passed to the API.
        client: The underlying async OpenAI client.
    """

    def __init__(self, model: str, api_key: str, timeout: float = 60.0):
        """Initialize the client for a specific model.

        Args:
            model: OpenRouter model ID string.
            api_key: OpenRouter API key (OPENROUTER_API_KEY).
            timeout: Request timeout in seconds.

        Raises:
            ValueError: If api_key is empty. Fails at construction rather
                than at the first request.
        """
        if not api_key:
            raise ValueError("OpenRouter API key is required")
        self.model = model
        self.client = openai.AsyncOpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=api_key,
            timeout=timeout,
        )

    async def complete(self, system: str, user: str) -> str:
        """Send a prompt to the configured model via OpenRouter.

        Raises:
            openai.APIError: If the OpenRouter API returns an error response.
        """
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0.2,
        )
        return response.choices[0].message.content or ""
