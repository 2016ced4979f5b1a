"""Centralized LLM service for OpenAI integration."""

from dataclasses import dataclass

from openai import AsyncOpenAI

from prima.config import settings


@dataclass
class OpenAIConfig:
    """Configuration for OpenAI client."""

    api_key: str | None = None
    host_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"

    @classmethod
    def from_settings(cls) -> "OpenAIConfig":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            host_url=settings.OPENAI_BASE_URL,
            model=settings.OPENAI_MODEL,
        )


class LLMService:
    """
    Centralized LLM service for chat completions using OpenAI.

    Configuration comes from environment settings unless an explicit
    OpenAIConfig is passed.
    """

    def __init__(self, config: OpenAIConfig | None = None):
        self._config = config or OpenAIConfig.from_settings()
        self._client: AsyncOpenAI | None = None

    @property
    def model(self) -> str:
        return self._config.model

    def get_client(self) -> AsyncOpenAI:
        """Get configured OpenAI client, creating it on first use."""
        if self._client is not None:
            return self._client

        if not self._config.api_key:
            raise ValueError(
                "OPENAI_API_KEY environment variable is not set. "
                "Set it or disable AI intent classification."
            )
        self._client = AsyncOpenAI(
            api_key=self._config.api_key,
            base_url=self._config.host_url,
        )
        return self._client

    async def generate_response(
        self,
        system_prompt: str,
        user_message: str,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """
        Generate a response using the OpenAI chat completion API.

        Args:
            system_prompt: System message to set the assistant's behavior
            user_message: User's input message
            model: Model to use (defaults to configured model)
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens in response
            json_mode: Ask the model for a JSON object response

        Returns:
            Generated response text
        """
        client = self.get_client()

        kwargs = {
            "model": model or self._config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": temperature,
        }

        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""
