"""
Mistral completion provider.
"""

import logging
from typing import Any

from wellness_rag.exceptions import ProviderUnavailableError
from wellness_rag.providers.base import (
    Choice,
    ChoiceMessage,
    CompletionResponse,
    LLMProvider,
    Usage,
)
from wellness_rag.providers.generation import GenerationRegistry

logger = logging.getLogger(__name__)


class MistralProvider(LLMProvider):
    """
    Completion provider for the Mistral chat API.

    Uses the OpenAI-compatible endpoint. Without an API key the provider
    runs in fallback mode and every call raises ``ProviderUnavailableError``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.mistral.ai/v1",
        model: str = "mistral-small-latest",
        timeout: float = 60.0,
        registry: GenerationRegistry | None = None,
    ):
        super().__init__(registry)
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = model
        self.timeout = timeout
        self._client = None

        logger.info(f"Mistral provider initialized with model: {model}")

    @property
    def is_using_fallback(self) -> bool:
        return not self.api_key

    def _get_client(self):
        """Get or create the OpenAI-compatible client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install openai"
                )

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ) -> CompletionResponse:
        """Get a completion from Mistral."""
        if self.is_using_fallback:
            logger.warning("No Mistral API key provided, completion unavailable")
            raise ProviderUnavailableError("No Mistral API key provided")

        client = self._get_client()
        logger.debug(f"Calling Mistral chat completions with model: {model}")

        response = await client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
            stream=False,
        )

        choices = [
            Choice(
                index=choice.index,
                message=ChoiceMessage(
                    role=choice.message.role,
                    content=choice.message.content,
                ),
                finish_reason=choice.finish_reason,
            )
            for choice in response.choices or []
        ]

        usage = Usage()
        if response.usage:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return CompletionResponse(
            id=response.id,
            model=response.model or model,
            choices=choices,
            usage=usage,
        )
