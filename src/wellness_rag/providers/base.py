"""
Base completion provider interface.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from wellness_rag.exceptions import GenerationCancelledError, ProviderUnavailableError
from wellness_rag.providers.generation import GenerationRegistry

logger = logging.getLogger(__name__)


class ChoiceMessage(BaseModel):
    """Message of a completion choice."""
    role: str = "assistant"
    content: str | None = None


class Choice(BaseModel):
    """One completion alternative."""
    index: int = 0
    message: ChoiceMessage = Field(default_factory=ChoiceMessage)
    finish_reason: str | None = None


class Usage(BaseModel):
    """Token accounting of a completion."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResponse(BaseModel):
    """Response from a completion provider."""
    id: str | None = None
    model: str = ""
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)

    def first_content(self) -> str | None:
        """Content of the first choice, None if there is none."""
        if not self.choices:
            return None
        return self.choices[0].message.content


class LLMProvider(ABC):
    """
    Abstract base class for completion providers.

    Subclasses implement ``complete``. Callers use ``generate``, which adds
    cancellation by generation id and maps every failure to
    ``ProviderUnavailableError``.
    """

    default_model: str = "mistral-small-latest"

    def __init__(self, registry: GenerationRegistry | None = None):
        self.registry = registry or GenerationRegistry()

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ) -> CompletionResponse:
        """
        Get a non-streaming completion.

        Args:
            messages: List of messages in API format
            model: Model identifier
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            top_p: Nucleus sampling mass

        Returns:
            The provider response
        """
        pass

    async def generate(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        top_p: float = 0.9,
        generation_id: str | None = None,
    ) -> CompletionResponse:
        """
        Get a completion, optionally cancellable through ``generation_id``.

        Raises:
            ValueError: If ``generation_id`` is already active
            GenerationCancelledError: If the generation was cancelled
            ProviderUnavailableError: If the call failed or returned no choices
        """
        if generation_id is not None and self.registry.is_active(generation_id):
            raise ValueError(f"Generation '{generation_id}' is already active")

        call = self.complete(
            messages,
            model=model or self.default_model,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
        )

        try:
            if generation_id is None:
                response = await call
            else:
                response = await self.registry.run(generation_id, call)
        except (GenerationCancelledError, ProviderUnavailableError):
            raise
        except Exception as e:
            logger.error(f"Completion call failed: {e}")
            raise ProviderUnavailableError(f"Completion call failed: {e}") from e

        if not response.choices:
            raise ProviderUnavailableError("No response generated from provider")

        return response

    def cancel(self, generation_id: str) -> bool:
        return self.registry.cancel(generation_id)

    def is_generation_active(self, generation_id: str) -> bool:
        return self.registry.is_active(generation_id)
