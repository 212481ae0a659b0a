"""
Completion providers module.
"""

from wellness_rag.providers.base import (
    Choice,
    ChoiceMessage,
    CompletionResponse,
    LLMProvider,
    Usage,
)
from wellness_rag.providers.generation import GenerationHandle, GenerationRegistry
from wellness_rag.providers.mistral import MistralProvider

__all__ = [
    "Choice",
    "ChoiceMessage",
    "CompletionResponse",
    "LLMProvider",
    "Usage",
    "GenerationHandle",
    "GenerationRegistry",
    "MistralProvider",
]
