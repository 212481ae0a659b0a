"""
Wellness RAG - retrieval and contextual responses over a wellness knowledge base.
"""

from wellness_rag.exceptions import (
    CacheUnavailableError,
    DimensionMismatchError,
    GenerationCancelledError,
    NotFoundError,
    ProviderUnavailableError,
    WellnessRAGError,
)
from wellness_rag.providers import GenerationRegistry, LLMProvider, MistralProvider
from wellness_rag.rag import (
    ConversationContext,
    GenerationResult,
    QueryState,
    RAGPipeline,
    RAGQuery,
    RAGResponse,
    SearchFilters,
    SearchResult,
    UserContext,
    WellnessDocument,
)
from wellness_rag.utils import RAGConfig, load_config

__version__ = "0.1.0"

__all__ = [
    # Errors
    "WellnessRAGError",
    "DimensionMismatchError",
    "ProviderUnavailableError",
    "CacheUnavailableError",
    "NotFoundError",
    "GenerationCancelledError",
    # Providers
    "LLMProvider",
    "MistralProvider",
    "GenerationRegistry",
    # RAG
    "ConversationContext",
    "GenerationResult",
    "QueryState",
    "RAGPipeline",
    "RAGQuery",
    "RAGResponse",
    "SearchFilters",
    "SearchResult",
    "UserContext",
    "WellnessDocument",
    # Config
    "RAGConfig",
    "load_config",
]
