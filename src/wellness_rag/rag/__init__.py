"""Wellness retrieval system.

This module provides:
- Wellness document, chunk and search result data structures
- Typed document query predicates
- Remote embeddings with a deterministic hash fallback
- Sentence chunking
- Document and conversation stores (memory, MongoDB)
- Vector, text and hybrid search with user-context reranking
- A TTL response cache (memory, Redis)
- The retrieval and contextual response pipeline

Example:
    ```python
    from wellness_rag.rag import (
        MemoryCacheBackend,
        MemoryConversationStore,
        MemoryDocumentStore,
        MistralEmbedding,
        RAGPipeline,
        RAGQuery,
        ResponseCache,
    )

    pipeline = RAGPipeline(
        embedding=MistralEmbedding(api_key=key),
        store=MemoryDocumentStore(),
        conversations=MemoryConversationStore(),
        cache=ResponseCache(MemoryCacheBackend()),
    )

    response = await pipeline.search_documents(RAGQuery(query="sleep hygiene"))
    ```
"""

# Data structures
from .context import (
    CommunicationStyle,
    ConversationContext,
    ConversationMessage,
    MessageMetadata,
    Role,
    UserContext,
)
from .document import (
    CacheEntry,
    Category,
    Chunk,
    EvidenceLevel,
    RAGQuery,
    RAGResponse,
    ResponseMetadata,
    SearchFilters,
    SearchResult,
    WellnessDocument,
    combined_score,
)

# Base classes
from .base import (
    BaseCacheBackend,
    BaseChunker,
    BaseConversationStore,
    BaseDocumentStore,
    BaseEmbedding,
    BaseReranker,
)

# Query predicates
from .filters import (
    DocumentQuery,
    Equals,
    InSet,
    Range,
    TextSearch,
    VisibilityScope,
    build_query,
)

# Embeddings and similarity
from .embeddings import (
    EmbeddingResult,
    EmbeddingStatus,
    HashEmbedding,
    MistralEmbedding,
)
from .similarity import cosine_similarity

# Chunking
from .chunking import SentenceChunker

# Stores
from .store import (
    MemoryConversationStore,
    MemoryDocumentStore,
    MongoConversationStore,
    MongoDocumentStore,
)

# Search and reranking
from .search import (
    OutcomeStatus,
    SearchOutcome,
    VectorSearchEngine,
    calculate_relevance,
    combine_and_rerank,
    extract_context,
)
from .reranker import ContextReranker

# Cache
from .cache import (
    MemoryCacheBackend,
    RedisCacheBackend,
    ResponseCache,
    generate_cache_key,
)

# Pipeline
from .pipeline import (
    GenerationResult,
    QueryState,
    RAGPipeline,
    is_stop_signal,
)

__all__ = [
    # Data structures
    "CommunicationStyle",
    "ConversationContext",
    "ConversationMessage",
    "MessageMetadata",
    "Role",
    "UserContext",
    "CacheEntry",
    "Category",
    "Chunk",
    "EvidenceLevel",
    "RAGQuery",
    "RAGResponse",
    "ResponseMetadata",
    "SearchFilters",
    "SearchResult",
    "WellnessDocument",
    "combined_score",
    # Base classes
    "BaseCacheBackend",
    "BaseChunker",
    "BaseConversationStore",
    "BaseDocumentStore",
    "BaseEmbedding",
    "BaseReranker",
    # Query predicates
    "DocumentQuery",
    "Equals",
    "InSet",
    "Range",
    "TextSearch",
    "VisibilityScope",
    "build_query",
    # Embeddings and similarity
    "EmbeddingResult",
    "EmbeddingStatus",
    "HashEmbedding",
    "MistralEmbedding",
    "cosine_similarity",
    # Chunking
    "SentenceChunker",
    # Stores
    "MemoryConversationStore",
    "MemoryDocumentStore",
    "MongoConversationStore",
    "MongoDocumentStore",
    # Search and reranking
    "OutcomeStatus",
    "SearchOutcome",
    "VectorSearchEngine",
    "calculate_relevance",
    "combine_and_rerank",
    "extract_context",
    "ContextReranker",
    # Cache
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "ResponseCache",
    "generate_cache_key",
    # Pipeline
    "GenerationResult",
    "QueryState",
    "RAGPipeline",
    "is_stop_signal",
]
