"""Base classes and abstract interfaces for RAG components."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .context import ConversationContext, UserContext
    from .document import Chunk, SearchResult, WellnessDocument
    from .filters import DocumentQuery


class BaseEmbedding(ABC):
    """Abstract base class for embedding models.

    Embedding models convert text into dense vector representations.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of documents.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, in input order
        """
        pass

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query.

        Args:
            text: Query text to embed

        Returns:
            Embedding vector
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of the embedding vectors."""
        pass

    @property
    def model_name(self) -> str:
        return type(self).__name__

    @property
    def is_degraded(self) -> bool:
        """True if the last embedding came from a fallback path."""
        return False


class BaseDocumentStore(ABC):
    """Abstract base class for wellness document stores.

    Stores persist documents with their embeddings and support filtered
    lookups plus native full-text search.
    """

    @abstractmethod
    async def insert(self, document: "WellnessDocument") -> str:
        """Insert or replace a document.

        Args:
            document: Document to store

        Returns:
            The document ID
        """
        pass

    @abstractmethod
    async def get(self, document_id: str) -> Optional["WellnessDocument"]:
        """Get a document by its ID, None if missing."""
        pass

    @abstractmethod
    async def update(self, document: "WellnessDocument") -> bool:
        """Replace an existing document.

        Returns:
            True if the document existed
        """
        pass

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete a document by ID."""
        pass

    @abstractmethod
    async def find(
        self,
        query: "DocumentQuery",
        limit: Optional[int] = None,
    ) -> list["WellnessDocument"]:
        """Find documents matching a query.

        Args:
            query: Typed document query
            limit: Maximum number of documents (None for all)

        Returns:
            Matching documents
        """
        pass

    @abstractmethod
    async def text_search(
        self,
        text: str,
        query: "DocumentQuery",
        limit: int = 10,
    ) -> list[tuple["WellnessDocument", float]]:
        """Full-text search weighted title > keywords > content.

        Args:
            text: Free text to search for
            query: Additional typed restrictions
            limit: Maximum number of results

        Returns:
            (document, text score) pairs sorted by descending score
        """
        pass

    async def find_by_owner(self, user_id: str) -> list["WellnessDocument"]:
        """Get all documents owned by a user."""
        from .filters import DocumentQuery, Equals

        return await self.find(DocumentQuery(predicates=[Equals(field="owner_id", value=user_id)]))

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored documents."""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """Remove all documents."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Liveness probe for the underlying database."""
        pass


class BaseConversationStore(ABC):
    """Abstract base class for conversation context storage."""

    @abstractmethod
    async def get(self, user_id: str, session_id: str) -> Optional["ConversationContext"]:
        """Load the context of a session, None if it does not exist."""
        pass

    @abstractmethod
    async def save(self, context: "ConversationContext") -> None:
        """Persist a context (insert or replace)."""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str) -> list["ConversationContext"]:
        """List contexts of a user, most recently updated first."""
        pass

    @abstractmethod
    async def delete(self, user_id: str, session_id: str) -> bool:
        """Delete a session context."""
        pass


class BaseCacheBackend(ABC):
    """Abstract key-value store with TTL support."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def flush(self) -> None:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def size(self) -> int:
        pass


class BaseChunker(ABC):
    """Abstract base class for document chunkers.

    Chunkers split documents into smaller pieces for embedding.
    """

    @abstractmethod
    def split_text(self, text: str) -> list[str]:
        """Split raw text into chunk strings."""
        pass

    @abstractmethod
    def chunk(self, document: "WellnessDocument") -> list["Chunk"]:
        """Split a document into chunks.

        Args:
            document: Document to chunk

        Returns:
            List of chunks
        """
        pass


class BaseReranker(ABC):
    """Abstract base class for rerankers.

    Rerankers reorder search results to improve relevance.
    """

    @abstractmethod
    async def rerank(
        self,
        query: str,
        results: list["SearchResult"],
        context: Optional["UserContext"] = None,
        top_k: Optional[int] = None,
    ) -> list["SearchResult"]:
        """Rerank search results.

        Args:
            query: Original query string
            results: Search results to rerank
            context: What the user told us about themselves
            top_k: Number of results to return (None keeps all)

        Returns:
            Reranked search results
        """
        pass
