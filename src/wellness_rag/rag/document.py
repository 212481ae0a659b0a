"""Document, chunk and search result data structures for wellness RAG."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .context import UserContext

SIMILARITY_WEIGHT = 0.7
RELEVANCE_WEIGHT = 0.3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(str, Enum):
    """Closed set of wellness document categories."""
    CONDITION = "condition"
    SYMPTOM = "symptom"
    TREATMENT = "treatment"
    LIFESTYLE = "lifestyle"
    MEDICATION = "medication"
    PREVENTION = "prevention"


class EvidenceLevel(str, Enum):
    """Strength of the evidence behind a document."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WellnessDocument(BaseModel):
    """A retrievable wellness document.

    Documents without an owner belong to the general knowledge base and are
    visible to every search. Documents with an owner are only visible to
    searches scoped to that user.

    Attributes:
        id: Unique identifier for the document
        title: Document title
        content: Free text body
        category: Document category
        keywords: Keywords used for lexical matching
        evidence_level: Strength of evidence
        source: Source identifier
        owner_id: Owning user, None for the shared knowledge base
        metadata: Free-form metadata (author, journal, doi, added_at...)
        tags: Free-form tags
        usage_count: Number of times the document was used
        embedding: Embedding vector, None until computed
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str
    content: str
    category: Category
    keywords: list[str] = Field(default_factory=list)
    evidence_level: EvidenceLevel
    source: str
    owner_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    usage_count: int = 0
    embedding: Optional[list[float]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    def is_visible_to(self, user_id: Optional[str]) -> bool:
        """Check whether a search scoped to ``user_id`` may see this document."""
        return self.owner_id is None or self.owner_id == user_id

    def embedding_text(self) -> str:
        """Text used to compute the document embedding."""
        return f"{self.title} {self.content}"

    def __repr__(self) -> str:
        title_preview = self.title[:40] + "..." if len(self.title) > 40 else self.title
        return f"WellnessDocument(id={self.id!r}, title={title_preview!r})"


class Chunk(BaseModel):
    """A sentence-bounded piece of a document.

    Attributes:
        id: Unique identifier for the chunk
        document_id: ID of the parent document
        content: The text content of the chunk
        metadata: Chunk index, positions and parent document fields
        embedding: Optional embedding vector
        start_index: Start character index in the parent document
        end_index: End character index in the parent document
    """

    id: str
    document_id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[list[float]] = None
    start_index: int = 0
    end_index: int = 0

    def __repr__(self) -> str:
        content_preview = self.content[:30] + "..." if len(self.content) > 30 else self.content
        return f"Chunk(id={self.id!r}, doc_id={self.document_id!r}, content={content_preview!r})"


class SearchResult(BaseModel):
    """A document matched by a search.

    Attributes:
        document: Snapshot of the matching document
        score: Similarity score
        relevance: Lexical / context relevance score
        context: One or two sentences of the document most relevant to the query
    """

    document: WellnessDocument
    score: float
    relevance: float = 0.0
    context: str = ""

    @property
    def combined_score(self) -> float:
        return combined_score(self.score, self.relevance)

    def __repr__(self) -> str:
        return (
            f"SearchResult(doc_id={self.document.id!r}, score={self.score:.4f}, "
            f"relevance={self.relevance:.4f})"
        )


def combined_score(score: float, relevance: float) -> float:
    """Ranking score blending similarity and relevance."""
    return score * SIMILARITY_WEIGHT + relevance * RELEVANCE_WEIGHT


def sort_by_combined_score(results: list[SearchResult]) -> list[SearchResult]:
    """Return results ordered by descending combined score."""
    return sorted(results, key=lambda r: r.combined_score, reverse=True)


class SearchFilters(BaseModel):
    """Allow-list filters for document searches.

    All filters are optional and AND-combined. Empty lists are ignored.
    """

    categories: Optional[list[Category]] = None
    evidence_levels: Optional[list[EvidenceLevel]] = None
    sources: Optional[list[str]] = None

    def is_empty(self) -> bool:
        return not (self.categories or self.evidence_levels or self.sources)

    def cache_fragment(self) -> str:
        """Stable JSON form used when deriving cache keys."""
        return self.model_dump_json(exclude_none=True)


class RAGQuery(BaseModel):
    """A retrieval request."""

    query: str
    user_id: Optional[str] = None
    context: Optional[UserContext] = None
    filters: Optional[SearchFilters] = None
    limit: Optional[int] = None
    threshold: Optional[float] = None


class ResponseMetadata(BaseModel):
    """Timing and provenance details of a retrieval response."""

    vector_search_time: float = 0.0
    reranking_time: float = 0.0
    cache_hit: bool = False
    retrieval_status: str = "ok"


class RAGResponse(BaseModel):
    """Envelope returned by document searches.

    ``response`` stays empty for plain searches; only contextual generation
    produces a natural-language answer.
    """

    query: str
    response: str = ""
    results: list[SearchResult] = Field(default_factory=list)
    total_results: int = 0
    processing_time: float = 0.0
    model: str = ""
    sources: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class CacheEntry(BaseModel):
    """A cached retrieval response.

    The entry is valid while ``now - timestamp < ttl``.
    """

    key: str
    value: RAGResponse
    timestamp: datetime = Field(default_factory=utcnow)
    ttl: int

    def is_valid(self, now: datetime) -> bool:
        return (now - self.timestamp).total_seconds() < self.ttl
