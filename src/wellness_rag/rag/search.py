"""Vector, text and hybrid document search."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .base import BaseDocumentStore, BaseEmbedding
from .document import SearchFilters, SearchResult, WellnessDocument, sort_by_combined_score
from .filters import build_query
from .similarity import cosine_similarity

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"[.!?]+")


class OutcomeStatus(str, Enum):
    """How a search finished."""
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class SearchOutcome:
    """Search results together with how they were obtained.

    ``DEGRADED`` means the query was embedded with the fallback embedding, so
    similarity scores carry no meaning. ``FAILED`` always comes with empty
    results and the error that caused it.
    """
    results: list[SearchResult] = field(default_factory=list)
    status: OutcomeStatus = OutcomeStatus.OK
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED


def calculate_relevance(document: WellnessDocument, query: str) -> float:
    """Lexical relevance of a document to a query, in [0, 1].

    Sums three signals: the whole query appearing in the title (0.3), the
    fraction of keywords containing the query (up to 0.4) and the fraction
    of query words found inside some content word (up to 0.3).
    """
    relevance = 0.0
    query_lower = query.lower()

    if query_lower in document.title.lower():
        relevance += 0.3

    if document.keywords:
        keyword_matches = sum(1 for k in document.keywords if query_lower in k.lower())
        relevance += (keyword_matches / len(document.keywords)) * 0.4

    content_words = document.content.lower().split(" ")
    query_words = query_lower.split(" ")
    content_matches = sum(
        1 for word in query_words
        if any(word in content_word for content_word in content_words)
    )
    relevance += (content_matches / len(query_words)) * 0.3

    return min(relevance, 1.0)


def extract_context(content: str, query: str) -> str:
    """Pick up to two sentences of ``content`` mentioning a query word.

    Falls back to the first two sentences when none of them do.
    """
    sentences = [s.strip() for s in _SENTENCE_END.split(content) if s.strip()]
    query_words = query.lower().split(" ")

    relevant = [
        sentence for sentence in sentences
        if any(word in sentence.lower() for word in query_words)
    ]
    picked = relevant[:2] if relevant else sentences[:2]
    return ". ".join(picked) + "."


def combine_and_rerank(
    vector_results: list[SearchResult],
    text_results: list[SearchResult],
) -> list[SearchResult]:
    """Merge vector and text results by document id.

    A document found by both searches gets the mean of the two scores and the
    larger of the two relevances. The merged list is sorted by combined score.
    """
    combined: dict[str, SearchResult] = {}

    for result in vector_results:
        combined[result.document.id] = result.model_copy()

    for result in text_results:
        existing = combined.get(result.document.id)
        if existing:
            existing.score = (existing.score + result.score) / 2
            existing.relevance = max(existing.relevance, result.relevance)
        else:
            combined[result.document.id] = result.model_copy()

    return sort_by_combined_score(list(combined.values()))


class VectorSearchEngine:
    """Search engine over a document store.

    Combines embedding similarity with the store's native text search. Plain
    search methods never raise: a failing search logs the error and returns
    an empty list. The ``*_outcome`` variants expose the status instead.

    Example:
        ```python
        engine = VectorSearchEngine(MistralEmbedding(api_key=key), MemoryDocumentStore())
        results = await engine.hybrid_search("sleep hygiene", limit=5)
        ```
    """

    def __init__(
        self,
        embedding: BaseEmbedding,
        store: BaseDocumentStore,
        similarity_threshold: float = 0.7,
        hybrid_threshold: float = 0.5,
    ):
        """Initialize the search engine.

        Args:
            embedding: Embedding model for queries
            store: Document store to search
            similarity_threshold: Default cosine cutoff of ``search_similar``
            hybrid_threshold: Cosine cutoff of the vector leg of hybrid search
        """
        self.embedding = embedding
        self.store = store
        self.similarity_threshold = similarity_threshold
        self.hybrid_threshold = hybrid_threshold

    async def search_similar_outcome(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        threshold: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> SearchOutcome:
        """Embedding similarity search.

        Args:
            query: Query text
            filters: Allow-list filters
            limit: Maximum number of results
            threshold: Minimum cosine similarity (default: engine threshold)
            user_id: Include documents owned by this user

        Returns:
            Search outcome, results sorted by combined score
        """
        start_time = time.perf_counter()
        threshold = self.similarity_threshold if threshold is None else threshold

        try:
            query_embedding = await self.embedding.embed_query(query)
            degraded = self.embedding.is_degraded

            candidates = await self.store.find(
                build_query(filters, user_id=user_id, require_embedding=True),
                limit=limit * 2,
            )

            results = []
            for document in candidates:
                similarity = cosine_similarity(query_embedding, document.embedding)
                if similarity < threshold:
                    continue
                results.append(SearchResult(
                    document=document,
                    score=similarity,
                    relevance=calculate_relevance(document, query),
                    context=extract_context(document.content, query),
                ))

            results = sort_by_combined_score(results)[:limit]
        except Exception as e:
            logger.error(f"Error in vector search: {e}")
            return SearchOutcome(status=OutcomeStatus.FAILED, error=str(e))

        elapsed = (time.perf_counter() - start_time) * 1000
        logger.info(f"Vector search completed in {elapsed:.0f}ms")

        status = OutcomeStatus.DEGRADED if degraded else OutcomeStatus.OK
        return SearchOutcome(results=results, status=status)

    async def search_similar(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        threshold: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> list[SearchResult]:
        """Embedding similarity search returning only the results."""
        outcome = await self.search_similar_outcome(query, filters, limit, threshold, user_id)
        return outcome.results

    async def text_search_outcome(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        user_id: Optional[str] = None,
    ) -> SearchOutcome:
        """Full-text search scored by lexical relevance."""
        try:
            matches = await self.store.text_search(
                query,
                build_query(filters, user_id=user_id),
                limit=limit,
            )
        except Exception as e:
            logger.error(f"Error in text search: {e}")
            return SearchOutcome(status=OutcomeStatus.FAILED, error=str(e))

        results = [
            SearchResult(
                document=document,
                score=calculate_relevance(document, query),
                relevance=0.5,
                context=extract_context(document.content, query),
            )
            for document, _ in matches
        ]
        return SearchOutcome(results=results)

    async def text_search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        user_id: Optional[str] = None,
    ) -> list[SearchResult]:
        outcome = await self.text_search_outcome(query, filters, limit, user_id)
        return outcome.results

    async def hybrid_search_outcome(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        user_id: Optional[str] = None,
        threshold: Optional[float] = None,
    ) -> SearchOutcome:
        """Run vector and text search concurrently and merge the results.

        If either leg fails the whole search fails with no results.
        """
        start_time = time.perf_counter()
        threshold = self.hybrid_threshold if threshold is None else threshold

        vector_outcome, text_outcome = await asyncio.gather(
            self.search_similar_outcome(query, filters, limit, threshold, user_id),
            self.text_search_outcome(query, filters, limit, user_id),
        )

        for outcome in (vector_outcome, text_outcome):
            if outcome.failed:
                logger.error(f"Error in hybrid search: {outcome.error}")
                return SearchOutcome(status=OutcomeStatus.FAILED, error=outcome.error)

        results = combine_and_rerank(vector_outcome.results, text_outcome.results)[:limit]

        elapsed = (time.perf_counter() - start_time) * 1000
        logger.info(f"Hybrid search completed in {elapsed:.0f}ms")

        degraded = OutcomeStatus.DEGRADED in (vector_outcome.status, text_outcome.status)
        status = OutcomeStatus.DEGRADED if degraded else OutcomeStatus.OK
        return SearchOutcome(results=results, status=status)

    async def hybrid_search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        user_id: Optional[str] = None,
    ) -> list[SearchResult]:
        """Hybrid search returning only the results."""
        outcome = await self.hybrid_search_outcome(query, filters, limit, user_id)
        return outcome.results
