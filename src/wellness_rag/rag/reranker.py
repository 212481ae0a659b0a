"""Reranker implementations."""

import logging
from typing import Optional

from .base import BaseReranker
from .context import UserContext
from .document import SearchResult, sort_by_combined_score

logger = logging.getLogger(__name__)


def _mentions(text: str, term: str) -> bool:
    return term.lower() in text.lower()


def _matched_fraction(terms: list[str], matches) -> float:
    if not terms:
        return 0.0
    return sum(1 for term in terms if matches(term)) / len(terms)


class ContextReranker(BaseReranker):
    """Reranker that boosts results matching what we know about the user.

    Each part of the user context contributes the fraction of its entries
    found in the document, times a weight. The boost is added to the
    result's relevance (capped at 1.0) and the results are re-sorted by
    combined score.
    """

    def __init__(
        self,
        condition_weight: float = 0.3,
        medication_weight: float = 0.2,
        goal_weight: float = 0.2,
        topic_weight: float = 0.3,
    ):
        """Initialize the context reranker.

        Args:
            condition_weight: Weight of health conditions (content or keywords)
            medication_weight: Weight of medications (content)
            goal_weight: Weight of wellness goals (content)
            topic_weight: Weight of recent topics (content or keywords)
        """
        self.condition_weight = condition_weight
        self.medication_weight = medication_weight
        self.goal_weight = goal_weight
        self.topic_weight = topic_weight

    def context_score(self, result: SearchResult, context: UserContext) -> float:
        """Relevance boost of a single result."""
        document = result.document

        def in_content(term: str) -> bool:
            return _mentions(document.content, term)

        def in_content_or_keywords(term: str) -> bool:
            return in_content(term) or any(_mentions(k, term) for k in document.keywords)

        return (
            _matched_fraction(context.health_conditions, in_content_or_keywords) * self.condition_weight
            + _matched_fraction(context.medications, in_content) * self.medication_weight
            + _matched_fraction(context.wellness_goals, in_content) * self.goal_weight
            + _matched_fraction(context.recent_topics, in_content_or_keywords) * self.topic_weight
        )

    async def rerank(
        self,
        query: str,
        results: list[SearchResult],
        context: Optional[UserContext] = None,
        top_k: Optional[int] = None,
    ) -> list[SearchResult]:
        """Boost relevance by user context and re-sort."""
        if context is None:
            return results[:top_k] if top_k is not None else results

        reranked = []
        for result in results:
            boost = self.context_score(result, context)
            reranked.append(result.model_copy(
                update={"relevance": min(result.relevance + boost, 1.0)}
            ))

        reranked = sort_by_combined_score(reranked)
        logger.debug(f"Reranked {len(reranked)} results with user context")
        return reranked[:top_k] if top_k is not None else reranked
