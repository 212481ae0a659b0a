"""Retrieval and contextual response pipeline."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

from wellness_rag.exceptions import (
    GenerationCancelledError,
    NotFoundError,
    ProviderUnavailableError,
)

from .base import BaseChunker, BaseConversationStore, BaseDocumentStore, BaseEmbedding, BaseReranker
from .cache import ResponseCache
from .chunking import SentenceChunker
from .context import ConversationContext, Role, UserContext
from .document import (
    Chunk,
    RAGQuery,
    RAGResponse,
    ResponseMetadata,
    SearchResult,
    WellnessDocument,
    sort_by_combined_score,
    utcnow,
)
from .reranker import ContextReranker
from .search import OutcomeStatus, VectorSearchEngine, calculate_relevance
from .similarity import cosine_similarity

if TYPE_CHECKING:
    from wellness_rag.providers.base import LLMProvider
    from wellness_rag.utils.config import RAGConfig

logger = logging.getLogger(__name__)

STOP_KEYWORDS = ("stop", "end", "quit", "exit", "terminate", "halt")

STOP_ACKNOWLEDGEMENT = (
    "I understand you want to stop. I'll respect that and won't continue this "
    "conversation. Feel free to start a new chat when you're ready."
)
CONVERSATION_ENDED = (
    "This conversation has been stopped. I won't continue responding. "
    "Please start a new chat if you need assistance."
)
FALLBACK_RESPONSE = (
    "I'm having technical issues right now. For immediate concerns, please "
    "consult with a healthcare professional."
)
EMPTY_REPLY = "I apologize, but I cannot generate a response at this time."
GENERAL_KNOWLEDGE = "General wellness principles and best practices."
NEW_CONVERSATION = "This is a new conversation."
NONE_SPECIFIED = "None specified"

# Processing time is attributed to vector search and reranking in fixed shares.
VECTOR_SEARCH_SHARE = 0.7
SEARCH_CONFIDENCE = 0.8

USER_DOCUMENT_THRESHOLD = 0.5
USER_DOCUMENT_MIN_RELEVANCE = 0.8
CONDITION_BONUS_WEIGHT = 0.2
GENERAL_SCORE_FACTOR = 0.7
GENERAL_POOL_LIMIT = 3
BLENDED_LIMIT = 5
HISTORY_TURNS = 3

RESPONSE_PROMPT = """<s>[INST] You are a knowledgeable wellness consultant who provides helpful, practical advice. Be natural and conversational in your responses.

Your approach:
- Respond directly to the user's question or concern
- Be helpful and informative without being overly formal
- Only ask follow-up questions if the user specifically requests them or if it's clearly needed for safety
- If the user says "stop" or indicates they're done, respect that
- Provide evidence-based information when relevant
- Keep responses concise and actionable
- Be warm and supportive, but not robotic

KNOWLEDGE BASE:
{knowledge}

CONVERSATION HISTORY:
{history}

USER CONTEXT:
- Health Conditions: {conditions}
- Medications: {medications}
- Wellness Goals: {goals}
- Communication Style: {style}

USER MESSAGE: {query}

Respond naturally and directly to the user's message. Focus on being helpful and informative without unnecessary formalities or follow-up questions unless specifically requested. [/INST]"""


class QueryState(str, Enum):
    """Lifecycle states of a contextual response."""
    RECEIVED = "received"
    STOP_CHECK = "stop_check"
    STOPPED = "stopped"
    CONTEXT_LOADED = "context_loaded"
    RETRIEVAL = "retrieval"
    PROMPT_ASSEMBLY = "prompt_assembly"
    PROVIDER_CALL = "provider_call"
    COMPLETED = "completed"
    FAILED_FALLBACK = "failed_fallback"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    QueryState.STOPPED,
    QueryState.COMPLETED,
    QueryState.FAILED_FALLBACK,
    QueryState.CANCELLED,
})


@dataclass
class GenerationResult:
    """Outcome of a contextual response.

    Attributes:
        text: Reply shown to the user (empty when cancelled)
        state: Terminal state reached
        trace: Every state visited, in order
        session_id: Session the reply belongs to
        generation_id: Cancellation id, if one was given
        sources: Sources of the documents used as context
    """
    text: str
    state: QueryState
    trace: list[QueryState] = field(default_factory=list)
    session_id: Optional[str] = None
    generation_id: Optional[str] = None
    sources: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.state is QueryState.CANCELLED


def is_stop_signal(query: str) -> bool:
    """True if the lowercased query contains any stop keyword."""
    text = query.lower()
    return any(keyword in text for keyword in STOP_KEYWORDS)


def condition_bonus(document: WellnessDocument, context: UserContext) -> float:
    """Share of the user's health conditions mentioned in the document, weighted."""
    conditions = context.health_conditions
    if not conditions:
        return 0.0
    content = document.content.lower()
    matches = sum(1 for condition in conditions if condition.lower() in content)
    return (matches / len(conditions)) * CONDITION_BONUS_WEIGHT


def build_knowledge_block(results: list[SearchResult]) -> str:
    """Context block of the prompt, one paragraph per document."""
    if not results:
        return GENERAL_KNOWLEDGE
    return "\n\n".join(f"{r.document.title}: {r.document.content}" for r in results)


def build_response_prompt(
    query: str,
    knowledge: str,
    conversation: ConversationContext,
) -> str:
    """Assemble the completion prompt for a user message."""
    history = "\n".join(
        f"{message.role.value}: {message.content}"
        for message in conversation.recent_messages(HISTORY_TURNS)
    )
    user = conversation.context

    return RESPONSE_PROMPT.format(
        knowledge=knowledge,
        history=history or NEW_CONVERSATION,
        conditions=", ".join(user.health_conditions) or NONE_SPECIFIED,
        medications=", ".join(user.medications) or NONE_SPECIFIED,
        goals=", ".join(user.wellness_goals) or NONE_SPECIFIED,
        style=user.communication_style.value,
        query=query,
    )


class RAGPipeline:
    """Wellness retrieval and contextual response pipeline.

    Ties together the search engine, response cache, conversation store and
    completion provider.

    Example:
        ```python
        pipeline = RAGPipeline(
            embedding=MistralEmbedding(api_key=key),
            store=MemoryDocumentStore(),
            conversations=MemoryConversationStore(),
            cache=ResponseCache(MemoryCacheBackend()),
            provider=MistralProvider(api_key=key),
        )

        response = await pipeline.search_documents(RAGQuery(query="better sleep"))
        reply = await pipeline.generate_contextual_response("How can I sleep better?", "user-1")
        ```
    """

    def __init__(
        self,
        embedding: BaseEmbedding,
        store: BaseDocumentStore,
        conversations: BaseConversationStore,
        cache: Optional[ResponseCache] = None,
        provider: Optional["LLMProvider"] = None,
        search_engine: Optional[VectorSearchEngine] = None,
        reranker: Optional[BaseReranker] = None,
        chunker: Optional[BaseChunker] = None,
        top_k: int = 10,
        cache_ttl: int = 3600,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ):
        """Initialize the pipeline.

        Args:
            embedding: Embedding model for queries and documents
            store: Document store
            conversations: Conversation context store
            cache: Response cache for searches (None disables caching)
            provider: Completion provider (None means every generation falls back)
            search_engine: Search engine (default: VectorSearchEngine over store)
            reranker: Reranker applied when a query carries user context
                (default: ContextReranker)
            chunker: Document chunker (default: SentenceChunker)
            top_k: Default number of search results
            cache_ttl: Lifetime of cached search responses in seconds
            max_tokens: Token budget of a generated reply
            temperature: Sampling temperature
            top_p: Nucleus sampling mass
        """
        self.embedding = embedding
        self.store = store
        self.conversations = conversations
        self.cache = cache
        self.provider = provider
        self.search_engine = search_engine or VectorSearchEngine(embedding, store)
        self.reranker = reranker or ContextReranker()
        self.chunker = chunker or SentenceChunker()
        self.top_k = top_k
        self.cache_ttl = cache_ttl
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p

    @classmethod
    def from_config(cls, config: Optional["RAGConfig"] = None) -> "RAGPipeline":
        """Build a pipeline backed by Mistral, MongoDB and Redis.

        Args:
            config: Pipeline configuration (default: defaults plus environment)

        Returns:
            Configured pipeline
        """
        from wellness_rag.providers.mistral import MistralProvider
        from wellness_rag.utils.config import RAGConfig
        from wellness_rag.utils.logging import set_log_level

        from .cache import RedisCacheBackend
        from .embeddings import HashEmbedding, MistralEmbedding
        from .store import MongoConversationStore, MongoDocumentStore

        config = config or RAGConfig.from_env()
        set_log_level(config.log_level)

        if config.embedding.provider == "local":
            embedding = HashEmbedding(dimension=config.embedding.dimensions)
        else:
            embedding = MistralEmbedding(
                model=config.embedding.name,
                api_key=config.provider.api_key,
                base_url=config.provider.base_url,
                dimension=config.embedding.dimensions,
                max_concurrency=config.embedding.max_concurrency,
            )
        store = MongoDocumentStore(
            uri=config.storage.mongodb_uri,
            database=config.storage.database,
            collection_name=config.storage.documents_collection,
        )
        conversations = MongoConversationStore(
            uri=config.storage.mongodb_uri,
            database=config.storage.database,
            collection_name=config.storage.contexts_collection,
        )

        cache = None
        if config.cache.enabled:
            cache = ResponseCache(
                RedisCacheBackend(config.storage.redis_url),
                default_ttl=config.cache.ttl,
                key_prefix=config.cache.key_prefix,
            )

        provider = MistralProvider(
            api_key=config.provider.api_key,
            base_url=config.provider.base_url,
            model=config.provider.model,
            timeout=config.provider.timeout,
        )

        return cls(
            embedding=embedding,
            store=store,
            conversations=conversations,
            cache=cache,
            provider=provider,
            search_engine=VectorSearchEngine(
                embedding,
                store,
                similarity_threshold=config.vector_search.threshold,
                hybrid_threshold=config.vector_search.hybrid_threshold,
            ),
            chunker=SentenceChunker(
                max_chunk_size=config.chunking.max_chunk_size,
                overlap_size=config.chunking.overlap_size,
            ),
            top_k=config.vector_search.top_k,
            cache_ttl=config.cache.ttl,
            max_tokens=config.provider.max_tokens,
            temperature=config.provider.temperature,
            top_p=config.provider.top_p,
        )

    async def ensure_indexes(self) -> None:
        """Create database indexes for stores that support them."""
        for store in (self.store, self.conversations):
            if hasattr(store, "ensure_indexes"):
                await store.ensure_indexes()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def search_documents(self, query: RAGQuery) -> RAGResponse:
        """Hybrid document search with response caching.

        Args:
            query: Search request

        Returns:
            Response envelope; ``response`` is always empty
        """
        start_time = time.perf_counter()
        limit = query.limit or self.top_k

        cache_key = None
        if self.cache is not None:
            cache_key = self.cache.generate_key(query.query, query.filters, query.user_id, limit)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Returning cached search results")
                cached.metadata.cache_hit = True
                return cached

        outcome = await self.search_engine.hybrid_search_outcome(
            query.query,
            query.filters,
            limit,
            user_id=query.user_id,
            threshold=query.threshold,
        )

        results = outcome.results
        if query.context is not None and results:
            results = await self.reranker.rerank(query.query, results, context=query.context)

        processing_time = (time.perf_counter() - start_time) * 1000

        response = RAGResponse(
            query=query.query,
            results=results,
            total_results=len(results),
            processing_time=processing_time,
            model=self.embedding.model_name if results else "fallback",
            sources=[r.document.source for r in results if r.document.source],
            confidence=SEARCH_CONFIDENCE if results else 0.0,
            metadata=ResponseMetadata(
                vector_search_time=processing_time * VECTOR_SEARCH_SHARE,
                reranking_time=processing_time * (1 - VECTOR_SEARCH_SHARE),
                cache_hit=False,
                retrieval_status=outcome.status.value,
            ),
        )

        if cache_key is not None and outcome.status is not OutcomeStatus.FAILED:
            await self.cache.set(cache_key, response, self.cache_ttl)

        return response

    async def search_user_relevant_documents(
        self,
        query: str,
        user_id: str,
        conversation: ConversationContext,
    ) -> list[SearchResult]:
        """Blend the user's own documents with the general knowledge base.

        Personal documents need a cosine similarity of at least 0.5 and get a
        relevance of at least 0.8. General results have their score scaled by
        0.7. A document found in both pools keeps its personal result.
        """
        try:
            personal: list[SearchResult] = []
            user_documents = await self.store.find_by_owner(user_id)
            query_embedding = None

            for document in user_documents:
                if document.embedding is None:
                    continue
                if query_embedding is None:
                    query_embedding = await self.embedding.embed_query(query)

                similarity = cosine_similarity(query_embedding, document.embedding)
                if similarity < USER_DOCUMENT_THRESHOLD:
                    continue

                lexical = calculate_relevance(document, query) + condition_bonus(
                    document, conversation.context
                )
                personal.append(SearchResult(
                    document=document,
                    score=similarity,
                    relevance=max(USER_DOCUMENT_MIN_RELEVANCE, min(lexical, 1.0)),
                    context=f"User document: {document.title}",
                ))

            general = await self.search_documents(RAGQuery(
                query=query,
                user_id=user_id,
                context=conversation.context,
                limit=GENERAL_POOL_LIMIT,
            ))
        except Exception as e:
            logger.error(f"Error searching user relevant documents: {e}")
            return []

        blended = {result.document.id: result for result in personal}
        for result in general.results:
            if result.document.id not in blended:
                blended[result.document.id] = result.model_copy(
                    update={"score": result.score * GENERAL_SCORE_FACTOR}
                )

        return sort_by_combined_score(list(blended.values()))[:BLENDED_LIMIT]

    # ------------------------------------------------------------------
    # Contextual responses
    # ------------------------------------------------------------------

    async def get_or_create_conversation(self, user_id: str, session_id: str) -> ConversationContext:
        conversation = await self.conversations.get(user_id, session_id)
        if conversation is None:
            conversation = ConversationContext(user_id=user_id, session_id=session_id)
        return conversation

    async def generate(
        self,
        query: str,
        user_id: str,
        session_id: Optional[str] = None,
        generation_id: Optional[str] = None,
    ) -> GenerationResult:
        """Answer a user message using their conversation and documents.

        Never raises. Retrieval and provider failures, and a
        ``generation_id`` that is already in flight, end in ``FAILED_FALLBACK``
        with a canned reply. Only a completed reply is persisted to the
        conversation.

        Args:
            query: The user's message
            user_id: User sending the message
            session_id: Conversation session (default: a new session)
            generation_id: Id under which the provider call can be cancelled

        Returns:
            Generation result with the reply and the visited states
        """
        trace = [QueryState.RECEIVED]
        result = GenerationResult(
            text="",
            state=QueryState.RECEIVED,
            trace=trace,
            session_id=session_id,
            generation_id=generation_id,
        )

        def finish(state: QueryState, text: str) -> GenerationResult:
            trace.append(state)
            result.state = state
            result.text = text
            return result

        if generation_id is not None and self.is_generation_active(generation_id):
            logger.warning(f"Generation {generation_id} is already active")
            return finish(QueryState.FAILED_FALLBACK, FALLBACK_RESPONSE)

        trace.append(QueryState.STOP_CHECK)
        if is_stop_signal(query):
            logger.info(f"Stop signal received from user {user_id}")
            return finish(QueryState.STOPPED, STOP_ACKNOWLEDGEMENT)

        session_id = session_id or f"session_{int(time.time() * 1000)}"
        result.session_id = session_id

        try:
            conversation = await self.get_or_create_conversation(user_id, session_id)
            if conversation.is_stopped():
                return finish(QueryState.STOPPED, CONVERSATION_ENDED)
            trace.append(QueryState.CONTEXT_LOADED)

            conversation.add_message(Role.USER, query)

            trace.append(QueryState.RETRIEVAL)
            results = await self.search_user_relevant_documents(query, user_id, conversation)
            result.sources = [r.document.source for r in results if r.document.source]

            trace.append(QueryState.PROMPT_ASSEMBLY)
            prompt = build_response_prompt(query, build_knowledge_block(results), conversation)

            trace.append(QueryState.PROVIDER_CALL)
            reply = await self._complete(prompt, generation_id)

            conversation.add_message(Role.ASSISTANT, reply)
            conversation.touch()
            await self.conversations.save(conversation)
        except GenerationCancelledError:
            return finish(QueryState.CANCELLED, "")
        except Exception as e:
            logger.error(f"Error generating contextual response: {e}")
            return finish(QueryState.FAILED_FALLBACK, FALLBACK_RESPONSE)

        return finish(QueryState.COMPLETED, reply)

    async def _complete(self, prompt: str, generation_id: Optional[str]) -> str:
        if self.provider is None:
            raise ProviderUnavailableError("No completion provider configured")

        response = await self.provider.generate(
            [{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            generation_id=generation_id,
        )
        return response.first_content() or EMPTY_REPLY

    async def generate_contextual_response(
        self,
        query: str,
        user_id: str,
        session_id: Optional[str] = None,
        generation_id: Optional[str] = None,
    ) -> str:
        """Reply text of ``generate``.

        Raises:
            GenerationCancelledError: If the generation was cancelled
        """
        result = await self.generate(query, user_id, session_id, generation_id)
        if result.cancelled:
            raise GenerationCancelledError(generation_id or "")
        return result.text

    def cancel_generation(self, generation_id: str) -> bool:
        """Cancel an in-flight generation, False if it is not active."""
        if self.provider is None:
            return False
        return self.provider.cancel(generation_id)

    def is_generation_active(self, generation_id: str) -> bool:
        if self.provider is None:
            return False
        return self.provider.is_generation_active(generation_id)

    def active_generation_ids(self) -> list[str]:
        if self.provider is None:
            return []
        return self.provider.registry.active_ids()

    # ------------------------------------------------------------------
    # User documents
    # ------------------------------------------------------------------

    async def add_user_document(self, user_id: str, document: WellnessDocument) -> WellnessDocument:
        """Embed and store a document owned by ``user_id``.

        Returns:
            The stored document
        """
        vector = await self.embedding.embed_query(document.embedding_text())
        now = utcnow()

        stored = document.model_copy(update={
            "owner_id": user_id,
            "embedding": vector,
            "metadata": {**document.metadata, "user_id": user_id, "added_at": now.isoformat()},
            "updated_at": now,
            "last_updated": now,
        })
        await self.store.insert(stored)

        logger.info(f"Added wellness document for user {user_id}: {stored.title}")
        return stored

    async def _owned_document(self, user_id: str, document_id: str) -> WellnessDocument:
        document = await self.store.get(document_id)
        if document is None or document.owner_id != user_id:
            raise NotFoundError("document", document_id)
        return document

    async def update_user_document(
        self,
        user_id: str,
        document_id: str,
        changes: dict[str, Any],
    ) -> WellnessDocument:
        """Apply changes to a user's document.

        The embedding is recomputed only when the title or content changed.

        Raises:
            NotFoundError: If the document does not exist or belongs to someone else
            ValueError: If ``changes`` names unknown or read-only fields
        """
        existing = await self._owned_document(user_id, document_id)

        read_only = {"id", "owner_id", "embedding", "created_at"}
        invalid = set(changes) - (set(WellnessDocument.model_fields) - read_only)
        if invalid:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(invalid))}")

        now = utcnow()
        updated = WellnessDocument.model_validate({
            **existing.model_dump(),
            **changes,
            "updated_at": now,
            "last_updated": now,
        })

        if updated.title != existing.title or updated.content != existing.content:
            updated.embedding = await self.embedding.embed_query(updated.embedding_text())

        await self.store.update(updated)
        return updated

    async def delete_user_document(self, user_id: str, document_id: str) -> None:
        """Delete a user's document.

        Raises:
            NotFoundError: If the document does not exist or belongs to someone else
        """
        await self._owned_document(user_id, document_id)
        await self.store.delete(document_id)

    async def get_user_documents(self, user_id: str) -> list[WellnessDocument]:
        return await self.store.find_by_owner(user_id)

    async def chunk_document(self, document: WellnessDocument) -> list[Chunk]:
        """Split a document into chunks and embed them."""
        chunks = self.chunker.chunk(document)
        if not chunks:
            return []

        vectors = await self.embedding.embed_documents([chunk.content for chunk in chunks])
        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = vector

        logger.debug(f"Chunked document {document.id}: {len(chunks)} chunks")
        return chunks

    async def health_check(self) -> dict[str, bool]:
        """Liveness of the cache and the document store."""
        cache_ok = await self.cache.health_check() if self.cache is not None else False
        return {
            "cache": cache_ok,
            "store": await self.store.ping(),
        }
