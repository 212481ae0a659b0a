"""Tests for the retrieval and contextual response pipeline."""

import asyncio

import pytest

from wellness_rag.exceptions import GenerationCancelledError, NotFoundError
from wellness_rag.rag import (
    ConversationContext,
    MemoryCacheBackend,
    MemoryConversationStore,
    MemoryDocumentStore,
    RAGPipeline,
    RAGQuery,
    ResponseCache,
    Role,
    UserContext,
    is_stop_signal,
)
from wellness_rag.rag.pipeline import (
    CONVERSATION_ENDED,
    FALLBACK_RESPONSE,
    STOP_ACKNOWLEDGEMENT,
    TERMINAL_STATES,
    QueryState,
)

from conftest import FakeProvider, StubEmbedding, make_document, wait_until_active

QUESTION = "How can I sleep better?"

FULL_TRACE = [
    QueryState.RECEIVED,
    QueryState.STOP_CHECK,
    QueryState.CONTEXT_LOADED,
    QueryState.RETRIEVAL,
    QueryState.PROMPT_ASSEMBLY,
    QueryState.PROVIDER_CALL,
    QueryState.COMPLETED,
]


class FailingStore(MemoryDocumentStore):
    """Document store whose searches always fail."""

    async def find(self, query, limit=None):
        raise ConnectionError("database unreachable")


def build_pipeline(stub_embedding, provider=None, store=None):
    return RAGPipeline(
        embedding=stub_embedding,
        store=store or MemoryDocumentStore(),
        conversations=MemoryConversationStore(),
        cache=ResponseCache(MemoryCacheBackend()),
        provider=provider,
    )


class TestSearchDocuments:
    """Tests for RAGPipeline.search_documents."""

    @pytest.mark.asyncio
    async def test_repeated_query_served_from_cache(self, pipeline, document_store):
        await document_store.insert(make_document(id="d1"))

        first = await pipeline.search_documents(RAGQuery(query="sleep"))
        second = await pipeline.search_documents(RAGQuery(query="  SLEEP "))

        assert first.metadata.cache_hit is False
        assert second.metadata.cache_hit is True
        assert [r.document.id for r in second.results] == [r.document.id for r in first.results]
        assert [r.score for r in second.results] == [r.score for r in first.results]

    @pytest.mark.asyncio
    async def test_envelope(self, pipeline, document_store):
        await document_store.insert(make_document(id="d1"))

        response = await pipeline.search_documents(RAGQuery(query="sleep"))

        assert response.response == ""
        assert response.total_results == 1
        assert response.model == "StubEmbedding"
        assert response.confidence == 0.8
        assert response.sources == ["sleep-foundation"]
        assert response.metadata.retrieval_status == "ok"
        assert response.metadata.vector_search_time == pytest.approx(response.processing_time * 0.7)

    @pytest.mark.asyncio
    async def test_no_results(self, pipeline, document_store):
        await document_store.insert(make_document())

        response = await pipeline.search_documents(RAGQuery(query="nutrition"))

        assert response.results == []
        assert response.model == "fallback"
        assert response.confidence == 0.0

    @pytest.mark.asyncio
    async def test_failed_search_not_cached(self, stub_embedding):
        pipeline = build_pipeline(stub_embedding, store=FailingStore())

        first = await pipeline.search_documents(RAGQuery(query="sleep"))
        second = await pipeline.search_documents(RAGQuery(query="sleep"))

        assert first.metadata.retrieval_status == "failed"
        assert first.results == []
        assert second.metadata.cache_hit is False

    @pytest.mark.asyncio
    async def test_degraded_embedding_reported(self, pipeline, stub_embedding, document_store):
        await document_store.insert(make_document())
        stub_embedding.degraded = True

        response = await pipeline.search_documents(RAGQuery(query="sleep"))

        assert response.metadata.retrieval_status == "degraded"

    @pytest.mark.asyncio
    async def test_user_context_boosts_relevance(self, pipeline, document_store):
        await document_store.insert(make_document(id="d1"))

        response = await pipeline.search_documents(RAGQuery(
            query="sleep",
            context=UserContext(health_conditions=["insomnia"]),
        ))

        assert response.results[0].relevance == 1.0

    @pytest.mark.asyncio
    async def test_owned_documents_need_user(self, pipeline, document_store):
        await document_store.insert(make_document(id="mine", owner_id="u1"))

        anonymous = await pipeline.search_documents(RAGQuery(query="sleep"))
        owner = await pipeline.search_documents(RAGQuery(query="sleep", user_id="u1"))

        assert anonymous.results == []
        assert [r.document.id for r in owner.results] == ["mine"]


class TestUserRelevantDocuments:
    """Tests for blending personal and general documents."""

    @pytest.mark.asyncio
    async def test_personal_documents_first(self, pipeline, document_store):
        await document_store.insert(make_document(
            id="personal",
            title="My Sleep Routine",
            content="Lights out at ten. Read a book before bed.",
            keywords=["sleep routine"],
            owner_id="u1",
        ))
        await document_store.insert(make_document(
            id="general",
            title="Hydration Basics",
            content="Drink water through the day.",
            keywords=["water"],
            embedding=[0.8, 0.6, 0.0],
        ))
        await document_store.insert(make_document(id="other-user", owner_id="u2"))

        conversation = ConversationContext(user_id="u1", session_id="s1")
        results = await pipeline.search_user_relevant_documents("sleep routine", "u1", conversation)

        assert [r.document.id for r in results] == ["personal", "general"]

        personal, general = results
        assert personal.context == "User document: My Sleep Routine"
        assert personal.score == pytest.approx(1.0)
        assert personal.relevance >= 0.8
        assert general.score == pytest.approx(0.56)

    @pytest.mark.asyncio
    async def test_errors_give_empty_list(self, stub_embedding):
        pipeline = build_pipeline(stub_embedding, store=FailingStore())
        conversation = ConversationContext(user_id="u1", session_id="s1")

        assert await pipeline.search_user_relevant_documents("sleep", "u1", conversation) == []


class TestStopSignals:
    """Tests for stop handling."""

    def test_keyword_anywhere_in_query(self):
        """Any stop keyword contained in the lowercased query is a stop signal."""
        assert is_stop_signal("Please STOP")
        assert is_stop_signal("let's end this")
        assert is_stop_signal("Stopping here for today, thanks")
        assert not is_stop_signal(QUESTION)

    @pytest.mark.asyncio
    async def test_stopping_phrase_short_circuits(self, pipeline, conversation_store, provider):
        existing = ConversationContext(user_id="u1", session_id="s1")
        existing.add_message(Role.USER, "hello")
        await conversation_store.save(existing)

        result = await pipeline.generate("Stopping here for today, thanks", "u1", "s1")

        assert result.state is QueryState.STOPPED
        assert result.text == STOP_ACKNOWLEDGEMENT
        assert provider.calls == []
        assert (await conversation_store.get("u1", "s1")).message_count == 1

    @pytest.mark.asyncio
    async def test_stop_request(self, pipeline, conversation_store, provider):
        existing = ConversationContext(user_id="u1", session_id="s1")
        existing.add_message(Role.USER, "hello")
        await conversation_store.save(existing)

        result = await pipeline.generate("please stop", "u1", "s1")

        assert result.state is QueryState.STOPPED
        assert result.text == STOP_ACKNOWLEDGEMENT
        assert result.trace == [QueryState.RECEIVED, QueryState.STOP_CHECK, QueryState.STOPPED]
        assert provider.calls == []
        assert (await conversation_store.get("u1", "s1")).message_count == 1

    @pytest.mark.asyncio
    async def test_ended_conversation(self, pipeline, conversation_store, provider):
        existing = ConversationContext(user_id="u1", session_id="s1")
        existing.add_message(Role.USER, "I want to stop now")
        await conversation_store.save(existing)

        result = await pipeline.generate("Are you still there?", "u1", "s1")

        assert result.state is QueryState.STOPPED
        assert result.text == CONVERSATION_ENDED
        assert provider.calls == []
        assert (await conversation_store.get("u1", "s1")).message_count == 1


class TestGenerate:
    """Tests for contextual response generation."""

    @pytest.mark.asyncio
    async def test_completed(self, pipeline, document_store, conversation_store, provider):
        await document_store.insert(make_document())

        result = await pipeline.generate(QUESTION, "u1", "s1")

        assert result.state is QueryState.COMPLETED
        assert result.state in TERMINAL_STATES
        assert result.text == "Try keeping a consistent bedtime."
        assert result.trace == FULL_TRACE
        assert result.sources == ["sleep-foundation"]

        saved = await conversation_store.get("u1", "s1")
        assert [m.role for m in saved.messages] == [Role.USER, Role.ASSISTANT]
        assert saved.messages[0].content == QUESTION

        prompt = provider.last_prompt
        assert "KNOWLEDGE BASE:" in prompt
        assert "Sleep Hygiene: Keep a regular sleep schedule." in prompt
        assert "Health Conditions: None specified" in prompt
        assert "Communication Style: professional" in prompt
        assert f"USER MESSAGE: {QUESTION}" in prompt

        call = provider.calls[0]
        assert call["max_tokens"] == 1000
        assert call["temperature"] == 0.7
        assert call["top_p"] == 0.9

    @pytest.mark.asyncio
    async def test_general_knowledge_without_documents(self, pipeline, provider):
        await pipeline.generate(QUESTION, "u1", "s1")

        assert "General wellness principles and best practices." in provider.last_prompt

    @pytest.mark.asyncio
    async def test_new_session_id(self, pipeline):
        result = await pipeline.generate(QUESTION, "u1")

        assert result.session_id.startswith("session_")

    @pytest.mark.asyncio
    async def test_history_in_prompt(self, pipeline, conversation_store, provider):
        existing = ConversationContext(
            user_id="u1",
            session_id="s1",
            context=UserContext(health_conditions=["asthma"], medications=["inhaler"]),
        )
        existing.add_message(Role.USER, "I started running")
        await conversation_store.save(existing)

        await pipeline.generate(QUESTION, "u1", "s1")

        prompt = provider.last_prompt
        assert "user: I started running" in prompt
        assert "Health Conditions: asthma" in prompt
        assert "Medications: inhaler" in prompt

    @pytest.mark.asyncio
    async def test_provider_failure(self, stub_embedding):
        pipeline = build_pipeline(stub_embedding, provider=FakeProvider(error=RuntimeError("down")))

        result = await pipeline.generate(QUESTION, "u1", "s1")

        assert result.state is QueryState.FAILED_FALLBACK
        assert result.text == FALLBACK_RESPONSE
        assert result.trace[-2:] == [QueryState.PROVIDER_CALL, QueryState.FAILED_FALLBACK]
        assert await pipeline.conversations.get("u1", "s1") is None

    @pytest.mark.asyncio
    async def test_empty_choices(self, stub_embedding):
        pipeline = build_pipeline(stub_embedding, provider=FakeProvider(empty=True))

        result = await pipeline.generate(QUESTION, "u1", "s1")

        assert result.state is QueryState.FAILED_FALLBACK
        assert await pipeline.conversations.get("u1", "s1") is None

    @pytest.mark.asyncio
    async def test_no_provider(self, stub_embedding):
        pipeline = build_pipeline(stub_embedding)

        result = await pipeline.generate(QUESTION, "u1", "s1")

        assert result.state is QueryState.FAILED_FALLBACK
        assert pipeline.cancel_generation("g1") is False
        assert pipeline.active_generation_ids() == []


class TestCancellation:
    """Tests for cancelling generations."""

    @pytest.mark.asyncio
    async def test_cancel_in_flight(self, pipeline, conversation_store):
        pipeline.provider.block = True

        task = asyncio.create_task(pipeline.generate(QUESTION, "u1", "s1", generation_id="g1"))
        assert await wait_until_active(pipeline, "g1")
        assert pipeline.active_generation_ids() == ["g1"]

        assert pipeline.cancel_generation("g1") is True
        result = await task

        assert result.state is QueryState.CANCELLED
        assert result.cancelled
        assert result.text == ""
        assert not pipeline.is_generation_active("g1")
        assert await conversation_store.get("u1", "s1") is None

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, pipeline):
        assert pipeline.cancel_generation("missing") is False

    @pytest.mark.asyncio
    async def test_contextual_response_raises(self, pipeline):
        pipeline.provider.block = True

        task = asyncio.create_task(
            pipeline.generate_contextual_response(QUESTION, "u1", "s1", generation_id="g1")
        )
        assert await wait_until_active(pipeline, "g1")
        pipeline.cancel_generation("g1")

        with pytest.raises(GenerationCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_duplicate_generation_id(self, pipeline, conversation_store, provider):
        """A second generation under an active id falls back without raising."""
        provider.block = True

        task = asyncio.create_task(pipeline.generate(QUESTION, "u1", "s1", generation_id="g1"))
        assert await wait_until_active(pipeline, "g1")

        duplicate = await pipeline.generate(QUESTION, "u1", "s2", generation_id="g1")

        assert duplicate.state is QueryState.FAILED_FALLBACK
        assert duplicate.text == FALLBACK_RESPONSE
        assert duplicate.trace == [QueryState.RECEIVED, QueryState.FAILED_FALLBACK]
        assert len(provider.calls) == 1
        assert await conversation_store.get("u1", "s2") is None
        assert pipeline.is_generation_active("g1")

        provider.release.set()
        result = await task
        assert result.state is QueryState.COMPLETED

    @pytest.mark.asyncio
    async def test_reply_text(self, pipeline):
        reply = await pipeline.generate_contextual_response(QUESTION, "u1", "s1", generation_id="g1")

        assert reply == "Try keeping a consistent bedtime."
        assert not pipeline.is_generation_active("g1")


class TestUserDocuments:
    """Tests for managing user documents."""

    @pytest.mark.asyncio
    async def test_add(self, pipeline, stub_embedding):
        document = make_document(title="My Notes", content="Magnesium helps me sleep.", embedding=None)

        stored = await pipeline.add_user_document("u1", document)

        assert stored.owner_id == "u1"
        assert stored.embedding is not None
        assert stored.metadata["user_id"] == "u1"
        assert "added_at" in stored.metadata
        assert stub_embedding.calls == ["My Notes Magnesium helps me sleep."]
        assert [d.id for d in await pipeline.get_user_documents("u1")] == [stored.id]

    @pytest.mark.asyncio
    async def test_update_reembeds_on_content_change(self, pipeline, stub_embedding):
        stored = await pipeline.add_user_document("u1", make_document(embedding=None))

        await pipeline.update_user_document("u1", stored.id, {"keywords": ["rest"]})
        assert len(stub_embedding.calls) == 1

        updated = await pipeline.update_user_document("u1", stored.id, {"content": "Nap less."})
        assert len(stub_embedding.calls) == 2
        assert updated.content == "Nap less."
        assert updated.keywords == ["rest"]
        assert updated.owner_id == "u1"

    @pytest.mark.asyncio
    async def test_update_rejects_read_only_fields(self, pipeline):
        stored = await pipeline.add_user_document("u1", make_document())

        with pytest.raises(ValueError):
            await pipeline.update_user_document("u1", stored.id, {"owner_id": "u2"})
        with pytest.raises(ValueError):
            await pipeline.update_user_document("u1", stored.id, {"colour": "blue"})

    @pytest.mark.asyncio
    async def test_other_users_documents(self, pipeline):
        stored = await pipeline.add_user_document("u1", make_document())

        with pytest.raises(NotFoundError):
            await pipeline.update_user_document("u2", stored.id, {"title": "Mine now"})
        with pytest.raises(NotFoundError):
            await pipeline.delete_user_document("u2", stored.id)

    @pytest.mark.asyncio
    async def test_delete(self, pipeline):
        stored = await pipeline.add_user_document("u1", make_document())

        await pipeline.delete_user_document("u1", stored.id)

        assert await pipeline.get_user_documents("u1") == []

    @pytest.mark.asyncio
    async def test_chunk_document(self, pipeline):
        chunks = await pipeline.chunk_document(make_document())

        assert len(chunks) == 1
        assert chunks[0].embedding == [0.0, 0.0, 0.0]


class TestHealthCheck:
    """Tests for health checks."""

    @pytest.mark.asyncio
    async def test_healthy(self, pipeline):
        assert await pipeline.health_check() == {"cache": True, "store": True}

    @pytest.mark.asyncio
    async def test_without_cache(self):
        pipeline = RAGPipeline(
            embedding=StubEmbedding(),
            store=MemoryDocumentStore(),
            conversations=MemoryConversationStore(),
        )

        assert await pipeline.health_check() == {"cache": False, "store": True}
