"""Document and conversation store implementations."""

import logging
import re
from collections import Counter
from typing import Any, Optional

from .base import BaseConversationStore, BaseDocumentStore
from .context import ConversationContext
from .document import WellnessDocument
from .filters import DocumentQuery

logger = logging.getLogger(__name__)

# Full-text field weights: title matches rank highest, then keywords, then content.
TEXT_WEIGHTS = {
    "title": 10,
    "keywords": 5,
    "content": 1,
}


def _tokenize(text: str) -> list[str]:
    """Tokenize text into lowercase terms."""
    return re.findall(r"\b\w+\b", text.lower())


def text_score(document: WellnessDocument, terms: list[str]) -> float:
    """Weighted term-frequency score of a document for the given terms."""
    fields = {
        "title": Counter(_tokenize(document.title)),
        "keywords": Counter(_tokenize(" ".join(document.keywords))),
        "content": Counter(_tokenize(document.content)),
    }

    score = 0.0
    for term in set(terms):
        for field, counts in fields.items():
            score += TEXT_WEIGHTS[field] * counts.get(term, 0)
    return score


class MemoryDocumentStore(BaseDocumentStore):
    """In-memory document store for testing and small datasets.

    Documents are kept in insertion order; searches scan everything.
    """

    def __init__(self) -> None:
        self._documents: dict[str, WellnessDocument] = {}

    async def insert(self, document: WellnessDocument) -> str:
        self._documents[document.id] = document.model_copy(deep=True)
        logger.debug(f"Stored document {document.id}")
        return document.id

    async def get(self, document_id: str) -> Optional[WellnessDocument]:
        document = self._documents.get(document_id)
        return document.model_copy(deep=True) if document else None

    async def update(self, document: WellnessDocument) -> bool:
        if document.id not in self._documents:
            return False
        self._documents[document.id] = document.model_copy(deep=True)
        return True

    async def delete(self, document_id: str) -> bool:
        return self._documents.pop(document_id, None) is not None

    async def find(
        self,
        query: DocumentQuery,
        limit: Optional[int] = None,
    ) -> list[WellnessDocument]:
        matches = []
        for document in self._documents.values():
            if query.matches(document):
                matches.append(document.model_copy(deep=True))
                if limit is not None and len(matches) >= limit:
                    break
        return matches

    async def text_search(
        self,
        text: str,
        query: DocumentQuery,
        limit: int = 10,
    ) -> list[tuple[WellnessDocument, float]]:
        terms = _tokenize(text)
        if not terms:
            return []

        scored = []
        for document in self._documents.values():
            if not query.matches(document):
                continue
            score = text_score(document, terms)
            if score > 0:
                scored.append((document.model_copy(deep=True), score))

        scored.sort(key=lambda x: x[1], reverse=True)
        return scored[:limit]

    async def count(self) -> int:
        return len(self._documents)

    async def clear(self) -> bool:
        self._documents.clear()
        return True

    async def ping(self) -> bool:
        return True


class MongoDocumentStore(BaseDocumentStore):
    """MongoDB document store using motor.

    Keeps one MongoDB document per wellness document, keyed by ``id``, with
    a weighted text index over title, keywords and content.
    """

    def __init__(
        self,
        uri: str = "mongodb://localhost:27017",
        database: str = "wellness-scribe",
        collection_name: str = "wellness_documents",
        client: Any = None,
    ):
        """Initialize the MongoDB store.

        Args:
            uri: MongoDB connection string
            database: Database name
            collection_name: Collection holding the documents
            client: Existing AsyncIOMotorClient to reuse (optional)
        """
        self.uri = uri
        self.database = database
        self.collection_name = collection_name
        self._client = client
        self._collection = None

    def _get_client(self):
        """Get or create the motor client."""
        if self._client is None:
            try:
                from motor.motor_asyncio import AsyncIOMotorClient
            except ImportError:
                raise ImportError(
                    "MongoDB store requires 'motor'. "
                    "Install it with: pip install motor"
                )
            self._client = AsyncIOMotorClient(self.uri, tz_aware=True)
        return self._client

    def _get_collection(self):
        if self._collection is None:
            self._collection = self._get_client()[self.database][self.collection_name]
        return self._collection

    async def ensure_indexes(self) -> None:
        """Create the lookup and weighted full-text indexes."""
        collection = self._get_collection()
        await collection.create_index("id", unique=True)
        await collection.create_index("owner_id")
        await collection.create_index([("category", 1), ("evidence_level", 1)])
        await collection.create_index([("keywords", 1), ("category", 1)])
        await collection.create_index([("source", 1), ("evidence_level", 1)])
        await collection.create_index(
            [("title", "text"), ("content", "text"), ("keywords", "text")],
            weights=TEXT_WEIGHTS,
            name="wellness_text_index",
        )

    @staticmethod
    def _to_record(document: WellnessDocument) -> dict[str, Any]:
        record = document.model_dump()
        record["category"] = document.category.value
        record["evidence_level"] = document.evidence_level.value
        record["_id"] = document.id
        return record

    @staticmethod
    def _from_record(record: dict[str, Any]) -> WellnessDocument:
        record = dict(record)
        record.pop("_id", None)
        record.pop("score", None)
        return WellnessDocument.model_validate(record)

    async def insert(self, document: WellnessDocument) -> str:
        collection = self._get_collection()
        await collection.replace_one(
            {"_id": document.id},
            self._to_record(document),
            upsert=True,
        )
        return document.id

    async def get(self, document_id: str) -> Optional[WellnessDocument]:
        record = await self._get_collection().find_one({"_id": document_id})
        return self._from_record(record) if record else None

    async def update(self, document: WellnessDocument) -> bool:
        result = await self._get_collection().replace_one(
            {"_id": document.id},
            self._to_record(document),
        )
        return result.matched_count > 0

    async def delete(self, document_id: str) -> bool:
        result = await self._get_collection().delete_one({"_id": document_id})
        return result.deleted_count > 0

    async def find(
        self,
        query: DocumentQuery,
        limit: Optional[int] = None,
    ) -> list[WellnessDocument]:
        cursor = self._get_collection().find(query.to_mongo())
        if limit is not None:
            cursor = cursor.limit(limit)
        records = await cursor.to_list(length=limit)
        return [self._from_record(r) for r in records]

    async def text_search(
        self,
        text: str,
        query: DocumentQuery,
        limit: int = 10,
    ) -> list[tuple[WellnessDocument, float]]:
        text_clause = {"$text": {"$search": text}}
        restrictions = query.to_mongo()
        mongo_filter = {"$and": [text_clause, restrictions]} if restrictions else text_clause

        cursor = (
            self._get_collection()
            .find(mongo_filter, {"score": {"$meta": "textScore"}})
            .sort([("score", {"$meta": "textScore"})])
            .limit(limit)
        )
        records = await cursor.to_list(length=limit)
        return [(self._from_record(r), float(r.get("score", 0.0))) for r in records]

    async def count(self) -> int:
        return await self._get_collection().count_documents({})

    async def clear(self) -> bool:
        await self._get_collection().delete_many({})
        return True

    async def ping(self) -> bool:
        try:
            await self._get_client().admin.command("ping")
            return True
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return False


class MemoryConversationStore(BaseConversationStore):
    """In-memory conversation store for testing."""

    def __init__(self) -> None:
        self._contexts: dict[tuple[str, str], ConversationContext] = {}

    async def get(self, user_id: str, session_id: str) -> Optional[ConversationContext]:
        context = self._contexts.get((user_id, session_id))
        return context.model_copy(deep=True) if context else None

    async def save(self, context: ConversationContext) -> None:
        self._contexts[context.key] = context.model_copy(deep=True)

    async def list_by_user(self, user_id: str) -> list[ConversationContext]:
        contexts = [c for (uid, _), c in self._contexts.items() if uid == user_id]
        return sorted(contexts, key=lambda c: c.last_updated, reverse=True)

    async def delete(self, user_id: str, session_id: str) -> bool:
        return self._contexts.pop((user_id, session_id), None) is not None


class MongoConversationStore(BaseConversationStore):
    """MongoDB conversation store using motor, unique on (user_id, session_id)."""

    def __init__(
        self,
        uri: str = "mongodb://localhost:27017",
        database: str = "wellness-scribe",
        collection_name: str = "conversation_contexts",
        client: Any = None,
    ):
        self.uri = uri
        self.database = database
        self.collection_name = collection_name
        self._client = client
        self._collection = None

    def _get_client(self):
        """Get or create the motor client."""
        if self._client is None:
            try:
                from motor.motor_asyncio import AsyncIOMotorClient
            except ImportError:
                raise ImportError(
                    "MongoDB store requires 'motor'. "
                    "Install it with: pip install motor"
                )
            self._client = AsyncIOMotorClient(self.uri, tz_aware=True)
        return self._client

    def _get_collection(self):
        if self._collection is None:
            self._collection = self._get_client()[self.database][self.collection_name]
        return self._collection

    async def ensure_indexes(self) -> None:
        collection = self._get_collection()
        await collection.create_index([("user_id", 1), ("session_id", 1)], unique=True)
        await collection.create_index([("user_id", 1), ("last_updated", -1)])

    async def get(self, user_id: str, session_id: str) -> Optional[ConversationContext]:
        record = await self._get_collection().find_one(
            {"user_id": user_id, "session_id": session_id},
            {"_id": 0},
        )
        return ConversationContext.model_validate(record) if record else None

    async def save(self, context: ConversationContext) -> None:
        await self._get_collection().replace_one(
            {"user_id": context.user_id, "session_id": context.session_id},
            context.model_dump(mode="json"),
            upsert=True,
        )

    async def list_by_user(self, user_id: str) -> list[ConversationContext]:
        cursor = self._get_collection().find({"user_id": user_id}, {"_id": 0}).sort("last_updated", -1)
        records = await cursor.to_list(length=None)
        return [ConversationContext.model_validate(r) for r in records]

    async def delete(self, user_id: str, session_id: str) -> bool:
        result = await self._get_collection().delete_one(
            {"user_id": user_id, "session_id": session_id}
        )
        return result.deleted_count > 0
