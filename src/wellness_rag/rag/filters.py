"""Typed document query predicates.

Searches never build ad hoc database queries. They describe what they want
with a small tagged union of predicates which is validated up front and then
evaluated either in memory (``matches``) or translated for MongoDB
(``to_mongo``).
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .document import SearchFilters, WellnessDocument

FILTERABLE_FIELDS = frozenset({
    "id",
    "category",
    "evidence_level",
    "source",
    "owner_id",
    "usage_count",
    "created_at",
    "updated_at",
    "last_updated",
    "tags",
    "keywords",
})

LIST_FIELDS = frozenset({"tags", "keywords"})


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _field_value(document: WellnessDocument, field: str) -> Any:
    return _plain(getattr(document, field))


class _FieldPredicate(BaseModel):
    field: str

    @field_validator("field")
    @classmethod
    def _known_field(cls, value: str) -> str:
        if value not in FILTERABLE_FIELDS:
            raise ValueError(f"Unsupported filter field: {value}")
        return value


class Equals(_FieldPredicate):
    """Field equals a value (for list fields: contains the value)."""
    kind: Literal["equals"] = "equals"
    value: Any = None

    def matches(self, document: WellnessDocument) -> bool:
        actual = _field_value(document, self.field)
        expected = _plain(self.value)
        if self.field in LIST_FIELDS:
            return expected in actual
        return actual == expected

    def to_mongo(self) -> dict[str, Any]:
        return {self.field: _plain(self.value)}


class InSet(_FieldPredicate):
    """Field value is one of the allowed values."""
    kind: Literal["in"] = "in"
    values: list[Any]

    def matches(self, document: WellnessDocument) -> bool:
        allowed = {_plain(v) for v in self.values}
        actual = _field_value(document, self.field)
        if self.field in LIST_FIELDS:
            return any(item in allowed for item in actual)
        return actual in allowed

    def to_mongo(self) -> dict[str, Any]:
        return {self.field: {"$in": [_plain(v) for v in self.values]}}


class Range(_FieldPredicate):
    """Field value lies in an inclusive range."""
    kind: Literal["range"] = "range"
    gte: Any = None
    lte: Any = None

    def matches(self, document: WellnessDocument) -> bool:
        actual = _field_value(document, self.field)
        if actual is None:
            return False
        if self.gte is not None and actual < self.gte:
            return False
        if self.lte is not None and actual > self.lte:
            return False
        return True

    def to_mongo(self) -> dict[str, Any]:
        bounds: dict[str, Any] = {}
        if self.gte is not None:
            bounds["$gte"] = self.gte
        if self.lte is not None:
            bounds["$lte"] = self.lte
        return {self.field: bounds}


class TextSearch(BaseModel):
    """Any query term appears in the title, keywords or content."""
    kind: Literal["text"] = "text"
    query: str

    def terms(self) -> list[str]:
        return re.findall(r"\b\w+\b", self.query.lower())

    def matches(self, document: WellnessDocument) -> bool:
        haystack = " ".join([document.title, document.content, *document.keywords]).lower()
        words = set(re.findall(r"\b\w+\b", haystack))
        return any(term in words for term in self.terms())

    def to_mongo(self) -> dict[str, Any]:
        return {"$text": {"$search": self.query}}


Predicate = Annotated[
    Union[Equals, InSet, Range, TextSearch],
    Field(discriminator="kind"),
]


class VisibilityScope(BaseModel):
    """Restrict results to the shared pool plus documents owned by ``user_id``."""
    user_id: Optional[str] = None


class DocumentQuery(BaseModel):
    """AND-combination of predicates plus visibility and embedding requirements."""

    predicates: list[Predicate] = Field(default_factory=list)
    scope: Optional[VisibilityScope] = None
    require_embedding: bool = False

    def matches(self, document: WellnessDocument) -> bool:
        if self.require_embedding and document.embedding is None:
            return False
        if self.scope is not None and not document.is_visible_to(self.scope.user_id):
            return False
        return all(predicate.matches(document) for predicate in self.predicates)

    def to_mongo(self) -> dict[str, Any]:
        clauses: list[dict[str, Any]] = [p.to_mongo() for p in self.predicates]

        if self.require_embedding:
            clauses.append({"embedding": {"$exists": True, "$ne": None}})

        if self.scope is not None:
            if self.scope.user_id is None:
                clauses.append({"owner_id": None})
            else:
                clauses.append({"$or": [
                    {"owner_id": None},
                    {"owner_id": self.scope.user_id},
                ]})

        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}


def predicates_from_filters(filters: Optional[SearchFilters]) -> list[Predicate]:
    """Translate allow-list filters into ``InSet`` predicates."""
    if filters is None:
        return []

    predicates: list[Predicate] = []
    if filters.categories:
        predicates.append(InSet(field="category", values=list(filters.categories)))
    if filters.evidence_levels:
        predicates.append(InSet(field="evidence_level", values=list(filters.evidence_levels)))
    if filters.sources:
        predicates.append(InSet(field="source", values=list(filters.sources)))
    return predicates


def build_query(
    filters: Optional[SearchFilters] = None,
    user_id: Optional[str] = None,
    require_embedding: bool = False,
) -> DocumentQuery:
    """Build the document query used by searches scoped to ``user_id``."""
    return DocumentQuery(
        predicates=predicates_from_filters(filters),
        scope=VisibilityScope(user_id=user_id),
        require_embedding=require_embedding,
    )
