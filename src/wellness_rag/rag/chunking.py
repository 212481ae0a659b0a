"""Document chunking."""

import re

from .base import BaseChunker
from .document import Chunk, WellnessDocument

_SENTENCE_END = re.compile(r"[.!?]+")
_JOINER = ". "


def split_sentences(text: str) -> list[str]:
    """Split text on sentence-terminal punctuation, dropping empty pieces."""
    return [s.strip() for s in _SENTENCE_END.split(text) if s.strip()]


class SentenceChunker(BaseChunker):
    """Greedy sentence-bounded chunker.

    Sentences are accumulated (joined with ". ") until the next one would
    push the chunk past ``max_chunk_size``. A single sentence longer than
    ``max_chunk_size`` becomes its own chunk instead of being cut.

    ``overlap_size`` is accepted for configuration compatibility but no text
    is carried over between adjacent chunks.
    """

    def __init__(
        self,
        max_chunk_size: int = 1000,
        overlap_size: int = 200,
    ):
        """Initialize the sentence chunker.

        Args:
            max_chunk_size: Maximum characters per chunk
            overlap_size: Requested overlap (not applied)
        """
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")

        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size

    def split_text(self, text: str) -> list[str]:
        """Split text into sentence-bounded chunk strings."""
        chunks: list[str] = []
        current = ""

        for sentence in split_sentences(text):
            joiner = _JOINER if current else ""
            if len(current) + len(joiner) + len(sentence) > self.max_chunk_size:
                if current:
                    chunks.append(current.strip())
                current = sentence
            else:
                current += joiner + sentence

        if current:
            chunks.append(current.strip())

        return chunks

    def chunk(self, document: WellnessDocument) -> list[Chunk]:
        """Split a document into chunks carrying the parent's fields."""
        chunks = []
        search_from = 0

        for index, piece in enumerate(self.split_text(document.content)):
            first_sentence = split_sentences(piece)[0]
            start = document.content.find(first_sentence, search_from)
            if start < 0:
                start = search_from
            end = start + len(piece)
            search_from = start + len(first_sentence)

            chunks.append(Chunk(
                id=f"{document.id}_chunk_{index}",
                document_id=document.id,
                content=piece,
                metadata={
                    "chunk_index": index,
                    "start_position": start,
                    "end_position": end,
                    "title": document.title,
                    "category": document.category.value,
                    "evidence_level": document.evidence_level.value,
                    "source": document.source,
                    "keywords": list(document.keywords),
                    "chunker": "sentence",
                },
                start_index=start,
                end_index=end,
            ))

        return chunks
