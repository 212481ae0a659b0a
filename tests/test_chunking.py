"""Tests for sentence chunking."""

import pytest

from wellness_rag.rag import SentenceChunker
from wellness_rag.rag.chunking import split_sentences

from conftest import make_document

THREE_SENTENCES = "Drink water daily. Sleep eight hours. Walk for thirty minutes every day."


class TestSplitSentences:
    """Tests for split_sentences."""

    def test_split_on_terminal_punctuation(self):
        assert split_sentences("One. Two! Three?") == ["One", "Two", "Three"]

    def test_runs_of_punctuation(self):
        assert split_sentences("Really?! Yes...") == ["Really", "Yes"]

    def test_empty_text(self):
        assert split_sentences("") == []
        assert split_sentences("  ...  ") == []


class TestSentenceChunker:
    """Tests for SentenceChunker."""

    def test_greedy_join(self):
        """Two sentences fit, the third starts a new chunk."""
        chunker = SentenceChunker(max_chunk_size=40)

        chunks = chunker.split_text(THREE_SENTENCES)

        assert chunks == [
            "Drink water daily. Sleep eight hours",
            "Walk for thirty minutes every day",
        ]

    def test_everything_fits(self):
        chunker = SentenceChunker(max_chunk_size=1000)
        chunks = chunker.split_text(THREE_SENTENCES)
        assert len(chunks) == 1

    def test_oversized_sentence_kept_whole(self):
        """A single sentence longer than the limit is not cut."""
        chunker = SentenceChunker(max_chunk_size=10)

        chunks = chunker.split_text("This sentence is rather long. Short.")

        assert chunks == ["This sentence is rather long", "Short"]

    def test_separator_counts_toward_limit(self):
        """Sentences that fit alone but not once joined go to separate chunks."""
        chunker = SentenceChunker(max_chunk_size=10)

        chunks = chunker.split_text("aaaa. bbbbbb.")

        assert chunks == ["aaaa", "bbbbbb"]
        assert all(len(chunk) <= 10 for chunk in chunks)

    def test_exact_fit_with_separator(self):
        chunker = SentenceChunker(max_chunk_size=12)
        assert chunker.split_text("aaaa. bbbbbb.") == ["aaaa. bbbbbb"]

    def test_no_overlap_between_chunks(self):
        chunker = SentenceChunker(max_chunk_size=40, overlap_size=20)
        first, second = chunker.split_text(THREE_SENTENCES)
        assert "Sleep" not in second

    def test_empty_text(self):
        assert SentenceChunker().split_text("") == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            SentenceChunker(max_chunk_size=0)

    def test_chunk_document(self):
        """Test chunks carry ids, positions and parent fields."""
        document = make_document(id="doc-1", content=THREE_SENTENCES)
        chunker = SentenceChunker(max_chunk_size=40)

        chunks = chunker.chunk(document)

        assert [c.id for c in chunks] == ["doc-1_chunk_0", "doc-1_chunk_1"]
        assert all(c.document_id == "doc-1" for c in chunks)
        assert chunks[0].start_index == 0
        assert chunks[1].start_index == THREE_SENTENCES.index("Walk")
        assert chunks[1].metadata["chunk_index"] == 1
        assert chunks[1].metadata["title"] == "Sleep Hygiene"
        assert chunks[1].metadata["category"] == "lifestyle"
        assert chunks[0].embedding is None
